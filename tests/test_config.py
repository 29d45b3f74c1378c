import os

import pytest

from rtunnel.config import (
    DEFAULT_REAP_COMMAND,
    Endpoint,
    TunnelConfig,
    parse_endpoint,
)
from rtunnel.exceptions import ConfigError
from rtunnel.models.enums import LogLevel, RelayMode


def test_defaults():
    config = TunnelConfig.from_env({})

    assert config.REMOTE_SERVER == Endpoint("dev-server", 22)
    assert config.REMOTE_SERVER_USER == "packer"
    assert config.REMOTE_SERVER_KEY == "~/.ssh/id_rsa"
    assert config.LOCAL_ENDPOINT == Endpoint("127.0.0.1", 22)
    assert config.REMOTE_ENDPOINT == Endpoint("127.0.0.1", 2222)
    assert config.RELAY_MODE == RelayMode.CONCURRENT
    assert config.REAP_COMMAND == DEFAULT_REAP_COMMAND
    assert config.LOG_LEVEL == LogLevel.INFO
    assert config.get_known_hosts_path() is None


def test_from_env_overrides():
    config = TunnelConfig.from_env(
        {
            "REMOTE_SERVER": "relay.example.com:2200",
            "REMOTE_SERVER_USER": "tunnel",
            "REMOTE_SERVER_KEY": "/keys/relay",
            "REMOTE_SERVER_KNOWN_HOSTS": "/keys/known_hosts",
            "LOCAL_ENDPOINT": "127.0.0.1:8080",
            "REMOTE_ENDPOINT": "0.0.0.0:9000",
            "RELAY_MODE": "SERIAL",
            "LOG_LEVEL": "debug",
        }
    )

    assert config.REMOTE_SERVER == Endpoint("relay.example.com", 2200)
    assert config.REMOTE_SERVER_USER == "tunnel"
    assert config.get_key_path() == "/keys/relay"
    assert config.get_known_hosts_path() == "/keys/known_hosts"
    assert config.LOCAL_ENDPOINT == Endpoint("127.0.0.1", 8080)
    assert config.REMOTE_ENDPOINT == Endpoint("0.0.0.0", 9000)
    assert config.RELAY_MODE == RelayMode.SERIAL
    assert config.LOG_LEVEL == LogLevel.DEBUG


def test_empty_variables_fall_back_to_defaults():
    config = TunnelConfig.from_env({"REMOTE_SERVER": "", "REMOTE_SERVER_USER": ""})

    assert config.REMOTE_SERVER == Endpoint("dev-server", 22)
    assert config.REMOTE_SERVER_USER == "packer"


def test_remote_server_without_port_uses_ssh_port():
    config = TunnelConfig.from_env({"REMOTE_SERVER": "relay"})
    assert config.REMOTE_SERVER == Endpoint("relay", 22)


def test_invalid_relay_mode():
    with pytest.raises(ConfigError, match="RELAY_MODE"):
        TunnelConfig.from_env({"RELAY_MODE": "parallel"})


def test_invalid_local_endpoint():
    with pytest.raises(ConfigError, match="LOCAL_ENDPOINT"):
        TunnelConfig.from_env({"LOCAL_ENDPOINT": "127.0.0.1"})


def test_non_ascii_port_is_config_error():
    with pytest.raises(ConfigError, match="LOCAL_ENDPOINT"):
        TunnelConfig.from_env({"LOCAL_ENDPOINT": "127.0.0.1:²"})


def test_config_is_immutable():
    config = TunnelConfig()
    with pytest.raises(AttributeError):
        config.REMOTE_SERVER_USER = "root"


def test_key_path_expands_home():
    config = TunnelConfig()
    assert config.get_key_path() == os.path.join(os.path.expanduser("~"), ".ssh", "id_rsa")


def test_reap_command_renders_port():
    config = TunnelConfig(REMOTE_ENDPOINT=Endpoint("127.0.0.1", 2222))
    command = config.get_reap_command()

    assert "tcp:2222" in command
    assert "{port}" not in command


def test_describe_never_includes_key_contents():
    names = dict(TunnelConfig().describe())
    assert names["remoteServerKey"] == "~/.ssh/id_rsa"
    assert names["remoteEndpoint"] == "127.0.0.1:2222"


@pytest.mark.parametrize(
    "value, expected",
    [
        ("127.0.0.1:22", Endpoint("127.0.0.1", 22)),
        ("localhost:0", Endpoint("localhost", 0)),
        ("[::1]:2222", Endpoint("::1", 2222)),
        (" dev-server:22 ", Endpoint("dev-server", 22)),
    ],
)
def test_parse_endpoint(value, expected):
    assert parse_endpoint(value) == expected


@pytest.mark.parametrize(
    "value",
    [
        "",
        "host",
        ":22",
        "host:ssh",
        "host:70000",
        "host:²",
        "host:２２",
        "::1:22",
        "[::1",
        "[::1]x",
    ],
)
def test_parse_endpoint_rejects(value):
    with pytest.raises(ConfigError):
        parse_endpoint(value)


def test_parse_endpoint_default_port():
    assert parse_endpoint("[::1]", default_port=22) == Endpoint("::1", 22)


def test_endpoint_str_brackets_ipv6():
    assert str(Endpoint("::1", 22)) == "[::1]:22"
    assert str(Endpoint("127.0.0.1", 22)) == "127.0.0.1:22"
