"""
Tunnel configuration for rtunnel.

A single immutable TunnelConfig is assembled once at process start, from the
environment via TunnelConfig.from_env(), and then handed to the session
manager and the accept loop. No other module reads the environment.

Usage:
    from rtunnel.config import TunnelConfig

    config = TunnelConfig.from_env()
    config = dataclasses.replace(config, RELAY_MODE=RelayMode.SERIAL)
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass

from rtunnel.exceptions import ConfigError
from rtunnel.models.enums import LogLevel, RelayMode

# Find whatever listens on the port, print the PIDs, kill them. With nothing
# to kill, `kill` complains about missing arguments; the reaper expects that.
DEFAULT_REAP_COMMAND = (
    "pids=$(lsof -t -i tcp:{port} -s tcp:listen 2>/dev/null); echo $pids; kill $pids"
)

DEFAULT_SSH_PORT = 22


# =============================================================================
# Endpoint
# =============================================================================


@dataclass(frozen=True)
class Endpoint:
    """A TCP host:port pair."""

    host: str
    port: int

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


def parse_endpoint(
    value: str, setting: str = "endpoint", default_port: int | None = None
) -> Endpoint:
    """
    Parse a "host:port" string.

    Bracketed IPv6 literals ("[::1]:22") are accepted. When default_port is
    given, a bare host is allowed and gets that port.

    Raises:
        ConfigError: If the value is empty or the port is missing/invalid.
    """
    value = value.strip()
    if not value:
        raise ConfigError("address is empty", setting)

    if value.startswith("["):
        host, sep, rest = value[1:].partition("]")
        if not sep:
            raise ConfigError(f"unterminated IPv6 literal in '{value}'", setting)
        if rest and not rest.startswith(":"):
            raise ConfigError(f"unexpected text after host in '{value}'", setting)
        port_str = rest[1:] if rest else ""
    elif value.count(":") == 1:
        host, port_str = value.split(":")
    elif ":" in value:
        raise ConfigError(f"IPv6 address must be bracketed: '{value}'", setting)
    else:
        host, port_str = value, ""

    if not host:
        raise ConfigError(f"missing host in '{value}'", setting)

    if not port_str:
        if default_port is None:
            raise ConfigError(f"missing port in '{value}'", setting)
        return Endpoint(host, default_port)

    if not (port_str.isascii() and port_str.isdigit()) or not 0 <= int(port_str) <= 65535:
        raise ConfigError(f"invalid port '{port_str}'", setting)

    return Endpoint(host, int(port_str))


def expand_home(path: str) -> str:
    """Expand a leading ~ to the invoking user's home directory."""
    return os.path.normpath(os.path.expanduser(path))


# =============================================================================
# Configuration Dataclass
# =============================================================================


@dataclass(frozen=True)
class TunnelConfig:
    """
    Reverse tunnel configuration.

    Attributes:
        REMOTE_SERVER: SSH address of the relay host.
        REMOTE_SERVER_USER: Username presented to the relay host.
        REMOTE_SERVER_KEY: Private key file used to authenticate.
        REMOTE_SERVER_KNOWN_HOSTS: known_hosts file pinning the relay host key.
            Empty disables host key verification.
        LOCAL_ENDPOINT: Local service each accepted connection is relayed to.
        REMOTE_ENDPOINT: Address of the listener opened on the relay host.
        RELAY_MODE: Concurrent or serial relaying of accepted connections.
        REAP_COMMAND: Remote command clearing a stale listener; "{port}" is
            replaced by the remote endpoint port.
        LOG_LEVEL: Logging verbosity level.
    """

    # -------------------------------------------------------------------------
    # Relay Host Configuration
    # -------------------------------------------------------------------------

    REMOTE_SERVER: Endpoint = Endpoint("dev-server", DEFAULT_SSH_PORT)
    REMOTE_SERVER_USER: str = "packer"
    REMOTE_SERVER_KEY: str = "~/.ssh/id_rsa"
    REMOTE_SERVER_KNOWN_HOSTS: str = ""

    # -------------------------------------------------------------------------
    # Tunnel Configuration
    # -------------------------------------------------------------------------

    LOCAL_ENDPOINT: Endpoint = Endpoint("127.0.0.1", 22)
    REMOTE_ENDPOINT: Endpoint = Endpoint("127.0.0.1", 2222)
    RELAY_MODE: RelayMode = RelayMode.CONCURRENT
    REAP_COMMAND: str = DEFAULT_REAP_COMMAND

    # -------------------------------------------------------------------------
    # Logging Configuration
    # -------------------------------------------------------------------------

    LOG_LEVEL: LogLevel = LogLevel.INFO

    def get_key_path(self) -> str:
        """Get the private key path with ~ expanded."""
        return expand_home(self.REMOTE_SERVER_KEY)

    def get_known_hosts_path(self) -> str | None:
        """Get the known_hosts path, or None when verification is disabled."""
        if not self.REMOTE_SERVER_KNOWN_HOSTS:
            return None
        return expand_home(self.REMOTE_SERVER_KNOWN_HOSTS)

    def get_reap_command(self) -> str:
        """Get the reap command for the remote endpoint port."""
        return self.REAP_COMMAND.replace("{port}", str(self.REMOTE_ENDPOINT.port))

    def describe(self) -> list[tuple[str, str]]:
        """Get (name, value) pairs for startup logging. Never includes key material."""
        return [
            ("remoteServer", str(self.REMOTE_SERVER)),
            ("remoteServerUser", self.REMOTE_SERVER_USER),
            ("remoteServerKey", self.REMOTE_SERVER_KEY),
            ("remoteServerKnownHosts", self.REMOTE_SERVER_KNOWN_HOSTS or "<none>"),
            ("localEndpoint", str(self.LOCAL_ENDPOINT)),
            ("remoteEndpoint", str(self.REMOTE_ENDPOINT)),
            ("relayMode", self.RELAY_MODE.value),
        ]

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "TunnelConfig":
        """
        Build a config from environment variables.

        Unset and empty variables both fall back to the defaults.

        Raises:
            ConfigError: If a variable holds an invalid value.
        """
        if environ is None:
            environ = os.environ
        defaults = cls()

        def get(name: str, default: str) -> str:
            return environ.get(name) or default

        remote_server = get("REMOTE_SERVER", "")
        local_endpoint = get("LOCAL_ENDPOINT", "")
        remote_endpoint = get("REMOTE_ENDPOINT", "")
        relay_mode = get("RELAY_MODE", defaults.RELAY_MODE.value).lower()
        log_level = get("LOG_LEVEL", defaults.LOG_LEVEL.value).lower()

        try:
            mode = RelayMode(relay_mode)
        except ValueError:
            raise ConfigError(f"unknown mode '{relay_mode}'", "RELAY_MODE") from None
        try:
            level = LogLevel(log_level)
        except ValueError:
            raise ConfigError(f"unknown level '{log_level}'", "LOG_LEVEL") from None

        return cls(
            REMOTE_SERVER=(
                parse_endpoint(remote_server, "REMOTE_SERVER", DEFAULT_SSH_PORT)
                if remote_server
                else defaults.REMOTE_SERVER
            ),
            REMOTE_SERVER_USER=get("REMOTE_SERVER_USER", defaults.REMOTE_SERVER_USER),
            REMOTE_SERVER_KEY=get("REMOTE_SERVER_KEY", defaults.REMOTE_SERVER_KEY),
            REMOTE_SERVER_KNOWN_HOSTS=get(
                "REMOTE_SERVER_KNOWN_HOSTS", defaults.REMOTE_SERVER_KNOWN_HOSTS
            ),
            LOCAL_ENDPOINT=(
                parse_endpoint(local_endpoint, "LOCAL_ENDPOINT")
                if local_endpoint
                else defaults.LOCAL_ENDPOINT
            ),
            REMOTE_ENDPOINT=(
                parse_endpoint(remote_endpoint, "REMOTE_ENDPOINT")
                if remote_endpoint
                else defaults.REMOTE_ENDPOINT
            ),
            RELAY_MODE=mode,
            REAP_COMMAND=get("REAP_COMMAND", defaults.REAP_COMMAND),
            LOG_LEVEL=level,
        )
