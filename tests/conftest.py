"""
Shared fixtures.

RelayHost runs an in-process asyncssh server on 127.0.0.1 that allows remote
port forwarding and answers remote commands from a reply table, standing in
for the relay host. EchoService is the local service behind the tunnel.
"""

import asyncio
import logging
import socket
import sys
from pathlib import Path

import asyncssh
import pytest
from loguru import logger

from rtunnel.config import Endpoint, TunnelConfig


def free_port() -> int:
    """Find a free TCP port on 127.0.0.1."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


# =============================================================================
# Relay Host (SSH server)
# =============================================================================


class _RelayHostServer(asyncssh.SSHServer):
    def __init__(self, host: "RelayHost"):
        self._host = host

    def begin_auth(self, username: str) -> bool:
        # No authentication required
        return False

    def server_requested(self, listen_host: str, listen_port: int) -> bool:
        self._host.events.append(("listen", listen_port))
        # Let asyncssh bind the listener itself
        return True


class RelayHost:
    """
    In-process SSH server standing in for the relay host.

    replies maps a command to (exit status, stdout, stderr); a string exit
    status is sent as an exit signal instead. events records commands and
    listen requests in arrival order.
    """

    def __init__(self):
        self.host_key = asyncssh.generate_private_key("ssh-ed25519")
        self.replies: dict[str, tuple[int | str, str, str]] = {}
        self.commands: list[str] = []
        self.events: list[tuple[str, str | int]] = []
        self._acceptor: asyncssh.SSHAcceptor | None = None

    @property
    def port(self) -> int:
        return self._acceptor.get_port()

    @property
    def endpoint(self) -> Endpoint:
        return Endpoint("127.0.0.1", self.port)

    def _handle_process(self, process: asyncssh.SSHServerProcess) -> None:
        self.commands.append(process.command)
        self.events.append(("exec", process.command))
        status, stdout, stderr = self.replies.get(process.command, (0, "", ""))
        process.stdout.write(stdout)
        process.stderr.write(stderr)
        if isinstance(status, str):
            process.exit_with_signal(status)
        else:
            process.exit(status)

    async def start(self) -> None:
        self._acceptor = await asyncssh.create_server(
            lambda: _RelayHostServer(self),
            "127.0.0.1",
            0,
            server_host_keys=[self.host_key],
            process_factory=self._handle_process,
        )

    async def stop(self) -> None:
        if self._acceptor:
            self._acceptor.close()
            await self._acceptor.wait_closed()

    def known_hosts_line(self) -> str:
        public = self.host_key.export_public_key().decode().strip()
        return f"[127.0.0.1]:{self.port} {public}\n"


@pytest.fixture
async def relay_host():
    host = RelayHost()
    await host.start()
    yield host
    await host.stop()


# =============================================================================
# Local Service
# =============================================================================


class EchoService:
    """TCP echo server; echoes until EOF, then closes."""

    def __init__(self):
        self.server: asyncio.AbstractServer | None = None
        self.connections = 0

    @property
    def port(self) -> int:
        return self.server.sockets[0].getsockname()[1]

    @property
    def endpoint(self) -> Endpoint:
        return Endpoint("127.0.0.1", self.port)

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.connections += 1
        try:
            while True:
                data = await reader.read(65536)
                if not data:
                    break
                writer.write(data)
                await writer.drain()
        except ConnectionError:
            pass
        finally:
            writer.close()

    async def start(self) -> None:
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)

    async def stop(self) -> None:
        self.server.close()
        await self.server.wait_closed()


@pytest.fixture
async def echo_service():
    service = EchoService()
    await service.start()
    yield service
    await service.stop()


# =============================================================================
# Keys and Config
# =============================================================================


@pytest.fixture
def client_key_path(tmp_path: Path) -> Path:
    key = asyncssh.generate_private_key("ssh-ed25519")
    path = tmp_path / "id_ed25519"
    key.write_private_key(str(path))
    return path


@pytest.fixture
def tunnel_config(relay_host, echo_service, client_key_path) -> TunnelConfig:
    return TunnelConfig(
        REMOTE_SERVER=relay_host.endpoint,
        REMOTE_SERVER_USER="packer",
        REMOTE_SERVER_KEY=str(client_key_path),
        LOCAL_ENDPOINT=echo_service.endpoint,
        REMOTE_ENDPOINT=Endpoint("127.0.0.1", free_port()),
        REAP_COMMAND="reap {port}",
    )


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture
def caplog(caplog: pytest.LogCaptureFixture):
    """caplog that also receives loguru records."""
    handler_id = logger.add(
        caplog.handler,
        format="{message}",
        level=0,
        filter=lambda record: record["level"].no >= caplog.handler.level,
        enqueue=False,
    )
    yield caplog
    logger.remove(handler_id)


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    # configure_logging() may leave a sink on a stream the CLI runner closed
    logger.remove()
    logger.add(sys.stderr)
    ssh_logger = logging.getLogger("asyncssh")
    ssh_logger.handlers = []
    ssh_logger.propagate = True
    ssh_logger.setLevel(logging.NOTSET)
