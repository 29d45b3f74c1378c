"""
Control session to the relay host.

Owns the single outbound, authenticated SSH connection. The session is used
to run one-off remote commands (the stale-tunnel reaper) and to open remote
listeners whose connections are tunneled back over it.
"""

import asyncio
from dataclasses import dataclass

import asyncssh

from rtunnel.config import Endpoint, TunnelConfig
from rtunnel.exceptions import ListenError, TransportError
from rtunnel.listener import RemoteListener
from rtunnel.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a remote command."""

    exit_status: int
    stdout: str
    stderr: str

    @property
    def output(self) -> str:
        """Combined stdout and stderr."""
        return f"{self.stdout}{self.stderr}"


class ControlSession:
    """One authenticated SSH connection to the relay host."""

    def __init__(self, conn: asyncssh.SSHClientConnection, address: Endpoint, username: str):
        self.address = address
        self.username = username
        self._conn = conn
        self._listeners: list[RemoteListener] = []

    async def __aenter__(self) -> "ControlSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def run(self, command: str) -> CommandResult:
        """
        Run a command on the relay host.

        A non-zero exit status is returned, not raised.

        Raises:
            TransportError: If the command channel cannot be opened.
        """
        logger.debug(f"Running remote command on {self.address}: {command}")
        try:
            result = await self._conn.run(command, check=False)
        except (asyncssh.Error, OSError) as e:
            raise TransportError(f"Remote command failed: {e}", str(self.address)) from e

        return CommandResult(
            # None when the command ended without reporting a status
            exit_status=-1 if result.exit_status is None else result.exit_status,
            stdout=_as_text(result.stdout),
            stderr=_as_text(result.stderr),
        )

    async def listen(self, endpoint: Endpoint) -> RemoteListener:
        """
        Open a listener on the relay host.

        Raises:
            ListenError: If the relay host refuses the bind (port in use,
                forwarding disabled) or the session is gone.
        """
        listener = RemoteListener(endpoint)
        try:
            ssh_listener = await self._conn.start_server(
                listener.handler_factory, endpoint.host, endpoint.port, encoding=None
            )
        except (asyncssh.ChannelListenError, asyncssh.Error, OSError) as e:
            raise ListenError(str(e) or type(e).__name__, str(endpoint)) from e

        listener.attach(ssh_listener, self._conn)
        self._listeners.append(listener)
        return listener

    async def close(self) -> None:
        """Close every listener and the connection."""
        for listener in self._listeners:
            listener.close()
        self._listeners.clear()
        self._conn.close()
        try:
            await asyncio.wait_for(self._conn.wait_closed(), timeout=5.0)
        except (asyncio.TimeoutError, OSError):
            pass
        logger.debug(f"Control session to {self.address} closed")


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return value


async def connect(config: TunnelConfig, credential: asyncssh.SSHKey) -> ControlSession:
    """
    Establish the control session.

    Args:
        config: Tunnel configuration (relay address, user, known_hosts).
        credential: Parsed private key used as the only auth method.

    Returns:
        An open ControlSession.

    Raises:
        TransportError: On unreachable host, rejected auth or host key mismatch.
    """
    address = config.REMOTE_SERVER
    username = config.REMOTE_SERVER_USER
    logger.info(f"Connecting to remote ssh server {address} as {username}")

    known_hosts = config.get_known_hosts_path()
    if known_hosts is None:
        logger.warning(
            f"Host key verification disabled for {address}. "
            "Set REMOTE_SERVER_KNOWN_HOSTS to pin the relay host key."
        )

    try:
        conn = await asyncssh.connect(
            address.host,
            address.port,
            username=username,
            client_keys=[credential],
            known_hosts=known_hosts,
            agent_path=None,
            password=None,
            kbdint_auth=False,
        )
    except asyncssh.PermissionDenied as e:
        raise TransportError(
            f"Authentication rejected for user {username}: {e.reason}", str(address)
        ) from e
    except asyncssh.HostKeyNotVerifiable as e:
        raise TransportError(f"Host key not verifiable: {e.reason}", str(address)) from e
    except (asyncssh.Error, OSError) as e:
        raise TransportError(f"Dial INTO remote server failed: {e}", str(address)) from e

    logger.info(f"Connected to remote ssh server {address}")
    return ControlSession(conn, address, username)
