"""
Remote listener and accept loop.

The remote listener lives on the relay host and is only reachable through
the control session. Connections arriving there are queued and handed out
by accept(). The accept loop dials the local service, accepts the next
remote peer and relays the pair, forever.
"""

import asyncio
from collections.abc import Awaitable, Callable

import asyncssh

from rtunnel.config import Endpoint, TunnelConfig
from rtunnel.exceptions import LocalDialError, TransportError
from rtunnel.models.enums import LoopState, RelayMode
from rtunnel.relay import StreamConnection, relay
from rtunnel.utils.logger import get_logger

logger = get_logger(__name__)


class RemoteConnection(StreamConnection):
    """A connection accepted through the remote listener."""


class RemoteListener:
    """
    Listener bound on the relay host.

    Incoming channels are pushed onto a queue by asyncssh's per-connection
    handler and consumed by accept(). Losing the SSH connection closes the
    listener.
    """

    def __init__(self, endpoint: Endpoint):
        self.endpoint = endpoint
        self._queue: asyncio.Queue[RemoteConnection | None] = asyncio.Queue()
        self._ssh_listener: asyncssh.SSHListener | None = None
        self._watch_task: asyncio.Task | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def get_port(self) -> int:
        """Port actually bound on the relay host."""
        if self._ssh_listener is not None:
            return self._ssh_listener.get_port() or self.endpoint.port
        return self.endpoint.port

    def handler_factory(self, orig_host: str, orig_port: int):
        """asyncssh handler factory: enqueue every incoming connection."""

        def handle(reader: asyncssh.SSHReader, writer: asyncssh.SSHWriter) -> None:
            if self._closed:
                writer.close()
                return
            self._queue.put_nowait(
                RemoteConnection(reader, writer, (orig_host, orig_port))
            )

        return handle

    def attach(
        self, ssh_listener: asyncssh.SSHListener, conn: asyncssh.SSHClientConnection
    ) -> None:
        """Bind to the asyncssh listener and watch the owning connection."""
        self._ssh_listener = ssh_listener
        self._watch_task = asyncio.create_task(self._watch_connection(conn))

    async def _watch_connection(self, conn: asyncssh.SSHClientConnection) -> None:
        await conn.wait_closed()
        if not self._closed:
            logger.error(f"SSH session lost, remote listener {self.endpoint} is gone")
        self.close()

    async def accept(self) -> RemoteConnection:
        """
        Wait for the next remote connection.

        Raises:
            TransportError: If the listener or its session has been closed.
        """
        conn = await self._queue.get()
        if conn is None:
            # Keep the sentinel for any other waiter
            self._queue.put_nowait(None)
            raise TransportError("Remote listener closed", str(self.endpoint))
        return conn

    def close(self) -> None:
        """Stop listening. Pending accepts raise TransportError."""
        if self._closed:
            return
        self._closed = True
        if self._ssh_listener is not None:
            try:
                self._ssh_listener.close()
            except (OSError, asyncssh.Error) as e:
                logger.debug(f"Closing remote listener {self.endpoint}: {e}")
        if self._watch_task is not None and self._watch_task is not asyncio.current_task():
            self._watch_task.cancel()
        while not self._queue.empty():
            pending = self._queue.get_nowait()
            if pending is not None:
                pending.writer.close()
        self._queue.put_nowait(None)

    async def wait_closed(self) -> None:
        if self._ssh_listener is not None:
            await self._ssh_listener.wait_closed()


DialFunc = Callable[[Endpoint], Awaitable[StreamConnection]]


async def dial_local(endpoint: Endpoint) -> StreamConnection:
    """
    Open a TCP connection to the local service.

    Raises:
        LocalDialError: If the connection cannot be established.
    """
    try:
        reader, writer = await asyncio.open_connection(endpoint.host, endpoint.port)
    except OSError as e:
        raise LocalDialError(e.strerror or str(e), str(endpoint)) from e
    return StreamConnection(reader, writer, writer.get_extra_info("peername") or ())


class AcceptLoop:
    """
    Accept loop for one remote listener.

    Every iteration dials the local endpoint first, then waits for a remote
    peer. A failed dial is fatal. In concurrent mode each pair is relayed in
    its own task; in serial mode the loop waits for the relay to finish.
    """

    def __init__(
        self,
        config: TunnelConfig,
        listener: RemoteListener,
        dial: DialFunc = dial_local,
    ):
        self.config = config
        self.listener = listener
        self.state = LoopState.IDLE
        self._dial = dial
        self._relays: set[asyncio.Task] = set()

    @property
    def active_relays(self) -> int:
        return len(self._relays)

    async def run(self) -> None:
        """
        Run until a fatal error.

        Raises:
            LocalDialError: If the local endpoint cannot be dialed.
            TransportError: If the remote listener or session goes away.
        """
        local_endpoint = self.config.LOCAL_ENDPOINT
        self.state = LoopState.LISTENING
        logger.info(
            f"Relaying {self.listener.endpoint} -> {local_endpoint} "
            f"({self.config.RELAY_MODE.value})"
        )

        try:
            while True:
                logger.info(f"Opening local endpoint {local_endpoint}")
                local = await self._dial(local_endpoint)

                self.state = LoopState.ACCEPTING
                logger.info("Waiting for new connection from remote endpoint")
                try:
                    remote = await self.listener.accept()
                except (TransportError, asyncio.CancelledError):
                    await local.close()
                    raise

                logger.info(f"Transferring data for {remote.describe()}")
                self.state = LoopState.RELAYING
                if self.config.RELAY_MODE == RelayMode.SERIAL:
                    await relay(remote, local)
                else:
                    task = asyncio.create_task(relay(remote, local))
                    self._relays.add(task)
                    task.add_done_callback(self._relays.discard)
        finally:
            self.state = LoopState.CLOSED

    async def shutdown(self) -> None:
        """Cancel in-flight relays."""
        for task in list(self._relays):
            task.cancel()
        await asyncio.gather(*self._relays, return_exceptions=True)
        self._relays.clear()
