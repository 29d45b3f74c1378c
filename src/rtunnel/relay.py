"""
Bidirectional connection relay.

Bridges one accepted remote connection and one dialed local connection with
two copy tasks. The pair is torn down as soon as either direction finishes.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field

import asyncssh

from rtunnel.utils.logger import get_logger

logger = get_logger(__name__)

BUFFER_SIZE = 65536

REMOTE_TO_LOCAL = "remote->local"
LOCAL_TO_REMOTE = "local->remote"


@dataclass
class StreamConnection:
    """
    A reader/writer pair.

    Works for both asyncio streams (local connections) and asyncssh
    SSHReader/SSHWriter (connections accepted through the relay host).
    """

    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    peer: tuple = field(default_factory=tuple)

    def describe(self) -> str:
        if len(self.peer) >= 2:
            return f"{self.peer[0]}:{self.peer[1]}"
        return "<unknown>"

    async def close(self) -> None:
        await close_writer(self.writer)


@dataclass
class RelayStats:
    """Bytes copied per direction during one relay."""

    remote_to_local: int = 0
    local_to_remote: int = 0


async def close_writer(writer) -> None:
    """Close a stream writer, ignoring errors from an already-dead peer."""
    try:
        writer.close()
    except (OSError, RuntimeError, asyncssh.Error):
        return
    try:
        await asyncio.wait_for(writer.wait_closed(), timeout=1.0)
    except (asyncio.TimeoutError, OSError, asyncssh.Error):
        pass


async def pipe(
    reader,
    writer,
    on_chunk: Callable[[int], None] | None = None,
) -> None:
    """
    Pipe data from reader to writer until EOF.

    On EOF the writer is half-closed when the transport supports it.
    Errors propagate to the caller.

    Args:
        reader: Stream reader (asyncio or asyncssh).
        writer: Stream writer (asyncio or asyncssh).
        on_chunk: Called with the size of every chunk written.
    """
    while True:
        data = await reader.read(BUFFER_SIZE)
        if not data:
            break
        writer.write(data)
        await writer.drain()
        if on_chunk:
            on_chunk(len(data))

    if writer.can_write_eof():
        writer.write_eof()


async def _copy(direction: str, reader, writer, on_chunk) -> None:
    try:
        await pipe(reader, writer, on_chunk)
    except (OSError, asyncssh.Error, asyncio.IncompleteReadError) as e:
        logger.warning(f"error while copy {direction}: {e}")


async def relay(remote: StreamConnection, local: StreamConnection) -> RelayStats:
    """
    Relay bytes between a remote and a local connection.

    Both directions are started concurrently. When the first one finishes,
    the other is cancelled and both connections are closed. Copy errors are
    logged with their direction and never raised.

    Returns:
        Bytes copied in each direction.
    """
    stats = RelayStats()

    def count_remote_to_local(n: int) -> None:
        stats.remote_to_local += n

    def count_local_to_remote(n: int) -> None:
        stats.local_to_remote += n

    tasks = [
        asyncio.create_task(
            _copy(REMOTE_TO_LOCAL, remote.reader, local.writer, count_remote_to_local)
        ),
        asyncio.create_task(
            _copy(LOCAL_TO_REMOTE, local.reader, remote.writer, count_local_to_remote)
        ),
    ]

    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await asyncio.gather(local.close(), remote.close())

    logger.info(
        f"Relay for {remote.describe()} finished "
        f"({stats.remote_to_local} bytes {REMOTE_TO_LOCAL}, "
        f"{stats.local_to_remote} bytes {LOCAL_TO_REMOTE})"
    )
    return stats
