"""
rtunnel application lifecycle.

connect -> reap -> listen -> accept loop. Every failure of those steps is
fatal: the process exits non-zero and an external supervisor is expected
to restart it. SIGINT/SIGTERM exit immediately with status 0.
"""

import asyncio
import os
import signal
import sys
from collections.abc import Callable

from rtunnel.config import TunnelConfig
from rtunnel.exceptions import TunnelError
from rtunnel.listener import AcceptLoop, DialFunc, dial_local
from rtunnel.reaper import clear_port
from rtunnel.session import connect
from rtunnel.utils.logger import format_traceback, get_logger
from rtunnel.utils.ssh_key import load_private_key

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1


def log_config(config: TunnelConfig) -> None:
    """Log every configured value once at startup."""
    for name, value in config.describe():
        logger.info(f"{name}: {value}")


def install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    exit_func: Callable[[int], None] = os._exit,
) -> None:
    """
    Exit immediately on SIGINT/SIGTERM.

    In-flight relays are not drained; open sockets are left to the OS.
    """

    def on_signal(signum: int) -> None:
        print("Interrupt received, stopping...", flush=True)
        sys.stderr.flush()
        exit_func(EXIT_OK)

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, on_signal, signum)
        except NotImplementedError:
            # Windows event loops: fall back to the default KeyboardInterrupt
            logger.debug(f"Cannot install handler for {signal.Signals(signum).name}")


async def run_tunnel(config: TunnelConfig, dial: DialFunc = dial_local) -> None:
    """
    Run the reverse tunnel until a fatal error.

    Raises:
        TunnelError: Credential, transport, listen or local dial failure.
    """
    credential = load_private_key(config.REMOTE_SERVER_KEY)

    session = await connect(config, credential)
    async with session:
        await clear_port(session, config.REMOTE_ENDPOINT.port, config.get_reap_command())

        logger.info(f"Opening remote endpoint {config.REMOTE_ENDPOINT}")
        listener = await session.listen(config.REMOTE_ENDPOINT)
        logger.info(
            f"Listening on {config.REMOTE_ENDPOINT.host}:{listener.get_port()} "
            f"via {config.REMOTE_SERVER}"
        )

        accept_loop = AcceptLoop(config, listener, dial=dial)
        try:
            await accept_loop.run()
        finally:
            listener.close()
            await accept_loop.shutdown()


async def _serve(config: TunnelConfig) -> None:
    install_signal_handlers(asyncio.get_running_loop())
    await run_tunnel(config)


def main(config: TunnelConfig) -> int:
    """
    Run rtunnel and return the process exit status.

    Returns:
        EXIT_FATAL after any fatal error. Signals exit the process directly.
    """
    log_config(config)
    try:
        asyncio.run(_serve(config))
    except TunnelError as e:
        logger.critical(f"FATAL: {e}")
        logger.debug(format_traceback(e))
        return EXIT_FATAL
    except KeyboardInterrupt:
        logger.info("Interrupt received, stopping...")
        return EXIT_OK
    return EXIT_OK
