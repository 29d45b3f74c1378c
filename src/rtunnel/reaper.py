"""
Stale-tunnel reaper.

Before a new remote listener is bound, a previous instance of this process
may still hold the port on the relay host (killed without closing its
session). The reaper runs one remote command that finds and kills whatever
owns the port. It is best-effort: failures are logged, never raised.
"""

import re
from dataclasses import dataclass

from rtunnel.config import DEFAULT_REAP_COMMAND
from rtunnel.exceptions import TransportError
from rtunnel.session import ControlSession
from rtunnel.utils.logger import get_logger

logger = get_logger(__name__)

# What `kill` prints when the PID lookup found nothing (zsh, bash, busybox, BSD)
NOTHING_TO_KILL_PATTERNS = (
    re.compile(r"not enough arguments", re.IGNORECASE),
    re.compile(r"kill: usage", re.IGNORECASE),
    re.compile(r"usage: kill", re.IGNORECASE),
)

_PID_TOKEN = re.compile(r"^\d+$")


@dataclass(frozen=True)
class ReapResult:
    """
    Outcome of a reap attempt.

    Attributes:
        killed_pids: PIDs reported by the reap command.
        warning: Set when the command failed for a reason other than
            "nothing to kill".
    """

    killed_pids: tuple[int, ...] = ()
    warning: str | None = None

    @property
    def killed_pid(self) -> int | None:
        return self.killed_pids[0] if self.killed_pids else None


def is_nothing_to_kill(output: str) -> bool:
    """Check if command output is kill's complaint about missing arguments."""
    return any(p.search(output) for p in NOTHING_TO_KILL_PATTERNS)


def parse_pids(output: str) -> tuple[int, ...]:
    """Extract PIDs from lines that consist only of whitespace-separated integers."""
    pids: list[int] = []
    for line in output.splitlines():
        tokens = line.split()
        if tokens and all(_PID_TOKEN.match(t) for t in tokens):
            pids.extend(int(t) for t in tokens)
    return tuple(pids)


async def clear_port(
    session: ControlSession, port: int, command: str | None = None
) -> ReapResult:
    """
    Kill whatever process holds a TCP port on the relay host.

    Args:
        session: Control session used to run the command.
        port: Remote port being cleared.
        command: Fully rendered reap command. Defaults to DEFAULT_REAP_COMMAND
            for the port.

    Returns:
        ReapResult. No process on the port yields an empty result without
        a warning.
    """
    if command is None:
        command = DEFAULT_REAP_COMMAND.replace("{port}", str(port))
    logger.info(f"Clearing stale listeners on remote port {port}")

    try:
        result = await session.run(command)
    except TransportError as e:
        logger.warning(f"Could not run reap command for port {port}: {e}")
        return ReapResult(warning=str(e))

    pids = parse_pids(result.stdout)

    if result.exit_status == 0:
        if pids:
            logger.info(f"Killed stale process {', '.join(map(str, pids))} on port {port}")
        else:
            logger.debug(f"No process held remote port {port}")
        return ReapResult(killed_pids=pids)

    if not pids and is_nothing_to_kill(result.output):
        logger.debug(f"No process held remote port {port}")
        return ReapResult()

    message = result.output.strip() or f"exit status {result.exit_status}"
    logger.warning(f"Reap command for port {port} failed: {message}")
    return ReapResult(warning=message)
