"""
Enumeration types for rtunnel.

This module defines the enumeration types used for configuration options
and for tracking the state of the accept loop.
"""

from enum import Enum


# =============================================================================
# Relay-Related Enums
# =============================================================================


class RelayMode(str, Enum):
    """
    How accepted remote connections are relayed.

    - CONCURRENT: Each relay pair runs in its own task; the loop keeps accepting
    - SERIAL: The loop waits for the current relay before dialing the next one
    """

    CONCURRENT = "concurrent"
    SERIAL = "serial"


class LoopState(str, Enum):
    """
    Accept loop lifecycle state.

    State transitions:
        IDLE -> LISTENING (remote listener bound)
        LISTENING -> ACCEPTING (local dialed, waiting for remote peer)
        ACCEPTING -> RELAYING -> ACCEPTING
        Any -> CLOSED (fatal error or listener closed)
    """

    IDLE = "idle"
    LISTENING = "listening"
    ACCEPTING = "accepting"
    RELAYING = "relaying"
    CLOSED = "closed"


# =============================================================================
# Configuration Enums
# =============================================================================


class LogLevel(str, Enum):
    """
    Logging verbosity levels.

    Levels (from most to least verbose):
        - FULL: Debug messages plus tracebacks with local variables
        - DEBUG: Debug messages and above
        - INFO: Informational messages and above
        - WARNING: Only warnings and errors
    """

    FULL = "full"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
