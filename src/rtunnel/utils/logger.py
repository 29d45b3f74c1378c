"""
Logging setup for rtunnel.

All modules obtain their logger through get_logger(), which binds the
module name into the loguru record. configure_logging() replaces every
loguru sink with a single stderr sink at the requested verbosity.
"""

import logging
import sys
import traceback

from loguru import logger

from rtunnel.models.enums import LogLevel

ROOT_LOGGER_NAME = "rtunnel"

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

_LEVEL_MAP = {
    LogLevel.FULL: "DEBUG",
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO",
    LogLevel.WARNING: "WARNING",
}


class InterceptHandler(logging.Handler):
    """Forward records from stdlib loggers (asyncssh) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.bind(name=record.name).opt(exception=record.exc_info).log(
            level, record.getMessage()
        )


def get_logger(name: str):
    """Get a logger bound to a name inside the rtunnel namespace."""
    if name != ROOT_LOGGER_NAME and not name.startswith(f"{ROOT_LOGGER_NAME}."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logger.bind(name=name)


def configure_logging(level: LogLevel = LogLevel.INFO) -> None:
    """
    Configure the loguru sink.

    Args:
        level: Verbosity. FULL additionally renders extended tracebacks with
            variable values and forwards asyncssh's own protocol messages.
    """
    full = level == LogLevel.FULL

    logger.remove()
    logger.configure(extra={"name": ROOT_LOGGER_NAME})
    logger.add(
        sys.stderr,
        level=_LEVEL_MAP[level],
        format=LOG_FORMAT,
        backtrace=full,
        diagnose=full,
    )

    # asyncssh is chatty at INFO (one line per channel)
    ssh_logger = logging.getLogger("asyncssh")
    ssh_logger.handlers = [InterceptHandler()] if full else []
    ssh_logger.propagate = not full
    ssh_logger.setLevel(logging.DEBUG if full else logging.WARNING)


def format_traceback(exc: BaseException) -> str:
    """Render an exception with its traceback for debug logs."""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
