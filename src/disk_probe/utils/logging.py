"""Logging infrastructure with syslog integration and correlation ID tracking.

This module configures the root logger for disk-probe: a console handler for
container and development use, an optional syslog handler for host
installations, and a correlation ID carried in a ContextVar so that every
line logged while handling one poll can be grouped together.

Structured context is passed through ``extra={...}`` on the logger calls;
the correlation ID is injected into every record by ``CorrelationIDFilter``.
"""

import contextlib
import contextvars
import logging
import logging.handlers
import sys
from collections.abc import Iterator
from pathlib import Path
from typing import Final, override
from uuid import uuid4

# Correlation ID for the poll currently being handled by this task.
# Each asyncio task gets its own copy of the context, so concurrent pollers
# never see each other's IDs.
correlation_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id",
    default=None,
)

DEFAULT_LOG_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] - %(message)s"

SYSLOG_LOG_FORMAT: Final[str] = "disk-probe[%(process)d]: %(levelname)s - [%(correlation_id)s] - %(name)s - %(message)s"

DEFAULT_SYSLOG_ADDRESS: Final[str] = "/dev/log"


class CorrelationIDFilter(logging.Filter):
    """Logging filter that adds the current correlation ID to log records.

    Records logged outside of a poll carry ``N/A``.
    """

    @override
    def filter(self, record: logging.LogRecord) -> bool:
        correlation_id = correlation_id_var.get()
        record.correlation_id = correlation_id if correlation_id is not None else "N/A"
        return True


def configure_logging(
    *,
    log_level: str = "INFO",
    enable_syslog: bool = True,
    syslog_address: str = DEFAULT_SYSLOG_ADDRESS,
    enable_console: bool = True,
) -> None:
    """Configure application logging.

    Replaces any handlers already attached to the root logger, so calling it
    twice (once with defaults, once after the configuration is loaded) does
    not duplicate output.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_syslog: Attach a syslog handler at ``syslog_address``
        syslog_address: Syslog socket address
        enable_console: Attach a stdout handler

    Example:
        >>> configure_logging(log_level="DEBUG", enable_syslog=False)
        >>> logging.getLogger("disk_probe").debug("ready")
    """
    root_logger = logging.getLogger()

    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(level)

    root_logger.handlers.clear()

    correlation_filter = CorrelationIDFilter()

    if enable_syslog:
        syslog_handler = _open_syslog_handler(syslog_address)
        if syslog_handler is not None:
            syslog_handler.setFormatter(logging.Formatter(SYSLOG_LOG_FORMAT))
            syslog_handler.addFilter(correlation_filter)
            root_logger.addHandler(syslog_handler)

    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        console_handler.addFilter(correlation_filter)
        root_logger.addHandler(console_handler)


def _open_syslog_handler(syslog_address: str) -> logging.handlers.SysLogHandler | None:
    # SysLogHandler keeps a handler for a missing unix socket and then fails
    # on every record, so the socket is checked up front.
    if not Path(syslog_address).is_socket():
        _warn_no_syslog(syslog_address, "not a unix socket")
        return None

    try:
        return logging.handlers.SysLogHandler(
            address=syslog_address,
            facility=logging.handlers.SysLogHandler.LOG_DAEMON,
        )
    except OSError as exc:
        _warn_no_syslog(syslog_address, str(exc))
        return None


def _warn_no_syslog(syslog_address: str, reason: str) -> None:
    # Logging is not configured yet, so this goes straight to stderr
    print(
        f"Warning: Could not connect to syslog at {syslog_address}: {reason}",
        file=sys.stderr,
    )


def new_poll_correlation_id(path: str) -> str:
    """Build a correlation ID for one poll of ``path``.

    Example:
        >>> new_poll_correlation_id("/mnt/storage")  # doctest: +SKIP
        '/mnt/storage#3f9c0a1b'
    """
    return f"{path}#{uuid4().hex[:8]}"


@contextlib.contextmanager
def correlation_scope(correlation_id: str) -> Iterator[str]:
    """Attach ``correlation_id`` to records logged inside the block.

    The previous ID is restored on exit, so scopes nest.
    """
    token = correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_var.reset(token)
