"""Shared utility modules.

This package provides:
- Logging configuration with correlation ID tracking
- Human-readable size and duration formatting for log lines
- An asyncio reader/writer lock
"""

from disk_probe.utils.formatting import format_duration, format_size
from disk_probe.utils.rwlock import AsyncRWLock

__all__ = [
    "AsyncRWLock",
    "format_duration",
    "format_size",
]
