"""Pure formatting helpers for log output.

Stateless functions turning raw byte counts and delays into short
human-readable strings. HTTP response bodies always carry raw integers;
these helpers only decorate log lines.
"""

from typing import Final

# Binary units (1024-based), matching what du -h reports
_UNITS: Final[tuple[str, ...]] = ("KiB", "MiB", "GiB", "TiB", "PiB", "EiB")
_STEP: Final[float] = 1024.0

_MINUTE: Final[int] = 60
_HOUR: Final[int] = _MINUTE * 60


def format_size(num_bytes: int, *, precision: int = 1) -> str:
    """Convert a byte count to a human-readable size.

    Args:
        num_bytes: Number of bytes (must be non-negative)
        precision: Decimal places for values of 1 KiB and above

    Returns:
        Size string such as ``"512 B"`` or ``"100.0 GiB"``

    Examples:
        >>> format_size(512)
        '512 B'
        >>> format_size(1536)
        '1.5 KiB'
        >>> format_size(107_400_000_000)
        '100.0 GiB'
    """
    if num_bytes < 0:
        msg = "num_bytes must be non-negative"
        raise ValueError(msg)

    if num_bytes < _STEP:
        return f"{num_bytes} B"

    value = float(num_bytes)
    unit = _UNITS[0]
    for unit in _UNITS:
        value /= _STEP
        if value < _STEP:
            break

    return f"{value:.{precision}f} {unit}"


def format_duration(seconds: float) -> str:
    """Convert a delay in seconds to a compact duration.

    Examples:
        >>> format_duration(45)
        '45s'
        >>> format_duration(90)
        '1m 30s'
        >>> format_duration(3660)
        '1h 1m'
    """
    if seconds < 0:
        msg = "seconds must be non-negative"
        raise ValueError(msg)

    total_seconds = int(seconds)

    if total_seconds >= _HOUR:
        hours, remaining = divmod(total_seconds, _HOUR)
        minutes = remaining // _MINUTE
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"

    if total_seconds >= _MINUTE:
        minutes, remaining = divmod(total_seconds, _MINUTE)
        return f"{minutes}m {remaining}s" if remaining else f"{minutes}m"

    return f"{total_seconds}s"
