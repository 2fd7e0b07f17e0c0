"""Data models for disk-probe.

Dataclasses passed between the poller, the state store and the HTTP
endpoint. Ownership of a PathTask moves through queues; events and results
are immutable.
"""

from dataclasses import dataclass
from typing import Final

# Largest value representable as an unsigned 64-bit byte count
MAX_BYTES: Final[int] = 2**64 - 1


@dataclass(slots=True)
class PathTask:
    """A monitored path and its run of consecutive measurement failures.

    Held by exactly one component at a time: a poller while measuring, a
    scheduling unit while sleeping, or a queue in between.
    """

    path: str
    consecutive_error_count: int = 0


@dataclass(slots=True, frozen=True)
class MeasurementEvent:
    """Immutable result of one successful poll, consumed once by the state store."""

    path: str
    bytes_used: int


@dataclass(slots=True, frozen=True)
class ProbeResult:
    """Classification of the current disk state for an HTTP response."""

    status: int
    body: str

    @property
    def ok(self) -> bool:
        return self.status == 200
