"""Type definitions and protocols for disk-probe.

This package provides:
- Data models (dataclasses moved between pipeline stages)
- Protocol definitions (structural subtyping interfaces)
- Type aliases (PEP 695 syntax)
"""

from disk_probe.types.aliases import DiskStateSnapshot, SnapshotSink
from disk_probe.types.models import MAX_BYTES, MeasurementEvent, PathTask, ProbeResult
from disk_probe.types.protocols import MeasurementSource

__all__ = [
    # Type aliases
    "DiskStateSnapshot",
    "SnapshotSink",
    # Data models
    "MAX_BYTES",
    "MeasurementEvent",
    "PathTask",
    "ProbeResult",
    # Protocols
    "MeasurementSource",
]
