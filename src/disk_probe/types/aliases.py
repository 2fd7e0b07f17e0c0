"""Type aliases using PEP 695 syntax."""

from collections.abc import Callable, Mapping

# Read-only view of the disk state table: path -> last known bytes used
type DiskStateSnapshot = Mapping[str, int]

# Receives a snapshot on every status tick of the state store
type SnapshotSink = Callable[[DiskStateSnapshot], None]
