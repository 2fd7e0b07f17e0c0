"""Single-owner store of the last known disk usage per path.

The ``StateStore`` owns the disk state table. Its ``run`` loop is the only
writer: it consumes ``MeasurementEvent``s from the updates queue and, every
``status_interval`` seconds, hands an immutable snapshot of the table to the
snapshot sink. Both triggers are handled one at a time, in the order they
arrive.

Readers (the HTTP endpoint, the snapshot itself) go through ``get`` and
``snapshot``, which hold the table's reader/writer lock in shared mode for a
single dictionary operation.
"""

import asyncio
import logging
from types import MappingProxyType

from disk_probe.types.aliases import DiskStateSnapshot, SnapshotSink
from disk_probe.types.models import MeasurementEvent
from disk_probe.utils.formatting import format_size
from disk_probe.utils.rwlock import AsyncRWLock

logger = logging.getLogger(__name__)


def log_disk_state(snapshot: DiskStateSnapshot) -> None:
    """Default snapshot sink: log the table at INFO.

    Emits one structured summary record carrying the whole table in the
    ``disk_state`` extra field, followed by one line per path.
    """
    logger.info(
        "Current disk state",
        extra={"disk_state": dict(snapshot), "paths": len(snapshot)},
    )
    for path, bytes_used in sorted(snapshot.items()):
        logger.info(" %s %d bytes (%s)", path, bytes_used, format_size(bytes_used))


class StateStore:
    """Owner of the disk state table.

    Example:
        >>> updates: asyncio.Queue[MeasurementEvent] = asyncio.Queue()
        >>> store = StateStore(updates, status_interval=60.0)
        >>> runner = asyncio.create_task(store.run())
        >>> await updates.put(MeasurementEvent(path="/mnt/storage", bytes_used=4096))
        >>> await updates.join()
        >>> await store.get("/mnt/storage")
        4096
    """

    def __init__(
        self,
        updates: asyncio.Queue[MeasurementEvent],
        *,
        status_interval: float,
        snapshot_sink: SnapshotSink = log_disk_state,
    ) -> None:
        if status_interval <= 0:
            msg = "status_interval must be greater than zero"
            raise ValueError(msg)

        self._updates: asyncio.Queue[MeasurementEvent] = updates
        self._status_interval: float = status_interval
        self._snapshot_sink: SnapshotSink = snapshot_sink
        self._table: dict[str, int] = {}
        self._lock: AsyncRWLock = AsyncRWLock()
        self._applied: int = 0

    @property
    def updates(self) -> asyncio.Queue[MeasurementEvent]:
        """Queue the store consumes measurement events from."""
        return self._updates

    @property
    def applied_count(self) -> int:
        """Number of measurement events folded into the table so far."""
        return self._applied

    async def get(self, path: str) -> int | None:
        """Return the last known bytes used for ``path``, or None if never measured."""
        async with self._lock.read():
            return self._table.get(path)

    async def snapshot(self) -> DiskStateSnapshot:
        """Return an immutable copy of the whole table."""
        async with self._lock.read():
            return MappingProxyType(dict(self._table))

    async def apply(self, event: MeasurementEvent) -> None:
        """Upsert one measurement; last write wins."""
        async with self._lock.write():
            self._table[event.path] = event.bytes_used
            self._applied += 1

    async def emit_snapshot(self) -> None:
        """Hand the current table to the snapshot sink."""
        snapshot = await self.snapshot()
        try:
            self._snapshot_sink(snapshot)
        except Exception as exc:
            logger.exception("Snapshot sink failed", extra={"error": str(exc)})

    async def run(self) -> None:
        """Update loop; the only writer of the table. Runs until cancelled."""
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self._status_interval

        logger.info(
            "State store started",
            extra={"status_interval": self._status_interval},
        )

        while True:
            try:
                async with asyncio.timeout_at(next_tick):
                    event = await self._updates.get()
            except TimeoutError:
                await self.emit_snapshot()
                next_tick += self._status_interval
                # Skip missed ticks rather than bursting to catch up
                if next_tick <= loop.time():
                    next_tick = loop.time() + self._status_interval
                continue

            try:
                await self.apply(event)
            finally:
                self._updates.task_done()
