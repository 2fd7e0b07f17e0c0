"""Coordinator wiring the measurement pipeline together.

The coordinator owns the queues between the pipeline stages and runs every
long-lived unit inside one ``asyncio.TaskGroup``:

- the state store update loop
- N poller workers (``monitoring.pollers``)
- the rescheduler, which spawns one backoff sleep per completed poll
- the HTTP endpoint

At startup the pending queue is seeded with one task for the configured
path, which then recirculates (poll, sleep, poll, ...) until shutdown is
requested. A failure of the HTTP server (for example the listen address is
already in use) is fatal and propagates out of ``start``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine

from aiohttp import web

from disk_probe.api.endpoint import create_app, serve
from disk_probe.core.config import ProbeConfig
from disk_probe.core.measurement import create_measurement_source
from disk_probe.core.poller import backoff_delay, run_poller, schedule_next
from disk_probe.core.state_store import StateStore
from disk_probe.types import MeasurementEvent, MeasurementSource, PathTask
from disk_probe.utils.formatting import format_duration

__all__ = ["Coordinator"]

type HttpServer = Callable[[web.Application], Coroutine[object, object, None]]


class Coordinator:
    """Run the poll, store and serve pipeline until shutdown."""

    def __init__(
        self,
        *,
        config: ProbeConfig,
        source: MeasurementSource | None = None,
        store: StateStore | None = None,
        http_server: HttpServer | None = None,
    ) -> None:
        self.config: ProbeConfig = config
        monitoring = config.monitoring

        self._source: MeasurementSource = source or create_measurement_source(monitoring.backend)
        self._pending: asyncio.Queue[PathTask] = asyncio.Queue()
        self._complete: asyncio.Queue[PathTask] = asyncio.Queue()
        self._store: StateStore
        if store is not None:
            self._store = store
        else:
            updates: asyncio.Queue[MeasurementEvent] = asyncio.Queue()
            self._store = StateStore(updates, status_interval=monitoring.status_interval)
        self._http_server: HttpServer = http_server or self._default_http_server

        self._logger: logging.Logger = logging.getLogger(__name__)
        self._shutdown_event: asyncio.Event = asyncio.Event()
        self._ready_event: asyncio.Event = asyncio.Event()
        self._task_group: asyncio.TaskGroup | None = None
        self._units: set[asyncio.Task[None]] = set()
        self._is_running: bool = False

    @property
    def store(self) -> StateStore:
        """State store holding the latest measurements."""
        return self._store

    @property
    def pending(self) -> asyncio.Queue[PathTask]:
        """Queue of tasks ready to be polled."""
        return self._pending

    @property
    def complete(self) -> asyncio.Queue[PathTask]:
        """Queue of tasks that finished a poll and await rescheduling."""
        return self._complete

    @property
    def ready_event(self) -> asyncio.Event:
        """Event set once every pipeline unit has been launched."""
        return self._ready_event

    @property
    def is_running(self) -> bool:
        """Return True while the pipeline is running."""
        return self._is_running

    def request_shutdown(self) -> None:
        """Signal the coordinator to stop gracefully."""
        if self._shutdown_event.is_set():
            return
        self._logger.info("Shutdown requested for coordinator")
        self._shutdown_event.set()

    def delay_for(self, task: PathTask) -> float:
        """Delay before the next poll of ``task``, given its error count."""
        monitoring = self.config.monitoring
        return backoff_delay(
            task.consecutive_error_count,
            base_interval=monitoring.poll_interval,
            error_backoff=monitoring.error_backoff,
            max_delay=monitoring.max_backoff,
        )

    async def start(self) -> None:
        """Run the pipeline until shutdown is requested."""
        if self._is_running:
            msg = "Coordinator is already running"
            raise RuntimeError(msg)

        # Tasks left from an earlier run would poll alongside the new seed
        stale = _drain(self._pending) + _drain(self._complete)
        if stale:
            self._logger.debug("Dropped %d stale path tasks from a previous run", stale)

        self._is_running = True
        self._shutdown_event.clear()
        self._ready_event.clear()
        monitoring = self.config.monitoring
        try:
            async with asyncio.TaskGroup() as task_group:
                self._task_group = task_group
                self._launch(self._store.run(), name="state-store")
                for worker_id in range(monitoring.pollers):
                    self._launch(
                        run_poller(
                            worker_id,
                            pending=self._pending,
                            complete=self._complete,
                            updates=self._store.updates,
                            source=self._source,
                            timeout=monitoring.measure_timeout,
                        ),
                        name=f"poller-{worker_id}",
                    )
                self._launch(self._reschedule_loop(), name="rescheduler")
                self._launch(
                    self._http_server(create_app(self._store, self.config.probe)),
                    name="http-endpoint",
                )
                _ = task_group.create_task(self._shutdown_watcher(), name="shutdown-watcher")

                self._pending.put_nowait(PathTask(path=self.config.probe.path))
                self._logger.info(
                    "Pipeline started",
                    extra={
                        "path": self.config.probe.path,
                        "pollers": monitoring.pollers,
                        "threshold_bytes": self.config.probe.threshold_bytes,
                        "override": self.config.probe.override,
                    },
                )
                self._ready_event.set()
        except* OSError as group:
            msg = f"Pipeline failed: {group.exceptions[0]}"
            raise RuntimeError(msg) from group
        finally:
            self._task_group = None
            self._units.clear()
            self._is_running = False
            self._ready_event.clear()

    def _launch(self, coro: Coroutine[object, object, None], *, name: str) -> None:
        if self._task_group is None:
            msg = "Task group is not initialized"
            raise RuntimeError(msg)
        task = self._task_group.create_task(coro, name=name)
        self._units.add(task)
        task.add_done_callback(self._units.discard)

    async def _shutdown_watcher(self) -> None:
        _ = await self._shutdown_event.wait()
        for task in list(self._units):
            _ = task.cancel()

    async def _reschedule_loop(self) -> None:
        while True:
            task = await self._complete.get()
            try:
                delay = self.delay_for(task)
                if task.consecutive_error_count:
                    self._logger.info(
                        "Backing off %s before next poll",
                        format_duration(delay),
                        extra={"path": task.path, "consecutive_errors": task.consecutive_error_count},
                    )
                self._launch(
                    schedule_next(task, self._pending, delay=delay),
                    name=f"schedule-{task.path}",
                )
            finally:
                self._complete.task_done()

    async def _default_http_server(self, app: web.Application) -> None:
        http = self.config.http
        await serve(app, host=http.host, port=http.port)


def _drain(queue: asyncio.Queue[PathTask]) -> int:
    dropped = 0
    while True:
        try:
            _ = queue.get_nowait()
        except asyncio.QueueEmpty:
            return dropped
        queue.task_done()
        dropped += 1
