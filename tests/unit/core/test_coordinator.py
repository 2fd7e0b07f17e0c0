"""Unit tests for the pipeline coordinator.

The HTTP endpoint is replaced by a stub server so these tests only exercise
the poll, reschedule and store loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable

import pytest
from aiohttp import web

from disk_probe.core.config import ProbeConfig
from disk_probe.core.coordinator import Coordinator
from disk_probe.core.measurement import MeasurementError
from disk_probe.core.state_store import StateStore
from disk_probe.types import DiskStateSnapshot, PathTask

type ConfigFactory = Callable[..., ProbeConfig]


class SequenceSource:
    """Measurement source replaying outcomes, then repeating the last one."""

    def __init__(self, outcomes: Iterable[int | Exception]) -> None:
        self._outcomes: list[int | Exception] = list(outcomes)
        self.calls: int = 0

    async def measure(self, path: str) -> int:
        _ = path
        outcome = self._outcomes[min(self.calls, len(self._outcomes) - 1)]
        self.calls += 1
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class HangingSource:
    """Measurement source that never answers, counting the calls it gets."""

    def __init__(self) -> None:
        self.calls: int = 0

    async def measure(self, path: str) -> int:
        _ = path
        self.calls += 1
        _ = await asyncio.Event().wait()
        return 0


class StubServer:
    """Stand-in for the HTTP endpoint that records the app it was given."""

    def __init__(self) -> None:
        self.apps: list[web.Application] = []

    async def __call__(self, app: web.Application) -> None:
        self.apps.append(app)
        _ = await asyncio.Event().wait()


async def failing_server(app: web.Application) -> None:
    _ = app
    msg = "Address already in use"
    raise OSError(98, msg)


def quiet_sink(snapshot: DiskStateSnapshot) -> None:
    _ = snapshot


async def wait_until(predicate: Callable[[], bool], *, timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


@pytest.fixture
def stub_server() -> StubServer:
    """HTTP endpoint stub."""
    return StubServer()


class RunningPipeline:
    """Handle on a coordinator running in the background."""

    def __init__(self, coordinator: Coordinator, runner: asyncio.Task[None]) -> None:
        self.coordinator: Coordinator = coordinator
        self.runner: asyncio.Task[None] = runner

    async def stop(self) -> None:
        self.coordinator.request_shutdown()
        async with asyncio.timeout(2):
            await self.runner


type PipelineFactory = Callable[..., Awaitable[RunningPipeline]]


@pytest.fixture
async def start_pipeline(
    make_config: ConfigFactory,
    stub_server: StubServer,
) -> AsyncIterator[PipelineFactory]:
    """Factory starting a coordinator with a scripted source."""
    started: list[RunningPipeline] = []

    async def _start(source: SequenceSource, **sections: dict[str, object]) -> RunningPipeline:
        config = make_config(**sections)
        store = StateStore(asyncio.Queue(), status_interval=60.0, snapshot_sink=quiet_sink)
        coordinator = Coordinator(config=config, source=source, store=store, http_server=stub_server)
        runner = asyncio.create_task(coordinator.start())
        async with asyncio.timeout(2):
            _ = await coordinator.ready_event.wait()
        pipeline = RunningPipeline(coordinator, runner)
        started.append(pipeline)
        return pipeline

    yield _start

    for pipeline in started:
        if not pipeline.runner.done():
            await pipeline.stop()


class TestCoordinatorPipeline:
    """Test the running pipeline end to end without HTTP."""

    async def test_measurement_reaches_store(
        self,
        start_pipeline: PipelineFactory,
        stub_server: StubServer,
    ) -> None:
        source = SequenceSource([512])
        pipeline = await start_pipeline(source)
        store = pipeline.coordinator.store

        await wait_until(lambda: store.applied_count >= 1)

        assert await store.get("/mnt/storage") == 512
        assert len(stub_server.apps) == 1

    async def test_task_recirculates(
        self,
        start_pipeline: PipelineFactory,
    ) -> None:
        source = SequenceSource([10, 20, 30])
        pipeline = await start_pipeline(source)
        store = pipeline.coordinator.store

        await wait_until(lambda: store.applied_count >= 3)

        assert await store.get("/mnt/storage") == 30

    async def test_recovers_after_failures(
        self,
        start_pipeline: PipelineFactory,
    ) -> None:
        source = SequenceSource([MeasurementError("first"), MeasurementError("second"), 777])
        pipeline = await start_pipeline(source)
        store = pipeline.coordinator.store

        await wait_until(lambda: store.applied_count >= 1)

        assert source.calls >= 3
        assert await store.get("/mnt/storage") == 777

    async def test_failures_never_write_the_store(
        self,
        start_pipeline: PipelineFactory,
    ) -> None:
        source = SequenceSource([MeasurementError("always")])
        pipeline = await start_pipeline(source)

        await wait_until(lambda: source.calls >= 3)

        assert await pipeline.coordinator.store.get("/mnt/storage") is None
        assert pipeline.coordinator.store.applied_count == 0

    async def test_multiple_pollers_share_one_task(
        self,
        start_pipeline: PipelineFactory,
    ) -> None:
        source = SequenceSource([1, 2, 3, 4])
        pipeline = await start_pipeline(source, monitoring={"pollers": 3})
        store = pipeline.coordinator.store

        await wait_until(lambda: store.applied_count >= 4)

        assert await store.get("/mnt/storage") == 4

    async def test_shutdown_stops_pipeline(
        self,
        start_pipeline: PipelineFactory,
    ) -> None:
        pipeline = await start_pipeline(SequenceSource([1]))

        await pipeline.stop()

        assert pipeline.runner.done()
        assert pipeline.coordinator.is_running is False


class TestCoordinatorLifecycle:
    """Test start, restart and failure handling."""

    async def test_double_start_rejected(
        self,
        start_pipeline: PipelineFactory,
    ) -> None:
        pipeline = await start_pipeline(SequenceSource([1]))

        with pytest.raises(RuntimeError, match="already running"):
            await pipeline.coordinator.start()

    async def test_http_bind_failure_is_fatal(self, make_config: ConfigFactory) -> None:
        coordinator = Coordinator(
            config=make_config(),
            source=SequenceSource([1]),
            http_server=failing_server,
        )

        with pytest.raises(RuntimeError, match="Address already in use"):
            async with asyncio.timeout(2):
                await coordinator.start()

        assert coordinator.is_running is False

    async def test_start_discards_tasks_left_from_previous_run(
        self,
        make_config: ConfigFactory,
        stub_server: StubServer,
    ) -> None:
        source = HangingSource()
        coordinator = Coordinator(
            config=make_config(monitoring={"pollers": 2}),
            source=source,
            store=StateStore(asyncio.Queue(), status_interval=60.0, snapshot_sink=quiet_sink),
            http_server=stub_server,
        )
        coordinator.pending.put_nowait(PathTask(path="/mnt/storage"))
        coordinator.pending.put_nowait(PathTask(path="/mnt/old"))
        coordinator.complete.put_nowait(PathTask(path="/mnt/storage", consecutive_error_count=3))

        runner = asyncio.create_task(coordinator.start())
        try:
            await wait_until(lambda: source.calls >= 1)
            await asyncio.sleep(0.05)

            # Only the fresh seed is polled; the second poller stays idle
            assert source.calls == 1
            assert coordinator.pending.empty()
            assert coordinator.complete.empty()
        finally:
            coordinator.request_shutdown()
            async with asyncio.timeout(2):
                await runner


class TestDelayFor:
    """Test the coordinator's backoff wiring."""

    def test_uses_configured_intervals(self, make_config: ConfigFactory) -> None:
        config = make_config(monitoring={"poll_interval": 60, "error_backoff": 10})
        coordinator = Coordinator(config=config, source=SequenceSource([1]))

        assert coordinator.delay_for(PathTask(path="/mnt/storage")) == 60
        assert coordinator.delay_for(PathTask(path="/mnt/storage", consecutive_error_count=2)) == 80

    def test_applies_configured_cap(self, make_config: ConfigFactory) -> None:
        config = make_config(monitoring={"poll_interval": 60, "error_backoff": 10, "max_backoff": 120})
        coordinator = Coordinator(config=config, source=SequenceSource([1]))

        assert coordinator.delay_for(PathTask(path="/mnt/storage", consecutive_error_count=50)) == 120

    def test_builds_store_with_own_updates_queue(self, make_config: ConfigFactory) -> None:
        coordinator = Coordinator(config=make_config(), source=SequenceSource([1]))

        assert isinstance(coordinator.store.updates, asyncio.Queue)
        assert coordinator.store.updates.empty()
