"""Unit tests for the poller and its backoff scheduling."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Iterable

import pytest

from disk_probe.core.measurement import MeasurementError, MeasurementTimeoutError
from disk_probe.core.poller import backoff_delay, poll, run_poller, schedule_next
from disk_probe.types import MeasurementEvent, PathTask


class ScriptedSource:
    """Measurement source replaying a fixed list of outcomes."""

    def __init__(self, outcomes: Iterable[int | Exception]) -> None:
        self._outcomes: deque[int | Exception] = deque(outcomes)
        self.calls: list[str] = []

    async def measure(self, path: str) -> int:
        self.calls.append(path)
        outcome = self._outcomes.popleft()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class HangingSource:
    """Measurement source that never answers."""

    async def measure(self, path: str) -> int:
        _ = path
        await asyncio.sleep(3600)
        return 0


class TestBackoffDelay:
    """Test the linear backoff formula."""

    def test_no_errors_uses_base_interval(self) -> None:
        assert backoff_delay(0, base_interval=60, error_backoff=10) == 60

    @pytest.mark.parametrize(("errors", "expected"), [(1, 70), (2, 80), (10, 160)])
    def test_grows_linearly_with_errors(self, errors: int, expected: float) -> None:
        assert backoff_delay(errors, base_interval=60, error_backoff=10) == expected

    def test_unbounded_without_cap(self) -> None:
        assert backoff_delay(10_000, base_interval=60, error_backoff=10) == 100_060

    def test_cap_limits_delay(self) -> None:
        assert backoff_delay(100, base_interval=60, error_backoff=10, max_delay=300) == 300

    def test_cap_does_not_affect_small_delays(self) -> None:
        assert backoff_delay(1, base_interval=60, error_backoff=10, max_delay=300) == 70

    def test_negative_error_count_rejected(self) -> None:
        with pytest.raises(ValueError):
            _ = backoff_delay(-1, base_interval=60, error_backoff=10)


class TestPoll:
    """Test a single poll of a task."""

    async def test_success_returns_event_and_resets_errors(self) -> None:
        task = PathTask(path="/mnt/storage", consecutive_error_count=3)
        source = ScriptedSource([4096])

        event = await poll(task, source, timeout=1.0)

        assert event == MeasurementEvent(path="/mnt/storage", bytes_used=4096)
        assert task.consecutive_error_count == 0
        assert source.calls == ["/mnt/storage"]

    async def test_failure_increments_errors_and_raises(self) -> None:
        task = PathTask(path="/mnt/storage")
        source = ScriptedSource([MeasurementError("du exited with status 1")])

        with pytest.raises(MeasurementError):
            _ = await poll(task, source, timeout=1.0)

        assert task.consecutive_error_count == 1

    async def test_consecutive_failures_accumulate(self) -> None:
        task = PathTask(path="/mnt/storage")
        source = ScriptedSource([MeasurementError("a"), MeasurementError("b"), MeasurementError("c")])

        for _ in range(3):
            with pytest.raises(MeasurementError):
                _ = await poll(task, source, timeout=1.0)

        assert task.consecutive_error_count == 3

    async def test_timeout_counts_as_failure(self) -> None:
        task = PathTask(path="/mnt/storage")

        with pytest.raises(MeasurementTimeoutError, match="timed out"):
            _ = await poll(task, HangingSource(), timeout=0.05)

        assert task.consecutive_error_count == 1


class TestScheduleNext:
    """Test the per-task backoff unit."""

    async def test_task_returns_to_pending_after_delay(self) -> None:
        pending: asyncio.Queue[PathTask] = asyncio.Queue()
        task = PathTask(path="/mnt/storage")

        scheduler = asyncio.create_task(schedule_next(task, pending, delay=0.05))
        await asyncio.sleep(0)
        assert pending.empty()

        await scheduler
        assert pending.get_nowait() is task


class TestRunPoller:
    """Test the poller worker loop."""

    @staticmethod
    async def _run_once(
        source: ScriptedSource,
        task: PathTask,
    ) -> tuple[PathTask, asyncio.Queue[MeasurementEvent]]:
        pending: asyncio.Queue[PathTask] = asyncio.Queue()
        complete: asyncio.Queue[PathTask] = asyncio.Queue()
        updates: asyncio.Queue[MeasurementEvent] = asyncio.Queue()

        worker = asyncio.create_task(
            run_poller(0, pending=pending, complete=complete, updates=updates, source=source, timeout=1.0)
        )
        try:
            await pending.put(task)
            async with asyncio.timeout(2):
                finished = await complete.get()
        finally:
            _ = worker.cancel()
            with pytest.raises(asyncio.CancelledError):
                await worker
        return finished, updates

    async def test_success_emits_one_event_and_completes_task(self) -> None:
        task = PathTask(path="/mnt/storage")

        finished, updates = await self._run_once(ScriptedSource([2048]), task)

        assert finished is task
        assert updates.qsize() == 1
        assert updates.get_nowait() == MeasurementEvent(path="/mnt/storage", bytes_used=2048)

    async def test_failure_emits_no_event_but_completes_task(self, caplog: pytest.LogCaptureFixture) -> None:
        task = PathTask(path="/mnt/storage")
        caplog.set_level(logging.WARNING)

        finished, updates = await self._run_once(ScriptedSource([MeasurementError("boom")]), task)

        assert finished is task
        assert finished.consecutive_error_count == 1
        assert updates.empty()
        assert "Measurement failed" in caplog.text

    async def test_unexpected_error_does_not_stop_worker(self, caplog: pytest.LogCaptureFixture) -> None:
        task = PathTask(path="/mnt/storage")
        caplog.set_level(logging.ERROR)

        finished, updates = await self._run_once(ScriptedSource([RuntimeError("source bug")]), task)

        assert finished.consecutive_error_count == 1
        assert updates.empty()
        assert "Unexpected error while measuring" in caplog.text

    async def test_worker_keeps_serving_tasks(self) -> None:
        pending: asyncio.Queue[PathTask] = asyncio.Queue()
        complete: asyncio.Queue[PathTask] = asyncio.Queue()
        updates: asyncio.Queue[MeasurementEvent] = asyncio.Queue()
        source = ScriptedSource([MeasurementError("first"), 10, 20])
        task = PathTask(path="/mnt/storage")

        worker = asyncio.create_task(
            run_poller(0, pending=pending, complete=complete, updates=updates, source=source, timeout=1.0)
        )
        try:
            async with asyncio.timeout(2):
                for expected_errors in (1, 0, 0):
                    await pending.put(task)
                    finished = await complete.get()
                    assert finished.consecutive_error_count == expected_errors
        finally:
            _ = worker.cancel()
            with pytest.raises(asyncio.CancelledError):
                await worker

        assert [updates.get_nowait().bytes_used for _ in range(updates.qsize())] == [10, 20]
