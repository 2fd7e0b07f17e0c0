"""Polling of monitored paths with error-adaptive scheduling.

A ``PathTask`` circulates forever: a poller worker takes it from the
pending queue, measures the path, hands the resulting ``MeasurementEvent``
to the state store and passes the task on to the complete queue. A
scheduling unit then sleeps for the backoff delay and puts the task back on
the pending queue.

Measurement failures never escape a worker. They are counted on the task
itself and stretch the delay before its next poll linearly:

    delay = poll_interval + error_backoff * consecutive_error_count

optionally capped by ``max_delay``.
"""

import asyncio
import logging

from disk_probe.core.measurement import MeasurementError, MeasurementTimeoutError
from disk_probe.types.models import MeasurementEvent, PathTask
from disk_probe.types.protocols import MeasurementSource
from disk_probe.utils.formatting import format_duration, format_size
from disk_probe.utils.logging import correlation_scope, new_poll_correlation_id

logger = logging.getLogger(__name__)


def backoff_delay(
    error_count: int,
    *,
    base_interval: float,
    error_backoff: float,
    max_delay: float | None = None,
) -> float:
    """Compute the delay before the next poll of a task.

    Args:
        error_count: Consecutive measurement failures of the task
        base_interval: Delay in seconds after a successful poll
        error_backoff: Seconds added per consecutive failure
        max_delay: Optional upper bound on the result

    Returns:
        Delay in seconds, non-decreasing in ``error_count``

    Examples:
        >>> backoff_delay(0, base_interval=60, error_backoff=10)
        60
        >>> backoff_delay(3, base_interval=60, error_backoff=10)
        90
        >>> backoff_delay(100, base_interval=60, error_backoff=10, max_delay=300)
        300
    """
    if error_count < 0:
        msg = "error_count must be non-negative"
        raise ValueError(msg)

    delay = base_interval + error_backoff * error_count
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


async def poll(
    task: PathTask,
    source: MeasurementSource,
    *,
    timeout: float,
) -> MeasurementEvent:
    """Measure the task's path once.

    On success the task's error count is reset; on failure it is
    incremented and ``MeasurementError`` is raised for the caller to absorb.

    Args:
        task: Task being polled, owned by the caller for the duration
        source: Measurement source to query
        timeout: Seconds the measurement may take

    Returns:
        Event carrying the measured byte count

    Raises:
        MeasurementError: If the measurement failed or timed out
    """
    try:
        async with asyncio.timeout(timeout):
            bytes_used = await source.measure(task.path)
    except TimeoutError as exc:
        task.consecutive_error_count += 1
        msg = f"Measurement of {task.path} timed out after {format_duration(timeout)}"
        raise MeasurementTimeoutError(msg) from exc
    except MeasurementError:
        task.consecutive_error_count += 1
        raise

    task.consecutive_error_count = 0
    return MeasurementEvent(path=task.path, bytes_used=bytes_used)


async def schedule_next(
    task: PathTask,
    pending: asyncio.Queue[PathTask],
    *,
    delay: float,
) -> None:
    """Sleep for ``delay`` seconds, then hand the task back to the pending queue."""
    await asyncio.sleep(delay)
    await pending.put(task)


async def run_poller(
    worker_id: int,
    *,
    pending: asyncio.Queue[PathTask],
    complete: asyncio.Queue[PathTask],
    updates: asyncio.Queue[MeasurementEvent],
    source: MeasurementSource,
    timeout: float,
) -> None:
    """Poller worker loop; runs until cancelled.

    Takes a task from ``pending``, polls it, emits one event to ``updates``
    per successful poll and passes the task to ``complete`` in every case.
    """
    logger.debug("Poller started", extra={"worker_id": worker_id})

    while True:
        task = await pending.get()
        try:
            with correlation_scope(new_poll_correlation_id(task.path)):
                event = await _poll_once(worker_id, task, source, timeout=timeout)
                if event is not None:
                    await updates.put(event)
                await complete.put(task)
        finally:
            pending.task_done()


async def _poll_once(
    worker_id: int,
    task: PathTask,
    source: MeasurementSource,
    *,
    timeout: float,
) -> MeasurementEvent | None:
    try:
        event = await poll(task, source, timeout=timeout)
    except MeasurementError as exc:
        logger.warning(
            "Measurement failed: %s",
            exc,
            extra={
                "worker_id": worker_id,
                "path": task.path,
                "consecutive_errors": task.consecutive_error_count,
            },
        )
        return None
    except Exception as exc:
        # A broken source must not take the worker down with it
        task.consecutive_error_count += 1
        logger.exception(
            "Unexpected error while measuring",
            extra={
                "worker_id": worker_id,
                "path": task.path,
                "consecutive_errors": task.consecutive_error_count,
                "error": str(exc),
            },
        )
        return None

    logger.debug(
        "Measured %s: %d bytes (%s)",
        event.path,
        event.bytes_used,
        format_size(event.bytes_used),
        extra={"worker_id": worker_id},
    )
    return event
