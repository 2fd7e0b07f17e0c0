"""Reader/writer lock for asyncio tasks.

Any number of readers may hold the lock at once; a writer holds it alone.
Waiting writers block new readers, so a steady stream of HTTP reads cannot
starve the state store's update loop.
"""

import asyncio
import contextlib
from collections.abc import AsyncIterator


class AsyncRWLock:
    """Writer-preferring reader/writer lock built on ``asyncio.Condition``.

    Example:
        >>> lock = AsyncRWLock()
        >>> async with lock.read():
        ...     value = table.get(path)
        >>> async with lock.write():
        ...     table[path] = value
    """

    def __init__(self) -> None:
        self._cond: asyncio.Condition = asyncio.Condition()
        self._readers: int = 0
        self._writer_active: bool = False
        self._writers_waiting: int = 0

    @property
    def readers(self) -> int:
        """Number of readers currently holding the lock."""
        return self._readers

    @property
    def writer_active(self) -> bool:
        """Return True while a writer holds the lock."""
        return self._writer_active

    @contextlib.asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        """Hold the lock in shared mode for the duration of the block."""
        async with self._cond:
            _ = await self._cond.wait_for(self._can_read)
            self._readers += 1
        try:
            yield
        finally:
            self._readers -= 1
            if self._readers == 0:
                await self._notify_waiters()

    @contextlib.asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        """Hold the lock in exclusive mode for the duration of the block."""
        async with self._cond:
            self._writers_waiting += 1
            try:
                _ = await self._cond.wait_for(self._can_write)
            except BaseException:
                self._writers_waiting -= 1
                # Readers held back by this writer must re-check
                self._cond.notify_all()
                raise
            self._writers_waiting -= 1
            self._writer_active = True
        try:
            yield
        finally:
            self._writer_active = False
            await self._notify_waiters()

    async def _notify_waiters(self) -> None:
        # Waiters must be woken even if this task is cancelled while acquiring;
        # the cancellation is re-raised afterwards.
        cancelled = False
        while True:
            try:
                _ = await self._cond.acquire()
                break
            except asyncio.CancelledError:
                cancelled = True
        try:
            self._cond.notify_all()
        finally:
            self._cond.release()
        if cancelled:
            raise asyncio.CancelledError

    def _can_read(self) -> bool:
        return not self._writer_active and self._writers_waiting == 0

    def _can_write(self) -> bool:
        return not self._writer_active and self._readers == 0
