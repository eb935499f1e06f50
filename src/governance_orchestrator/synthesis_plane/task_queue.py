"""
Bounded worker queue in front of specialist execution.

``submit`` suspends the caller while ``capacity`` jobs are already waiting,
so a burst of workflows slows down at the queue rather than piling up
unbounded provider calls. At most ``max_workers`` jobs run at once.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar, runtime_checkable

T = TypeVar("T")

Job = Callable[[], Awaitable[T]]


class TaskQueueClosedError(RuntimeError):
    """Raised when work is submitted to a queue that has been closed."""


@runtime_checkable
class TaskQueue(Protocol):
    async def submit(self, job: Job[T]) -> asyncio.Future[T]: ...

    async def run(self, job: Job[T]) -> T: ...

    def snapshot(self) -> dict[str, int]: ...

    async def close(self) -> None: ...


@dataclass(slots=True)
class _Entry(Generic[T]):
    job: Job[T]
    future: asyncio.Future[T]


class BoundedTaskQueue:
    """``TaskQueue`` backed by ``asyncio.Queue`` and a lazily started worker pool."""

    def __init__(self, *, max_workers: int = 5, capacity: int = 100) -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self._max_workers = max_workers
        self._capacity = capacity
        self._queue: asyncio.Queue[_Entry[Any]] | None = None
        self._workers: list[asyncio.Task[None]] = []
        self._active = 0
        self._completed = 0
        self._closed = False

    @property
    def max_workers(self) -> int:
        return self._max_workers

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def active(self) -> int:
        return self._active

    def pending(self) -> int:
        return 0 if self._queue is None else self._queue.qsize()

    async def submit(self, job: Job[T]) -> asyncio.Future[T]:
        """Enqueue ``job``; awaits while the queue is at capacity."""

        if self._closed:
            raise TaskQueueClosedError("task queue is closed")
        queue = self._ensure_started()
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        await queue.put(_Entry(job=job, future=future))
        return future

    async def run(self, job: Job[T]) -> T:
        """Submit ``job`` and wait for its result; cancelling the waiter cancels the job."""

        future = await self.submit(job)
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            future.cancel()
            raise

    def snapshot(self) -> dict[str, int]:
        return {
            "max_workers": self._max_workers,
            "capacity": self._capacity,
            "pending": self.pending(),
            "active": self._active,
            "completed": self._completed,
        }

    async def close(self) -> None:
        """Stop workers and cancel every job that has not started."""

        self._closed = True
        queue = self._queue
        if queue is not None:
            while not queue.empty():
                entry = queue.get_nowait()
                entry.future.cancel()
                queue.task_done()
        for worker in self._workers:
            worker.cancel()
        for worker in self._workers:
            with suppress(asyncio.CancelledError):
                await worker
        self._workers.clear()

    def _ensure_started(self) -> asyncio.Queue[_Entry[Any]]:
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self._capacity)
        if not self._workers:
            self._workers = [
                asyncio.create_task(self._worker(), name=f"specialist-worker-{index}")
                for index in range(self._max_workers)
            ]
        return self._queue

    async def _worker(self) -> None:
        assert self._queue is not None
        while True:
            entry = await self._queue.get()
            try:
                if entry.future.cancelled():
                    continue
                self._active += 1
                job_task = asyncio.ensure_future(entry.job())
                entry.future.add_done_callback(
                    lambda fut, task=job_task: task.cancel() if fut.cancelled() else None
                )
                try:
                    result = await job_task
                except asyncio.CancelledError:
                    if not entry.future.done():
                        entry.future.cancel()
                    # Only the job was cancelled; keep the worker alive unless it is stopping.
                    current = asyncio.current_task()
                    if current is not None and current.cancelling():
                        raise
                except Exception as exc:  # noqa: BLE001
                    if not entry.future.done():
                        entry.future.set_exception(exc)
                else:
                    if not entry.future.done():
                        entry.future.set_result(result)
                finally:
                    self._active -= 1
                    self._completed += 1
            finally:
                self._queue.task_done()


__all__ = ["BoundedTaskQueue", "Job", "TaskQueue", "TaskQueueClosedError"]
