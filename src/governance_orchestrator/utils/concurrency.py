"""Async concurrency primitives shared by the orchestrator and the specialist queue."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable
from contextlib import suppress
from typing import Generic, TypeVar

T = TypeVar("T")


class OperationCancelledError(Exception):
    """Raised when a cooperative cancellation token fires during an awaited operation."""


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("operation cancelled")


class AdmissionQueue(Generic[T]):
    """
    Bounded FIFO used to admit work to a fixed pool of consumers.

    ``put`` suspends the producer while the queue is full, which is how
    callers observe backpressure. Items are handed out strictly in
    submission order.
    """

    def __init__(self, maxsize: int) -> None:
        if maxsize <= 0:
            raise ValueError("maxsize must be > 0")
        self._maxsize = maxsize
        self._queue: asyncio.Queue[T] = asyncio.Queue(maxsize=maxsize)
        self._admitted = 0
        self._waiting_producers = 0

    @property
    def maxsize(self) -> int:
        return self._maxsize

    def qsize(self) -> int:
        return self._queue.qsize()

    def full(self) -> bool:
        return self._queue.full()

    async def put(self, item: T) -> None:
        self._waiting_producers += 1
        try:
            await self._queue.put(item)
        finally:
            self._waiting_producers -= 1
        self._admitted += 1

    async def get(self) -> T:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        await self._queue.join()

    def snapshot(self) -> dict[str, int]:
        return {
            "maxsize": self._maxsize,
            "queued": self._queue.qsize(),
            "admitted": self._admitted,
            "waiting_producers": self._waiting_producers,
        }


async def run_with_timeout(
    coroutine: Awaitable[T],
    timeout_seconds: float,
    cancel_token: CancellationToken | None = None,
) -> T:
    """
    Run ``coroutine`` with a wall-clock timeout and cooperative cancellation.

    Raises ``TimeoutError`` when the deadline passes and
    ``OperationCancelledError`` when ``cancel_token`` fires first. In both
    cases the underlying task is cancelled and awaited before returning.
    """
    if timeout_seconds <= 0:
        _close_unscheduled_coroutine(coroutine)
        raise ValueError("timeout_seconds must be > 0")

    token = cancel_token or CancellationToken()
    if token.is_cancelled:
        _close_unscheduled_coroutine(coroutine)
        raise OperationCancelledError("operation cancelled")

    task: asyncio.Task[T] = asyncio.create_task(_await_value(coroutine))
    cancel_wait_task = asyncio.create_task(token.wait())

    try:
        done, _ = await asyncio.wait(
            {task, cancel_wait_task},
            timeout=timeout_seconds,
            return_when=asyncio.FIRST_COMPLETED,
        )

        if task in done:
            return await task

        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        if cancel_wait_task in done and token.is_cancelled:
            raise OperationCancelledError("operation cancelled")
        raise TimeoutError(f"operation timed out after {timeout_seconds} seconds")
    finally:
        # The caller itself may have been cancelled while waiting.
        if not task.done():
            task.cancel()
        cancel_wait_task.cancel()
        with suppress(asyncio.CancelledError):
            await cancel_wait_task


async def _await_value(awaitable: Awaitable[T]) -> T:
    return await awaitable


def _close_unscheduled_coroutine(awaitable: Awaitable[object]) -> None:
    # Raw coroutine objects that never get scheduled must be closed explicitly
    # or CPython warns "coroutine was never awaited" at GC time.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = [
    "AdmissionQueue",
    "CancellationToken",
    "OperationCancelledError",
    "run_with_timeout",
]
