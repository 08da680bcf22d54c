"""
Bounded work queue.

Each owner (one worker identity) gets its own queue. ``push`` never blocks: the
unit of work is parked in a FIFO and started once fewer than ``concurrency``
units are running. The returned future settles with the unit's result or
error. Queues are never shared across owners; a shared queue would merge
independent concurrency budgets and let one owner's backlog delay another.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, Set, Tuple, TypeVar

T = TypeVar("T")

Task = Callable[[], Awaitable[Any]]


class WorkQueue:
    """
    FIFO of asynchronous tasks with at most ``concurrency`` running at once.

    Parameters
    ----------
    concurrency : int
        Maximum number of concurrently running tasks. Must be >= 1.
    name : str, optional
        Label used in log lines (usually the owner id).

    Example
    -------
        queue = WorkQueue(2, name="worker-1")
        handle = queue.push(lambda: write_page(7))
        await handle
    """

    def __init__(self, concurrency: int, name: Optional[str] = None) -> None:
        if isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency < 1:
            raise ValueError(f"concurrency must be a positive integer, got {concurrency!r}")
        self.concurrency = concurrency
        self.name = name or "queue"
        self._running = 0
        self._pending: Deque[Tuple[Task, asyncio.Future]] = deque()
        self._tasks: Set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def running(self) -> int:
        return self._running

    @property
    def pending(self) -> int:
        return len(self._pending)

    def push(self, fn: Callable[[], Awaitable[T]]) -> "asyncio.Future[T]":
        """
        Submit a unit of work and return a future for its outcome.

        Must be called from within a running event loop.
        """
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._pending.append((fn, future))
        self._idle.clear()
        self._dispatch()
        return future

    def _dispatch(self) -> None:
        while self._running < self.concurrency and self._pending:
            fn, future = self._pending.popleft()
            if future.cancelled():
                continue
            self._running += 1
            task = asyncio.ensure_future(self._run(fn, future))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        if self._running == 0 and not self._pending:
            self._idle.set()

    async def _run(self, fn: Task, future: asyncio.Future) -> None:
        try:
            result = await fn()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:  # noqa: BLE001 - delivered to the submitter through the future
            if not future.cancelled():
                future.set_exception(exc)
        else:
            if not future.cancelled():
                future.set_result(result)
        finally:
            self._running -= 1
            self._dispatch()

    async def join(self) -> None:
        """Wait until nothing is running or pending."""
        await self._idle.wait()

    def __repr__(self) -> str:
        return (
            f"WorkQueue(name={self.name!r}, concurrency={self.concurrency}, "
            f"running={self._running}, pending={len(self._pending)})"
        )


__all__ = ["WorkQueue"]
