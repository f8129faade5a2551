"""FIFO async locks: the exclusion primitives the version cache is built on.

- Lock:            one unit of work at a time, strictly in enqueue order.
- LockedResource:  a value that is only ever touched while holding its Lock.
- KeyedLock:       one Lock per key, created on demand, dropped once drained.

Locks are not reentrant. Acquiring a lock from inside work that already holds
it raises ``RuntimeError`` instead of deadlocking.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from collections.abc import Awaitable, Callable
from contextvars import ContextVar
from typing import Generic, TypeVar, Union

T = TypeVar("T")
R = TypeVar("R")

Work = Callable[[], Union[R, Awaitable[R]]]

# Locks held by the current task (inherited by tasks it spawns).
_held_locks: ContextVar[frozenset[Lock]] = ContextVar("muse_held_locks", default=frozenset())


async def _resolve(value):
    if inspect.isawaitable(value):
        return await value
    return value


class Lock:
    """Async mutual-exclusion queue with FIFO fairness and no priorities."""

    def __init__(self) -> None:
        self._queue: deque[asyncio.Future[None]] = deque()

    @property
    def queue_length(self) -> int:
        """Number of queued units of work, including the one running."""
        return len(self._queue)

    @property
    def locked(self) -> bool:
        return bool(self._queue)

    async def acquire(self, work: Work[R]) -> R:
        """Run ``work`` once every previously queued unit has finished.

        ``work`` may be a plain callable or return an awaitable. Its result
        (or exception) is passed through to the caller.
        """
        if self in _held_locks.get() and self.locked:
            raise RuntimeError("Lock is not reentrant: acquire() called from work holding it")

        ticket: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._queue.append(ticket)
        if len(self._queue) == 1:
            ticket.set_result(None)

        try:
            await ticket
        except asyncio.CancelledError:
            self._release(ticket)
            raise

        token = _held_locks.set(_held_locks.get() | {self})
        try:
            return await _resolve(work())
        finally:
            _held_locks.reset(token)
            self._release(ticket)

    def _release(self, ticket: asyncio.Future[None]) -> None:
        was_head = bool(self._queue) and self._queue[0] is ticket
        try:
            self._queue.remove(ticket)
        except ValueError:
            return
        if was_head and self._queue:
            nxt = self._queue[0]
            if not nxt.done():
                nxt.set_result(None)


class LockedResource(Generic[T]):
    """A value guarded by a single Lock."""

    def __init__(self, initial: T) -> None:
        self._lock = Lock()
        self._resource = initial

    @property
    def lock(self) -> Lock:
        return self._lock

    async def use(self, work: Callable[[T], R | Awaitable[R]]) -> R:
        """Run ``work(resource)`` exclusively and return its result."""
        return await self._lock.acquire(lambda: work(self._resource))

    async def update(self, work: Callable[[T], T | Awaitable[T]]) -> None:
        """Run ``work(resource)`` exclusively and store its result as the new value."""

        async def replace() -> None:
            self._resource = await _resolve(work(self._resource))

        await self._lock.acquire(replace)


class KeyedLock:
    """Per-key locks, so work for one id is serialized without blocking other ids.

    A key's Lock exists only while something is queued on it.
    """

    def __init__(self) -> None:
        self._locks: dict[str, Lock] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, key: object) -> bool:
        return key in self._locks

    async def acquire(self, key: str, work: Work[R]) -> R:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = Lock()
        try:
            return await lock.acquire(work)
        finally:
            if lock.queue_length == 0 and self._locks.get(key) is lock:
                del self._locks[key]
