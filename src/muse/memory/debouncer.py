"""Trailing-edge debouncer on the asyncio event loop."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

Callback = Callable[[], "Awaitable[None] | None"]


class Debouncer:
    """Collapse a burst of triggers into one run of the most recent callback.

    Only one callback is ever pending. ``trigger`` replaces it and restarts
    the settling timer, ``poke`` restarts the timer and keeps the callback.
    Coroutine callbacks are scheduled as tasks; waiters are released when
    the task finishes.
    """

    def __init__(self, settling_time: float) -> None:
        self.settling_time = settling_time
        self._handle: asyncio.TimerHandle | None = None
        self._callback: Callback | None = None
        self._done: asyncio.Future[None] | None = None
        self._running: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def running(self) -> bool:
        """A fired coroutine callback has not finished yet."""
        return bool(self._running)

    def trigger(self, callback: Callback) -> None:
        self._callback = callback
        self._schedule()

    def poke(self) -> None:
        """Push the pending deadline back. No-op when nothing is scheduled."""
        if self._handle is None:
            return
        self._schedule()

    async def wait_for_pending_trigger(self) -> None:
        """Wait for the next firing (and its coroutine, if any) to finish."""
        if self._done is None:
            self._done = asyncio.get_running_loop().create_future()
        await asyncio.shield(self._done)

    async def join(self) -> None:
        """Wait for callbacks that already fired. Errors are logged, not raised."""
        while self._running:
            await asyncio.gather(*self._running, return_exceptions=True)

    def cancel(self) -> None:
        """Drop the pending callback and release any waiters.

        Callbacks that already fired keep running; see ``join``.
        """
        if self._handle is not None:
            self._handle.cancel()
        done = self._done
        self._handle = self._callback = self._done = None
        _set_done(done)

    def _schedule(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.settling_time, self._fire)

    def _fire(self) -> None:
        callback, done = self._callback, self._done
        self._handle = self._callback = self._done = None
        if callback is None:
            _set_done(done)
            return

        try:
            result = callback()
        except Exception:
            logger.exception("Debounced callback failed")
            _set_done(done)
            return

        if not inspect.isawaitable(result):
            _set_done(done)
            return

        task = asyncio.ensure_future(result)
        self._running.add(task)
        task.add_done_callback(lambda t: self._finish(t, done))

    def _finish(self, task: asyncio.Task, done: asyncio.Future[None] | None) -> None:
        self._running.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Debounced task failed: %s", task.exception())
        _set_done(done)


def _set_done(done: asyncio.Future[None] | None) -> None:
    if done is not None and not done.done():
        done.set_result(None)
