"""Engine protocol, shared types and dispatch rate limiting."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


class PermissionDeniedError(RuntimeError):
    """The backend refused to serve requests for this session."""


@dataclass
class AgentResponse:
    """Response from an AI engine."""

    text: str
    model: str | None = None
    stop_reason: str | None = None
    metadata: dict = field(default_factory=dict)


@runtime_checkable
class Engine(Protocol):
    """Protocol that all engine backends must implement."""

    @property
    def name(self) -> str: ...

    async def send(
        self,
        message: str,
        *,
        max_tokens: int,
        system_prompt: str | None = None,
    ) -> AgentResponse:
        """Send a single-turn prompt and return the response.

        Raises PermissionDeniedError when the backend rejects the caller.
        """
        ...


class RateLimiter:
    """Bound in-flight calls and keep a minimum spacing between dispatches.

    Usage::

        async with limiter:
            await call()
    """

    def __init__(self, max_concurrent: int = 3, min_interval: float = 0.0) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.min_interval = min_interval
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._spacing = asyncio.Lock()
        self._last_dispatch: float | None = None

    async def __aenter__(self) -> RateLimiter:
        await self._semaphore.acquire()
        try:
            async with self._spacing:
                if self._last_dispatch is not None:
                    wait = self._last_dispatch + self.min_interval - time.monotonic()
                    if wait > 0:
                        await asyncio.sleep(wait)
                self._last_dispatch = time.monotonic()
        except BaseException:
            self._semaphore.release()
            raise
        return self

    async def __aexit__(self, *exc_info) -> None:
        self._semaphore.release()
