"""Anthropic API engine: plain single-turn sampling, no tools."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import anthropic

from muse.engines.base import AgentResponse, PermissionDeniedError, RateLimiter

logger = logging.getLogger(__name__)


@dataclass
class AnthropicAPIEngine:
    """Direct Anthropic API via the `anthropic` SDK, rate limited per engine."""

    model: str = "claude-sonnet-4-5-20250929"
    timeout: int = 120
    max_concurrent: int = 3
    min_interval: float = 0.2
    client: Any = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.client is None:
            self.client = anthropic.Anthropic(timeout=self.timeout)
        self._limiter = RateLimiter(self.max_concurrent, self.min_interval)

    @property
    def name(self) -> str:
        return "anthropic_api"

    async def send(
        self,
        message: str,
        *,
        max_tokens: int,
        system_prompt: str | None = None,
    ) -> AgentResponse:
        kwargs: dict = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": message}],
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        async with self._limiter:
            try:
                response = await asyncio.to_thread(self.client.messages.create, **kwargs)
            except (anthropic.PermissionDeniedError, anthropic.AuthenticationError) as e:
                logger.error("Anthropic API refused the request: %s", e)
                raise PermissionDeniedError(str(e)) from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if not text:
            raise RuntimeError("Expected text content from the Anthropic API")

        usage = {}
        if response.usage:
            usage = {
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            }

        return AgentResponse(
            text=text,
            model=response.model,
            stop_reason=response.stop_reason,
            metadata=usage,
        )
