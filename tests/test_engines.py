"""Tests for engine backends (mocked Anthropic client) and rate limiting."""

import asyncio
import time
from unittest.mock import MagicMock

import anthropic
import httpx
import pytest

from muse.config import MuseConfig, SamplingConfig
from muse.daemon import build_engine
from muse.engines.anthropic_api import AnthropicAPIEngine
from muse.engines.base import Engine, PermissionDeniedError, RateLimiter


def make_message(text: str) -> MagicMock:
    block = MagicMock()
    block.type = "text"
    block.text = text
    message = MagicMock()
    message.content = [block]
    message.model = "claude-test"
    message.stop_reason = "end_turn"
    message.usage.input_tokens = 12
    message.usage.output_tokens = 34
    return message


def api_error(cls, status: int):
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    response = httpx.Response(status, request=request)
    return cls("refused", response=response, body=None)


class TestAnthropicAPIEngine:
    @pytest.fixture
    def client(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture
    def engine(self, client: MagicMock) -> AnthropicAPIEngine:
        return AnthropicAPIEngine(model="claude-test", min_interval=0, client=client)

    def test_name(self, engine: AnthropicAPIEngine):
        assert engine.name == "anthropic_api"
        assert isinstance(engine, Engine)

    @pytest.mark.asyncio
    async def test_send_success(self, engine: AnthropicAPIEngine, client: MagicMock):
        client.messages.create.return_value = make_message("<ANSWER>42</ANSWER>")

        response = await engine.send("question", max_tokens=100, system_prompt="be brief")

        assert response.text == "<ANSWER>42</ANSWER>"
        assert response.model == "claude-test"
        assert response.metadata == {"input_tokens": 12, "output_tokens": 34}
        client.messages.create.assert_called_once_with(
            model="claude-test",
            max_tokens=100,
            messages=[{"role": "user", "content": "question"}],
            system="be brief",
        )

    @pytest.mark.asyncio
    async def test_send_without_system_prompt(self, engine: AnthropicAPIEngine, client: MagicMock):
        client.messages.create.return_value = make_message("hi")
        await engine.send("hello", max_tokens=10)
        assert "system" not in client.messages.create.call_args.kwargs

    @pytest.mark.asyncio
    async def test_empty_text_is_an_error(self, engine: AnthropicAPIEngine, client: MagicMock):
        message = make_message("")
        message.content = []
        client.messages.create.return_value = message

        with pytest.raises(RuntimeError, match="text content"):
            await engine.send("hello", max_tokens=10)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            api_error(anthropic.PermissionDeniedError, 403),
            api_error(anthropic.AuthenticationError, 401),
        ],
    )
    async def test_refusal_maps_to_permission_denied(
        self, engine: AnthropicAPIEngine, client: MagicMock, error
    ):
        client.messages.create.side_effect = error
        with pytest.raises(PermissionDeniedError):
            await engine.send("hello", max_tokens=10)

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, engine: AnthropicAPIEngine, client: MagicMock):
        client.messages.create.side_effect = api_error(anthropic.InternalServerError, 500)
        with pytest.raises(anthropic.InternalServerError):
            await engine.send("hello", max_tokens=10)


class TestBuildEngine:
    def test_anthropic(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
        config = MuseConfig(
            memory_dir=tmp_path, sampling=SamplingConfig(model="claude-x", max_concurrent=2)
        )
        engine = build_engine(config)
        assert isinstance(engine, AnthropicAPIEngine)
        assert engine.model == "claude-x"
        assert engine.max_concurrent == 2

    def test_unknown(self, tmp_path):
        with pytest.raises(ValueError, match="Unknown engine"):
            build_engine(MuseConfig(memory_dir=tmp_path), "carrier-pigeon")


class TestRateLimiter:
    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            RateLimiter(max_concurrent=0)

    @pytest.mark.asyncio
    async def test_bounds_concurrency(self):
        limiter = RateLimiter(max_concurrent=2)
        active = 0
        peak = 0

        async def call():
            nonlocal active, peak
            async with limiter:
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(call() for _ in range(6)))
        assert peak == 2

    @pytest.mark.asyncio
    async def test_spaces_dispatches(self):
        limiter = RateLimiter(max_concurrent=5, min_interval=0.03)
        started: list[float] = []

        async def call():
            async with limiter:
                started.append(time.monotonic())

        await asyncio.gather(*(call() for _ in range(3)))
        gaps = [b - a for a, b in zip(started, started[1:])]
        assert all(gap >= 0.025 for gap in gaps)

    @pytest.mark.asyncio
    async def test_releases_on_error(self):
        limiter = RateLimiter(max_concurrent=1)
        with pytest.raises(KeyError):
            async with limiter:
                raise KeyError("x")

        async def reenter():
            async with limiter:
                return True

        assert await asyncio.wait_for(reenter(), timeout=1)
