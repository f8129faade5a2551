"""Shared fixtures: a fake engine that answers by looking at the prompt."""

from __future__ import annotations

import inspect
import re
from collections.abc import Callable
from pathlib import Path

import pytest

from muse.config import MuseConfig, VersioningConfig
from muse.engines.base import AgentResponse
from muse.session import MemorySession

_CATEGORY_ATTR = re.compile(r'categoryName="([^"]*)"')
_ARCHIVE_NAME = re.compile(r"<ARCHIVE_CATEGORY_NAME>\s*(.*?)\s*</ARCHIVE_CATEGORY_NAME>", re.DOTALL)
_UPDATE_NAME = re.compile(r'This category is called "([^"]*)"')


def prompt_kind(message: str) -> str:
    if "produce a description for a category" in message:
        return "describe"
    if "identify the categories" in message:
        return "classify"
    if "<ARCHIVE_ENTRIES>" in message:
        return "summarize"
    if "<ARCHIVE_CONTENT>" in message:
        return "query"
    if "update a single category" in message:
        return "update"
    raise AssertionError(f"Unrecognized prompt: {message[:200]}")


def prompt_category(message: str) -> str | None:
    for pattern in (_ARCHIVE_NAME, _UPDATE_NAME, _CATEGORY_ATTR):
        match = pattern.search(message)
        if match:
            return match.group(1)
    return None


def category_block(name: str, reason: str = "relevant", tag: str = "CATEGORY") -> str:
    return (
        f"<{tag}><CATEGORY_NAME>{name}</CATEGORY_NAME>"
        f"<WHAT_TO_INCLUDE>{reason}</WHAT_TO_INCLUDE></{tag}>"
    )


def describe(message: str) -> str:
    return f"<DESCRIPTION>Notes about {prompt_category(message)}</DESCRIPTION>"


class FakeEngine:
    """Engine double. ``handlers`` maps a prompt kind to a response function."""

    def __init__(self, **handlers: Callable[[str], str]) -> None:
        self.handlers = {"describe": describe, **handlers}
        self.calls: list[tuple[str, str]] = []
        self.system_prompts: list[str | None] = []

    @property
    def name(self) -> str:
        return "fake"

    def calls_of(self, kind: str) -> list[str]:
        return [message for k, message in self.calls if k == kind]

    async def send(self, message, *, max_tokens, system_prompt=None) -> AgentResponse:
        kind = prompt_kind(message)
        self.calls.append((kind, message))
        self.system_prompts.append(system_prompt)
        handler = self.handlers.get(kind)
        if handler is None:
            raise AssertionError(f"Unexpected {kind} call")
        text = handler(message)
        if inspect.isawaitable(text):
            text = await text
        return AgentResponse(text=text)


@pytest.fixture
def config(tmp_path: Path) -> MuseConfig:
    return MuseConfig(
        memory_dir=tmp_path / "memory",
        versioning=VersioningConfig(settling_time=0.02, watch=False),
        pid_file=tmp_path / "muse.pid",
    )


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def session(config: MuseConfig, engine: FakeEngine) -> MemorySession:
    return MemorySession.create(config, engine)


def write_category(config: MuseConfig, name: str, content: str) -> Path:
    path = config.memory_dir.joinpath(*name.split("/")[:-1], name.split("/")[-1] + ".md")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path
