"""Typed event channels wired between the session, the watcher and the version cache."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Generic, TypeVar

T = TypeVar("T")

Listener = Callable[[T], "Awaitable[None] | None"]


class Channel(Generic[T]):
    """A named event kind with explicitly registered listeners.

    ``emit`` calls listeners in subscription order and awaits the ones that
    return an awaitable, so the emitter sees their errors.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Listener[T]] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Listener[T]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def emit(self, payload: T) -> None:
        for listener in list(self._listeners):
            result = listener(payload)
            if inspect.isawaitable(result):
                await result


@dataclass
class CategoryDirtyEvent:
    """New content for a category, written by the ingestion pipeline."""

    name: str
    content: str


@dataclass
class FileSystemEvents:
    """Raw changes under the memory directory, already classified."""

    category_dirty: Channel[Path] = field(default_factory=lambda: Channel("category_dirty"))
    versions_dirty: Channel[None] = field(default_factory=lambda: Channel("versions_dirty"))
    directory_dirty: Channel[Path] = field(default_factory=lambda: Channel("directory_dirty"))


@dataclass
class MemoryEvents:
    """Events raised by the memory system itself."""

    category_dirty: Channel[CategoryDirtyEvent] = field(
        default_factory=lambda: Channel("category_dirty")
    )
    permission_denied: Channel[None] = field(default_factory=lambda: Channel("permission_denied"))
