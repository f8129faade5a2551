"""File system watcher for the memory directory.

watchdog delivers events on its observer thread; they are handed to the
event loop with ``call_soon_threadsafe`` and classified there into
``category_dirty`` (a markdown file changed), ``versions_dirty``
(versions.json changed) or ``directory_dirty`` (a directory was created,
deleted or moved, which the backend may report without per-file events).
Everything else, summary.md included, is ignored.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

if TYPE_CHECKING:
    from muse.config import MuseConfig
    from muse.events import FileSystemEvents

logger = logging.getLogger(__name__)

_JOIN_TIMEOUT = 2.0


class ChangeKind(enum.Enum):
    CATEGORY = "category"
    VERSIONS = "versions"
    DIRECTORY = "directory"


# Directory events that can add or remove category files without per-file events.
_DIRECTORY_EVENTS = ("created", "deleted", "moved")


def classify_change(
    config: MuseConfig, path: str | Path, is_directory: bool = False
) -> ChangeKind | None:
    resolved = Path(path).resolve()
    if is_directory:
        try:
            relative = resolved.relative_to(config.memory_dir)
        except ValueError:
            return None
        if any(part.startswith(".") for part in relative.parts):
            return None
        return ChangeKind.DIRECTORY
    if resolved == config.summary_file:
        return None
    if resolved == config.versions_file:
        return ChangeKind.VERSIONS
    if resolved.suffix != ".md":
        return None
    # Added, removed and changed all mean "dirty".
    return ChangeKind.CATEGORY


class _Handler(FileSystemEventHandler):
    def __init__(self, watcher: MemoryWatcher) -> None:
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            if event.event_type not in _DIRECTORY_EVENTS:
                return
        elif event.event_type in ("opened", "closed_no_write"):
            return
        paths = [event.src_path]
        dest = getattr(event, "dest_path", "")
        if dest:
            paths.append(dest)
        for path in paths:
            self._watcher.notify_threadsafe(str(path), event.is_directory)


class MemoryWatcher:
    """Recursive watchdog observer that publishes classified changes."""

    def __init__(self, config: MuseConfig, events: FileSystemEvents) -> None:
        self.config = config
        self.events = events
        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer: Observer | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        if self._observer is not None:
            raise RuntimeError("Watcher already started")
        self._loop = asyncio.get_running_loop()
        observer = Observer()
        observer.daemon = True
        observer.schedule(_Handler(self), str(self.config.memory_dir), recursive=True)
        observer.start()
        self._observer = observer
        logger.info("Watching %s for changes", self.config.memory_dir)

    def stop_nowait(self) -> Observer | None:
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
        return observer

    async def stop(self) -> None:
        observer = self.stop_nowait()
        if observer is not None:
            await asyncio.to_thread(observer.join, _JOIN_TIMEOUT)
            logger.info("Stopped watching %s", self.config.memory_dir)

    def notify_threadsafe(self, path: str, is_directory: bool = False) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self.dispatch, path, is_directory)
        except RuntimeError:
            # Loop shut down between the check and the call.
            pass

    def dispatch(self, path: str, is_directory: bool = False) -> None:
        """Classify one changed path and emit the matching event (loop thread only)."""
        kind = classify_change(self.config, path, is_directory)
        if kind is ChangeKind.VERSIONS:
            self._emit(self.events.versions_dirty.emit(None))
        elif kind is ChangeKind.CATEGORY:
            self._emit(self.events.category_dirty.emit(Path(path)))
        elif kind is ChangeKind.DIRECTORY:
            self._emit(self.events.directory_dirty.emit(Path(path)))

    def _emit(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error("Watcher listener failed: %s", t.exception())

        task.add_done_callback(done)
