"""Version cache: per-category content hash + description, kept in sync with disk.

The version map is only touched while holding one LockedResource. Every
mutation (initial load, dirty-category reconciliation, ledger reload,
AI-authored write) goes through ``_use_version_cache``, which rewrites
versions.json and summary.md when, and only when, the map changed.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import re
import time
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from muse.events import CategoryDirtyEvent
from muse.memory.category import (
    SUMMARY_CATEGORY_NAME,
    USER_CATEGORY_NAME,
    InvalidCategoryNameError,
    build_category_tree,
    category_file_path,
    category_name_from_path,
    category_prefix_from_path,
    is_category_missing,
    is_valid_category_name,
    iter_category_files,
    read_text,
    serialize_category_tree,
    write_text,
)
from muse.memory.debouncer import Debouncer
from muse.memory.lock import LockedResource
from muse.memory.summary import retrieve_category_description, serialize_summary
from muse.tags import MERGE_CONFLICT_MARKER

if TYPE_CHECKING:
    from muse.memory.watcher import MemoryWatcher
    from muse.session import MemorySession

logger = logging.getLogger(__name__)

VERSIONS_FILE_HEADER = (
    "// This file is used to generate summary.md. You can edit the descriptions in here "
    "if you would like to update summary.md.\n"
    "// This file and summary.md will be automatically updated as you change/add/remove "
    "memory categories."
)

DEFAULT_USER_DESCRIPTION = (
    "This category contains information about the user and their specific preferences."
)

_COMMENT_LINE = re.compile(r"^\s*//.*$", re.MULTILINE)

# Returned by _use_version_cache when the session was closed and the work never ran.
_SKIPPED = object()


class SessionClosedError(RuntimeError):
    """The memory session was closed, so the version cache refused the work."""


@dataclass(frozen=True)
class VersionEntry:
    """Last observed content hash of a category and its description.

    An empty ``content_hash`` means the description stands on its own and
    the content was never hashed.
    """

    content_hash: str
    description: str

    def to_dict(self) -> dict[str, str]:
        return {"contentHash": self.content_hash, "description": self.description}


VersionMap = dict[str, VersionEntry]


def hash_content(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def ensure_categories(versions: VersionMap) -> None:
    """Restore the map invariants: user category present, no ``summary`` key."""
    if USER_CATEGORY_NAME not in versions:
        versions[USER_CATEGORY_NAME] = VersionEntry("", DEFAULT_USER_DESCRIPTION)
    versions.pop(SUMMARY_CATEGORY_NAME, None)


def serialize_ledger(versions: VersionMap) -> str:
    body = json.dumps(
        {name: versions[name].to_dict() for name in sorted(versions)},
        indent="\t",
        ensure_ascii=False,
    )
    return f"{VERSIONS_FILE_HEADER}\n{body}"


def parse_ledger(text: str) -> VersionMap | None:
    """Parse versions.json leniently.

    Returns None when the file holds a merge-conflict marker, and an empty
    map when it cannot be parsed or does not match the expected shape.
    """
    if MERGE_CONFLICT_MARKER.search(text):
        return None

    stripped = _COMMENT_LINE.sub("", text).strip()
    if not stripped:
        return {}

    try:
        data = json.loads(stripped)
        if not isinstance(data, dict):
            raise ValueError(f"expected an object, got {type(data).__name__}")
        versions: VersionMap = {}
        for name, raw in data.items():
            if not isinstance(raw, dict):
                raise ValueError(f"entry {name!r} is not an object")
            content_hash, description = raw.get("contentHash"), raw.get("description")
            if not isinstance(content_hash, str) or not isinstance(description, str):
                raise ValueError(f"entry {name!r} needs string contentHash and description")
            versions[name] = VersionEntry(content_hash, description)
        return versions
    except ValueError as e:
        logger.error("Failed to parse versions file, using an empty map: %s", e)
        return {}


class VersionManager:
    """Owns the version map and reconciles it against the memory directory."""

    def __init__(self, session: MemorySession) -> None:
        self._session = session
        self._cache: LockedResource[VersionMap] = LockedResource({})
        self._debouncer = Debouncer(session.config.versioning.settling_time)
        self._dirty_names: set[str] = set()
        self._watcher: MemoryWatcher | None = None
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe: list[Callable[[], None]] = []

    @property
    def config(self):
        return self._session.config

    # ── Lifecycle ─────────────────────────────────────────────

    async def initialize(self, watch: bool = True) -> None:
        await self._update_versions_from_disk(log_load=True)
        self._listen_to_events()
        if watch:
            self._start_watcher()

    async def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        await self._stop_watcher()
        self._debouncer.cancel()
        await self._debouncer.join()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def flush(self) -> None:
        """Wait until pending and running batches and background reloads have finished."""
        while self._debouncer.pending or self._debouncer.running or self._tasks:
            if self._debouncer.pending:
                await self._debouncer.wait_for_pending_trigger()
            await self._debouncer.join()
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)

    # ── Locked access ─────────────────────────────────────────

    async def _use_version_cache(self, work: Callable[[VersionMap], Awaitable[Any]]) -> Any:
        """Run ``work`` on the map under the lock, then rewrite artifacts if it changed.

        Returns ``_SKIPPED`` without running ``work`` once the session is closed.
        """
        requested_at = time.perf_counter()

        async def locked(versions: VersionMap) -> Any:
            if self._session.is_closed:
                logger.warning("Session is closed, skipping version cache work")
                return _SKIPPED

            waited = time.perf_counter() - requested_at
            if waited > self.config.versioning.lock_warn_seconds:
                logger.warning("Getting version cache lock took %.2fs", waited)

            before = dict(versions)
            result = await work(versions)
            ensure_categories(versions)

            if before != versions:
                self._write_artifacts(versions)
            return result

        return await self._cache.use(locked)

    def _write_artifacts(self, versions: VersionMap) -> None:
        logger.info("Updating summary file after versions map change")
        write_text(self.config.versions_file, serialize_ledger(versions))
        write_text(self.config.summary_file, serialize_summary(versions))

    async def read_versions(self) -> VersionMap:
        """Snapshot of the map. Empty once the session is closed."""

        async def copy(versions: VersionMap) -> VersionMap:
            return dict(versions)

        result = await self._use_version_cache(copy)
        return {} if result is _SKIPPED else result

    # ── Ledger load / reload ──────────────────────────────────

    def _read_ledger(self) -> VersionMap | None:
        path = self.config.versions_file
        if not path.exists():
            logger.info("Versions file does not exist yet")
            return {}
        return parse_ledger(read_text(path))

    async def _update_versions_from_disk(self, log_load: bool = False) -> None:
        async def reload(versions: VersionMap) -> None:
            loaded = self._read_ledger()
            if loaded is None:
                logger.warning("Skipping versions load due to merge conflict marker in versions file")
                return

            versions.clear()
            for name, entry in loaded.items():
                if not is_valid_category_name(name):
                    logger.warning("Ignoring invalid category name %r in versions file", name)
                    continue
                if is_category_missing(self.config, name):
                    logger.info("Category file for %r no longer exists, removing from versions", name)
                    continue
                versions[name] = entry

            if log_load and versions:
                tree = serialize_category_tree(build_category_tree(versions))
                logger.info("Loaded %d categories from disk\n%s", len(versions), tree)

        await self._use_version_cache(reload)

    # ── Dirty categories from the file system ─────────────────

    async def _update_dirty_categories(self) -> None:
        if self._session.is_closed or not self._dirty_names:
            return

        names = sorted(self._dirty_names)
        if len(names) > 1:
            logger.info("Updating %d dirty categories from disk", len(names))

        async def update_all(versions: VersionMap) -> None:
            results = await asyncio.gather(
                *(self._update_dirty_category(versions, name) for name in names),
                return_exceptions=True,
            )
            for name, result in zip(names, results):
                if isinstance(result, BaseException):
                    logger.error("Failed to update dirty category %r: %s", name, result)
                else:
                    self._dirty_names.discard(name)

        await self._use_version_cache(update_all)

    async def _update_dirty_category(self, versions: VersionMap, name: str) -> None:
        path = category_file_path(self.config, name)

        if is_category_missing(self.config, name):
            logger.info("Category file for %r no longer exists, removing from versions", name)
            versions.pop(name, None)
            return
        if not path.exists():
            # The user file is optional; its entry stays.
            return

        content = read_text(path)
        content_hash = hash_content(content)
        existing = versions.get(name)
        if existing is not None and existing.content_hash == content_hash:
            return

        logger.info("Category %r has changed, updating description", name)
        description = await retrieve_category_description(self._session, name, content)
        versions[name] = VersionEntry(content_hash, description)

    # ── AI-authored writes ────────────────────────────────────

    async def write_category(self, name: str, content: str) -> None:
        """Store new content for a category and record its version.

        Raises SessionClosedError when the session is closed before the write
        happens, so callers never report a write that was skipped.
        """
        path = category_file_path(self.config, name)
        if self._session.is_closed:
            raise SessionClosedError(f"Session is closed, not writing category {name!r}")
        content_hash = hash_content(content)
        description = await retrieve_category_description(self._session, name, content)

        async def install(versions: VersionMap) -> None:
            versions[name] = VersionEntry(content_hash, description)
            path.parent.mkdir(parents=True, exist_ok=True)
            write_text(path, content)

        if await self._use_version_cache(install) is _SKIPPED:
            raise SessionClosedError(f"Session is closed, not writing category {name!r}")

    # ── Event wiring ──────────────────────────────────────────

    def _listen_to_events(self) -> None:
        fs_events = self._session.file_system_events
        memory_events = self._session.memory_events
        self._unsubscribe = [
            fs_events.category_dirty.subscribe(self._on_file_dirty),
            fs_events.versions_dirty.subscribe(self._on_versions_dirty),
            fs_events.directory_dirty.subscribe(self._on_directory_dirty),
            memory_events.category_dirty.subscribe(self._on_category_dirty),
            memory_events.permission_denied.subscribe(self._on_permission_denied),
        ]

    def _on_file_dirty(self, path: Path) -> None:
        if self._session.is_closed:
            return
        try:
            name = category_name_from_path(self.config, path)
        except InvalidCategoryNameError as e:
            logger.debug("Ignoring change: %s", e)
            return

        self._dirty_names.add(name)
        self._debouncer.trigger(self._update_dirty_categories)

    async def _on_directory_dirty(self, path: Path) -> None:
        """A directory appeared, vanished or moved: every category under it is dirty."""
        if self._session.is_closed:
            return
        try:
            prefix = category_prefix_from_path(self.config, path)
        except InvalidCategoryNameError as e:
            logger.debug("Ignoring directory change: %s", e)
            return

        known = await self.read_versions()
        names = {name for name in known if not prefix or name.startswith(prefix + "/")}
        names.update(name for name, _ in iter_category_files(self.config, Path(path)))
        if not names:
            return

        logger.info("Directory %r changed, %d categories marked dirty", prefix or ".", len(names))
        self._dirty_names.update(names)
        self._debouncer.trigger(self._update_dirty_categories)

    def _on_versions_dirty(self, _: None) -> None:
        if self._session.is_closed:
            return
        # A batch about to run must wait until the ledger has been reloaded.
        self._debouncer.poke()
        self._spawn(self._update_versions_from_disk(), "reload versions from disk")

    async def _on_category_dirty(self, event: CategoryDirtyEvent) -> None:
        logger.info("Category %r marked dirty by memory system", event.name)
        await self.write_category(event.name, event.content)

    async def _on_permission_denied(self, _: None) -> None:
        await self._stop_watcher()

    def _spawn(self, coro: Coroutine[Any, Any, None], what: str) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error("Could not %s: %s", what, t.exception())

        task.add_done_callback(done)

    # ── Watcher ───────────────────────────────────────────────

    def _start_watcher(self) -> None:
        from muse.memory.watcher import MemoryWatcher

        if self._watcher is not None:
            logger.warning("Watcher already exists, replacing it")
            self._watcher.stop_nowait()
        self._watcher = MemoryWatcher(self.config, self._session.file_system_events)
        self._watcher.start()

    async def _stop_watcher(self) -> None:
        watcher, self._watcher = self._watcher, None
        if watcher is not None:
            await watcher.stop()
