"""Memory session: the object every memory component hangs off.

Responsibilities:
1. Own config, event channels, prompts, engine and the version cache
2. Query: classify → fan out across categories → merge answers
3. Ingest: classify → update each category in parallel → AI-authored writes
4. Permission denial: close the session so background work stops
"""

from __future__ import annotations

import asyncio
import logging

from muse.config import MuseConfig
from muse.engines.base import Engine, PermissionDeniedError
from muse.events import CategoryDirtyEvent, FileSystemEvents, MemoryEvents
from muse.memory.category import category_file_path, iter_category_files, read_text
from muse.memory.gitignore import ensure_gitignore
from muse.memory.lock import KeyedLock
from muse.memory.query import CategoryQueryManager, QueryCategoryResult
from muse.memory.summary import serialize_summary
from muse.memory.versioning import SessionClosedError, VersionManager
from muse.prompts import PromptManager
from muse.sampling import QueryCategory, get_categories_for_query, parse_query_categories
from muse.tags import (
    ANSWER_TAG,
    CATEGORY_CONTENT_TAG,
    CATEGORY_REFERENCE_TAG,
    DIFF_SUMMARY_TAG,
    SKIP_TAG,
    MalformedResponseError,
)

logger = logging.getLogger(__name__)

NO_MEMORY_RESPONSE = (
    "No relevant memory found for the query. Go search the codebase and once you're done, "
    "ingest your findings into memory for next time."
)

QUERY_MAX_TOKENS = 5_000
UPDATE_MAX_TOKENS = 50_000
SUMMARIZE_MAX_TOKENS = 50_000


class MemorySession:
    """One memory directory, one engine, one version cache."""

    def __init__(self, config: MuseConfig, engine: Engine) -> None:
        self.config = config
        self.engine = engine
        self.file_system_events = FileSystemEvents()
        self.memory_events = MemoryEvents()
        self.prompts = PromptManager(config)
        self.versions = VersionManager(self)
        self._category_locks = KeyedLock()
        self._closed = False

        self.memory_events.permission_denied.subscribe(self._on_permission_denied)

    @classmethod
    def create(cls, config: MuseConfig, engine: Engine) -> MemorySession:
        """Prepare the memory directory and build a session for it."""
        config.memory_dir.mkdir(parents=True, exist_ok=True)
        ensure_gitignore(config)
        return cls(config, engine)

    @property
    def is_closed(self) -> bool:
        return self._closed

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self, watch: bool | None = None) -> None:
        if watch is None:
            watch = self.config.versioning.watch
        await self.versions.initialize(watch=watch)

    async def close(self) -> None:
        await self.versions.close()

    def _on_permission_denied(self, _: None) -> None:
        if self._closed:
            return
        logger.warning("Stopping memory due to permission denied event")
        self._closed = True

    # ── Sampling ──────────────────────────────────────────────

    async def sample(self, prompt: str, *, max_tokens: int) -> str:
        try:
            response = await self.engine.send(
                prompt,
                max_tokens=max_tokens,
                system_prompt=self.prompts.system_prompt(),
            )
        except PermissionDeniedError:
            await self.memory_events.permission_denied.emit(None)
            raise
        return response.text

    # ── Reading ───────────────────────────────────────────────

    async def get_summary(self, existing_only: bool = False) -> str:
        """summary.md text for the current map.

        With ``existing_only``, categories without a file (the placeholder
        user entry) are left out, so an empty store yields an empty summary.
        """
        versions = await self.versions.read_versions()
        if existing_only:
            versions = {
                name: entry
                for name, entry in versions.items()
                if category_file_path(self.config, name).exists()
            }
        return serialize_summary(versions)

    def read_category_file(self, category_name: str) -> str:
        return read_text(category_file_path(self.config, category_name))

    def list_categories(self) -> list[str]:
        return sorted(name for name, _ in iter_category_files(self.config))

    def get_category(self, category_name: str) -> str | None:
        path = category_file_path(self.config, category_name)
        if not path.exists():
            return None
        return read_text(path)

    # ── Query ─────────────────────────────────────────────────

    async def query_category(self, category: QueryCategory, query: str) -> QueryCategoryResult:
        content = self.read_category_file(category.category_name)
        prompt = self.prompts.information_from_category(
            query, category.category_name, content, category.reason
        )
        response = await self.sample(prompt, max_tokens=QUERY_MAX_TOKENS)

        if SKIP_TAG.is_match(response):
            answer = None
        else:
            answer = ANSWER_TAG.require_one(response)

        references = parse_query_categories(
            self.config, CATEGORY_REFERENCE_TAG, response, existing_only=True
        )
        return QueryCategoryResult(answer, references)

    async def _query_multiple_categories(
        self, categories: list[QueryCategory], query: str
    ) -> dict[str, str]:
        manager = CategoryQueryManager(self, query)
        for category in categories:
            manager.add_category(category)
        results = await manager.get_results()
        logger.info(
            "Queried %d categories, %d answered: %s",
            len(manager.registered),
            len(results),
            ", ".join(sorted(manager.registered)),
        )
        return results

    async def _summarize_query_response(self, query: str, responses: dict[str, str]) -> str:
        prompt = self.prompts.summarize_categories(query, responses)
        response = await self.sample(prompt, max_tokens=SUMMARIZE_MAX_TOKENS)
        return ANSWER_TAG.require_one(response)

    async def query_memory(self, query: str) -> str:
        summary = await self.get_summary(existing_only=True)
        if not summary.strip():
            return NO_MEMORY_RESPONSE

        categories = await get_categories_for_query(
            self, summary, query, is_ingestion=False, existing_only=True
        )
        if not categories:
            return NO_MEMORY_RESPONSE

        responses = await self._query_multiple_categories(categories, query)
        if not responses:
            return NO_MEMORY_RESPONSE
        if len(responses) == 1:
            return next(iter(responses.values()))
        return await self._summarize_query_response(query, responses)

    # ── Ingestion ─────────────────────────────────────────────

    async def _ingest_category_update(self, category: QueryCategory, information: str) -> bool:
        name = category.category_name

        async def update() -> bool:
            path = category_file_path(self.config, name)
            previous = read_text(path) if path.exists() else ""
            prompt = self.prompts.update_category(name, previous, information, category.reason)
            response = await self.sample(prompt, max_tokens=UPDATE_MAX_TOKENS)

            if SKIP_TAG.is_match(response):
                logger.info("AI has skipped updating category %s", name)
                return False

            content = CATEGORY_CONTENT_TAG.match_one(response)
            if not content:
                raise MalformedResponseError(
                    f"AI was missing CATEGORY_CONTENT when updating category {name}"
                )

            diff_summary = DIFF_SUMMARY_TAG.match_one(response)
            if diff_summary:
                logger.info("Updating category %s: %s", name, diff_summary)

            await self.memory_events.category_dirty.emit(CategoryDirtyEvent(name, content))
            return True

        return await self._category_locks.acquire(name, update)

    async def ingest_memory(self, information: str) -> list[str]:
        """Store information in memory. Returns the categories that were written.

        Each category is updated independently; if any fail, the first error
        is raised after the others have finished.
        """
        if self._closed:
            raise SessionClosedError("Session is closed, not ingesting")
        if not len(self.memory_events.category_dirty):
            raise RuntimeError("Memory session is not started, call start() first")

        summary = await self.get_summary()
        categories = await get_categories_for_query(self, summary, information, is_ingestion=True)
        if not categories:
            logger.error("No categories found for ingestion, skipping.")
            return []

        logger.info(
            "Ingesting information into %d categories: %s",
            len(categories),
            ", ".join(c.category_name for c in categories),
        )
        results = await asyncio.gather(
            *(self._ingest_category_update(c, information) for c in categories),
            return_exceptions=True,
        )

        updated: list[str] = []
        errors: list[BaseException] = []
        for category, result in zip(categories, results):
            if isinstance(result, BaseException):
                logger.error("Failed to ingest into %s: %s", category.category_name, result)
                errors.append(result)
            elif result:
                updated.append(category.category_name)

        if errors:
            raise errors[0]
        return updated
