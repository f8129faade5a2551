"""Recursive query fan-out across categories.

Each category is queried in its own task. Answers may reference further
categories; those are queried too, until a pass turns up nothing new.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from muse.sampling import QueryCategory
    from muse.session import MemorySession

logger = logging.getLogger(__name__)


@dataclass
class QueryCategoryResult:
    """What one category contributed: an answer (None when skipped) and references."""

    answer: str | None
    references: list[QueryCategory] = field(default_factory=list)


class CategoryQueryManager:
    """Walks the category reference graph to a fixpoint.

    A name is registered before its task is scheduled, so the join cannot
    see ``completed == registered`` while work is still outstanding. The
    first failing task fails the join; tasks already running finish in the
    background and their results are dropped.
    """

    def __init__(self, session: MemorySession, query: str) -> None:
        self._session = session
        self._query = query
        self._results: dict[str, str] = {}
        self._registered: set[str] = set()
        self._completed = 0
        self._failed = False
        self._done: asyncio.Future[None] | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def registered(self) -> frozenset[str]:
        return frozenset(self._registered)

    def add_category(self, category: QueryCategory) -> None:
        if self._failed or category.category_name in self._registered:
            return

        self._registered.add(category.category_name)

        if self._done is None or self._done.done():
            self._done = asyncio.get_running_loop().create_future()

        task = asyncio.create_task(self._query_category(category))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def get_results(self) -> dict[str, str]:
        if self._done is not None:
            await self._done
        return dict(self._results)

    async def _query_category(self, category: QueryCategory) -> None:
        try:
            result = await self._session.query_category(category, self._query)
            if self._failed:
                return

            for reference in result.references:
                self.add_category(reference)

            if result.answer:
                self._results[category.category_name] = result.answer

            self._completed += 1
            if self._completed == len(self._registered):
                self._resolve()
        except Exception as e:
            logger.error("Error querying category %s: %s", category.category_name, e)
            self._reject(e)

    def _resolve(self) -> None:
        if self._done is not None and not self._done.done():
            self._done.set_result(None)

    def _reject(self, error: Exception) -> None:
        if self._failed:
            return
        self._failed = True
        if self._done is not None and not self._done.done():
            self._done.set_exception(error)
