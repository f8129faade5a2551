"""Choosing categories for a piece of information or a query."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from muse.memory.category import category_file_path, is_valid_category_name
from muse.tags import CATEGORY_NAME_TAG, CATEGORY_TAG, REASON_TAG, MalformedResponseError, TagPattern

if TYPE_CHECKING:
    from muse.config import MuseConfig
    from muse.session import MemorySession

CLASSIFY_MAX_TOKENS = 5_000


@dataclass(frozen=True)
class QueryCategory:
    """A category picked by the model, with what to look for in it."""

    category_name: str
    reason: str


def parse_query_categories(
    config: MuseConfig,
    tag: TagPattern,
    response: str,
    existing_only: bool = False,
) -> list[QueryCategory]:
    """Parse every ``tag`` block into a QueryCategory.

    Raises MalformedResponseError on a block without a name or reason, on a
    name that is not a valid category path, and (with ``existing_only``) on
    a category whose file does not exist.
    """
    categories: list[QueryCategory] = []
    for block in tag.match_all(response):
        name = CATEGORY_NAME_TAG.match_one(block)
        reason = REASON_TAG.match_one(block)
        if not name or not reason:
            raise MalformedResponseError(f"AI generated an invalid category block: {block}")

        if not is_valid_category_name(name):
            raise MalformedResponseError(f"AI proposed an invalid category name {name!r}")

        if existing_only and not category_file_path(config, name).exists():
            raise MalformedResponseError(f"AI asked for a category {name!r} which is missing")

        categories.append(QueryCategory(name, reason))
    return categories


async def get_categories_for_query(
    session: MemorySession,
    summary: str,
    query: str,
    *,
    is_ingestion: bool,
    existing_only: bool = False,
) -> list[QueryCategory]:
    prompt = session.prompts.categories_for_query(summary, query, is_ingestion)
    response = await session.sample(prompt, max_tokens=CLASSIFY_MAX_TOKENS)
    return parse_query_categories(session.config, CATEGORY_TAG, response, existing_only)
