"""summary.md rendering and per-category description generation."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING

from muse.tags import DESCRIPTION_TAG, MalformedResponseError

if TYPE_CHECKING:
    from muse.memory.versioning import VersionEntry
    from muse.session import MemorySession

DESCRIPTION_MAX_TOKENS = 2_000


def serialize_summary(versions: Mapping[str, VersionEntry]) -> str:
    """One ``### name`` heading plus description per category, sorted by name."""
    blocks = [f"### {name}\n\n{versions[name].description}" for name in sorted(versions)]
    return "\n\n".join(blocks)


async def retrieve_category_description(
    session: MemorySession, category_name: str, content: str
) -> str:
    prompt = session.prompts.category_description(category_name, content)
    response = await session.sample(prompt, max_tokens=DESCRIPTION_MAX_TOKENS)

    description = DESCRIPTION_TAG.match_one(response)
    if not description:
        raise MalformedResponseError(f"Unable to generate description for {category_name!r}")
    return description
