"""Memory tools for an AI coding assistant.

These coroutines are designed to be exposed as tools to the assistant
(e.g. registered on an MCP server) or called directly.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from muse.memory.category import is_valid_category_name

if TYPE_CHECKING:
    from muse.session import MemorySession


def get_memory_tools(session: MemorySession) -> dict[str, Callable[..., Awaitable[str]]]:
    """Return a dict of tool_name -> coroutine function for memory operations."""

    async def query(query: str) -> str:
        """Query memory. Run this before searching the codebase; include details about
        the current task, and ask about several things at once with bullet points.
        """
        if not query.strip():
            raise ValueError("query must be non-empty")
        return await session.query_memory(query)

    async def ingest(content: str) -> str:
        """Add what you learned (architecture, conventions, important files, user
        preferences, code examples) to memory so future queries can find it.
        """
        if not content.strip():
            raise ValueError("content must be non-empty")
        updated = await session.ingest_memory(content)
        if not updated:
            return "Nothing new to store in memory."
        return f"Ingested content into memory successfully ({', '.join(updated)})."

    async def list_categories() -> str:
        """List all memory categories. Prefer query unless you know which category you want."""
        names = session.list_categories()
        return "\n".join(names) if names else "(no memory categories yet)"

    async def get_category(category: str) -> str:
        """Get the contents of one memory category."""
        if not is_valid_category_name(category):
            raise ValueError(f"Invalid category name: {category!r}")
        content = session.get_category(category)
        if content is None:
            return (
                f'No memory found for category "{category}". '
                'You can use the "list" tool to see available categories.'
            )
        return content

    return {
        "query": query,
        "ingest": ingest,
        "list": list_categories,
        "get": get_category,
    }
