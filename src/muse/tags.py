"""Extraction of <TAG>...</TAG> fields from model output."""

from __future__ import annotations

import re


class MalformedResponseError(ValueError):
    """Model output is missing a required tag or names an unusable category."""


class TagPattern:
    """Matches one XML-ish tag. Tags may repeat; content is returned stripped."""

    def __init__(self, tag_name: str) -> None:
        self.tag_name = tag_name
        self._regex = re.compile(
            rf"<{re.escape(tag_name)}>(?P<content>.*?)</{re.escape(tag_name)}>", re.DOTALL
        )

    def is_match(self, value: str) -> bool:
        return self._regex.search(value) is not None

    def match_one(self, value: str) -> str | None:
        match = self._regex.search(value)
        if match is None:
            return None
        return match.group("content").strip()

    def match_all(self, value: str) -> list[str]:
        """All non-empty tag contents, in order of appearance."""
        contents = (m.group("content").strip() for m in self._regex.finditer(value))
        return [c for c in contents if c]

    def require_one(self, value: str) -> str:
        content = self.match_one(value)
        if not content:
            raise MalformedResponseError(f"Response is missing a <{self.tag_name}> tag")
        return content

    def __repr__(self) -> str:
        return f"TagPattern({self.tag_name!r})"


ANSWER_TAG = TagPattern("ANSWER")
SKIP_TAG = TagPattern("SKIP")
DESCRIPTION_TAG = TagPattern("DESCRIPTION")
CATEGORY_TAG = TagPattern("CATEGORY")
CATEGORY_NAME_TAG = TagPattern("CATEGORY_NAME")
CATEGORY_CONTENT_TAG = TagPattern("CATEGORY_CONTENT")
CATEGORY_REFERENCE_TAG = TagPattern("CATEGORY_REFERENCE")
REASON_TAG = TagPattern("WHAT_TO_INCLUDE")
DIFF_SUMMARY_TAG = TagPattern("DIFF_SUMMARY")

# A line that git leaves behind in an unresolved merge.
MERGE_CONFLICT_MARKER = re.compile(r"^(?:<{7}|={7}|>{7})(?:\s|$)", re.MULTILINE)
