"""Prompt bodies for every model call the memory system makes."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from muse.memory.category import USER_CATEGORY_NAME

if TYPE_CHECKING:
    from muse.config import MuseConfig

logger = logging.getLogger(__name__)

CONTEXT_REFRESH_INTERVAL = 60.0  # seconds

SYSTEM_PROMPT = f"""\
You are an expert archivist whose job is to store and retrieve information about a codebase \
and the user from a vast archive of knowledge. You assist users in finding the information they \
need, answering questions, and providing insights based on the data available to you.
Information is separated into categories and stored as markdown. Categories may be separated by \
feature, programming language, or other factors, and can be nested, e.g. languages/cpp, \
feature/networking or feature/networking/HTTP. Each category has its own file, and the content \
of these files is updated as new information is added.
There is a main "summary" file which lists every category with a short description. The special \
"{USER_CATEGORY_NAME}" category contains information about the user, such as their preferences, \
interests, and other relevant details.
"""

DESCRIPTION_EXPLANATION = (
    "The description should be concise and informative, summarizing the purpose and contents of "
    "the category. It is included in the main summary file so that you can decide when to (and "
    "when not to) use this category for retrieval and storage. It can mention other categories, "
    "but must not contain information that is not already in the category content. It may also "
    "say when it is important, or inappropriate, to use this category."
)


def _describe_summary(summary: str) -> str:
    return summary if summary.strip() else "No categories exist yet."


class PromptManager:
    """Builds prompts; folds in the optional user context file."""

    def __init__(self, config: MuseConfig) -> None:
        self.config = config
        self._context = ""
        self._context_read_at: float | None = None

    def _read_context(self) -> str:
        path = self.config.context_file
        if not path:
            return ""
        now = time.monotonic()
        if self._context_read_at is None or now - self._context_read_at >= CONTEXT_REFRESH_INTERVAL:
            self._context_read_at = now
            try:
                self._context = path.read_text(encoding="utf-8")
            except OSError as e:
                logger.warning("Could not read context file %s: %s", path, e)
        return self._context

    def system_prompt(self) -> str:
        context = self._read_context().strip()
        if not context:
            return SYSTEM_PROMPT
        return (
            f"{SYSTEM_PROMPT}\n"
            "The user has provided the following common context to help you answer questions "
            f"and find information:\n<CONTEXT>\n{context}\n</CONTEXT>\n"
        )

    def category_description(self, category_name: str, content: str) -> str:
        return f"""\
Your current task is to produce a description for a category based on the content provided.
{DESCRIPTION_EXPLANATION}

Return a <DESCRIPTION> tag containing the description, e.g. <DESCRIPTION>description in here</DESCRIPTION>.

<CONTENT categoryName="{category_name}">
{content}
</CONTENT>
"""

    def categories_for_query(self, summary: str, information: str, is_ingestion: bool) -> str:
        if is_ingestion:
            wanted = "You will provide 1 or more"
            purpose = "which topics in <INFORMATION/> should be added to this category"
            creation = (
                "You can create new categories if necessary, but group with existing categories "
                "where it makes sense. New category names must match ^([\\w-]+/)*[\\w-]+$ since "
                "they are used as file paths."
            )
            extra = (
                "When categories cover similar topics, <WHAT_TO_INCLUDE/> should also say what NOT "
                "to include so that information is not duplicated. It may mention related "
                "categories worth linking from this one.\n"
                "Your goal is to store everything in <INFORMATION/> without much duplication.\n"
            )
        else:
            wanted = (
                "It is possible that no categories match the information. If any do, provide them as"
            )
            purpose = "which topics in <INFORMATION/> are expected to be relevant to the query"
            creation = "You may only specify categories that already exist."
            extra = ""

        return f"""\
Your current task is to identify the categories that this information belongs to for lookup and storage.

Here is the information:
<INFORMATION>
{information}
</INFORMATION>

Here is a summary of the existing categories and what they're for:
<SUMMARY>
{_describe_summary(summary)}
</SUMMARY>

{wanted} <CATEGORY> tags, each containing a <CATEGORY_NAME></CATEGORY_NAME> tag and a \
<WHAT_TO_INCLUDE></WHAT_TO_INCLUDE> tag explaining {purpose}.
The original <INFORMATION/> is sent along with <WHAT_TO_INCLUDE/>, so do not paste it; explain why \
it is relevant, as specifically as possible (functions, classes, features, languages).
{extra}
{creation}
"""

    def information_from_category(
        self, query: str, category_name: str, content: str, reason: str
    ) -> str:
        return f"""\
Your current task is to answer a question or find information based on the archive.

<QUERY>
{query}
</QUERY>

<ARCHIVE_CATEGORY_NAME>
{category_name}
</ARCHIVE_CATEGORY_NAME>

<ARCHIVE_CONTENT>
{content}
</ARCHIVE_CONTENT>

<WHAT_TO_INCLUDE>
{reason}
</WHAT_TO_INCLUDE>

Use <WHAT_TO_INCLUDE/> to decide which parts of <ARCHIVE_CONTENT/> are relevant. ONLY include \
information that is relevant to the query.
Return an <ANSWER> tag containing the answer, e.g. <ANSWER>answer in here</ANSWER>. A partial \
answer is fine; other categories are consulted too.
Do not infer anything. If this category answers nothing, return a <SKIP> tag instead, e.g. \
<SKIP>information not found</SKIP>.

If this archive explicitly mentions other categories that would help answer the question, you may \
also return any number of <CATEGORY_REFERENCE> tags, outside the <ANSWER> tag, each with the name in \
<CATEGORY_NAME> and the reason in <WHAT_TO_INCLUDE>, e.g.
<CATEGORY_REFERENCE><CATEGORY_NAME>name</CATEGORY_NAME><WHAT_TO_INCLUDE>why</WHAT_TO_INCLUDE></CATEGORY_REFERENCE>
Category references may be returned together with a <SKIP> tag.
"""

    def summarize_categories(self, query: str, responses: dict[str, str]) -> str:
        entries = "\n".join(
            f'<ARCHIVE_ENTRY categoryName="{name}">\n{answer}\n</ARCHIVE_ENTRY>'
            for name, answer in responses.items()
        )
        return f"""\
Your current task is to answer a question based on partial answers already retrieved from the \
most relevant categories of the archive.

<QUERY>
{query}
</QUERY>

<ARCHIVE_ENTRIES>
{entries}
</ARCHIVE_ENTRIES>

Return an <ANSWER> tag containing the final answer, e.g. <ANSWER>final answer in here</ANSWER>. \
A partial answer is fine. Don't make anything up.
"""

    def update_category(
        self, category_name: str, previous_content: str, information: str, reason: str
    ) -> str:
        if previous_content:
            previous = (
                "Here is the previous version of this category's content:\n"
                f"<PREVIOUS_CATEGORY_CONTENT>\n{previous_content}\n</PREVIOUS_CATEGORY_CONTENT>"
            )
        else:
            previous = "This is a new category with no existing content. You are creating it from scratch."

        return f"""\
Your current task is to update a single category with new information. Decide which information \
(if any) is relevant to this category. Merge relevant information with the existing content, or \
replace it entirely as you choose.

This category is called "{category_name}".

<INFORMATION>
{information}
</INFORMATION>

Only include the parts of the information that match this guideline:
<WHAT_TO_INCLUDE>
{reason}
</WHAT_TO_INCLUDE>

{previous}

If none of the information is relevant, return a <SKIP> tag, e.g. <SKIP>not relevant</SKIP>.
Otherwise return a <CATEGORY_CONTENT> tag with the complete new content, and a <DIFF_SUMMARY> tag \
summarizing the changes.
Avoid removing existing information unless <WHAT_TO_INCLUDE/> says to. Do not change the meaning of \
the category. The content is markdown; a short description at the top helps, and you may refer to \
other category names.
"""
