"""Category names, their markdown files, and walking the memory directory."""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from muse.config import USER_FILE_NAME

if TYPE_CHECKING:
    from muse.config import MuseConfig

USER_CATEGORY_NAME = "user"
SUMMARY_CATEGORY_NAME = "summary"

# One or more "/"-separated segments of word characters and hyphens.
CATEGORY_NAME_PATTERN = re.compile(r"^(?:[\w-]+/)*[\w-]+$", re.ASCII)
_SEGMENT_PATTERN = re.compile(r"^[\w-]+$", re.ASCII)

_EXTENSION = ".md"


class InvalidCategoryNameError(ValueError):
    """A category name or path that must not be mapped onto the memory directory."""


def is_valid_category_name(name: str) -> bool:
    if name == USER_CATEGORY_NAME:
        return True
    if name == SUMMARY_CATEGORY_NAME:
        return False
    return bool(CATEGORY_NAME_PATTERN.match(name))


def _category_parts(name: str) -> list[str]:
    if name == USER_CATEGORY_NAME:
        return [USER_FILE_NAME]
    return name.split("/")


def category_file_path(config: MuseConfig, name: str) -> Path:
    """Map a category name to its markdown file under the memory directory."""
    if not is_valid_category_name(name):
        raise InvalidCategoryNameError(f"Invalid category name: {name!r}")

    *dirs, stem = _category_parts(name)
    root = config.memory_dir
    path = root.joinpath(*dirs, stem + _EXTENSION)
    if not path.resolve().is_relative_to(root):
        raise InvalidCategoryNameError(f"Category {name!r} resolves outside {root}")
    return path


def category_name_from_path(config: MuseConfig, path: str | Path) -> str:
    """Inverse of category_file_path. Raises for anything that is not a category file."""
    root = config.memory_dir
    resolved = Path(path).resolve()
    try:
        relative = resolved.relative_to(root)
    except ValueError:
        raise InvalidCategoryNameError(f"File path is outside of memory directory: {path}")

    if relative.suffix != _EXTENSION:
        raise InvalidCategoryNameError(f"Invalid file extension: {relative.suffix!r}")

    parts = relative.with_suffix("").parts
    if parts == (USER_FILE_NAME,):
        return USER_CATEGORY_NAME

    name = "/".join(parts)
    if name == USER_CATEGORY_NAME or not is_valid_category_name(name):
        raise InvalidCategoryNameError(f"Not a category file: {path}")
    return name


def category_prefix_from_path(config: MuseConfig, path: str | Path) -> str:
    """Category name prefix for a directory under the memory root ("" for the root)."""
    root = config.memory_dir
    try:
        relative = Path(path).resolve().relative_to(root)
    except ValueError:
        raise InvalidCategoryNameError(f"Directory is outside of memory directory: {path}")

    if not all(_SEGMENT_PATTERN.match(part) for part in relative.parts):
        raise InvalidCategoryNameError(f"Not a category directory: {path}")
    return "/".join(relative.parts)


def is_category_missing(config: MuseConfig, name: str) -> bool:
    """The user category is never missing, whether or not its file exists."""
    return name != USER_CATEGORY_NAME and not category_file_path(config, name).exists()


def read_text(path: Path) -> str:
    """Read a file as UTF-8 without newline translation, so hashes are stable."""
    with path.open(encoding="utf-8", newline="") as f:
        return f.read()


def write_text(path: Path, content: str) -> None:
    path.write_text(content, encoding="utf-8", newline="")


def iter_category_files(
    config: MuseConfig, directory: Path | None = None
) -> Iterator[tuple[str, Path]]:
    """Yield (category name, path) for every category file, depth first.

    Walks the whole memory directory, or only ``directory`` when given.
    Hidden entries, the summary file, and names outside the category
    pattern are skipped.
    """
    root = directory or config.memory_dir
    if not root.is_dir():
        return

    stack: list[Path] = [root]
    while stack:
        directory = stack.pop()
        try:
            entries = sorted(directory.iterdir(), reverse=True)
        except OSError:
            continue
        for entry in entries:
            if entry.name.startswith("."):
                continue
            if entry.is_dir():
                stack.append(entry)
                continue
            if not entry.is_file() or entry.suffix != _EXTENSION:
                continue
            if entry == config.summary_file:
                continue
            try:
                yield category_name_from_path(config, entry), entry
            except InvalidCategoryNameError:
                continue


# ── Category tree (for logs) ─────────────────────────────────


@dataclass
class CategoryTree:
    categories: set[str] = field(default_factory=set)
    children: dict[str, CategoryTree] = field(default_factory=dict)


def build_category_tree(names: Iterable[str]) -> CategoryTree:
    root = CategoryTree()
    for name in names:
        *dirs, leaf = name.split("/")
        node = root
        for part in dirs:
            node = node.children.setdefault(part, CategoryTree())
        node.categories.add(leaf)
    return root


def _tree_lines(node: CategoryTree) -> list[str]:
    files = sorted(
        f"{USER_FILE_NAME}{_EXTENSION}" if c == USER_CATEGORY_NAME else f"{c}{_EXTENSION}"
        for c in node.categories
    )
    lines = [f"- {', '.join(files)}"]
    for name in sorted(node.children):
        lines.append(f"- {name}")
        lines.extend(f"  |{line}" for line in _tree_lines(node.children[name]))
    return lines


def serialize_category_tree(tree: CategoryTree) -> str:
    return "\n".join(_tree_lines(tree))
