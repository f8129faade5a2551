"""Keep the user's personal category out of version control."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from muse.config import USER_FILE_NAME

if TYPE_CHECKING:
    from muse.config import MuseConfig

logger = logging.getLogger(__name__)

REQUIRED_GITIGNORE_LINES = [f"{USER_FILE_NAME}.md"]


def ensure_gitignore(config: MuseConfig) -> None:
    """Create or extend memory_dir/.gitignore with the required lines. Idempotent."""
    path = config.memory_dir / ".gitignore"
    if not path.exists():
        path.write_text("\n".join(REQUIRED_GITIGNORE_LINES) + "\n", encoding="utf-8")
        logger.info("Created %s", path)
        return

    existing = {line.strip() for line in path.read_text(encoding="utf-8").splitlines()}
    missing = [line for line in REQUIRED_GITIGNORE_LINES if line not in existing]
    if not missing:
        return

    with path.open("a", encoding="utf-8") as f:
        f.write("\n" + "\n".join(missing) + "\n")
    logger.info("Added %s to %s", ", ".join(missing), path)
