"""Configuration loading from environment variables and muse.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_MEMORY_DIR = Path.home() / ".muse" / "memory"
_CONFIG_FILENAME = "muse.toml"

SUMMARY_FILE_NAME = "summary.md"
VERSIONS_FILE_NAME = "versions.json"
USER_FILE_NAME = "user.local"


@dataclass
class SamplingConfig:
    """Language model backend and its rate limits."""

    backend: str = "anthropic_api"
    model: str = "claude-sonnet-4-5-20250929"
    max_concurrent: int = 3
    min_interval: float = 0.2
    timeout: int = 120


@dataclass
class VersioningConfig:
    """Version cache and file watching."""

    settling_time: float = 0.25
    lock_warn_seconds: float = 1.0
    watch: bool = True


@dataclass
class MuseConfig:
    """Top-level Muse configuration."""

    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    versioning: VersioningConfig = field(default_factory=VersioningConfig)
    memory_dir: Path = _DEFAULT_MEMORY_DIR
    context_file: Path | None = None
    pid_file: Path = Path.home() / ".muse" / "muse.pid"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.memory_dir = Path(self.memory_dir).expanduser().resolve()

    @property
    def summary_file(self) -> Path:
        return self.memory_dir / SUMMARY_FILE_NAME

    @property
    def versions_file(self) -> Path:
        return self.memory_dir / VERSIONS_FILE_NAME

    @property
    def user_file(self) -> Path:
        return self.memory_dir / f"{USER_FILE_NAME}.md"


def _resolve_context_file(memory_dir: Path, value: str | None) -> Path | None:
    if not value:
        return None
    path = (memory_dir / Path(value).expanduser()).resolve()
    if not path.exists():
        raise FileNotFoundError(f"Context file does not exist: {path}")
    return path


def load_config(config_path: Path | None = None) -> MuseConfig:
    """Load configuration from environment variables and optional muse.toml.

    Priority: environment variables > muse.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        for candidate in [Path.cwd() / _CONFIG_FILENAME, Path.home() / ".muse" / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    sampling_data = file_data.get("sampling", {})
    versioning_data = file_data.get("versioning", {})

    memory_dir = Path(
        os.getenv("MUSE_MEMORY_DIR", file_data.get("memory_dir", str(_DEFAULT_MEMORY_DIR)))
    ).expanduser().resolve()

    config = MuseConfig(
        sampling=SamplingConfig(
            backend=os.getenv("MUSE_BACKEND", sampling_data.get("backend", "anthropic_api")),
            model=os.getenv("MUSE_MODEL", sampling_data.get("model", SamplingConfig.model)),
            max_concurrent=int(
                os.getenv("MUSE_MAX_CONCURRENT", sampling_data.get("max_concurrent", 3))
            ),
            min_interval=float(
                os.getenv("MUSE_MIN_INTERVAL", sampling_data.get("min_interval", 0.2))
            ),
            timeout=int(os.getenv("MUSE_TIMEOUT", sampling_data.get("timeout", 120))),
        ),
        versioning=VersioningConfig(
            settling_time=float(versioning_data.get("settling_time", 0.25)),
            lock_warn_seconds=float(versioning_data.get("lock_warn_seconds", 1.0)),
            watch=bool(versioning_data.get("watch", True)),
        ),
        memory_dir=memory_dir,
        context_file=_resolve_context_file(
            memory_dir, os.getenv("MUSE_CONTEXT_FILE", file_data.get("context_file"))
        ),
        log_level=os.getenv("MUSE_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    if "pid_file" in file_data:
        config.pid_file = Path(file_data["pid_file"]).expanduser()
    return config
