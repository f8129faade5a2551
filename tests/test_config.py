"""Tests for configuration loading."""

import pytest
from pathlib import Path

from muse.config import MuseConfig, load_config

_ENV_KEYS = [
    "MUSE_MEMORY_DIR",
    "MUSE_CONTEXT_FILE",
    "MUSE_LOG_LEVEL",
    "MUSE_MODEL",
    "MUSE_BACKEND",
    "MUSE_MAX_CONCURRENT",
    "MUSE_MIN_INTERVAL",
    "MUSE_TIMEOUT",
]


@pytest.fixture(autouse=True)
def clean_env(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class TestConfig:
    def test_defaults(self):
        config = load_config()
        assert config.sampling.backend == "anthropic_api"
        assert config.sampling.max_concurrent == 3
        assert config.versioning.settling_time == 0.25
        assert config.versioning.watch is True
        assert config.memory_dir.name == "memory"
        assert config.context_file is None
        assert config.log_level == "INFO"

    def test_derived_paths(self, tmp_path: Path):
        config = MuseConfig(memory_dir=tmp_path / "mem")
        assert config.summary_file == tmp_path / "mem" / "summary.md"
        assert config.versions_file == tmp_path / "mem" / "versions.json"
        assert config.user_file == tmp_path / "mem" / "user.local.md"

    def test_env_override(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("MUSE_MEMORY_DIR", str(tmp_path / "elsewhere"))
        monkeypatch.setenv("MUSE_TIMEOUT", "60")
        monkeypatch.setenv("MUSE_MAX_CONCURRENT", "1")
        monkeypatch.setenv("MUSE_LOG_LEVEL", "DEBUG")

        config = load_config()
        assert config.memory_dir == (tmp_path / "elsewhere").resolve()
        assert config.sampling.timeout == 60
        assert config.sampling.max_concurrent == 1
        assert config.log_level == "DEBUG"

    def test_toml_file(self, tmp_path: Path):
        toml_path = tmp_path / "muse.toml"
        toml_path.write_text(f"""
memory_dir = "{tmp_path / 'from-toml'}"

[sampling]
model = "claude-haiku-4-5"
min_interval = 0.5

[versioning]
settling_time = 1.5
watch = false
""")
        config = load_config(toml_path)
        assert config.memory_dir.name == "from-toml"
        assert config.sampling.model == "claude-haiku-4-5"
        assert config.sampling.min_interval == 0.5
        assert config.versioning.settling_time == 1.5
        assert config.versioning.watch is False

    def test_toml_in_cwd_is_found(self, tmp_path: Path):
        (tmp_path / "muse.toml").write_text('log_level = "WARNING"\n')
        assert load_config().log_level == "WARNING"

    def test_env_overrides_toml(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("MUSE_MODEL", "from-env")

        toml_path = tmp_path / "muse.toml"
        toml_path.write_text("""
[sampling]
model = "from-toml"
""")
        config = load_config(toml_path)
        assert config.sampling.model == "from-env"  # env wins

    def test_context_file_relative_to_memory_dir(self, tmp_path: Path, monkeypatch):
        memory_dir = tmp_path / "mem"
        memory_dir.mkdir()
        (memory_dir / "context.md").write_text("ctx")
        monkeypatch.setenv("MUSE_MEMORY_DIR", str(memory_dir))
        monkeypatch.setenv("MUSE_CONTEXT_FILE", "context.md")

        config = load_config()
        assert config.context_file == (memory_dir / "context.md").resolve()

    def test_missing_context_file(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("MUSE_MEMORY_DIR", str(tmp_path))
        monkeypatch.setenv("MUSE_CONTEXT_FILE", "nope.md")

        with pytest.raises(FileNotFoundError):
            load_config()
