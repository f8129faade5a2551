"""Serve mode: one memory session kept alive and in sync with disk.

Usage: python -m muse serve

The daemon owns:
- a PID file, so two daemons never reconcile the same machine's memory
- the engine, built from [sampling] unless one is injected
- the session (initial load, watcher, debounced reconciliation)
- SIGTERM/SIGINT, which close the session before exiting
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys

from muse.config import MuseConfig, load_config
from muse.engines.base import Engine
from muse.session import MemorySession

logger = logging.getLogger(__name__)


def build_engine(config: MuseConfig, name: str | None = None) -> Engine:
    name = name or config.sampling.backend
    if name == "anthropic_api":
        from muse.engines.anthropic_api import AnthropicAPIEngine

        return AnthropicAPIEngine(
            model=config.sampling.model,
            timeout=config.sampling.timeout,
            max_concurrent=config.sampling.max_concurrent,
            min_interval=config.sampling.min_interval,
        )
    raise ValueError(f"Unknown engine: {name}")


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else.
        return True
    return True


class MuseDaemon:
    """Long-running memory process."""

    def __init__(self, config: MuseConfig | None = None, engine: Engine | None = None) -> None:
        self.config = config or load_config()
        self._engine = engine
        self._stop = asyncio.Event()

    # ── PID file ──────────────────────────────────────────────

    def _check_existing(self) -> None:
        path = self.config.pid_file
        if not path.exists():
            return
        try:
            pid = int(path.read_text().strip())
        except ValueError:
            pid = None
        if pid is not None and pid > 0 and _pid_alive(pid):
            print(f"Muse daemon already running (pid={pid}). Exiting.", file=sys.stderr)
            sys.exit(1)
        logger.info("Removing stale PID file %s", path)
        path.unlink(missing_ok=True)

    def _claim_pid_file(self) -> None:
        self._check_existing()
        path = self.config.pid_file
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(str(os.getpid()))
        logger.info("Claimed %s (pid=%d)", path, os.getpid())

    def _release_pid_file(self) -> None:
        self.config.pid_file.unlink(missing_ok=True)

    # ── Shutdown ──────────────────────────────────────────────

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._on_signal, sig)

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info("Got %s, closing memory session", sig.name)
        self._stop.set()

    def request_shutdown(self) -> None:
        self._stop.set()

    # ── Run ───────────────────────────────────────────────────

    def build_session(self) -> MemorySession:
        engine = self._engine or build_engine(self.config)
        return MemorySession.create(self.config, engine)

    async def run(self) -> None:
        self._claim_pid_file()
        self._install_signal_handlers()

        session = self.build_session()
        logger.info(
            "Muse daemon starting (memory=%s, engine=%s)",
            self.config.memory_dir,
            session.engine.name,
        )
        try:
            await session.start()
            await self._stop.wait()
        finally:
            await session.close()
            self._release_pid_file()
            logger.info("Muse daemon stopped")
