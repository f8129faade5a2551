"""Entry point: python -m muse [serve|query|ingest|list|get]

- No args / "serve": Daemon mode, keeps summary.md and versions.json in sync
- "query TEXT":      Ask memory a question
- "ingest TEXT":     Store information in memory ("-" reads stdin)
- "list":            List categories
- "get NAME":        Print one category
"""

from __future__ import annotations

import asyncio
import logging
import sys

from muse.config import MuseConfig, load_config


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _run_serve() -> None:
    config = load_config()
    _setup_logging(config.log_level)

    from muse.daemon import MuseDaemon

    daemon = MuseDaemon(config)
    asyncio.run(daemon.run())


async def _call_tool(config: MuseConfig, name: str, args: list[str]) -> str:
    from muse.daemon import MuseDaemon
    from muse.tools.memory_tools import get_memory_tools

    session = MuseDaemon(config).build_session()
    await session.start(watch=False)
    try:
        return await get_memory_tools(session)[name](*args)
    finally:
        await session.close()


def _run_tool(name: str, args: list[str]) -> None:
    config = load_config()
    _setup_logging(config.log_level)

    if args == ["-"]:
        args = [sys.stdin.read()]
    print(asyncio.run(_call_tool(config, name, args)))


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "serve"
    args = sys.argv[2:]

    if cmd == "serve":
        _run_serve()
    elif cmd in ("query", "ingest", "get") and len(args) == 1:
        _run_tool(cmd, args)
    elif cmd == "list" and not args:
        _run_tool(cmd, args)
    else:
        print("Usage: python -m muse [serve|query TEXT|ingest TEXT|list|get NAME]")
        print("  serve: Daemon mode: watch the memory directory (default)")
        print("  query: Ask memory a question")
        print("  ingest: Store information in memory ('-' reads stdin)")
        print("  list: List memory categories")
        print("  get: Print one category")
        sys.exit(1)


if __name__ == "__main__":
    main()
