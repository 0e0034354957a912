"""CLI runtime context — bridges sync CLI to the async supervisor."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine

from rich.logging import RichHandler

from agentctl.config import AgentctlSettings, settings


def configure_logging(level: str | None = None) -> None:
    """Route agentctl's stdlib logging through rich."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def build_settings(**overrides: Any) -> AgentctlSettings:
    """Global settings with CLI flags layered on top. None means 'not given'."""
    changes = {k: v for k, v in overrides.items() if v is not None}
    if not changes:
        return settings
    return settings.model_copy(update=changes)


def run_async(coro: Coroutine) -> Any:
    """Run an async coroutine from sync CLI code."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        # Already inside an event loop; should not happen in the CLI
        import concurrent.futures
        with concurrent.futures.ThreadPoolExecutor() as pool:
            return pool.submit(asyncio.run, coro).result()
    else:
        return asyncio.run(coro)
