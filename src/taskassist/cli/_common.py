"""Shared utilities for all CLI command modules.

Provides the Rich console instance, the async session helper, and
formatting helpers used across every command group.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Coroutine, Optional, TypeVar

from rich.console import Console

from .. import APP_HOME
from ..auth import SessionAuth
from ..state import SyncStatus
from ..sync import SyncEngine, build_engine

console = Console()
logger = logging.getLogger("taskassist.cli")

T = TypeVar("T")


def run(coro: Coroutine[Any, Any, T]) -> T:
    """Run one command's coroutine to completion."""
    return asyncio.run(coro)


def fail(message: str) -> None:
    """Print an error and exit non-zero."""
    console.print(f"[bold red]{message}[/]")
    raise SystemExit(1)


@contextlib.asynccontextmanager
async def session(home: str, flush: bool = True) -> AsyncIterator[SyncEngine]:
    """Open store + engine for ``home``.

    With ``flush`` any upload scheduled by the command runs before exit
    instead of waiting out the debounce.
    """
    home_path = Path(home).expanduser()
    engine = build_engine(home_path, auth=SessionAuth(home_path))
    try:
        yield engine
        if flush:
            await engine.flush()
            state = engine.state.get_state()
            if state.sync_status == SyncStatus.ERROR:
                console.print(f"  [yellow]{state.status_message}[/]")
    finally:
        await engine.close()


def require_session(home: str) -> tuple[str, Any]:
    """Token and provider for ``home``, or exit with a hint."""
    auth = SessionAuth(Path(home).expanduser())
    token, provider = auth.get_token(), auth.get_provider()
    if not token or provider is None:
        fail("Not signed in. Run: taskassist auth set <token> --provider github")
    return token, provider


def fmt_ms(ms: Optional[int]) -> str:
    """Format epoch milliseconds for display."""
    if not ms:
        return "[dim]never[/]"
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def parse_date(value: Optional[str]) -> Optional[int]:
    """``YYYY-MM-DD`` (or full ISO) to epoch milliseconds."""
    if not value:
        return None
    try:
        return int(datetime.fromisoformat(value).timestamp() * 1000)
    except ValueError:
        fail(f"Invalid date: {value} (expected YYYY-MM-DD)")
    return None


__all__ = [
    "APP_HOME",
    "console",
    "fail",
    "fmt_ms",
    "logger",
    "parse_date",
    "require_session",
    "run",
    "session",
]
