"""
Application state container and mutation journal.

Both are explicit, injectable pub/sub objects. There is no module-level
singleton: the CLI (or a UI shell, or a test) builds one container and one
journal and hands them to the entity store and the sync engine.

    state = AppStateContainer()
    unsubscribe = state.subscribe(lambda s: print(s.sync_status))
    state.set_state(sync_status=SyncStatus.UPLOADING, is_syncing=True)

The journal records every entity mutation so the sync engine can schedule
uploads from explicit call sites instead of diffing broad UI state.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, Field

from .models import now_ms

logger = logging.getLogger("taskassist.state")


class SyncStatus(str, Enum):
    """Sync engine states. ``ERROR`` is not terminal: the next run resets it."""

    IDLE = "idle"
    UPLOADING = "uploading"
    DOWNLOADING = "downloading"
    ERROR = "error"


class AppState(BaseModel):
    """What the UI layer renders about sync."""

    sync_status: SyncStatus = SyncStatus.IDLE
    is_syncing: bool = False
    status_message: Optional[str] = None
    last_synced: Optional[int] = None
    last_error: Optional[str] = None


Listener = Callable[[AppState], Any]

# Strong references to listener tasks until they finish
_pending: set[asyncio.Task] = set()


def _dispatch(listeners: list[Callable[[Any], Any]], payload: Any) -> None:
    """Call every listener; log (never raise) listener failures."""
    for listener in list(listeners):
        try:
            result = listener(payload)
        except Exception as exc:
            logger.warning("Listener %r failed: %s", listener, exc)
            continue
        if inspect.isawaitable(result):
            _schedule(result)


def _schedule(awaitable: Awaitable[Any]) -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.debug("No running loop, dropping async listener result")
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        return
    task = loop.create_task(awaitable)
    _pending.add(task)
    task.add_done_callback(_reap)


def _reap(task: asyncio.Task) -> None:
    _pending.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Async listener failed: %s", exc)


class AppStateContainer:
    """Holds the current ``AppState`` and notifies subscribers on change."""

    def __init__(self, initial: Optional[AppState] = None) -> None:
        self._state = initial or AppState()
        self._listeners: list[Listener] = []

    def get_state(self) -> AppState:
        return self._state

    def set_state(self, **changes: Any) -> AppState:
        """Shallow-merge ``changes`` into the state and publish the result."""
        self._state = self._state.model_copy(update=changes)
        _dispatch(self._listeners, self._state)
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe


class MutationOp(str, Enum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"
    SETTINGS = "settings"
    IMPORT = "import"


class MutationEvent(BaseModel):
    """One local entity mutation, as published by the entity store."""

    collection: str
    op: MutationOp
    record_id: Optional[str] = None
    at: int = Field(default_factory=now_ms)


class MutationJournal:
    """Bounded in-memory log of local mutations with subscribers.

    Args:
        maxlen: How many recent events to keep for inspection.
    """

    def __init__(self, maxlen: int = 200) -> None:
        self._events: deque[MutationEvent] = deque(maxlen=maxlen)
        self._listeners: list[Callable[[MutationEvent], Any]] = []

    def record(self, event: MutationEvent) -> None:
        self._events.append(event)
        _dispatch(self._listeners, event)

    def recent(self, limit: int = 20) -> list[MutationEvent]:
        """Most recent events, newest last."""
        return list(self._events)[-limit:]

    def subscribe(self, listener: Callable[[MutationEvent], Any]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe
