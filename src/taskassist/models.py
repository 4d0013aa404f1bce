"""
TaskAssist data models — records, snapshots, backups.

Every entity the app stores is a ``Record``: an opaque string id plus an
``updatedAt`` timestamp in milliseconds. ``updatedAt`` is the only signal
the merge engine looks at, so every user-facing mutation must bump it.

Wire format is the camelCase JSON the app has always written
(``updatedAt``, ``globalEvents``, ``lastSynced``). Unknown keys are kept
on every model so that fields written by newer clients survive a round
trip through an older one.
"""

from __future__ import annotations

import logging
import time
import uuid
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger("taskassist.models")


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def new_id() -> str:
    """Generate a client-side record id (never reused)."""
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class Record(BaseModel):
    """Base entity: id + last-modified timestamp, everything else opaque."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(default_factory=new_id)
    updated_at: int = Field(default=0, alias="updatedAt")

    def touched(self, at: Optional[int] = None) -> "Record":
        """Return a copy with ``updatedAt`` bumped to ``at`` (default: now)."""
        return self.model_copy(update={"updated_at": at if at is not None else now_ms()})

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON shape used on disk and remotely."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Task(Record):
    title: str = ""
    description: Optional[str] = None
    status: str = ""
    tags: list[str] = Field(default_factory=list)
    completed: bool = False
    order: float = 0
    created_at: int = Field(default_factory=now_ms, alias="createdAt")
    board_id: Optional[str] = Field(default=None, alias="boardId")
    deadline: Optional[int] = None


class Note(Record):
    title: str = ""
    content: str = ""
    type: str = "text"
    tags: list[str] = Field(default_factory=list)
    created_at: int = Field(default_factory=now_ms, alias="createdAt")


class Goal(Record):
    title: str = ""
    target_value: float = Field(default=0, alias="targetValue")
    current_value: float = Field(default=0, alias="currentValue")
    unit: str = "tasks"
    period: str = "weekly"


class AutomationRule(Record):
    name: str = ""
    is_active: bool = Field(default=True, alias="isActive")
    trigger: dict[str, Any] = Field(default_factory=dict)
    action: dict[str, Any] = Field(default_factory=dict)


class ProjectTemplate(Record):
    name: str = ""
    description: str = ""
    tasks: list[dict[str, Any]] = Field(default_factory=list)
    columns: Optional[list[str]] = None


class MemoryEntry(Record):
    """Assistant memory item; the id doubles as the lookup key."""

    key: str = ""
    value: Any = None

    @classmethod
    def for_key(cls, key: str, value: Any) -> "MemoryEntry":
        return cls(id=key, key=key, value=value, updated_at=now_ms())


class BoardColumn(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    title: str = ""
    order: float = 0


class Board(Record):
    title: str = ""
    columns: list[BoardColumn] = Field(default_factory=list)


class GlobalEvent(Record):
    title: str = ""
    date: int = 0
    type: str = "other"
    is_recurring_yearly: bool = Field(default=False, alias="isRecurringYearly")


class CollectionName(str, Enum):
    """Logical tables of the entity store (and fields of a Snapshot)."""

    TASKS = "tasks"
    NOTES = "notes"
    GOALS = "goals"
    AUTOMATIONS = "automations"
    TEMPLATES = "templates"
    MEMORY = "memory"
    BOARDS = "boards"
    GLOBAL_EVENTS = "globalEvents"


COLLECTION_MODELS: dict[str, type[Record]] = {
    CollectionName.TASKS.value: Task,
    CollectionName.NOTES.value: Note,
    CollectionName.GOALS.value: Goal,
    CollectionName.AUTOMATIONS.value: AutomationRule,
    CollectionName.TEMPLATES.value: ProjectTemplate,
    CollectionName.MEMORY.value: MemoryEntry,
    CollectionName.BOARDS.value: Board,
    CollectionName.GLOBAL_EVENTS.value: GlobalEvent,
}

COLLECTIONS: tuple[str, ...] = tuple(COLLECTION_MODELS)

# Snapshot attribute backing each collection name
_FIELD_FOR = {name: name for name in COLLECTIONS}
_FIELD_FOR[CollectionName.GLOBAL_EVENTS.value] = "global_events"


def collection_name(name: str | CollectionName) -> str:
    """Validate and normalize a collection name.

    Raises:
        ValueError: If ``name`` is not one of the known collections.
    """
    value = name.value if isinstance(name, CollectionName) else name
    if value not in COLLECTION_MODELS:
        raise ValueError(f"Unknown collection: {name}")
    return value


def parse_record(collection: str, data: dict[str, Any] | Record) -> Record:
    """Validate raw data as the record model of ``collection``."""
    model = COLLECTION_MODELS[collection_name(collection)]
    if isinstance(data, model):
        return data
    if isinstance(data, Record):
        data = data.to_wire()
    return model.model_validate(data)


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


class Snapshot(BaseModel):
    """Full exported application state — the unit of synchronization."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    tasks: list[Task] = Field(default_factory=list)
    notes: list[Note] = Field(default_factory=list)
    goals: list[Goal] = Field(default_factory=list)
    automations: list[AutomationRule] = Field(default_factory=list)
    templates: list[ProjectTemplate] = Field(default_factory=list)
    memory: list[MemoryEntry] = Field(default_factory=list)
    boards: list[Board] = Field(default_factory=list)
    global_events: list[GlobalEvent] = Field(default_factory=list, alias="globalEvents")
    settings: dict[str, Any] = Field(default_factory=dict)
    last_synced: Optional[int] = Field(default=None, alias="lastSynced")

    def records(self, collection: str | CollectionName) -> list[Record]:
        """Records of one collection."""
        return list(getattr(self, _FIELD_FOR[collection_name(collection)]))

    def with_records(
        self, collection: str | CollectionName, records: list[Record]
    ) -> "Snapshot":
        """Copy of this snapshot with one collection replaced."""
        name = collection_name(collection)
        parsed = [parse_record(name, r) for r in records]
        return self.model_copy(update={_FIELD_FOR[name]: parsed})

    def record_count(self) -> int:
        return sum(len(self.records(name)) for name in COLLECTIONS)

    def is_empty(self) -> bool:
        return self.record_count() == 0 and not self.settings

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json(self, indent: Optional[int] = None) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=indent)


class BackupSnapshot(BaseModel):
    """An immutable, labeled local copy of a full Snapshot."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id)
    timestamp: int = Field(default_factory=now_ms)
    label: str = "Auto-Backup"
    data: Snapshot = Field(default_factory=Snapshot)


# ---------------------------------------------------------------------------
# Board columns
# ---------------------------------------------------------------------------

DEFAULT_COLUMNS: list[BoardColumn] = [
    BoardColumn(id="backlog", title="Backlog", order=0),
    BoardColumn(id="in-progress", title="In Progress", order=1),
    BoardColumn(id="review", title="Review", order=2),
    BoardColumn(id="done", title="Done", order=3),
]


def resolve_status(task: Task, board: Optional[Board]) -> str:
    """Resolve a task's status against its board's declared columns.

    Status is an opaque column id. When it does not name a column of the
    owning board (or of the default board when the task has none), the
    task falls back to the board's first column by ``order``.

    Args:
        task: The task being written.
        board: The owning board, or None to use the default columns.

    Returns:
        str: A column id that exists on the board.
    """
    columns = sorted(
        board.columns if board is not None and board.columns else DEFAULT_COLUMNS,
        key=lambda c: c.order,
    )
    ids = {c.id for c in columns}
    if task.status in ids:
        return task.status
    if not task.status and task.completed and "done" in ids:
        return "done"
    fallback = columns[0].id
    if task.status:
        logger.warning(
            "Task %s references unknown column %r, moving to %r",
            task.id, task.status, fallback,
        )
    return fallback
