"""
Entity store — the single source of truth for local state.

One JSON table per collection, keyed by record id, plus a meta file for
settings and the last successful sync time. Backups live next to the data
with a small index so listing never loads full snapshots.

Storage layout:
    ~/.taskassist/
    ├── data/
    │   ├── tasks.json          # {id: record}
    │   ├── notes.json
    │   ├── ...                 # one file per collection
    │   └── meta.json           # {"settings": {...}, "lastSynced": ms}
    └── backups/
        ├── index.json          # creation-ordered BackupInfo list
        └── <backup_id>.json    # full BackupSnapshot

Writes are atomic (temp file + rename) and serialized through one
asyncio.Lock so read-modify-write updates never interleave. File I/O runs
on worker threads to keep the event loop free.

Usage:
    store = EntityStore(home, journal=journal)
    await store.add("tasks", Task(title="Write report"))
    await store.update("tasks", task_id, {"completed": True})
    snap = await store.snapshot()
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import OrderedDict
from pathlib import Path
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from pydantic import BaseModel

from . import APP_HOME
from .errors import ConflictError, NotFoundError
from .models import (
    COLLECTION_MODELS,
    COLLECTIONS,
    BackupSnapshot,
    Board,
    CollectionName,
    Record,
    Snapshot,
    Task,
    collection_name,
    now_ms,
    parse_record,
    resolve_status,
)
from .state import MutationEvent, MutationJournal, MutationOp

logger = logging.getLogger("taskassist.store")

BACKUP_LIMIT = 5
TASK_CACHE_CAPACITY = 100

K = TypeVar("K")
V = TypeVar("V")


class RecencyCache(Generic[K, V]):
    """Fixed-capacity LRU map. Evicts the least recently used entry on overflow.

    Args:
        capacity: Maximum number of entries.
    """

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._data: OrderedDict[K, V] = OrderedDict()

    def get(self, key: K) -> Optional[V]:
        if key not in self._data:
            return None
        self._data.move_to_end(key)
        return self._data[key]

    def put(self, key: K, value: V) -> None:
        if key in self._data:
            self._data.move_to_end(key)
        elif len(self._data) >= self.capacity:
            self._data.popitem(last=False)
        self._data[key] = value

    def invalidate(self, key: K) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


class BackupInfo(BaseModel):
    """Index entry for a backup (no snapshot payload)."""

    id: str
    timestamp: int
    label: str
    record_count: int = 0


def _write_json_atomic(path: Path, data: Any) -> None:
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
    tmp_path.replace(path)


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        logger.warning("Corrupt store file %s: %s", path, exc)
        return default


_R = TypeVar("_R", bound=Record)


class Collection(Generic[_R]):
    """One logical table of the store. Thin handle; all state lives on disk."""

    def __init__(self, store: "EntityStore", name: str) -> None:
        self._store = store
        self.name = name

    async def get_all(self) -> list[_R]:
        return await self._store.get_all(self.name)  # type: ignore[return-value]

    async def get(self, record_id: str) -> Optional[_R]:
        return await self._store.get(self.name, record_id)  # type: ignore[return-value]

    async def add(self, record: _R | dict[str, Any]) -> _R:
        return await self._store.add(self.name, record)  # type: ignore[return-value]

    async def update(self, record_id: str, partial: dict[str, Any]) -> _R:
        return await self._store.update(self.name, record_id, partial)  # type: ignore[return-value]

    async def delete(self, record_id: str) -> bool:
        return await self._store.delete(self.name, record_id)


class EntityStore:
    """Transactional local persistence keyed by entity id.

    Args:
        home: App home directory. Defaults to ``TASKASSIST_HOME``.
        journal: Receives a MutationEvent for every user mutation.
        backup_limit: How many backups the ring buffer keeps.
        cache_capacity: Size of the task recency cache; 0 disables it.
    """

    def __init__(
        self,
        home: Optional[Path] = None,
        journal: Optional[MutationJournal] = None,
        backup_limit: int = BACKUP_LIMIT,
        cache_capacity: int = TASK_CACHE_CAPACITY,
    ) -> None:
        self.home = (home or Path(APP_HOME)).expanduser()
        self.data_dir = self.home / "data"
        self.backup_dir = self.home / "backups"
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.backup_dir.mkdir(parents=True, exist_ok=True)

        self.journal = journal
        self.backup_limit = backup_limit
        self._task_cache: Optional[RecencyCache[str, Task]] = (
            RecencyCache(cache_capacity) if cache_capacity > 0 else None
        )
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Table I/O (blocking, always called via to_thread)
    # ------------------------------------------------------------------

    def _table_path(self, name: str) -> Path:
        return self.data_dir / f"{name}.json"

    def _read_table(self, name: str) -> dict[str, dict[str, Any]]:
        data = _read_json(self._table_path(name), {})
        return data if isinstance(data, dict) else {}

    def _write_table(self, name: str, table: dict[str, dict[str, Any]]) -> None:
        _write_json_atomic(self._table_path(name), table)

    def _read_meta(self) -> dict[str, Any]:
        data = _read_json(self.data_dir / "meta.json", {})
        return data if isinstance(data, dict) else {}

    def _write_meta(self, meta: dict[str, Any]) -> None:
        _write_json_atomic(self.data_dir / "meta.json", meta)

    def _read_snapshot(self) -> Snapshot:
        snap = Snapshot()
        for name in COLLECTIONS:
            table = self._read_table(name)
            snap = snap.with_records(name, [parse_record(name, r) for r in table.values()])
        meta = self._read_meta()
        return snap.model_copy(update={
            "settings": dict(meta.get("settings") or {}),
            "last_synced": meta.get("lastSynced"),
        })

    def _write_snapshot(self, snapshot: Snapshot) -> None:
        for name in COLLECTIONS:
            table = {r.id: r.to_wire() for r in snapshot.records(name)}
            self._write_table(name, table)
        self._write_meta({
            "settings": snapshot.settings,
            "lastSynced": snapshot.last_synced,
        })

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def collection(self, name: str | CollectionName) -> Collection:
        return Collection(self, collection_name(name))

    @property
    def tasks(self) -> Collection[Task]:
        return self.collection(CollectionName.TASKS)

    async def get_all(self, name: str | CollectionName) -> list[Record]:
        name = collection_name(name)
        table = await asyncio.to_thread(self._read_table, name)
        return [parse_record(name, r) for r in table.values()]

    async def get(self, name: str | CollectionName, record_id: str) -> Optional[Record]:
        name = collection_name(name)
        if name == CollectionName.TASKS.value and self._task_cache is not None:
            cached = self._task_cache.get(record_id)
            if cached is not None:
                return cached.model_copy()

        table = await asyncio.to_thread(self._read_table, name)
        raw = table.get(record_id)
        if raw is None:
            return None
        record = parse_record(name, raw)
        self._cache_put(name, record)
        return record

    async def add(self, name: str | CollectionName, record: Record | dict[str, Any]) -> Record:
        """Insert a new record, stamping ``updatedAt`` with the current time.

        Raises:
            ConflictError: A record with the same id already exists.
        """
        name = collection_name(name)
        rec = parse_record(name, record).touched()

        async with self._lock:
            table = await asyncio.to_thread(self._read_table, name)
            if rec.id in table:
                raise ConflictError(name, rec.id)
            rec = await self._validate(name, rec)
            table[rec.id] = rec.to_wire()
            await asyncio.to_thread(self._write_table, name, table)

        self._cache_put(name, rec)
        self._emit(name, MutationOp.ADD, rec.id)
        return rec

    async def update(
        self, name: str | CollectionName, record_id: str, partial: dict[str, Any]
    ) -> Record:
        """Read-modify-write a record, bumping ``updatedAt``.

        ``partial`` may use either wire (camelCase) or attribute names.
        The id itself cannot be changed.

        Raises:
            NotFoundError: No record with ``record_id`` exists.
        """
        name = collection_name(name)
        model = COLLECTION_MODELS[name]

        async with self._lock:
            table = await asyncio.to_thread(self._read_table, name)
            current = table.get(record_id)
            if current is None:
                raise NotFoundError(name, record_id)

            merged = dict(current)
            for key, value in partial.items():
                field = model.model_fields.get(key)
                merged[field.alias if field is not None and field.alias else key] = value
            merged["id"] = record_id

            rec = parse_record(name, merged).touched()
            rec = await self._validate(name, rec)
            table[record_id] = rec.to_wire()
            await asyncio.to_thread(self._write_table, name, table)

        self._cache_put(name, rec)
        self._emit(name, MutationOp.UPDATE, record_id)
        return rec

    async def delete(self, name: str | CollectionName, record_id: str) -> bool:
        """Remove a record. Returns False when it did not exist."""
        name = collection_name(name)
        async with self._lock:
            table = await asyncio.to_thread(self._read_table, name)
            if table.pop(record_id, None) is None:
                return False
            await asyncio.to_thread(self._write_table, name, table)

        if name == CollectionName.TASKS.value and self._task_cache is not None:
            self._task_cache.invalidate(record_id)
        self._emit(name, MutationOp.DELETE, record_id)
        return True

    async def _validate(self, name: str, rec: Record) -> Record:
        """Collection-specific write validation (board status for tasks)."""
        if not isinstance(rec, Task):
            return rec
        board: Optional[Board] = None
        if rec.board_id:
            boards = await asyncio.to_thread(self._read_table, CollectionName.BOARDS.value)
            raw = boards.get(rec.board_id)
            board = Board.model_validate(raw) if raw is not None else None
        status = resolve_status(rec, board)
        if status != rec.status:
            rec = rec.model_copy(update={"status": status})
        return rec

    # ------------------------------------------------------------------
    # Whole-snapshot operations
    # ------------------------------------------------------------------

    async def snapshot(self) -> Snapshot:
        """Read every collection plus settings into a fresh Snapshot."""
        return await asyncio.to_thread(self._read_snapshot)

    async def replace_all(self, snapshot: Snapshot, notify: bool = False) -> Snapshot:
        """Delete all local records and bulk-insert ``snapshot``'s.

        Incoming timestamps are kept. Settings and ``lastSynced`` are
        replaced as well.
        """
        async with self._lock:
            await asyncio.to_thread(self._write_snapshot, snapshot)
        self._clear_cache()
        logger.info("Local store replaced (%d records)", snapshot.record_count())
        if notify:
            self._emit("*", MutationOp.IMPORT)
        return snapshot

    async def replace_collections(self, snapshot: Snapshot, notify: bool = False) -> Snapshot:
        """Swap every collection for ``snapshot``'s, keeping local settings.

        Used by backup restore. Settings (the passphrase among them) and
        ``lastSynced`` stay as they are locally.
        """

        async def _swap(local: Snapshot, incoming: Snapshot) -> Snapshot:
            replaced = local
            for name in COLLECTIONS:
                replaced = replaced.with_records(name, incoming.records(name))
            return replaced

        result = await self.reconcile(snapshot, _swap, notify=notify)
        logger.info("Local collections replaced (%d records)", snapshot.record_count())
        return result

    async def reconcile(
        self,
        incoming: Snapshot,
        merge: Callable[[Snapshot, Snapshot], Awaitable[Snapshot]],
        notify: bool = False,
    ) -> Snapshot:
        """Merge ``incoming`` into local state under the store lock.

        The local side is read inside the lock so no mutation can land
        between reading and writing back the merge result.

        Args:
            incoming: The other side (remote download, imported file).
            merge: ``await merge(local, incoming) -> merged``.
            notify: Publish an import event to the journal.

        Returns:
            Snapshot: What was written.
        """
        async with self._lock:
            local = await asyncio.to_thread(self._read_snapshot)
            merged = await merge(local, incoming)
            await asyncio.to_thread(self._write_snapshot, merged)
        self._clear_cache()
        if notify:
            self._emit("*", MutationOp.IMPORT)
        return merged

    async def get_settings(self) -> dict[str, Any]:
        meta = await asyncio.to_thread(self._read_meta)
        return dict(meta.get("settings") or {})

    async def update_settings(self, partial: dict[str, Any], notify: bool = True) -> dict[str, Any]:
        """Shallow-merge ``partial`` into the settings record."""
        async with self._lock:
            meta = await asyncio.to_thread(self._read_meta)
            settings = dict(meta.get("settings") or {})
            settings.update(partial)
            meta["settings"] = settings
            await asyncio.to_thread(self._write_meta, meta)
        if notify:
            self._emit("settings", MutationOp.SETTINGS)
        return settings

    async def mark_synced(self, at: Optional[int] = None) -> int:
        """Record a confirmed successful sync."""
        ts = at if at is not None else now_ms()
        async with self._lock:
            meta = await asyncio.to_thread(self._read_meta)
            meta["lastSynced"] = ts
            await asyncio.to_thread(self._write_meta, meta)
        return ts

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    def _index_path(self) -> Path:
        return self.backup_dir / "index.json"

    def _load_index(self) -> list[BackupInfo]:
        raw = _read_json(self._index_path(), [])
        try:
            return [BackupInfo.model_validate(entry) for entry in raw]
        except (TypeError, ValueError) as exc:
            logger.warning("Backup index unreadable, starting fresh: %s", exc)
            return []

    def _save_backup(self, backup: BackupSnapshot) -> list[str]:
        path = self.backup_dir / f"{backup.id}.json"
        path.write_text(
            backup.model_dump_json(by_alias=True, exclude_none=True), encoding="utf-8"
        )

        index = self._load_index()
        index.append(BackupInfo(
            id=backup.id,
            timestamp=backup.timestamp,
            label=backup.label,
            record_count=backup.data.record_count(),
        ))

        evicted: list[str] = []
        while len(index) > self.backup_limit:
            oldest = index.pop(0)
            (self.backup_dir / f"{oldest.id}.json").unlink(missing_ok=True)
            evicted.append(oldest.id)

        _write_json_atomic(self._index_path(), [e.model_dump() for e in index])
        return evicted

    async def create_backup(self, snapshot: Snapshot, label: str = "Auto-Backup") -> BackupSnapshot:
        """Store an immutable labeled copy of ``snapshot``, evicting the oldest."""
        backup = BackupSnapshot(label=label, data=snapshot)
        async with self._lock:
            evicted = await asyncio.to_thread(self._save_backup, backup)
        logger.info("Backup %s created (%s)", backup.id, label)
        if evicted:
            logger.debug("Evicted backups: %s", ", ".join(evicted))
        return backup

    async def list_backups(self) -> list[BackupInfo]:
        """Backups newest first."""
        index = await asyncio.to_thread(self._load_index)
        return list(reversed(index))

    async def restore_backup(self, backup_id: str) -> Optional[BackupSnapshot]:
        """Load a backup by id. Returns None if it is gone or unreadable.

        Does not apply it; callers decide whether to ``replace_all``.
        """
        path = self.backup_dir / f"{backup_id}.json"

        def _load() -> Optional[BackupSnapshot]:
            if not path.exists():
                return None
            try:
                return BackupSnapshot.model_validate_json(path.read_text(encoding="utf-8"))
            except ValueError as exc:
                logger.warning("Backup %s unreadable: %s", backup_id, exc)
                return None

        return await asyncio.to_thread(_load)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _cache_put(self, name: str, record: Record) -> None:
        if (
            name == CollectionName.TASKS.value
            and self._task_cache is not None
            and isinstance(record, Task)
        ):
            self._task_cache.put(record.id, record.model_copy())

    def _clear_cache(self) -> None:
        if self._task_cache is not None:
            self._task_cache.clear()

    def _emit(self, collection: str, op: MutationOp, record_id: Optional[str] = None) -> None:
        if self.journal is not None:
            self.journal.record(
                MutationEvent(collection=collection, op=op, record_id=record_id)
            )
