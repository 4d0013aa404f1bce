"""
Import and export of local state.

JSON export is the full snapshot (same shape as the sync blob, never
encrypted). CSV export covers tasks only, for spreadsheets.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from datetime import date, datetime, timezone
from typing import Iterable, Optional

from pydantic import ValidationError

from .errors import UnrecognizedFormatError
from .models import COLLECTIONS, Snapshot, Task
from .store import EntityStore
from .sync.merge import merge_async

logger = logging.getLogger("taskassist.export")

CSV_HEADERS = ["ID", "Title", "Status", "DueDate", "Description", "Tags"]


def _iso(ms: Optional[int]) -> str:
    if not ms:
        return ""
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def export_filename(kind: str, today: Optional[date] = None) -> str:
    """Default file name for an export, e.g. ``tasks_export_2024-05-01.csv``."""
    day = (today or date.today()).isoformat()
    if kind == "csv":
        return f"tasks_export_{day}.csv"
    return f"task_assist_backup_{day}.json"


def export_json(snapshot: Snapshot) -> str:
    return snapshot.to_json(indent=2)


def export_tasks_csv(tasks: Iterable[Task]) -> str:
    """Render tasks as CSV with a header row.

    Tags are joined with commas inside one quoted cell.
    """
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for task in tasks:
        writer.writerow([
            task.id,
            task.title,
            task.status,
            _iso(task.deadline),
            task.description or "",
            ",".join(task.tags),
        ])
    return buf.getvalue()


def load_snapshot(text: str) -> Snapshot:
    """Parse an exported JSON file.

    Raises:
        UnrecognizedFormatError: Not JSON, or not shaped like a snapshot.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise UnrecognizedFormatError(f"Import file is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise UnrecognizedFormatError("Import file is not a JSON object")
    try:
        return Snapshot.model_validate(data)
    except ValidationError as exc:
        raise UnrecognizedFormatError(
            f"Import file is not a snapshot: {exc.error_count()} error(s)"
        ) from exc


async def _merge_keeping_sync_time(local: Snapshot, incoming: Snapshot) -> Snapshot:
    merged = await merge_async(local, incoming)
    return merged.model_copy(update={"last_synced": local.last_synced})


async def _replace_collections(local: Snapshot, incoming: Snapshot) -> Snapshot:
    replaced = local
    for name in COLLECTIONS:
        replaced = replaced.with_records(name, incoming.records(name))
    return replaced.model_copy(update={"settings": {**local.settings, **incoming.settings}})


async def import_snapshot(
    store: EntityStore, snapshot: Snapshot, merge: bool = True
) -> Snapshot:
    """Bring an exported snapshot into the store.

    Merge mode reconciles it with local state (last-updated-wins).
    Replace mode swaps every collection for the imported one; local
    settings survive, overridden key by key by imported ones.

    Either way the journal sees one import event, so a signed-in session
    uploads the result.
    """
    if merge:
        result = await store.reconcile(snapshot, _merge_keeping_sync_time, notify=True)
        logger.info("Imported %d records (merge)", snapshot.record_count())
        return result

    result = await store.reconcile(snapshot, _replace_collections, notify=True)
    logger.info("Imported %d records (replace)", snapshot.record_count())
    return result
