"""
Merge engine -- last-updated-wins reconciliation of two snapshots.

Per collection, independently:
    1. seed an id -> record map with every local record
    2. remote-only ids are inserted
    3. shared ids take the remote record only if its ``updatedAt`` is
       strictly greater; ties keep local (the device in front of the user)

Settings are merged shallowly with remote keys winning. That is the
opposite bias from records, on purpose: a second device may push
preference changes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Optional

from ..models import COLLECTIONS, Record, Snapshot, now_ms

logger = logging.getLogger("taskassist.sync.merge")

DEFAULT_OFFLOAD_THRESHOLD = 5000


def merge_records(local: Iterable[Record], remote: Iterable[Record]) -> list[Record]:
    """Merge two record lists of one collection by id and ``updatedAt``.

    Duplicate ids within one side resolve to the last one seen.
    Output order is not meaningful.
    """
    merged: dict[str, Record] = {r.id: r for r in local}
    for remote_rec in remote:
        local_rec = merged.get(remote_rec.id)
        if local_rec is None or remote_rec.updated_at > local_rec.updated_at:
            merged[remote_rec.id] = remote_rec
    return list(merged.values())


def merge_settings(local: dict[str, Any], remote: dict[str, Any]) -> dict[str, Any]:
    """Shallow merge: remote keys override, local-only keys survive."""
    return {**local, **remote}


def merge(local: Snapshot, remote: Snapshot, at: Optional[int] = None) -> Snapshot:
    """Reconcile ``local`` with ``remote``.

    Args:
        local: Snapshot read from the entity store.
        remote: Snapshot downloaded from the backend.
        at: Merge time stamped into ``lastSynced`` (default: now).

    Returns:
        Snapshot: The merged state.
    """
    result = local
    for name in COLLECTIONS:
        result = result.with_records(
            name, merge_records(local.records(name), remote.records(name))
        )
    return result.model_copy(update={
        "settings": merge_settings(local.settings, remote.settings),
        "last_synced": at if at is not None else now_ms(),
    })


async def merge_async(
    local: Snapshot,
    remote: Snapshot,
    offload_threshold: int = DEFAULT_OFFLOAD_THRESHOLD,
) -> Snapshot:
    """``merge`` that moves to a worker thread for large snapshots.

    Same result either way; only latency differs.
    """
    size = local.record_count() + remote.record_count()
    if size > offload_threshold:
        logger.debug("Merging %d records on a worker thread", size)
        return await asyncio.to_thread(merge, local, remote)
    return merge(local, remote)
