"""Tests for last-updated-wins snapshot merging."""

from __future__ import annotations

import pytest

from taskassist.models import Board, GlobalEvent, Note, Snapshot, Task
from taskassist.sync.merge import merge, merge_async, merge_records, merge_settings


def _task(task_id: str, title: str, updated_at: int) -> Task:
    return Task(id=task_id, title=title, updated_at=updated_at)


def _by_id(records) -> dict:
    return {r.id: r for r in records}


class TestMergeRecords:
    def test_disjoint_union(self):
        merged = merge_records([_task("a", "A", 1)], [_task("b", "B", 1)])
        assert set(_by_id(merged)) == {"a", "b"}

    def test_newer_remote_wins(self):
        merged = _by_id(merge_records([_task("x", "local", 100)], [_task("x", "remote", 200)]))
        assert merged["x"].title == "remote"

    def test_newer_local_wins(self):
        merged = _by_id(merge_records([_task("x", "local", 300)], [_task("x", "remote", 200)]))
        assert merged["x"].title == "local"

    def test_tie_keeps_local(self):
        merged = _by_id(merge_records([_task("x", "local", 100)], [_task("x", "remote", 100)]))
        assert merged["x"].title == "local"

    def test_local_only_survives(self):
        """Absence on the remote side never deletes."""
        merged = merge_records([_task("x", "local", 1)], [])
        assert [r.id for r in merged] == ["x"]


class TestMergeSnapshots:
    def test_mixed_scenario(self):
        local = Snapshot(tasks=[
            _task("1", "local-1", 100),
            _task("2", "local-2", 300),
        ])
        remote = Snapshot(tasks=[
            _task("1", "remote-1", 200),
            _task("2", "remote-2", 200),
            _task("3", "remote-3", 50),
        ])

        result = _by_id(merge(local, remote).tasks)

        assert result["1"].title == "remote-1"
        assert result["2"].title == "local-2"
        assert result["3"].title == "remote-3"
        assert len(result) == 3

    def test_idempotent(self):
        snap = Snapshot(
            tasks=[_task("1", "t", 5)],
            notes=[Note(id="n", content="c", updated_at=7)],
            settings={"theme": "dark"},
        )
        merged = merge(snap, snap, at=1)
        assert merged.to_wire() == snap.model_copy(update={"last_synced": 1}).to_wire()

    def test_collections_are_independent(self):
        local = Snapshot(notes=[Note(id="same", content="note", updated_at=1)])
        remote = Snapshot(tasks=[Task(id="same", title="task", updated_at=2)])
        merged = merge(local, remote)
        assert [n.id for n in merged.notes] == ["same"]
        assert [t.id for t in merged.tasks] == ["same"]

    def test_boards_and_events_merge(self):
        local = Snapshot(boards=[Board(id="b", title="Old", updated_at=1)])
        remote = Snapshot(
            boards=[Board(id="b", title="New", updated_at=2)],
            global_events=[GlobalEvent(id="e", title="Holiday", updated_at=1)],
        )
        merged = merge(local, remote)
        assert merged.boards[0].title == "New"
        assert merged.global_events[0].title == "Holiday"

    def test_settings_remote_keys_win(self):
        local = Snapshot(settings={"theme": "dark", "lang": "en"})
        remote = Snapshot(settings={"theme": "light"})
        merged = merge(local, remote)
        assert merged.settings == {"theme": "light", "lang": "en"}

    def test_stamps_last_synced(self):
        merged = merge(Snapshot(), Snapshot(), at=12345)
        assert merged.last_synced == 12345

    def test_merge_settings_does_not_mutate(self):
        local = {"a": 1}
        merge_settings(local, {"a": 2})
        assert local == {"a": 1}


class TestMergeAsync:
    @pytest.mark.asyncio
    async def test_offloaded_merge_matches_inline(self):
        local = Snapshot(tasks=[_task(str(i), f"l{i}", i) for i in range(20)])
        remote = Snapshot(tasks=[_task(str(i), f"r{i}", 10) for i in range(20)])

        inline = await merge_async(local, remote, offload_threshold=10_000)
        offloaded = await merge_async(local, remote, offload_threshold=1)

        key = lambda s: sorted((t.id, t.title) for t in s.tasks)  # noqa: E731
        assert key(inline) == key(offloaded)
        titles = dict(key(inline))
        assert titles["5"] == "r5"    # remote 10 > local 5
        assert titles["15"] == "l15"  # local 15 > remote 10
        assert titles["10"] == "l10"  # tie keeps local


class TestMergeEmptySides:
    def test_empty_remote_keeps_local(self):
        local = Snapshot(
            tasks=[_task("a", "A", 5), _task("b", "B", 7)],
            notes=[Note(id="n", updated_at=3)],
        )
        merged = merge(local, Snapshot())
        assert _by_id(merged.tasks) == _by_id(local.tasks)
        assert _by_id(merged.notes) == _by_id(local.notes)

    def test_empty_local_takes_remote(self):
        remote = Snapshot(
            tasks=[_task("r", "remote", 9)],
            boards=[Board(id="b1", updated_at=2)],
        )
        merged = merge(Snapshot(), remote)
        assert _by_id(merged.tasks) == _by_id(remote.tasks)
        assert _by_id(merged.boards) == _by_id(remote.boards)
