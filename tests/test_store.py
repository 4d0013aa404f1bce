"""Tests for the entity store -- records, settings, backups, journal."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from taskassist.errors import ConflictError, NotFoundError
from taskassist.models import Board, BoardColumn, Note, Snapshot, Task
from taskassist.state import MutationOp
from taskassist.store import EntityStore, RecencyCache


class TestRecords:
    @pytest.mark.asyncio
    async def test_add_and_get(self, store: EntityStore):
        created = await store.tasks.add(Task(title="Write report"))
        fetched = await store.tasks.get(created.id)
        assert fetched is not None
        assert fetched.title == "Write report"
        assert fetched.updated_at > 0

    @pytest.mark.asyncio
    async def test_add_accepts_dict(self, store: EntityStore):
        created = await store.add("notes", {"id": "n1", "title": "Idea", "content": "x"})
        assert isinstance(created, Note)
        assert (await store.get("notes", "n1")).content == "x"

    @pytest.mark.asyncio
    async def test_add_duplicate_id_conflicts(self, store: EntityStore):
        await store.tasks.add(Task(id="t1", title="first"))
        with pytest.raises(ConflictError):
            await store.tasks.add(Task(id="t1", title="second"))
        assert (await store.tasks.get("t1")).title == "first"

    @pytest.mark.asyncio
    async def test_update_bumps_updated_at(self, store: EntityStore):
        created = await store.tasks.add(Task(title="t", updated_at=1))
        updated = await store.tasks.update(created.id, {"title": "changed"})
        assert updated.title == "changed"
        assert updated.updated_at >= created.updated_at
        assert updated.id == created.id

    @pytest.mark.asyncio
    async def test_update_accepts_wire_names(self, store: EntityStore):
        created = await store.tasks.add(Task(title="t"))
        await store.tasks.update(created.id, {"boardId": None, "deadline": 1000})
        assert (await store.tasks.get(created.id)).deadline == 1000

    @pytest.mark.asyncio
    async def test_update_cannot_change_id(self, store: EntityStore):
        created = await store.tasks.add(Task(title="t"))
        updated = await store.tasks.update(created.id, {"id": "other"})
        assert updated.id == created.id

    @pytest.mark.asyncio
    async def test_update_missing_raises_and_leaves_store(self, store: EntityStore):
        await store.tasks.add(Task(id="keep", title="t"))
        before = (await store.snapshot()).to_wire()
        with pytest.raises(NotFoundError):
            await store.tasks.update("ghost", {"title": "x"})
        assert (await store.snapshot()).to_wire() == before

    @pytest.mark.asyncio
    async def test_delete(self, store: EntityStore):
        created = await store.tasks.add(Task(title="t"))
        assert await store.tasks.delete(created.id) is True
        assert await store.tasks.get(created.id) is None
        assert await store.tasks.delete(created.id) is False

    @pytest.mark.asyncio
    async def test_unknown_collection(self, store: EntityStore):
        with pytest.raises(ValueError):
            await store.get_all("calendar")

    @pytest.mark.asyncio
    async def test_unknown_fields_survive(self, store: EntityStore):
        await store.add("tasks", {"id": "t", "title": "t", "timeLogs": [{"start": 1, "end": 2}]})
        raw = json.loads((store.data_dir / "tasks.json").read_text())
        assert raw["t"]["timeLogs"] == [{"start": 1, "end": 2}]


class TestBoardStatus:
    @pytest.mark.asyncio
    async def test_unknown_status_falls_back_to_first_column(self, store: EntityStore):
        await store.add("boards", Board(id="b", columns=[
            BoardColumn(id="doing", order=1),
            BoardColumn(id="todo", order=0),
        ]))
        created = await store.tasks.add(Task(title="t", board_id="b", status="archived"))
        assert created.status == "todo"

    @pytest.mark.asyncio
    async def test_valid_status_kept(self, store: EntityStore):
        await store.add("boards", Board(id="b", columns=[BoardColumn(id="doing")]))
        created = await store.tasks.add(Task(title="t", board_id="b", status="doing"))
        assert created.status == "doing"

    @pytest.mark.asyncio
    async def test_default_columns_without_board(self, store: EntityStore):
        created = await store.tasks.add(Task(title="t"))
        assert created.status == "backlog"
        done = await store.tasks.update(created.id, {"status": "done"})
        assert done.status == "done"


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_replace_all_keeps_timestamps(self, store: EntityStore):
        await store.tasks.add(Task(id="old", title="gone"))
        incoming = Snapshot(
            tasks=[Task(id="new", title="from remote", updated_at=42, status="backlog")],
            settings={"theme": "light"},
            last_synced=99,
        )
        await store.replace_all(incoming)

        snap = await store.snapshot()
        assert [t.id for t in snap.tasks] == ["new"]
        assert snap.tasks[0].updated_at == 42
        assert snap.settings == {"theme": "light"}
        assert snap.last_synced == 99

    @pytest.mark.asyncio
    async def test_replace_all_is_silent(self, store: EntityStore, journal):
        await store.replace_all(Snapshot(tasks=[Task(id="x")]))
        assert journal.recent() == []

    @pytest.mark.asyncio
    async def test_reconcile_merges_under_lock(self, store: EntityStore):
        await store.tasks.add(Task(id="local", title="l"))

        async def _union(local: Snapshot, incoming: Snapshot) -> Snapshot:
            return local.with_records("tasks", local.tasks + incoming.tasks)

        merged = await store.reconcile(Snapshot(tasks=[Task(id="remote")]), _union)
        assert {t.id for t in merged.tasks} == {"local", "remote"}
        assert {t.id for t in await store.tasks.get_all()} == {"local", "remote"}

    @pytest.mark.asyncio
    async def test_settings_and_mark_synced(self, store: EntityStore):
        await store.update_settings({"theme": "dark"})
        await store.update_settings({"lang": "ru"})
        assert await store.get_settings() == {"theme": "dark", "lang": "ru"}

        ts = await store.mark_synced(at=500)
        assert ts == 500
        assert (await store.snapshot()).last_synced == 500

    @pytest.mark.asyncio
    async def test_corrupt_table_reads_empty(self, store: EntityStore):
        (store.data_dir / "tasks.json").write_text("{not json")
        assert await store.tasks.get_all() == []


class TestBackups:
    @pytest.mark.asyncio
    async def test_ring_buffer_keeps_newest(self, store: EntityStore):
        created = []
        for i in range(7):
            backup = await store.create_backup(Snapshot(settings={"n": i}), f"b{i}")
            created.append(backup.id)

        listed = await store.list_backups()
        assert [b.id for b in listed] == list(reversed(created[2:]))
        assert not (store.backup_dir / f"{created[0]}.json").exists()
        assert not (store.backup_dir / f"{created[1]}.json").exists()

    @pytest.mark.asyncio
    async def test_restore(self, store: EntityStore):
        snap = Snapshot(tasks=[Task(id="t", title="saved")])
        backup = await store.create_backup(snap, "Manual")

        restored = await store.restore_backup(backup.id)
        assert restored is not None
        assert restored.label == "Manual"
        assert restored.data.tasks[0].title == "saved"

    @pytest.mark.asyncio
    async def test_replace_collections_keeps_settings(self, store: EntityStore, journal):
        await store.tasks.add(Task(id="old", title="before"))
        backup = await store.create_backup(await store.snapshot(), "Manual")
        await store.tasks.delete("old")
        await store.tasks.add(Task(id="new", title="after"))
        await store.update_settings({"encryptionPassword": "pw"})
        await store.mark_synced(at=10_000_000)

        await store.replace_collections(backup.data, notify=True)

        snap = await store.snapshot()
        assert [t.id for t in snap.tasks] == ["old"]
        assert snap.settings["encryptionPassword"] == "pw"
        assert snap.last_synced == 10_000_000
        assert journal.recent()[-1].op == MutationOp.IMPORT

    @pytest.mark.asyncio
    async def test_restore_unknown(self, store: EntityStore):
        assert await store.restore_backup("nope") is None

    @pytest.mark.asyncio
    async def test_custom_limit(self, app_home: Path):
        small = EntityStore(app_home, backup_limit=2)
        for _ in range(4):
            await small.create_backup(Snapshot())
        assert len(await small.list_backups()) == 2


class TestJournal:
    @pytest.mark.asyncio
    async def test_mutations_are_published(self, store: EntityStore, journal):
        seen = []
        journal.subscribe(seen.append)

        created = await store.tasks.add(Task(title="t"))
        await store.tasks.update(created.id, {"title": "u"})
        await store.tasks.delete(created.id)
        await store.update_settings({"theme": "dark"})

        assert [e.op for e in seen] == [
            MutationOp.ADD, MutationOp.UPDATE, MutationOp.DELETE, MutationOp.SETTINGS,
        ]
        assert seen[0].record_id == created.id

    @pytest.mark.asyncio
    async def test_failed_update_publishes_nothing(self, store: EntityStore, journal):
        with pytest.raises(NotFoundError):
            await store.tasks.update("ghost", {"title": "x"})
        assert journal.recent() == []


class TestRecencyCache:
    def test_evicts_least_recent(self):
        cache: RecencyCache[str, int] = RecencyCache(2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")
        cache.put("c", 3)
        assert "a" in cache
        assert "b" not in cache
        assert len(cache) == 2

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            RecencyCache(0)

    @pytest.mark.asyncio
    async def test_cache_invalidated_on_replace(self, store: EntityStore):
        created = await store.tasks.add(Task(id="t", title="cached"))
        assert (await store.tasks.get(created.id)).title == "cached"
        await store.replace_all(Snapshot(tasks=[Task(id="t", title="fresh")]))
        assert (await store.tasks.get("t")).title == "fresh"

    @pytest.mark.asyncio
    async def test_cached_task_is_not_shared(self, store: EntityStore):
        await store.tasks.add(Task(id="t", title="original"))
        first = await store.tasks.get("t")
        first.title = "scribbled"
        assert (await store.tasks.get("t")).title == "original"
