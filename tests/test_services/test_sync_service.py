"""Tests for reconciling the shadow database with a repository."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy import func, insert, select

from reposhadow.exceptions import RepositoryCorruptionError, ShadowCorruptionError
from reposhadow.models import (
    DirPathId,
    Fullname,
    HighWaterMark,
    IndexRepo,
    Packfile,
    Snapshot,
    SnapshotHistory,
    Timestamp,
)
from reposhadow.repository.memory import dir_node, file_node
from reposhadow.services.graph_service import build_graph
from reposhadow.services.identifiers import ContentID, IdentifierRegistry
from reposhadow.services.sync_service import SyncReport, reconcile_table, synchronize
from reposhadow.services.table_mappings import MAPPINGS, TABLE_ORDER
from reposhadow.services.table_service import RowStatus, read_shadow_tables

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from reposhadow.config import Settings
    from reposhadow.repository.memory import MemoryRepository


async def _sync(
    session_factory: async_sessionmaker[AsyncSession],
    repository: MemoryRepository,
    settings: Settings,
) -> SyncReport:
    async with session_factory() as session:
        return await synchronize(session, repository, settings)


async def _counts(session_factory: async_sessionmaker[AsyncSession]) -> dict[str, int]:
    async with session_factory() as session:
        counts = {}
        for mapping in TABLE_ORDER:
            result = await session.execute(select(func.count()).select_from(mapping.model))
            counts[mapping.name] = result.scalar_one()
        return counts


async def _ids(session_factory: async_sessionmaker[AsyncSession], model: Any) -> list[int]:
    async with session_factory() as session:
        result = await session.execute(select(model.id).order_by(model.id))
        return list(result.scalars())


def _one_file_snapshot(repository: MemoryRepository, content: bytes = b"hello") -> ContentID:
    data = repository.add_data(content)
    root = repository.add_tree([file_node("a.txt", [data], size=len(content), inode=1)])
    repository.add_snapshot(root, time="2024-05-01 12:00:00", hostname="box", paths=["/data"])
    return root


class TestFirstSync:
    async def test_single_file_snapshot(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: MemoryRepository,
        test_settings: Settings,
    ) -> None:
        _one_file_snapshot(repository)

        report = await _sync(session_factory, repository, test_settings)

        assert await _counts(session_factory) == {
            "packfiles": 1,
            "index_repo": 2,
            "names": 1,
            "snapshots": 1,
            "meta_dir": 1,
            "idd_file": 1,
            "contents": 1,
            "dir_children": 0,
            "dir_name_id": 0,
            "fullname": 1,
            "dir_path_id": 1,
        }
        assert report.deltas["index_repo"].inserted == 2
        assert report.blobs.tree_count == 1
        assert report.blobs.data_count == 1
        assert report.blobs.data_bytes == 5
        assert report.changes_made

    async def test_snapshot_row_values(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: MemoryRepository,
        test_settings: Settings,
    ) -> None:
        root = _one_file_snapshot(repository)
        snapshot = repository.snapshots[0]

        report = await _sync(session_factory, repository, test_settings)

        async with session_factory() as session:
            row = (await session.execute(select(Snapshot))).scalar_one()
            history = (await session.execute(select(SnapshotHistory))).scalar_one()
            stamp = await session.get(Timestamp, 1)
        assert row.snap_id == snapshot.id.short()
        assert row.snap_time == "2024-05-01 12:00:00"
        assert row.snap_host == "box"
        assert row.snap_fsys == "/data"
        assert row.snap_root == root.hex()
        assert report.new_snapshots == [row.snap_id]
        assert history.action == "INSERT"
        assert history.id_history == row.id
        assert stamp is not None
        assert stamp.restic_updated == "2024-05-01 12:00:00"

    async def test_nested_directories(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: MemoryRepository,
        test_settings: Settings,
    ) -> None:
        data = repository.add_data(b"x")
        inner = repository.add_tree([file_node("f", [data])])
        middle = repository.add_tree([dir_node("inner", inner)])
        root = repository.add_tree([dir_node("middle", middle)])
        repository.add_snapshot(root)

        await _sync(session_factory, repository, test_settings)

        counts = await _counts(session_factory)
        assert counts["dir_children"] == 2
        assert counts["dir_name_id"] == 2
        assert counts["meta_dir"] == 3
        async with session_factory() as session:
            result = await session.execute(select(Fullname.pathname).order_by(Fullname.pathname))
            assert list(result.scalars()) == ["/", "/middle", "/middle/inner"]

    async def test_empty_directories_share_one_node(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: MemoryRepository,
        test_settings: Settings,
    ) -> None:
        empty = repository.add_tree([])
        root = repository.add_tree([dir_node("x", empty), dir_node("y", empty)])
        repository.add_snapshot(root)

        await _sync(session_factory, repository, test_settings)

        counts = await _counts(session_factory)
        assert counts["index_repo"] == 2
        assert counts["names"] == 2
        assert counts["idd_file"] == 2
        assert counts["meta_dir"] == 1
        assert counts["dir_children"] == 0
        assert counts["dir_name_id"] == 0
        assert counts["fullname"] == 1

    async def test_dry_run_writes_nothing(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: MemoryRepository,
        test_settings: Settings,
    ) -> None:
        _one_file_snapshot(repository)
        settings = test_settings.model_copy(update={"dry_run": True})

        report = await _sync(session_factory, repository, settings)

        assert report.deltas["snapshots"].inserted == 1
        assert report.dry_run
        assert set((await _counts(session_factory)).values()) == {0}


class TestIncrementalSync:
    async def test_second_run_is_a_no_op(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: MemoryRepository,
        test_settings: Settings,
    ) -> None:
        _one_file_snapshot(repository)
        await _sync(session_factory, repository, test_settings)
        before = await _counts(session_factory)

        report = await _sync(session_factory, repository, test_settings)

        assert not report.changes_made
        assert report.new_snapshots == []
        assert await _counts(session_factory) == before

    async def test_only_missing_rows_are_inserted(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: MemoryRepository,
        test_settings: Settings,
    ) -> None:
        _one_file_snapshot(repository, b"first")
        await _sync(session_factory, repository, test_settings)
        _one_file_snapshot(repository, b"second")
        new_snapshot = repository.snapshots[-1]

        report = await _sync(session_factory, repository, test_settings)

        assert report.new_snapshots == [new_snapshot.id.short()]
        assert report.deltas["snapshots"].inserted == 1
        assert report.deltas["index_repo"].inserted == 2
        assert report.deltas["names"].inserted == 0
        assert report.deltas["fullname"].inserted == 0
        assert all(delta.deleted == 0 for delta in report.deltas.values())
        assert await _ids(session_factory, IndexRepo) == [1, 2, 3, 4]
        assert await _ids(session_factory, Snapshot) == [1, 2]

    async def test_repack_updates_pack_reference(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: MemoryRepository,
        test_settings: Settings,
    ) -> None:
        _one_file_snapshot(repository)
        await _sync(session_factory, repository, test_settings)
        data = ContentID.hash(b"hello")
        new_pack = ContentID.hash(b"pack-new")
        repository.repack(data, new_pack)

        report = await _sync(session_factory, repository, test_settings)

        assert report.deltas["packfiles"].inserted == 1
        assert report.deltas["index_repo"].updated == 1
        assert report.deltas["index_repo"].inserted == 0
        async with session_factory() as session:
            query = select(Packfile).where(Packfile.packfile_id == new_pack.hex())
            pack = (await session.execute(query)).scalar_one()
            blob = (
                await session.execute(select(IndexRepo).where(IndexRepo.idd == data.hex()))
            ).scalar_one()
        assert blob.id_pack_id == pack.id

    async def test_moved_directory_updates_its_path(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: MemoryRepository,
        test_settings: Settings,
    ) -> None:
        data = repository.add_data(b"x")
        moved = repository.add_tree([file_node("f", [data])])
        old_root = repository.add_tree([dir_node("b", moved)])
        old = repository.add_snapshot(old_root)
        await _sync(session_factory, repository, test_settings)

        repository.remove_snapshot(old.id)
        new_root = repository.add_tree([dir_node("a", moved)])
        repository.add_snapshot(new_root)
        report = await _sync(session_factory, repository, test_settings)

        assert report.deltas["dir_path_id"].updated == 1
        assert report.deltas["fullname"].inserted == 1
        assert report.deltas["fullname"].deleted == 1
        async with session_factory() as session:
            result = await session.execute(
                select(Fullname.pathname).join(DirPathId, DirPathId.id_pathname == Fullname.id)
            )
            assert sorted(result.scalars()) == ["/", "/a"]

    async def test_forgotten_snapshot_is_deleted(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: MemoryRepository,
        test_settings: Settings,
    ) -> None:
        _one_file_snapshot(repository, b"keep")
        doomed_root = _one_file_snapshot(repository, b"drop")
        doomed = repository.snapshots[-1]
        await _sync(session_factory, repository, test_settings)

        repository.remove_snapshot(doomed.id)
        repository.forget_blob(doomed_root)
        repository.forget_blob(ContentID.hash(b"drop"))
        report = await _sync(session_factory, repository, test_settings)

        assert report.removed_snapshots == [doomed.id.short()]
        assert report.deltas["snapshots"].deleted == 1
        assert report.deltas["meta_dir"].deleted == 1
        assert report.deltas["index_repo"].deleted == 2
        assert report.deltas["idd_file"].deleted == 1
        assert report.deltas["contents"].deleted == 1
        assert report.deltas["dir_path_id"].deleted == 1
        assert report.deltas["fullname"].deleted == 0
        removed = report.removed_blobs
        assert (removed.tree_count, removed.data_count) == (1, 1)
        assert removed.tree_bytes == len(repository.trees[doomed_root])
        assert removed.data_bytes == len(b"drop")
        assert report.blobs.tree_count == report.blobs.data_count == 0
        async with session_factory() as session:
            actions = (
                await session.execute(
                    select(SnapshotHistory.action).order_by(SnapshotHistory.id)
                )
            ).scalars()
            assert list(actions) == ["INSERT", "INSERT", "DELETE"]

    async def test_deleted_keys_are_not_reused(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: MemoryRepository,
        test_settings: Settings,
    ) -> None:
        _one_file_snapshot(repository, b"one")
        _one_file_snapshot(repository, b"two")
        await _sync(session_factory, repository, test_settings)
        repository.remove_snapshot(repository.snapshots[-1].id)
        await _sync(session_factory, repository, test_settings)
        assert await _ids(session_factory, Snapshot) == [1]

        _one_file_snapshot(repository, b"three")
        await _sync(session_factory, repository, test_settings)

        assert await _ids(session_factory, Snapshot) == [1, 3]
        async with session_factory() as session:
            mark = await session.get(HighWaterMark, "snapshots")
        assert mark is not None
        assert mark.high_id == 4


class TestSyncFailures:
    async def test_repository_corruption_leaves_database_unchanged(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: MemoryRepository,
        test_settings: Settings,
    ) -> None:
        _one_file_snapshot(repository)
        await _sync(session_factory, repository, test_settings)
        before = await _counts(session_factory)
        _one_file_snapshot(repository, b"more")
        repository.add_snapshot(ContentID.hash(b"no such tree"))

        with pytest.raises(RepositoryCorruptionError):
            await _sync(session_factory, repository, test_settings)

        assert await _counts(session_factory) == before

    async def test_dangling_foreign_key_is_shadow_corruption(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: MemoryRepository,
        test_settings: Settings,
    ) -> None:
        _one_file_snapshot(repository)
        async with session_factory() as session:
            await session.execute(
                insert(IndexRepo).values(
                    id=50, idd="ab" * 32, idd_size=1, index_type="data", id_pack_id=999
                )
            )
            await session.commit()

        with pytest.raises(ShadowCorruptionError, match="packfiles has no row with id 999"):
            await _sync(session_factory, repository, test_settings)

        assert (await _counts(session_factory))["snapshots"] == 0

    async def test_malformed_content_id_is_shadow_corruption(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: MemoryRepository,
        test_settings: Settings,
    ) -> None:
        async with session_factory() as session:
            await session.execute(insert(Packfile).values(id=1, packfile_id="not-hex"))
            await session.commit()

        with pytest.raises(ShadowCorruptionError, match="malformed"):
            await _sync(session_factory, repository, test_settings)


class TestReconcileTable:
    async def test_delivers_exactly_the_missing_snapshots(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: MemoryRepository,
        test_settings: Settings,
    ) -> None:
        _one_file_snapshot(repository, b"stored")
        await _sync(session_factory, repository, test_settings)
        _one_file_snapshot(repository, b"new one")
        _one_file_snapshot(repository, b"new two")
        stored, *missing = repository.snapshots

        registry = IdentifierRegistry()
        graph = await build_graph(repository, registry, test_settings)
        async with session_factory() as session:
            shadow = await read_shadow_tables(session, registry)
        newcomers: dict = {}
        counter = await reconcile_table(
            MAPPINGS["snapshots"], graph, shadow, newcomers, test_settings
        )

        fresh = newcomers["snapshots"]
        assert set(fresh) == {snapshot.id.short() for snapshot in missing}
        assert sorted(row.id for row in fresh.values()) == [2, 3]
        assert all(row.status == RowStatus.NEW for row in fresh.values())
        assert shadow["snapshots"].rows[stored.id.short()].status == RowStatus.OK
        assert counter.high_id == 4
