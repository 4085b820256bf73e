"""Reconcile the shadow database with the repository graph.

One run proceeds table by table in dependency order.  For each table the
graph keys are delivered once: keys already stored are promoted in place
(``ok``, or ``update`` when an updatable column changed) and the rest are
queued to be materialized into new rows with fresh primary keys.  Rows still
marked ``delete`` after all tables are reconciled no longer exist in the
repository.  Inserts, updates, deletes and the bookkeeping tables are then
written in a single transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable
from dataclasses import dataclass, field
from itertools import batched
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, insert, update

from reposhadow.exceptions import RepositoryCorruptionError
from reposhadow.models import HighWaterMark, SnapshotHistory, Timestamp
from reposhadow.schemas.repository import BlobType
from reposhadow.services.concurrency import run_pipeline, run_stages
from reposhadow.services.datetime_service import format_datetime, now_utc
from reposhadow.services.graph_service import build_graph
from reposhadow.services.identifiers import IdentifierRegistry
from reposhadow.services.table_mappings import TABLE_ORDER
from reposhadow.services.table_service import (
    IdCounter,
    RowStatus,
    ShadowRow,
    read_shadow_tables,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sqlalchemy.ext.asyncio import AsyncSession

    from reposhadow.config import Settings
    from reposhadow.repository.base import BackupRepository
    from reposhadow.services.graph_service import RepositoryGraph
    from reposhadow.services.table_mappings import TableMapping
    from reposhadow.services.table_service import ShadowDatabase

logger = logging.getLogger(__name__)

_MIB = 1024 * 1024
# Keeps DELETE ... IN (...) below SQLite's bound-parameter limit.
_DELETE_CHUNK = 500

Newcomers = dict[str, dict[Hashable, ShadowRow]]


class UnresolvedReferenceError(LookupError):
    """A row references a key that has no primary key (yet)."""


@dataclass
class TableDelta:
    inserted: int = 0
    updated: int = 0
    deleted: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.inserted or self.updated or self.deleted)


@dataclass
class BlobSummary:
    """Number and total size of tree and data blobs."""

    tree_count: int = 0
    tree_bytes: int = 0
    data_count: int = 0
    data_bytes: int = 0

    @property
    def tree_mib(self) -> float:
        return self.tree_bytes / _MIB

    @property
    def data_mib(self) -> float:
        return self.data_bytes / _MIB

    def add(self, kind: str, length: int) -> None:
        if kind == BlobType.TREE:
            self.tree_count += 1
            self.tree_bytes += length
        else:
            self.data_count += 1
            self.data_bytes += length


@dataclass
class SyncReport:
    deltas: dict[str, TableDelta] = field(default_factory=dict)
    new_snapshots: list[str] = field(default_factory=list)
    removed_snapshots: list[str] = field(default_factory=list)
    blobs: BlobSummary = field(default_factory=BlobSummary)
    removed_blobs: BlobSummary = field(default_factory=BlobSummary)
    dry_run: bool = False

    @property
    def changes_made(self) -> bool:
        return any(delta.changed for delta in self.deltas.values())


class KeyResolver:
    """Translate (table, domain key) into a primary key.

    Stored rows win over newcomers; with ``newcomers=None`` only stored rows
    are consulted.
    """

    def __init__(self, shadow: ShadowDatabase, newcomers: Newcomers | None = None) -> None:
        self._shadow = shadow
        self._newcomers = newcomers

    def __call__(self, table: str, key: Hashable) -> int:
        row = self._shadow[table].rows.get(key)
        if row is None and self._newcomers is not None:
            row = self._newcomers.get(table, {}).get(key)
        if row is None:
            msg = f"{table} has no row for {key!r}"
            raise UnresolvedReferenceError(msg)
        return row.id


def _build(
    mapping: TableMapping, key: Any, graph: RepositoryGraph, resolver: KeyResolver
) -> dict[str, Any]:
    try:
        return mapping.build(key, graph, resolver)
    except UnresolvedReferenceError as exc:
        msg = f"{mapping.name} {mapping.describe(key, graph.registry)}: {exc}"
        raise RepositoryCorruptionError(msg) from exc


def _promote(
    mapping: TableMapping,
    key: Hashable,
    row: ShadowRow,
    graph: RepositoryGraph,
    resolver: KeyResolver,
) -> None:
    row.status = RowStatus.OK
    if not mapping.updatable:
        return
    expected = _build(mapping, key, graph, resolver)
    changes = {
        column: expected[column]
        for column in mapping.updatable
        if row.values.get(column) != expected[column]
    }
    if changes:
        row.status = RowStatus.UPDATE
        row.changes = changes


async def reconcile_table(
    mapping: TableMapping,
    graph: RepositoryGraph,
    shadow: ShadowDatabase,
    newcomers: Newcomers,
    settings: Settings,
) -> IdCounter:
    """Deliver the graph keys of one table and materialize the missing rows.

    Returns the table's primary-key counter, positioned after the last key
    handed out.
    """
    table = shadow[mapping.name]
    resolver = KeyResolver(shadow, newcomers)
    counter = IdCounter(table.high_id)
    pending = newcomers.setdefault(mapping.name, {})

    def deliver() -> Iterator[Hashable]:
        seen: set[Hashable] = set()
        for key in mapping.graph_keys(graph):
            if key in seen:
                continue
            seen.add(key)
            row = table.rows.get(key)
            if row is None:
                yield key
            else:
                _promote(mapping, key, row, graph, resolver)

    async def materialize(key: Hashable) -> None:
        values = _build(mapping, key, graph, resolver)
        try:
            pk = mapping.primary_key(key, resolver)
        except UnresolvedReferenceError as exc:
            msg = f"{mapping.name} {mapping.describe(key, graph.registry)}: {exc}"
            raise RepositoryCorruptionError(msg) from exc
        if pk is None:
            pk = counter.next()
        else:
            counter.reserve(pk)
        pending[key] = ShadowRow(id=pk, values=values, status=RowStatus.NEW)

    await run_pipeline(deliver(), materialize, capacity=settings.queue_capacity)
    return counter


def _blob_summary(graph: RepositoryGraph, newcomers: Newcomers) -> BlobSummary:
    summary = BlobSummary()
    for key in newcomers.get("index_repo", {}):
        info = graph.blobs[key]
        summary.add(info.kind, info.length)
    return summary


def _removed_blob_summary(shadow: ShadowDatabase) -> BlobSummary:
    """Summarize the ``index_repo`` rows that are about to be deleted."""
    summary = BlobSummary()
    for row in shadow["index_repo"].rows.values():
        if row.status == RowStatus.DELETE:
            summary.add(row.values["index_type"], row.values["idd_size"])
    return summary


def _history_row(action: str, row: ShadowRow, timestamp: str) -> SnapshotHistory:
    return SnapshotHistory(
        timestamp=timestamp,
        action=action,
        id_history=row.id,
        snap_id=row.values["snap_id"],
        snap_time=row.values["snap_time"],
        snap_host=row.values["snap_host"],
        snap_fsys=row.values["snap_fsys"],
        snap_root=row.values["snap_root"],
    )


async def _write_changes(
    session: AsyncSession,
    graph: RepositoryGraph,
    shadow: ShadowDatabase,
    newcomers: Newcomers,
    counters: dict[str, IdCounter],
    report: SyncReport,
    settings: Settings,
) -> None:
    now = format_datetime(now_utc())

    for mapping in TABLE_ORDER:
        rows = sorted(newcomers[mapping.name].values(), key=lambda r: r.id)
        for batch in batched(rows, settings.insert_batch_size):
            await session.execute(
                insert(mapping.model), [{"id": row.id, **row.values} for row in batch]
            )

    for mapping in TABLE_ORDER:
        changed = [
            {"id": row.id, **row.changes}
            for row in shadow[mapping.name].rows.values()
            if row.status == RowStatus.UPDATE
        ]
        if changed:
            await session.execute(update(mapping.model), changed)

    for mapping in reversed(TABLE_ORDER):
        stale = sorted(
            row.id for row in shadow[mapping.name].rows.values() if row.status == RowStatus.DELETE
        )
        for chunk in batched(stale, _DELETE_CHUNK):
            await session.execute(
                delete(mapping.model)
                .where(mapping.model.id.in_(chunk))  # type: ignore[attr-defined]
                .execution_options(synchronize_session=False)
            )

    snapshots = shadow["snapshots"]
    session.add_all(
        _history_row("INSERT", row, now)
        for row in sorted(newcomers["snapshots"].values(), key=lambda r: r.id)
    )
    session.add_all(
        _history_row("DELETE", row, now)
        for row in snapshots.rows.values()
        if row.status == RowStatus.DELETE
    )

    await session.execute(delete(HighWaterMark))
    session.add_all(
        HighWaterMark(table_name=name, high_id=counter.high_id)
        for name, counter in counters.items()
    )

    stamp = await session.get(Timestamp, 1)
    if stamp is None:
        stamp = Timestamp(id=1, restic_updated=now, database_updated=now, ts_created=now)
        session.add(stamp)
    stamp.database_updated = now
    if report.changes_made and graph.snapshots:
        stamp.restic_updated = format_datetime(graph.snapshots[-1].time)
    await session.flush()


async def synchronize(
    session: AsyncSession,
    repository: BackupRepository,
    settings: Settings,
) -> SyncReport:
    """Bring the shadow database in line with *repository*.

    The graph is built while the stored tables are read.  All writes happen
    in one transaction; any failure rolls everything back and is re-raised.
    With ``settings.dry_run`` the deltas are computed and reported but
    rolled back.
    """
    registry = IdentifierRegistry()
    try:
        graph, shadow = await run_stages(
            build_graph(repository, registry, settings),
            read_shadow_tables(session, registry, strict=True),
        )

        newcomers: Newcomers = {}
        counters: dict[str, IdCounter] = {}
        for mapping in TABLE_ORDER:
            counters[mapping.name] = await reconcile_table(
                mapping, graph, shadow, newcomers, settings
            )

        report = SyncReport(dry_run=settings.dry_run)
        for mapping in TABLE_ORDER:
            rows = shadow[mapping.name].rows.values()
            report.deltas[mapping.name] = TableDelta(
                inserted=len(newcomers[mapping.name]),
                updated=sum(1 for row in rows if row.status == RowStatus.UPDATE),
                deleted=sum(1 for row in rows if row.status == RowStatus.DELETE),
            )
        report.new_snapshots = [
            row.values["snap_id"]
            for row in sorted(newcomers["snapshots"].values(), key=lambda r: r.id)
        ]
        report.removed_snapshots = sorted(
            row.values["snap_id"]
            for row in shadow["snapshots"].rows.values()
            if row.status == RowStatus.DELETE
        )
        report.blobs = _blob_summary(graph, newcomers)
        report.removed_blobs = _removed_blob_summary(shadow)

        await _write_changes(session, graph, shadow, newcomers, counters, report, settings)
        if settings.dry_run:
            await session.rollback()
        else:
            await session.commit()
    except Exception:
        await session.rollback()
        raise

    _log_report(report)
    return report


def _log_report(report: SyncReport) -> None:
    for name, delta in report.deltas.items():
        if delta.changed:
            logger.info(
                "%-12s inserted %d, updated %d, deleted %d",
                name,
                delta.inserted,
                delta.updated,
                delta.deleted,
            )
    for short_id in report.new_snapshots:
        logger.debug("New snapshot %s", short_id)
    for short_id in report.removed_snapshots:
        logger.debug("Removed snapshot %s", short_id)
    if report.blobs.tree_count or report.blobs.data_count:
        logger.info(
            "New blobs: %d tree (%.3f MiB), %d data (%.3f MiB)",
            report.blobs.tree_count,
            report.blobs.tree_mib,
            report.blobs.data_count,
            report.blobs.data_mib,
        )
    if report.removed_blobs.tree_count or report.removed_blobs.data_count:
        logger.info(
            "Removed blobs: %d tree (%.3f MiB), %d data (%.3f MiB)",
            report.removed_blobs.tree_count,
            report.removed_blobs.tree_mib,
            report.removed_blobs.data_count,
            report.removed_blobs.data_mib,
        )
    if not report.changes_made:
        logger.info("Shadow database is up to date")
    elif report.dry_run:
        logger.info("Dry run: changes rolled back")
