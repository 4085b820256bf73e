"""Load the shadow database into per-table working copies.

Every stored row becomes a ``ShadowRow`` keyed by its table's domain key and
starts out as a delete candidate; reconciliation later promotes the rows it
finds in the repository graph.  Foreign keys are checked against the
back-pointer maps of the tables read before, so tables are read in
dependency order.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Hashable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from reposhadow.exceptions import ShadowCorruptionError
from reposhadow.models import HighWaterMark
from reposhadow.services.table_mappings import TABLE_ORDER

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from reposhadow.services.identifiers import IdentifierRegistry
    from reposhadow.services.table_mappings import TableMapping

logger = logging.getLogger(__name__)


class RowStatus(StrEnum):
    DELETE = "delete"
    OK = "ok"
    NEW = "new"
    UPDATE = "update"


@dataclass
class ShadowRow:
    """One row of a working copy; ``values`` excludes the primary key."""

    id: int
    values: dict[str, Any]
    status: RowStatus = RowStatus.DELETE
    changes: dict[str, Any] = field(default_factory=dict)


@dataclass
class ShadowTable:
    name: str
    rows: dict[Hashable, ShadowRow] = field(default_factory=dict)
    by_pk: dict[int, Hashable] = field(default_factory=dict)
    high_id: int = 1

    def key_for(self, pk: int) -> Hashable:
        """Return the domain key of the row with primary key *pk*."""
        try:
            return self.by_pk[pk]
        except KeyError:
            msg = f"{self.name} has no row with id {pk}"
            raise ShadowCorruptionError(msg) from None

    def add(self, key: Hashable, row: ShadowRow) -> None:
        if key in self.rows:
            msg = f"{self.name} rows {self.rows[key].id} and {row.id} share the key {key!r}"
            raise ShadowCorruptionError(msg)
        self.rows[key] = row
        self.by_pk[row.id] = key
        self.high_id = max(self.high_id, row.id + 1)


@dataclass(frozen=True, slots=True)
class DanglingRow:
    """A stored row that could not be read back (lenient mode only)."""

    table: str
    row_id: int
    detail: str


@dataclass
class ShadowDatabase:
    tables: dict[str, ShadowTable] = field(default_factory=dict)
    dangling: list[DanglingRow] = field(default_factory=list)

    def __getitem__(self, name: str) -> ShadowTable:
        return self.tables[name]


class IdCounter:
    """Hands out strictly increasing primary keys for one table."""

    def __init__(self, start: int) -> None:
        self._lock = threading.Lock()
        self._next = start

    def next(self) -> int:
        with self._lock:
            value = self._next
            self._next += 1
            return value

    def reserve(self, pk: int) -> None:
        """Make sure *pk* is never handed out."""
        with self._lock:
            self._next = max(self._next, pk + 1)

    @property
    def high_id(self) -> int:
        return self._next


def _read_row(
    mapping: TableMapping,
    raw: dict[str, Any],
    db: ShadowDatabase,
    registry: IdentifierRegistry,
) -> tuple[Hashable, ShadowRow]:
    pk = raw.pop("id")
    columns = dict(raw)

    def ref(column: str) -> Hashable:
        value = pk if column == "id" else columns[column]
        return db[mapping.references[column]].key_for(value)

    for column in mapping.references:
        ref(column)
    try:
        key = mapping.row_key({"id": pk, **columns}, ref, registry)
    except ValueError as exc:
        msg = f"{mapping.name} row {pk} is malformed: {exc}"
        raise ShadowCorruptionError(msg) from exc
    return key, ShadowRow(id=pk, values=columns)


async def read_shadow_tables(
    session: AsyncSession,
    registry: IdentifierRegistry,
    *,
    strict: bool = True,
) -> ShadowDatabase:
    """Read every shadow table in dependency order.

    In strict mode the first unreadable row raises ``ShadowCorruptionError``.
    Otherwise such rows are skipped and listed in ``ShadowDatabase.dangling``.
    """
    db = ShadowDatabase()
    result = await session.execute(select(HighWaterMark.table_name, HighWaterMark.high_id))
    persisted = {name: high_id for name, high_id in result.all()}

    for mapping in TABLE_ORDER:
        table = ShadowTable(name=mapping.name, high_id=persisted.get(mapping.name, 1))
        db.tables[mapping.name] = table
        result = await session.execute(select(mapping.model.__table__))
        for raw in result.mappings():
            values = dict(raw)
            row_id = values["id"]
            try:
                key, row = _read_row(mapping, values, db, registry)
                table.add(key, row)
            except ShadowCorruptionError as exc:
                if strict:
                    raise
                db.dangling.append(DanglingRow(table=mapping.name, row_id=row_id, detail=str(exc)))
        logger.debug("Read %d rows from %s", len(table.rows), mapping.name)
    return db
