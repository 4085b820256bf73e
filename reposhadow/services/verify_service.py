"""Read-only consistency check of the shadow database against the repository."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from reposhadow.services.concurrency import run_stages
from reposhadow.services.graph_service import build_graph
from reposhadow.services.identifiers import IdentifierRegistry
from reposhadow.services.sync_service import KeyResolver, UnresolvedReferenceError
from reposhadow.services.table_mappings import TABLE_ORDER
from reposhadow.services.table_service import read_shadow_tables

if TYPE_CHECKING:
    from collections.abc import Hashable

    from sqlalchemy.ext.asyncio import AsyncSession

    from reposhadow.config import Settings
    from reposhadow.repository.base import BackupRepository
    from reposhadow.services.graph_service import RepositoryGraph
    from reposhadow.services.table_mappings import TableMapping
    from reposhadow.services.table_service import ShadowDatabase

logger = logging.getLogger(__name__)


class MismatchKind(StrEnum):
    ONLY_IN_DATABASE = "only_in_database"
    ONLY_IN_REPOSITORY = "only_in_repository"
    DIFFERENT = "different"
    DANGLING = "dangling"


@dataclass(frozen=True, slots=True)
class Mismatch:
    table: str
    kind: MismatchKind
    subject: str
    detail: str = ""


@dataclass
class TableVerification:
    table: str
    only_in_database: int = 0
    only_in_repository: int = 0
    different: int = 0
    dangling: int = 0
    examples: list[Mismatch] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.only_in_database + self.only_in_repository + self.different + self.dangling


@dataclass
class VerificationReport:
    tables: dict[str, TableVerification] = field(default_factory=dict)

    @property
    def consistent(self) -> bool:
        return all(table.total == 0 for table in self.tables.values())

    @property
    def mismatches(self) -> list[Mismatch]:
        return [example for table in self.tables.values() for example in table.examples]


def _record(result: TableVerification, mismatch: Mismatch, limit: int) -> None:
    match mismatch.kind:
        case MismatchKind.ONLY_IN_DATABASE:
            result.only_in_database += 1
        case MismatchKind.ONLY_IN_REPOSITORY:
            result.only_in_repository += 1
        case MismatchKind.DIFFERENT:
            result.different += 1
        case MismatchKind.DANGLING:
            result.dangling += 1
    if len(result.examples) < limit:
        result.examples.append(mismatch)


def _verify_table(
    mapping: TableMapping,
    graph: RepositoryGraph,
    shadow: ShadowDatabase,
    limit: int,
) -> TableVerification:
    result = TableVerification(table=mapping.name)
    stored = shadow[mapping.name].rows
    resolver = KeyResolver(shadow)
    registry = graph.registry

    expected_keys: set[Hashable] = set()
    for key in mapping.graph_keys(graph):
        if key in expected_keys:
            continue
        expected_keys.add(key)
        row = stored.get(key)
        if row is None:
            subject = mapping.describe(key, registry)
            _record(
                result,
                Mismatch(mapping.name, MismatchKind.ONLY_IN_REPOSITORY, subject),
                limit,
            )
            continue
        detail = ""
        try:
            expected = mapping.build(key, graph, resolver)
        except UnresolvedReferenceError as exc:
            expected = None
            detail = str(exc)
        if expected is None or expected != row.values:
            if expected is not None:
                detail = ", ".join(
                    f"{column}: {row.values.get(column)!r} != {value!r}"
                    for column, value in expected.items()
                    if row.values.get(column) != value
                )
            _record(
                result,
                Mismatch(
                    mapping.name,
                    MismatchKind.DIFFERENT,
                    mapping.describe(key, registry),
                    detail,
                ),
                limit,
            )

    for key, row in stored.items():
        if key not in expected_keys:
            _record(
                result,
                Mismatch(
                    mapping.name,
                    MismatchKind.ONLY_IN_DATABASE,
                    mapping.describe(key, registry),
                    f"id {row.id}",
                ),
                limit,
            )

    for dangling in shadow.dangling:
        if dangling.table == mapping.name:
            _record(
                result,
                Mismatch(
                    mapping.name, MismatchKind.DANGLING, f"id {dangling.row_id}", dangling.detail
                ),
                limit,
            )
    return result


async def verify_database(
    session: AsyncSession,
    repository: BackupRepository,
    settings: Settings,
) -> VerificationReport:
    """Compare every shadow table with a freshly built repository graph.

    Never writes.  Per table at most ``settings.max_reported_mismatches``
    examples are kept and logged; the counts always cover every mismatch.
    """
    registry = IdentifierRegistry()
    try:
        graph, shadow = await run_stages(
            build_graph(repository, registry, settings),
            read_shadow_tables(session, registry, strict=False),
        )
    finally:
        await session.rollback()

    report = VerificationReport()
    for mapping in TABLE_ORDER:
        result = _verify_table(mapping, graph, shadow, settings.max_reported_mismatches)
        report.tables[mapping.name] = result
        for mismatch in result.examples:
            logger.warning(
                "%s: %s %s %s", mismatch.table, mismatch.kind, mismatch.subject, mismatch.detail
            )
        hidden = result.total - len(result.examples)
        if hidden:
            logger.warning("%s: %d more mismatches not shown", mapping.name, hidden)

    if report.consistent:
        logger.info("Shadow database is consistent with the repository")
    return report
