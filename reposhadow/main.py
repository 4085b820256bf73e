"""Entry points that own the engine lifecycle around a sync or verify run."""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

from reposhadow.config import Settings
from reposhadow.database import create_engine, create_tables, ensure_database_dir
from reposhadow.services.sync_service import synchronize
from reposhadow.services.verify_service import verify_database

if TYPE_CHECKING:
    from reposhadow.repository.base import BackupRepository
    from reposhadow.services.sync_service import SyncReport
    from reposhadow.services.verify_service import VerificationReport

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


async def run_sync(repository: BackupRepository, settings: Settings | None = None) -> SyncReport:
    """Create the schema if needed and synchronize the shadow database once."""
    settings = settings or Settings()
    _configure_logging(settings.debug)
    ensure_database_dir(settings.database_url)

    engine, session_factory = create_engine(settings)
    try:
        await create_tables(engine)
        async with session_factory() as session:
            report = await synchronize(session, repository, settings)
    except Exception as exc:
        logger.critical("Synchronization failed: %s", exc)
        raise
    finally:
        await engine.dispose()
    return report


async def run_verify(
    repository: BackupRepository, settings: Settings | None = None
) -> VerificationReport:
    """Check the shadow database against the repository without writing."""
    settings = settings or Settings()
    _configure_logging(settings.debug)
    ensure_database_dir(settings.database_url)

    engine, session_factory = create_engine(settings)
    try:
        await create_tables(engine)
        async with session_factory() as session:
            return await verify_database(session, repository, settings)
    finally:
        await engine.dispose()
