"""SQLAlchemy ORM models for the shadow database."""

from reposhadow.models.base import Base
from reposhadow.models.blob import IndexRepo, Packfile
from reposhadow.models.directory import Content, DirChildren, DirNameId, IddFile, MetaDir, Name
from reposhadow.models.path import DirPathId, Fullname
from reposhadow.models.snapshot import Snapshot, SnapshotHistory
from reposhadow.models.sync import HighWaterMark, Timestamp

__all__ = [
    "Base",
    "Content",
    "DirChildren",
    "DirNameId",
    "DirPathId",
    "Fullname",
    "HighWaterMark",
    "IddFile",
    "IndexRepo",
    "MetaDir",
    "Name",
    "Packfile",
    "Snapshot",
    "SnapshotHistory",
    "Timestamp",
]
