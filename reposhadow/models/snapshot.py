"""Snapshot models."""

from __future__ import annotations

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from reposhadow.models.base import Base


class Snapshot(Base):
    """One repository snapshot."""

    __tablename__ = "snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    snap_id: Mapped[str] = mapped_column(String(8), nullable=False, unique=True)
    snap_time: Mapped[str] = mapped_column(String(19), nullable=False)
    snap_host: Mapped[str] = mapped_column(String(50), nullable=False)
    snap_fsys: Mapped[str] = mapped_column(String(100), nullable=False)
    snap_root: Mapped[str] = mapped_column(String(64), nullable=False)


class SnapshotHistory(Base):
    """Audit trail of snapshot rows inserted into or deleted from ``snapshots``."""

    __tablename__ = "snapshots_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[str] = mapped_column(Text, nullable=False)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    id_history: Mapped[int] = mapped_column(Integer, nullable=False)
    snap_id: Mapped[str] = mapped_column(Text, nullable=False)
    snap_time: Mapped[str] = mapped_column(Text, nullable=False)
    snap_host: Mapped[str] = mapped_column(Text, nullable=False)
    snap_fsys: Mapped[str] = mapped_column(Text, nullable=False)
    snap_root: Mapped[str] = mapped_column(Text, nullable=False)
