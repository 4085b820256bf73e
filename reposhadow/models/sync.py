"""Bookkeeping models written by every synchronization run."""

from __future__ import annotations

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from reposhadow.models.base import Base


class Timestamp(Base):
    """Single row recording when the repository and the database last changed."""

    __tablename__ = "timestamp"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    restic_updated: Mapped[str] = mapped_column(Text, nullable=False)
    database_updated: Mapped[str] = mapped_column(Text, nullable=False)
    ts_created: Mapped[str] = mapped_column(Text, nullable=False)


class HighWaterMark(Base):
    """Next unused primary key per table, so deleted keys are never reissued."""

    __tablename__ = "high_ids"

    table_name: Mapped[str] = mapped_column(String, primary_key=True)
    high_id: Mapped[int] = mapped_column(Integer, nullable=False)
