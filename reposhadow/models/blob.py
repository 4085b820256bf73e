"""Pack file and blob index models."""

from __future__ import annotations

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from reposhadow.models.base import Base


class Packfile(Base):
    __tablename__ = "packfiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    packfile_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)


class IndexRepo(Base):
    """One blob of the repository index and the pack file holding it."""

    __tablename__ = "index_repo"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    idd: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    idd_size: Mapped[int] = mapped_column(Integer, nullable=False)
    index_type: Mapped[str] = mapped_column(String(4), nullable=False, index=True)
    id_pack_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("packfiles.id"), nullable=False, index=True
    )
