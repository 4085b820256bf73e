"""Canonical directory path models."""

from __future__ import annotations

from sqlalchemy import ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from reposhadow.models.base import Base


class Fullname(Base):
    __tablename__ = "fullname"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    pathname: Mapped[str] = mapped_column(Text, nullable=False, unique=True)


class DirPathId(Base):
    """Canonical path of a directory tree blob; the key is the ``index_repo`` row."""

    __tablename__ = "dir_path_id"

    id: Mapped[int] = mapped_column(Integer, ForeignKey("index_repo.id"), primary_key=True)
    id_pathname: Mapped[int] = mapped_column(
        Integer, ForeignKey("fullname.id"), nullable=False, index=True
    )
