"""Directory content models: names, directory entries and their content blobs."""

from __future__ import annotations

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from reposhadow.models.base import Base


class Name(Base):
    """Every entry name seen in any directory."""

    __tablename__ = "names"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)


class MetaDir(Base):
    """Many-to-many relation between snapshots and the directories they reach."""

    __tablename__ = "meta_dir"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    id_snap_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("snapshots.id"), nullable=False, index=True
    )
    id_idd: Mapped[int] = mapped_column(
        Integer, ForeignKey("index_repo.id"), nullable=False, index=True
    )

    __table_args__ = (UniqueConstraint("id_snap_id", "id_idd", name="ux_meta_dir_snap_idd"),)


class IddFile(Base):
    """A file or directory entry at a given position of a tree blob."""

    __tablename__ = "idd_file"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    id_blob: Mapped[int] = mapped_column(Integer, ForeignKey("index_repo.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    id_name: Mapped[int] = mapped_column(
        Integer, ForeignKey("names.id"), nullable=False, index=True
    )
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    inode: Mapped[int] = mapped_column(Integer, nullable=False)
    mtime: Mapped[str] = mapped_column(String, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(1), nullable=False)

    __table_args__ = (UniqueConstraint("id_blob", "position", name="ux_idd_file_blob_pos"),)


class Content(Base):
    """The data blob at *offset* of the file entry (id_blob, position)."""

    __tablename__ = "contents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    id_data_idd: Mapped[int] = mapped_column(
        Integer, ForeignKey("index_repo.id"), nullable=False, index=True
    )
    id_blob: Mapped[int] = mapped_column(Integer, ForeignKey("index_repo.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    offset: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("id_blob", "position", "offset", name="ux_cont_blob_pos_off"),
    )


class DirChildren(Base):
    """Parent/child edges between directory tree blobs."""

    __tablename__ = "dir_children"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    id_parent: Mapped[int] = mapped_column(
        Integer, ForeignKey("index_repo.id"), nullable=False, index=True
    )
    id_child: Mapped[int] = mapped_column(
        Integer, ForeignKey("index_repo.id"), nullable=False, index=True
    )

    __table_args__ = (UniqueConstraint("id_parent", "id_child", name="ux_dir_children"),)


class DirNameId(Base):
    """Base name of a directory tree blob; the key is the ``index_repo`` row."""

    __tablename__ = "dir_name_id"

    id: Mapped[int] = mapped_column(Integer, ForeignKey("index_repo.id"), primary_key=True)
    id_name: Mapped[int] = mapped_column(
        Integer, ForeignKey("names.id"), nullable=False, index=True
    )
