"""Pydantic models for the objects exchanged with a backup repository."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from reposhadow.services.identifiers import ContentID


class BlobType(StrEnum):
    TREE = "tree"
    DATA = "data"


class NodeType(StrEnum):
    FILE = "file"
    DIR = "dir"
    SYMLINK = "symlink"
    DEV = "dev"
    CHARDEV = "chardev"
    FIFO = "fifo"
    SOCKET = "socket"
    IRREGULAR = "irregular"


class SnapshotSchema(BaseModel):
    """A snapshot as listed by the repository."""

    id: ContentID
    time: datetime
    hostname: str = ""
    paths: list[str] = Field(default_factory=list)
    tree: ContentID


class IndexedBlob(BaseModel):
    """One index entry: a blob and the pack file holding it."""

    id: ContentID
    type: BlobType
    pack_id: ContentID
    length: int = Field(ge=0)
    uncompressed_length: int = Field(default=0, ge=0)


class TreeNodeSchema(BaseModel):
    """One entry of a serialized directory tree."""

    model_config = ConfigDict(extra="ignore")

    name: str
    type: NodeType
    size: int = 0
    device_id: int = 0
    inode: int = 0
    mtime: datetime | None = None
    content: list[ContentID] | None = None
    subtree: ContentID | None = None

    @model_validator(mode="after")
    def _check_subtree(self) -> TreeNodeSchema:
        if self.type == NodeType.DIR and self.subtree is None:
            msg = f"Directory entry {self.name!r} has no subtree"
            raise ValueError(msg)
        return self


class TreeSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    nodes: list[TreeNodeSchema] = Field(default_factory=list)


def encode_tree(nodes: list[TreeNodeSchema]) -> bytes:
    """Serialize *nodes* the way trees are stored in the repository.

    An empty node list encodes to the canonical empty tree.
    """
    return TreeSchema(nodes=nodes).model_dump_json(exclude_none=True).encode() + b"\n"
