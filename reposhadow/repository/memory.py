"""In-memory backup repository.

Useful for embedding the synchronization engine and for tests: trees,
data blobs and snapshots are built with the ``add_*`` helpers, which keep the
index consistent with the stored objects.
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from itertools import count

from reposhadow.schemas.repository import (
    BlobType,
    IndexedBlob,
    NodeType,
    SnapshotSchema,
    TreeNodeSchema,
    encode_tree,
)
from reposhadow.services.datetime_service import parse_datetime
from reposhadow.services.identifiers import ContentID

_DEFAULT_PACK_SEED = b"pack-0"


def file_node(
    name: str,
    content: list[ContentID] | None = None,
    *,
    size: int = 0,
    inode: int = 0,
    mtime: str = "2024-01-01 00:00:00",
) -> TreeNodeSchema:
    """Build a regular-file tree entry."""
    return TreeNodeSchema(
        name=name,
        type=NodeType.FILE,
        size=size,
        inode=inode,
        mtime=parse_datetime(mtime),
        content=list(content or []),
    )


def dir_node(
    name: str, subtree: ContentID, *, inode: int = 0, mtime: str = "2024-01-01 00:00:00"
) -> TreeNodeSchema:
    """Build a directory tree entry pointing at *subtree*."""
    return TreeNodeSchema(
        name=name,
        type=NodeType.DIR,
        inode=inode,
        mtime=parse_datetime(mtime),
        subtree=subtree,
    )


class MemoryRepository:
    """Backup repository kept entirely in memory."""

    def __init__(self, connections: int = 2) -> None:
        self.connections = connections
        self.snapshots: list[SnapshotSchema] = []
        self.blobs: list[IndexedBlob] = []
        self.trees: dict[ContentID, bytes] = {}
        self.default_pack = ContentID.hash(_DEFAULT_PACK_SEED)
        self._snapshot_seq = count(1)

    async def list_snapshots(self) -> list[SnapshotSchema]:
        return list(self.snapshots)

    async def list_indexed_blobs(self) -> list[IndexedBlob]:
        return list(self.blobs)

    async def load_tree(self, tree_id: ContentID) -> bytes:
        try:
            return self.trees[tree_id]
        except KeyError:
            msg = f"tree {tree_id} not found"
            raise FileNotFoundError(msg) from None

    def index(
        self,
        blob_id: ContentID,
        blob_type: BlobType,
        length: int,
        pack: ContentID | None = None,
    ) -> None:
        """Add an index entry unless *blob_id* is already indexed."""
        if any(blob.id == blob_id for blob in self.blobs):
            return
        self.blobs.append(
            IndexedBlob(
                id=blob_id,
                type=blob_type,
                pack_id=pack or self.default_pack,
                length=length,
                uncompressed_length=length,
            )
        )

    def add_data(self, data: bytes, pack: ContentID | None = None) -> ContentID:
        """Store a data blob and return its ID."""
        blob_id = ContentID.hash(data)
        self.index(blob_id, BlobType.DATA, len(data), pack)
        return blob_id

    def add_tree(self, nodes: list[TreeNodeSchema], pack: ContentID | None = None) -> ContentID:
        """Store a tree blob built from *nodes* and return its ID."""
        data = encode_tree(nodes)
        tree_id = ContentID.hash(data)
        self.trees[tree_id] = data
        self.index(tree_id, BlobType.TREE, len(data), pack)
        return tree_id

    def add_snapshot(
        self,
        tree: ContentID,
        time: str | datetime = "2024-01-01 00:00:00",
        hostname: str = "host",
        paths: list[str] | None = None,
    ) -> SnapshotSchema:
        """Record a snapshot of *tree*; its ID is derived from a sequence number."""
        seq = next(self._snapshot_seq)
        snapshot_id = ContentID(hashlib.sha256(f"snapshot-{seq}".encode()).digest())
        snapshot = SnapshotSchema(
            id=snapshot_id,
            time=parse_datetime(time),
            hostname=hostname,
            paths=list(paths or ["/home"]),
            tree=tree,
        )
        self.snapshots.append(snapshot)
        return snapshot

    def remove_snapshot(self, snapshot_id: ContentID) -> None:
        self.snapshots = [s for s in self.snapshots if s.id != snapshot_id]

    def repack(self, blob_id: ContentID, pack: ContentID) -> None:
        """Move *blob_id* into *pack*."""
        for position, blob in enumerate(self.blobs):
            if blob.id == blob_id:
                self.blobs[position] = blob.model_copy(update={"pack_id": pack})
                return
        msg = f"blob {blob_id} is not indexed"
        raise KeyError(msg)

    def forget_blob(self, blob_id: ContentID) -> None:
        """Drop *blob_id* from the index, leaving any tree data in place."""
        self.blobs = [blob for blob in self.blobs if blob.id != blob_id]
