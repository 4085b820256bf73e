"""Protocol for the backup repository read by the synchronization core."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from reposhadow.schemas.repository import IndexedBlob, SnapshotSchema
    from reposhadow.services.identifiers import ContentID


@runtime_checkable
class BackupRepository(Protocol):
    """Read-only view of a content-addressed backup repository."""

    connections: int

    async def list_snapshots(self) -> list[SnapshotSchema]:
        """Return every snapshot in the repository."""
        ...

    async def list_indexed_blobs(self) -> list[IndexedBlob]:
        """Return every index entry (blob, type, pack, sizes)."""
        ...

    async def load_tree(self, tree_id: ContentID) -> bytes:
        """Return the serialized tree blob. Raises ``OSError`` on failure."""
        ...
