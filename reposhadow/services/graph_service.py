"""Build the in-memory graph model of a backup repository.

The graph is rebuilt on every run: snapshots, the blob index, every tree
blob parsed into its entries, plus the derived children map, per-snapshot
directory closure and canonical directory paths.  All content IDs are
translated into IntIDs through the identifier registry while building.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import ValidationError

from reposhadow.exceptions import RepositoryCorruptionError, RepositoryIOError
from reposhadow.schemas.repository import BlobType, NodeType, TreeSchema
from reposhadow.services.concurrency import run_pipeline
from reposhadow.services.dag import (
    build_children,
    directory_names,
    reachable,
    resolve_paths,
)
from reposhadow.services.datetime_service import format_datetime, parse_datetime
from reposhadow.services.identifiers import EMPTY_TREE_INT_ID, ContentID

if TYPE_CHECKING:
    from reposhadow.config import Settings
    from reposhadow.repository.base import BackupRepository
    from reposhadow.schemas.repository import SnapshotSchema
    from reposhadow.services.identifiers import IdentifierRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DirectoryEntry:
    """One entry of a directory node, with references as IntIDs."""

    name: str
    kind: NodeType
    size: int
    device: int
    inode: int
    mtime: str
    content: tuple[int, ...] = ()
    subtree: int | None = None


@dataclass(frozen=True, slots=True)
class BlobInfo:
    kind: BlobType
    length: int
    uncompressed_length: int
    pack: int


@dataclass(frozen=True, slots=True)
class SnapshotInfo:
    id: ContentID
    time: datetime
    hostname: str
    paths: tuple[str, ...]
    tree: ContentID
    root: int

    @property
    def short_id(self) -> str:
        return self.id.short()


@dataclass
class RepositoryGraph:
    """Everything the reconciliation needs to know about the repository."""

    registry: IdentifierRegistry
    snapshots: list[SnapshotInfo] = field(default_factory=list)
    directories: dict[int, list[DirectoryEntry]] = field(default_factory=dict)
    blobs: dict[int, BlobInfo] = field(default_factory=dict)
    packs: dict[int, set[int]] = field(default_factory=dict)
    children: dict[int, set[int]] = field(default_factory=dict)
    closure: dict[ContentID, set[int]] = field(default_factory=dict)
    paths: dict[int, str] = field(default_factory=dict)
    directory_names: dict[int, str] = field(default_factory=dict)
    # Earliest snapshot under each short ID
    by_short_id: dict[str, SnapshotInfo] = field(default_factory=dict)


def _snapshot_info(snapshot: SnapshotSchema, registry: IdentifierRegistry) -> SnapshotInfo:
    registry.intern(snapshot.id)
    return SnapshotInfo(
        id=snapshot.id,
        time=parse_datetime(snapshot.time),
        hostname=snapshot.hostname,
        paths=tuple(snapshot.paths),
        tree=snapshot.tree,
        root=registry.intern(snapshot.tree),
    )


def parse_tree(
    tree_id: ContentID,
    data: bytes,
    registry: IdentifierRegistry,
    blobs: dict[int, BlobInfo],
) -> list[DirectoryEntry]:
    """Decode a tree blob and translate its references into IntIDs.

    Raises ``RepositoryCorruptionError`` for a hash mismatch, a malformed
    tree, or a reference to a blob the index does not know.
    """
    if ContentID.hash(data) != tree_id:
        msg = f"Tree {tree_id} does not match its content hash"
        raise RepositoryCorruptionError(msg)
    try:
        tree = TreeSchema.model_validate_json(data)
    except ValidationError as exc:
        msg = f"Tree {tree_id} is malformed: {exc}"
        raise RepositoryCorruptionError(msg) from exc

    def resolve(ref: ContentID, *, allow_empty_tree: bool = False) -> int:
        int_id = registry.lookup(ref)
        if int_id is None or (int_id not in blobs and not (
            allow_empty_tree and int_id == EMPTY_TREE_INT_ID
        )):
            msg = f"Tree {tree_id} references unknown blob {ref}"
            raise RepositoryCorruptionError(msg)
        return int_id

    entries: list[DirectoryEntry] = []
    for node in tree.nodes:
        content: tuple[int, ...] = ()
        subtree: int | None = None
        if node.type == NodeType.FILE and node.content:
            content = tuple(resolve(ref) for ref in node.content)
        elif node.type == NodeType.DIR and node.subtree is not None:
            subtree = resolve(node.subtree, allow_empty_tree=True)
        entries.append(
            DirectoryEntry(
                name=node.name,
                kind=node.type,
                size=node.size,
                device=node.device_id,
                inode=node.inode,
                mtime=format_datetime(node.mtime) if node.mtime else "",
                content=content,
                subtree=subtree,
            )
        )
    return entries


async def build_graph(
    repository: BackupRepository,
    registry: IdentifierRegistry,
    settings: Settings,
) -> RepositoryGraph:
    """Read the whole repository into a ``RepositoryGraph``.

    Tree blobs are fetched by ``repository.connections`` concurrent workers;
    the first failure cancels the rest and is re-raised.
    """
    graph = RepositoryGraph(registry=registry)
    try:
        snapshots = await repository.list_snapshots()
        indexed = await repository.list_indexed_blobs()
    except OSError as exc:
        msg = f"Cannot list repository contents: {exc}"
        raise RepositoryIOError(msg) from exc

    graph.snapshots = sorted(
        (_snapshot_info(snapshot, registry) for snapshot in snapshots),
        key=lambda s: s.time,
    )
    for snapshot in graph.snapshots:
        graph.by_short_id.setdefault(snapshot.short_id, snapshot)

    for blob in indexed:
        blob_int = registry.intern(blob.id)
        if blob_int in graph.blobs:
            continue
        pack_int = registry.intern(blob.pack_id)
        graph.blobs[blob_int] = BlobInfo(
            kind=blob.type,
            length=blob.length,
            uncompressed_length=blob.uncompressed_length,
            pack=pack_int,
        )
        graph.packs.setdefault(pack_int, set()).add(blob_int)

    for snapshot in graph.snapshots:
        if snapshot.root == EMPTY_TREE_INT_ID:
            continue
        info = graph.blobs.get(snapshot.root)
        if info is None or info.kind != BlobType.TREE:
            msg = f"Snapshot {snapshot.short_id} has unknown root tree {snapshot.tree}"
            raise RepositoryCorruptionError(msg)

    tree_ids = [blob_int for blob_int, info in graph.blobs.items() if info.kind == BlobType.TREE]
    directories: dict[int, list[DirectoryEntry]] = {}

    async def load(tree_int: int) -> None:
        tree_id = registry.resolve(tree_int)
        try:
            data = await repository.load_tree(tree_id)
        except OSError as exc:
            msg = f"Cannot load tree {tree_id}: {exc}"
            raise RepositoryIOError(msg) from exc
        directories[tree_int] = parse_tree(tree_id, data, registry, graph.blobs)

    await run_pipeline(
        tree_ids,
        load,
        capacity=settings.queue_capacity,
        workers=repository.connections,
    )
    directories.setdefault(EMPTY_TREE_INT_ID, [])
    graph.directories = directories

    graph.children = build_children(directories)
    for snapshot in graph.snapshots:
        graph.closure[snapshot.id] = reachable(snapshot.root, graph.children)
    graph.paths = resolve_paths(directories, (s.root for s in graph.snapshots))
    graph.directory_names = directory_names(directories)

    logger.info(
        "Repository graph: %d snapshots, %d blobs in %d packs, %d directories",
        len(graph.snapshots),
        len(graph.blobs),
        len(graph.packs),
        len(directories),
    )
    return graph
