"""Snapshot statistics: per-group totals and repository growth over time."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from reposhadow.schemas.repository import BlobType, NodeType
from reposhadow.services.datetime_service import format_datetime

if TYPE_CHECKING:
    from collections.abc import Iterable

    from reposhadow.services.graph_service import RepositoryGraph, SnapshotInfo


@dataclass(frozen=True, slots=True)
class GroupSummary:
    hostname: str
    path: str
    snapshot_count: int
    tree_blobs: int
    data_blobs: int
    size: int
    inodes: int


@dataclass(frozen=True, slots=True)
class SnapshotGrowth:
    """Blobs first reachable from one snapshot, in time order."""

    short_id: str
    time: str
    hostname: str
    path: str
    tree_blobs: int
    tree_bytes: int
    data_blobs: int
    data_bytes: int

    @property
    def adds_nothing(self) -> bool:
        return not (self.tree_blobs or self.data_blobs)


def _first_path(snapshot: SnapshotInfo) -> str:
    return snapshot.paths[0] if snapshot.paths else ""


def _file_contents(graph: RepositoryGraph, trees: Iterable[int]) -> set[int]:
    data: set[int] = set()
    for tree in trees:
        for entry in graph.directories.get(tree, ()):
            if entry.kind == NodeType.FILE:
                data.update(entry.content)
    return data


def summarize_groups(graph: RepositoryGraph) -> list[GroupSummary]:
    """Summarize the blobs reachable from each (hostname, path) group.

    A snapshot's path is its first source path.  Blobs and inodes are
    counted once per group even when several snapshots share them.
    """
    groups: dict[tuple[str, str], list[SnapshotInfo]] = {}
    for snapshot in graph.snapshots:
        groups.setdefault((snapshot.hostname, _first_path(snapshot)), []).append(snapshot)

    summaries = []
    for (hostname, path), snapshots in sorted(groups.items()):
        trees: set[int] = set()
        for snapshot in snapshots:
            trees |= graph.closure.get(snapshot.id, set())
        data = _file_contents(graph, trees)
        inodes = {
            entry.inode
            for tree in trees
            for entry in graph.directories.get(tree, ())
            if entry.kind == NodeType.FILE
        }
        size = sum(graph.blobs[blob].length for blob in trees | data if blob in graph.blobs)
        summaries.append(
            GroupSummary(
                hostname=hostname,
                path=path,
                snapshot_count=len(snapshots),
                tree_blobs=len(trees),
                data_blobs=len(data),
                size=size,
                inodes=len(inodes),
            )
        )
    return summaries


def summarize_history(graph: RepositoryGraph) -> list[SnapshotGrowth]:
    """Report, for every snapshot in time order, what it added to the repository.

    A blob is counted for the first snapshot that reaches it, either as a
    directory in its closure or as the content of one of its files.  Later
    snapshots sharing the blob do not count it again.
    """
    seen: set[int] = set()
    history = []
    for snapshot in graph.snapshots:
        trees = graph.closure.get(snapshot.id, set())
        fresh = (trees | _file_contents(graph, trees)) - seen
        seen |= fresh

        counts = {BlobType.TREE: [0, 0], BlobType.DATA: [0, 0]}
        for blob in fresh:
            info = graph.blobs.get(blob)
            if info is None:
                continue
            counts[info.kind][0] += 1
            counts[info.kind][1] += info.length
        history.append(
            SnapshotGrowth(
                short_id=snapshot.short_id,
                time=format_datetime(snapshot.time),
                hostname=snapshot.hostname,
                path=_first_path(snapshot),
                tree_blobs=counts[BlobType.TREE][0],
                tree_bytes=counts[BlobType.TREE][1],
                data_blobs=counts[BlobType.DATA][0],
                data_bytes=counts[BlobType.DATA][1],
            )
        )
    return history
