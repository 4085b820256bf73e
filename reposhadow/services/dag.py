"""Directory DAG utilities: children, reachability and canonical paths."""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

from reposhadow.services.identifiers import EMPTY_TREE_INT_ID

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from reposhadow.services.graph_service import DirectoryEntry


def _subdirectories(entries: Sequence[DirectoryEntry]) -> Iterable[tuple[str, int]]:
    for entry in entries:
        if entry.subtree is not None and entry.subtree != EMPTY_TREE_INT_ID:
            yield entry.name, entry.subtree


def build_children(directories: Mapping[int, Sequence[DirectoryEntry]]) -> dict[int, set[int]]:
    """Map each directory to the set of its (non-empty) subdirectories."""
    return {
        parent: {child for _, child in _subdirectories(entries)}
        for parent, entries in directories.items()
    }


def reachable(root: int, children: Mapping[int, set[int]]) -> set[int]:
    """Return *root* and every directory below it, excluding the empty tree.

    Iterative BFS; shared subtrees are visited once.
    """
    if root == EMPTY_TREE_INT_ID:
        return set()
    seen = {root}
    queue = deque([root])
    while queue:
        node = queue.popleft()
        for child in children.get(node, ()):
            if child not in seen:
                seen.add(child)
                queue.append(child)
    return seen


def _join(parent_path: str, name: str) -> str:
    if parent_path == "/":
        return "/" + name
    return f"{parent_path}/{name}"


def resolve_paths(
    directories: Mapping[int, Sequence[DirectoryEntry]],
    roots: Iterable[int],
) -> dict[int, str]:
    """Assign one absolute path to every directory reachable from *roots*.

    Roots are ``/``.  The walk proceeds level by level; within a level the
    candidate paths are applied in sorted order and the first assignment of
    a directory sticks.  A directory reachable along several routes thus
    gets its shallowest, lexicographically smallest path regardless of the
    order in which snapshots or entries were listed.
    """
    paths: dict[int, str] = {}
    level: list[int] = []
    for root in roots:
        if root != EMPTY_TREE_INT_ID and root not in paths:
            paths[root] = "/"
            level.append(root)

    while level:
        candidates = sorted(
            (_join(paths[parent], name), child)
            for parent in level
            for name, child in _subdirectories(directories.get(parent, ()))
        )
        level = []
        for path, child in candidates:
            if child not in paths:
                paths[child] = path
                level.append(child)
    return paths


def directory_names(directories: Mapping[int, Sequence[DirectoryEntry]]) -> dict[int, str]:
    """Map each subdirectory to the smallest name under which it is referenced."""
    names: dict[int, str] = {}
    for entries in directories.values():
        for name, child in _subdirectories(entries):
            current = names.get(child)
            if current is None or name < current:
                names[child] = name
    return names
