"""Property-based tests for canonical directory paths."""

from __future__ import annotations

import random
import string

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from reposhadow.schemas.repository import NodeType
from reposhadow.services.dag import build_children, reachable, resolve_paths
from reposhadow.services.graph_service import DirectoryEntry

PROPERTY_SETTINGS = settings(
    max_examples=150,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

_NAME = st.text(alphabet=string.ascii_lowercase, min_size=1, max_size=3)


def _dir(name: str, subtree: int) -> DirectoryEntry:
    return DirectoryEntry(
        name=name, kind=NodeType.DIR, size=0, device=0, inode=0, mtime="", subtree=subtree
    )


@st.composite
def _trees(draw: st.DrawFn) -> tuple[dict[int, list[DirectoryEntry]], dict[int, str]]:
    """A random tree rooted at 2 together with the path of each node."""
    size = draw(st.integers(min_value=1, max_value=25))
    directories: dict[int, list[DirectoryEntry]] = {2: []}
    expected = {2: "/"}
    for node in range(3, size + 3):
        parent = draw(st.sampled_from(sorted(directories)))
        taken = {entry.name for entry in directories[parent]}
        name = draw(_NAME.filter(lambda n, taken=taken: n not in taken))
        directories[parent].append(_dir(name, node))
        directories[node] = []
        prefix = "" if expected[parent] == "/" else expected[parent]
        expected[node] = f"{prefix}/{name}"
    return directories, expected


@PROPERTY_SETTINGS
@given(_trees(), st.randoms(use_true_random=False))
def test_tree_paths_are_unique_and_order_independent(
    tree: tuple[dict[int, list[DirectoryEntry]], dict[int, str]],
    rnd: random.Random,
) -> None:
    directories, expected = tree
    shuffled = {node: rnd.sample(entries, len(entries)) for node, entries in directories.items()}

    paths = resolve_paths(directories, [2])
    assert paths == expected
    assert resolve_paths(shuffled, [2]) == expected
    assert len(set(paths.values())) == len(paths)


@PROPERTY_SETTINGS
@given(_trees())
def test_every_reachable_directory_has_a_path(
    tree: tuple[dict[int, list[DirectoryEntry]], dict[int, str]],
) -> None:
    directories, _ = tree
    paths = resolve_paths(directories, [2])
    assert set(paths) == reachable(2, build_children(directories))
