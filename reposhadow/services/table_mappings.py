"""Per-table rules tying the repository graph to the shadow tables.

Every table is described by a ``TableMapping``: which domain keys the graph
yields, how a row is built for a key, how the key is recovered from a stored
row, which columns reference other tables and which columns may be updated
in place.  The reader, the reconciliation pipeline and the verifier are all
generic over these mappings.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterator, Mapping
from typing import TYPE_CHECKING, Any, ClassVar

from reposhadow.models import (
    Content,
    DirChildren,
    DirNameId,
    DirPathId,
    Fullname,
    IddFile,
    IndexRepo,
    MetaDir,
    Name,
    Packfile,
    Snapshot,
)
from reposhadow.schemas.repository import NodeType
from reposhadow.services.datetime_service import format_datetime
from reposhadow.services.identifiers import ContentID

if TYPE_CHECKING:
    from reposhadow.models import Base
    from reposhadow.services.graph_service import RepositoryGraph
    from reposhadow.services.identifiers import IdentifierRegistry

# (table, domain key) -> primary key
PrimaryKeyLookup = Callable[[str, Hashable], int]
# column -> domain key of the row referenced by that column
ReferenceLookup = Callable[[str], Hashable]

_ENTRY_TYPES = {NodeType.FILE: "f", NodeType.DIR: "d"}


def _intern_hex(registry: IdentifierRegistry, value: str) -> int:
    return registry.intern(ContentID.from_hex(value))


class TableMapping:
    """Base class; subclasses describe one table each."""

    name: ClassVar[str]
    model: ClassVar[type[Base]]
    # column -> referenced table
    references: ClassVar[dict[str, str]] = {}
    updatable: ClassVar[tuple[str, ...]] = ()
    # The primary key is the referenced index_repo row instead of a counter.
    pk_from_reference: ClassVar[str | None] = None

    def graph_keys(self, graph: RepositoryGraph) -> Iterator[Hashable]:
        raise NotImplementedError

    def build(self, key: Any, graph: RepositoryGraph, pk: PrimaryKeyLookup) -> dict[str, Any]:
        raise NotImplementedError

    def row_key(
        self, row: Mapping[str, Any], ref: ReferenceLookup, registry: IdentifierRegistry
    ) -> Hashable:
        raise NotImplementedError

    def primary_key(self, key: Any, pk: PrimaryKeyLookup) -> int | None:
        if self.pk_from_reference is None:
            return None
        return pk(self.pk_from_reference, key)

    def describe(self, key: Any, registry: IdentifierRegistry) -> str:
        return str(key)


def _short(registry: IdentifierRegistry, int_id: int) -> str:
    try:
        return registry.resolve(int_id).short()
    except KeyError:
        return f"#{int_id}"


class PackfileMapping(TableMapping):
    name = "packfiles"
    model = Packfile

    def graph_keys(self, graph: RepositoryGraph) -> Iterator[int]:
        yield from sorted(graph.packs)

    def build(self, key: int, graph: RepositoryGraph, pk: PrimaryKeyLookup) -> dict[str, Any]:
        return {"packfile_id": graph.registry.resolve(key).hex()}

    def row_key(
        self, row: Mapping[str, Any], ref: ReferenceLookup, registry: IdentifierRegistry
    ) -> Hashable:
        return _intern_hex(registry, row["packfile_id"])

    def describe(self, key: int, registry: IdentifierRegistry) -> str:
        return f"pack {_short(registry, key)}"


class IndexRepoMapping(TableMapping):
    name = "index_repo"
    model = IndexRepo
    references = {"id_pack_id": "packfiles"}
    updatable = ("id_pack_id",)

    def graph_keys(self, graph: RepositoryGraph) -> Iterator[int]:
        yield from sorted(graph.blobs)

    def build(self, key: int, graph: RepositoryGraph, pk: PrimaryKeyLookup) -> dict[str, Any]:
        info = graph.blobs[key]
        return {
            "idd": graph.registry.resolve(key).hex(),
            "idd_size": info.length,
            "index_type": info.kind.value,
            "id_pack_id": pk("packfiles", info.pack),
        }

    def row_key(
        self, row: Mapping[str, Any], ref: ReferenceLookup, registry: IdentifierRegistry
    ) -> Hashable:
        return _intern_hex(registry, row["idd"])

    def describe(self, key: int, registry: IdentifierRegistry) -> str:
        return f"blob {_short(registry, key)}"


class NameMapping(TableMapping):
    name = "names"
    model = Name

    def graph_keys(self, graph: RepositoryGraph) -> Iterator[str]:
        names = {
            entry.name
            for entries in graph.directories.values()
            for entry in entries
            if entry.kind in _ENTRY_TYPES
        }
        yield from sorted(names)

    def build(self, key: str, graph: RepositoryGraph, pk: PrimaryKeyLookup) -> dict[str, Any]:
        return {"name": key}

    def row_key(
        self, row: Mapping[str, Any], ref: ReferenceLookup, registry: IdentifierRegistry
    ) -> Hashable:
        return row["name"]

    def describe(self, key: str, registry: IdentifierRegistry) -> str:
        return f"name {key!r}"


class SnapshotMapping(TableMapping):
    name = "snapshots"
    model = Snapshot

    def graph_keys(self, graph: RepositoryGraph) -> Iterator[str]:
        for snapshot in graph.snapshots:
            yield snapshot.short_id

    def build(self, key: str, graph: RepositoryGraph, pk: PrimaryKeyLookup) -> dict[str, Any]:
        snapshot = graph.by_short_id[key]
        return {
            "snap_id": key,
            "snap_time": format_datetime(snapshot.time),
            "snap_host": snapshot.hostname,
            "snap_fsys": snapshot.paths[0] if snapshot.paths else "",
            "snap_root": snapshot.tree.hex(),
        }

    def row_key(
        self, row: Mapping[str, Any], ref: ReferenceLookup, registry: IdentifierRegistry
    ) -> Hashable:
        return row["snap_id"]

    def describe(self, key: str, registry: IdentifierRegistry) -> str:
        return f"snapshot {key}"


class MetaDirMapping(TableMapping):
    name = "meta_dir"
    model = MetaDir
    references = {"id_snap_id": "snapshots", "id_idd": "index_repo"}

    def graph_keys(self, graph: RepositoryGraph) -> Iterator[tuple[str, int]]:
        for snapshot in graph.snapshots:
            for directory in sorted(graph.closure.get(snapshot.id, ())):
                yield snapshot.short_id, directory

    def build(
        self, key: tuple[str, int], graph: RepositoryGraph, pk: PrimaryKeyLookup
    ) -> dict[str, Any]:
        short_id, directory = key
        return {"id_snap_id": pk("snapshots", short_id), "id_idd": pk("index_repo", directory)}

    def row_key(
        self, row: Mapping[str, Any], ref: ReferenceLookup, registry: IdentifierRegistry
    ) -> Hashable:
        return ref("id_snap_id"), ref("id_idd")

    def describe(self, key: tuple[str, int], registry: IdentifierRegistry) -> str:
        return f"snapshot {key[0]} directory {_short(registry, key[1])}"


class IddFileMapping(TableMapping):
    name = "idd_file"
    model = IddFile
    references = {"id_blob": "index_repo", "id_name": "names"}

    def graph_keys(self, graph: RepositoryGraph) -> Iterator[tuple[int, int]]:
        for tree in sorted(graph.directories):
            for position, entry in enumerate(graph.directories[tree]):
                if entry.kind in _ENTRY_TYPES:
                    yield tree, position

    def build(
        self, key: tuple[int, int], graph: RepositoryGraph, pk: PrimaryKeyLookup
    ) -> dict[str, Any]:
        tree, position = key
        entry = graph.directories[tree][position]
        return {
            "id_blob": pk("index_repo", tree),
            "position": position,
            "id_name": pk("names", entry.name),
            "size": entry.size,
            "inode": entry.inode,
            "mtime": entry.mtime,
            "type": _ENTRY_TYPES[entry.kind],
        }

    def row_key(
        self, row: Mapping[str, Any], ref: ReferenceLookup, registry: IdentifierRegistry
    ) -> Hashable:
        return ref("id_blob"), row["position"]

    def describe(self, key: tuple[int, int], registry: IdentifierRegistry) -> str:
        return f"tree {_short(registry, key[0])} entry {key[1]}"


class ContentMapping(TableMapping):
    name = "contents"
    model = Content
    references = {"id_data_idd": "index_repo", "id_blob": "index_repo"}

    def graph_keys(self, graph: RepositoryGraph) -> Iterator[tuple[int, int, int]]:
        for tree in sorted(graph.directories):
            for position, entry in enumerate(graph.directories[tree]):
                for offset in range(len(entry.content)):
                    yield tree, position, offset

    def build(
        self, key: tuple[int, int, int], graph: RepositoryGraph, pk: PrimaryKeyLookup
    ) -> dict[str, Any]:
        tree, position, offset = key
        entry = graph.directories[tree][position]
        return {
            "id_data_idd": pk("index_repo", entry.content[offset]),
            "id_blob": pk("index_repo", tree),
            "position": position,
            "offset": offset,
        }

    def row_key(
        self, row: Mapping[str, Any], ref: ReferenceLookup, registry: IdentifierRegistry
    ) -> Hashable:
        return ref("id_blob"), row["position"], row["offset"]

    def describe(self, key: tuple[int, int, int], registry: IdentifierRegistry) -> str:
        return f"tree {_short(registry, key[0])} entry {key[1]} offset {key[2]}"


class DirChildrenMapping(TableMapping):
    name = "dir_children"
    model = DirChildren
    references = {"id_parent": "index_repo", "id_child": "index_repo"}

    def graph_keys(self, graph: RepositoryGraph) -> Iterator[tuple[int, int]]:
        for parent in sorted(graph.children):
            for child in sorted(graph.children[parent]):
                yield parent, child

    def build(
        self, key: tuple[int, int], graph: RepositoryGraph, pk: PrimaryKeyLookup
    ) -> dict[str, Any]:
        parent, child = key
        return {"id_parent": pk("index_repo", parent), "id_child": pk("index_repo", child)}

    def row_key(
        self, row: Mapping[str, Any], ref: ReferenceLookup, registry: IdentifierRegistry
    ) -> Hashable:
        return ref("id_parent"), ref("id_child")

    def describe(self, key: tuple[int, int], registry: IdentifierRegistry) -> str:
        return f"directory {_short(registry, key[0])} -> {_short(registry, key[1])}"


class DirNameIdMapping(TableMapping):
    name = "dir_name_id"
    model = DirNameId
    references = {"id": "index_repo", "id_name": "names"}
    updatable = ("id_name",)
    pk_from_reference = "index_repo"

    def graph_keys(self, graph: RepositoryGraph) -> Iterator[int]:
        yield from sorted(graph.directory_names)

    def build(self, key: int, graph: RepositoryGraph, pk: PrimaryKeyLookup) -> dict[str, Any]:
        return {"id_name": pk("names", graph.directory_names[key])}

    def row_key(
        self, row: Mapping[str, Any], ref: ReferenceLookup, registry: IdentifierRegistry
    ) -> Hashable:
        return ref("id")

    def describe(self, key: int, registry: IdentifierRegistry) -> str:
        return f"directory {_short(registry, key)}"


class FullnameMapping(TableMapping):
    name = "fullname"
    model = Fullname

    def graph_keys(self, graph: RepositoryGraph) -> Iterator[str]:
        yield from sorted(set(graph.paths.values()))

    def build(self, key: str, graph: RepositoryGraph, pk: PrimaryKeyLookup) -> dict[str, Any]:
        return {"pathname": key}

    def row_key(
        self, row: Mapping[str, Any], ref: ReferenceLookup, registry: IdentifierRegistry
    ) -> Hashable:
        return row["pathname"]

    def describe(self, key: str, registry: IdentifierRegistry) -> str:
        return f"path {key!r}"


class DirPathIdMapping(TableMapping):
    name = "dir_path_id"
    model = DirPathId
    references = {"id": "index_repo", "id_pathname": "fullname"}
    updatable = ("id_pathname",)
    pk_from_reference = "index_repo"

    def graph_keys(self, graph: RepositoryGraph) -> Iterator[int]:
        yield from sorted(graph.paths)

    def build(self, key: int, graph: RepositoryGraph, pk: PrimaryKeyLookup) -> dict[str, Any]:
        return {"id_pathname": pk("fullname", graph.paths[key])}

    def row_key(
        self, row: Mapping[str, Any], ref: ReferenceLookup, registry: IdentifierRegistry
    ) -> Hashable:
        return ref("id")

    def describe(self, key: int, registry: IdentifierRegistry) -> str:
        return f"directory {_short(registry, key)}"


# Dependency order: every table only references tables listed before it.
TABLE_ORDER: tuple[TableMapping, ...] = (
    PackfileMapping(),
    IndexRepoMapping(),
    NameMapping(),
    SnapshotMapping(),
    MetaDirMapping(),
    IddFileMapping(),
    ContentMapping(),
    DirChildrenMapping(),
    DirNameIdMapping(),
    FullnameMapping(),
    DirPathIdMapping(),
)

MAPPINGS: dict[str, TableMapping] = {mapping.name: mapping for mapping in TABLE_ORDER}
