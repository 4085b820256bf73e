"""Content IDs and the run-local registry mapping them to dense integers."""

from __future__ import annotations

import hashlib
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic_core import core_schema

if TYPE_CHECKING:
    from pydantic import GetCoreSchemaHandler

CONTENT_ID_SIZE = 32


@dataclass(frozen=True, order=True, slots=True)
class ContentID:
    """A 32-byte SHA-256 digest addressing an immutable repository object."""

    raw: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.raw, bytes) or len(self.raw) != CONTENT_ID_SIZE:
            msg = f"Content ID must be {CONTENT_ID_SIZE} bytes, got {self.raw!r}"
            raise ValueError(msg)

    @classmethod
    def from_hex(cls, value: str) -> ContentID:
        try:
            raw = bytes.fromhex(value)
        except ValueError as exc:
            msg = f"Invalid content ID {value!r}"
            raise ValueError(msg) from exc
        return cls(raw)

    @classmethod
    def hash(cls, data: bytes) -> ContentID:
        """Return the content ID of *data*."""
        return cls(hashlib.sha256(data).digest())

    def hex(self) -> str:
        return self.raw.hex()

    def short(self) -> str:
        """First 8 hex characters, used as the snapshot short ID."""
        return self.raw.hex()[:8]

    def __str__(self) -> str:
        return self.hex()

    def __repr__(self) -> str:
        return f"ContentID({self.short()})"

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source_type: Any, handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        return core_schema.no_info_plain_validator_function(
            _coerce_content_id,
            serialization=core_schema.plain_serializer_function_ser_schema(
                lambda value: value.hex(), when_used="json"
            ),
        )


def _coerce_content_id(value: object) -> ContentID:
    if isinstance(value, ContentID):
        return value
    if isinstance(value, str):
        return ContentID.from_hex(value)
    if isinstance(value, bytes):
        return ContentID(value)
    msg = f"Cannot interpret {type(value).__name__} as a content ID"
    raise ValueError(msg)


# Canonical serialization of a directory without entries.
EMPTY_TREE_DATA = b'{"nodes":[]}\n'
EMPTY_TREE_ID = ContentID.hash(EMPTY_TREE_DATA)

NULL_INT_ID = 0
EMPTY_TREE_INT_ID = 1
FIRST_INT_ID = 2


class IdentifierRegistry:
    """Append-only, injective mapping between content IDs and dense integers.

    Slot 0 is never handed out, slot 1 always belongs to the empty tree and
    ordinary IDs start at 2.  Interning is safe to call from concurrent
    workers.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids: list[ContentID | None] = [None, EMPTY_TREE_ID]
        self._int_ids: dict[ContentID, int] = {EMPTY_TREE_ID: EMPTY_TREE_INT_ID}

    def intern(self, content_id: ContentID) -> int:
        """Return the IntID of *content_id*, assigning the next free one if needed."""
        with self._lock:
            int_id = self._int_ids.get(content_id)
            if int_id is None:
                int_id = len(self._ids)
                self._ids.append(content_id)
                self._int_ids[content_id] = int_id
            return int_id

    def lookup(self, content_id: ContentID) -> int | None:
        return self._int_ids.get(content_id)

    def resolve(self, int_id: int) -> ContentID:
        """Return the content ID interned as *int_id*.

        Raises ``KeyError`` for IDs that were never handed out.
        """
        if int_id <= NULL_INT_ID or int_id >= len(self._ids):
            raise KeyError(int_id)
        return self._ids[int_id]  # type: ignore[return-value]

    def __len__(self) -> int:
        return len(self._int_ids)

    def __contains__(self, content_id: object) -> bool:
        return content_id in self._int_ids
