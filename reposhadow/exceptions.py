"""Exception types raised by the synchronization core.

Convention:
- ``RepositoryCorruptionError`` for a repository whose content contradicts
  itself (unresolvable blob or tree references, malformed trees, hash
  mismatches).  Fatal; the run is aborted and the transaction rolled back.
- ``ShadowCorruptionError`` for a shadow database that cannot be read back
  (dangling foreign keys, malformed content IDs).  Raised before any write.
- ``RepositoryIOError`` wraps ``OSError`` raised by the repository
  collaborator.  The core never retries.
- Consistency mismatches found by the verifier are reported as values, not
  raised.
"""

from __future__ import annotations


class ShadowSyncError(Exception):
    """Base class for fatal synchronization errors."""


class RepositoryCorruptionError(ShadowSyncError):
    """The repository references an object it does not contain, or an object is malformed."""


class ShadowCorruptionError(ShadowSyncError):
    """The shadow database holds a row that cannot be resolved."""


class RepositoryIOError(ShadowSyncError):
    """Reading from the repository failed."""
