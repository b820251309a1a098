"""StorageProvider protocol — uniform blob operations over a key namespace.

Backends are chosen once at startup (see ``create_storage_provider``) and
are never switched per call.  Every method may raise ``StorageError`` for
transient I/O failures or ``ConfigurationError`` for fatal setup problems.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .stream import ObjectMetadata, ObjectStream


@runtime_checkable
class StorageProvider(Protocol):
    """Core interface every storage backend must implement."""

    name: str

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Called once at startup.  No-op if not needed."""
        ...

    async def close(self) -> None:
        """Called on shutdown."""
        ...

    # ------------------------------------------------------------------
    # Blob operations
    # ------------------------------------------------------------------

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        """Write the full object.  Readers never observe a partial write."""
        ...

    async def get(self, key: str) -> ObjectStream:
        """Return a lazy, restartable byte stream.  ``NotFoundError`` if absent."""
        ...

    async def delete(self, key: str) -> None:
        """Remove the object.  Deleting an absent key is not an error."""
        ...

    async def exists(self, key: str) -> bool: ...

    async def total_usage(self) -> int:
        """Aggregate size in bytes across every stored object."""
        ...

    async def metadata(self, key: str) -> ObjectMetadata | None: ...
