"""ObjectStream — lazily opened, restartable async byte stream."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024  # 64KB


@dataclass(frozen=True, slots=True)
class ObjectMetadata:
    """Size and content type of a stored object."""

    size: int
    content_type: str


class Readable(Protocol):
    """Blocking reader handed out by a backend's opener."""

    def read(self, size: int = -1) -> bytes: ...

    def close(self) -> None: ...


class ObjectStream:
    """Async iterator over an object's bytes.

    Nothing is opened until iteration starts.  Each ``async for`` re-opens
    the object and reads from the beginning, so the stream can be
    restarted.  ``aclose()`` releases the current handle even when the
    consumer stopped mid-stream; ``async with`` does this automatically.
    """

    def __init__(
        self,
        opener: Callable[[], Readable],
        *,
        size: int | None = None,
        content_type: str = "application/octet-stream",
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._opener = opener
        self._handle: Readable | None = None
        self.size = size
        self.content_type = content_type
        self.chunk_size = max(1, chunk_size)

    async def __aenter__(self) -> ObjectStream:
        return self

    async def __aexit__(
        self,
        exc_type: object,
        exc_val: object,
        exc_tb: object,
    ) -> None:
        await self.aclose()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        await self.aclose()
        handle = await asyncio.to_thread(self._opener)
        self._handle = handle
        try:
            while True:
                chunk = await asyncio.to_thread(handle.read, self.chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            self._release(handle)

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    async def read(self) -> bytes:
        """Read the whole object into memory."""
        return b"".join([chunk async for chunk in self])

    async def aclose(self) -> None:
        """Release the underlying handle, if one is open."""
        if self._handle is not None:
            self._release(self._handle)

    def _release(self, handle: Readable) -> None:
        if self._handle is handle:
            self._handle = None
        try:
            handle.close()
        except Exception:
            logger.warning("Failed to close object stream", exc_info=True)
