"""
Byte streams returned by StorageClient.create() and StorageClient.open()
"""

import io
import logging
from typing import Awaitable, Callable, Optional

from .error import BucketStoreException, InvalidArgumentException
from .models import StorageResourceId

logger = logging.getLogger(__name__)


class ObjectWriteChannel:
    """
    Accumulates written bytes and commits them as one object on close().

    The commit coroutine carries whatever write conditions the creating client
    attached, so a close() that lost a race fails instead of clobbering the
    winner.
    """

    def __init__(
        self,
        resource_id: StorageResourceId,
        commit: Callable[[bytes], Awaitable[None]],
    ):
        self.resource_id = resource_id
        self._commit = commit
        self._buffer: Optional[io.BytesIO] = io.BytesIO()
        self._on_close: list = []

    @property
    def is_open(self) -> bool:
        return self._buffer is not None

    def add_close_callback(self, callback: Callable[[], Awaitable[None]]) -> None:
        """Register a coroutine to run after a successful commit."""
        self._on_close.append(callback)

    async def write(self, data: bytes) -> int:
        if self._buffer is None:
            raise ValueError(f"Channel for {self.resource_id} is closed")
        return self._buffer.write(data)

    async def close(self) -> None:
        if self._buffer is None:
            return
        data = self._buffer.getvalue()
        self._buffer = None
        logger.debug("Committing %d bytes to %s", len(data), self.resource_id)
        await self._commit(data)
        for callback in self._on_close:
            await callback()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class ObjectReadChannel:
    """Seekable reader that fetches byte ranges of one object on demand."""

    def __init__(
        self,
        resource_id: StorageResourceId,
        size: int,
        fetch: Callable[[int, int], Awaitable[bytes]],
    ):
        self.resource_id = resource_id
        self._size = size
        self._fetch = fetch
        self._position = 0
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def size(self) -> int:
        return self._size

    @property
    def position(self) -> int:
        return self._position

    def seek(self, position: int) -> None:
        self._check_open()
        if position < 0 or position > self._size:
            raise InvalidArgumentException(
                f"Invalid seek offset: position value ({position}) must be between 0 and {self._size} for {self.resource_id}"
            )
        self._position = position

    async def read(self, n: int = -1) -> bytes:
        """Read up to n bytes (all remaining bytes when n < 0); b"" at end of object."""
        self._check_open()
        remaining = self._size - self._position
        if remaining <= 0 or n == 0:
            return b""
        if n < 0 or n > remaining:
            n = remaining
        data = await self._fetch(self._position, self._position + n - 1)
        # A server that ignores Range sends more than was asked for.
        data = data[:n]
        self._position += len(data)
        return data

    async def read_all(self) -> bytes:
        """Read every remaining byte, failing if the object ends early."""
        chunks = []
        while self._position < self._size:
            chunk = await self.read(-1)
            if not chunk:
                raise BucketStoreException(
                    f"Premature end of {self.resource_id}: got {self._position} of {self._size} bytes"
                )
            chunks.append(chunk)
        return b"".join(chunks)

    async def close(self) -> None:
        self._open = False

    def _check_open(self) -> None:
        if not self._open:
            raise ValueError(f"Channel for {self.resource_id} is closed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
