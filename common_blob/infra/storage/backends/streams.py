"""Streaming reader and buffering writer shared by every backend.

``ObjectReader`` proxies a backend's streaming response chunk by chunk
without buffering the whole object. ``ObjectWriter`` buffers every write in
memory and performs exactly one upload when it is closed; nothing reaches the
backend before that. Arbitrarily large objects are therefore fully buffered,
so callers uploading unbounded streams should chunk their data into separate
``write()`` calls instead.
"""

from __future__ import annotations

import inspect
from io import BytesIO
import logging
from typing import TYPE_CHECKING, Any

from common_blob.infra.storage.exceptions import StorageStreamClosedError

from .protocol import DEFAULT_CONTENT_TYPE

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable
    from types import TracebackType

logger = logging.getLogger(__name__)


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class ObjectReader:
    """Lazily consumed, single-pass, forward-only byte stream.

    Attributes:
        key: Object key being read
        size: Number of bytes the stream will yield, when known

    Example:
        async with await storage.get_reader("large.bin") as reader:
            async for chunk in reader:
                process(chunk)
    """

    def __init__(
        self,
        key: str,
        chunks: AsyncIterator[bytes],
        release: Callable[[], Any] | None = None,
        size: int | None = None,
    ) -> None:
        """Initialize the reader.

        Args:
            key: Object key being read
            chunks: Async iterator over the backend response body
            release: Callback releasing the backend response; may be sync or async
            size: Expected number of bytes, when the backend reported it
        """
        self.key = key
        self.size = size
        self._chunks = chunks
        self._release = release
        self._buffer = bytearray()
        self._eof = False
        self._closed = False

    @property
    def closed(self) -> bool:
        """True once ``close()`` was called."""
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise StorageStreamClosedError(
                f"Read from closed reader for {self.key}",
                metadata={"key": self.key},
            )

    async def _pull(self) -> bool:
        """Move the next backend chunk into the buffer; False at end of stream."""
        if self._eof:
            return False
        try:
            chunk = await anext(self._chunks)
        except StopAsyncIteration:
            self._eof = True
            return False
        self._buffer.extend(chunk)
        return True

    async def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes (everything left when negative).

        Returns:
            The bytes read; ``b""`` once the stream is exhausted.

        Raises:
            StorageStreamClosedError: If the reader was closed
        """
        self._ensure_open()
        if size is None or size < 0:
            while await self._pull():
                pass
            data = bytes(self._buffer)
            self._buffer.clear()
            return data

        while len(self._buffer) < size and await self._pull():
            pass
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    async def close(self) -> None:
        """Release backend resources; closing twice is a no-op."""
        if self._closed:
            return
        self._closed = True
        self._buffer.clear()
        aclose = getattr(self._chunks, "aclose", None)
        if aclose is not None:
            await aclose()
        if self._release is not None:
            await _maybe_await(self._release())
        logger.debug("Reader closed", extra={"key": self.key})

    def __aiter__(self) -> ObjectReader:
        return self

    async def __anext__(self) -> bytes:
        self._ensure_open()
        if self._buffer:
            data = bytes(self._buffer)
            self._buffer.clear()
            return data
        if await self._pull():
            data = bytes(self._buffer)
            self._buffer.clear()
            return data
        raise StopAsyncIteration

    async def __aenter__(self) -> ObjectReader:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()


async def iter_bytes(data: bytes, chunk_size: int) -> AsyncIterator[bytes]:
    """Yield ``data`` in ``chunk_size`` slices (for backends holding bytes in memory)."""
    for i in range(0, len(data), chunk_size):
        yield data[i : i + chunk_size]


class ObjectWriter:
    """Buffering sink uploaded with a single backend call on ``close()``.

    Single writer, single close: writing after close raises, and a second
    ``close()`` neither raises nor re-uploads. Used as an async context
    manager, the upload happens on clean exit only; if the block raises, the
    buffer is discarded and nothing is uploaded.

    Example:
        writer = storage.get_writer("b.bin")
        await writer.write(b"\\x01\\x02\\x03")
        await writer.close()
    """

    def __init__(
        self,
        key: str,
        upload: Callable[[str, bytes, str], Awaitable[None]],
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> None:
        """Initialize the writer.

        Args:
            key: Destination object key
            upload: Coroutine performing the single upload ``(key, body, content_type)``
            content_type: MIME type stored with the object
        """
        self.key = key
        self.content_type = content_type
        self._upload = upload
        self._buffer = BytesIO()
        self._closed = False

    @property
    def closed(self) -> bool:
        """True once the writer was closed or aborted."""
        return self._closed

    @property
    def buffered_bytes(self) -> int:
        """Number of bytes waiting for the upload."""
        return self._buffer.getbuffer().nbytes

    async def write(self, data: bytes) -> int:
        """Append ``data`` to the buffer.

        Returns:
            Number of bytes accepted

        Raises:
            StorageStreamClosedError: If the writer was closed
        """
        if self._closed:
            raise StorageStreamClosedError(
                f"Write to closed writer for {self.key}",
                metadata={"key": self.key},
            )
        return self._buffer.write(data)

    async def close(self) -> None:
        """Upload the buffered bytes; a second call is a no-op.

        If the upload fails the writer stays open with its buffer intact, so
        ``close()`` can be retried.
        """
        if self._closed:
            return
        body = self._buffer.getvalue()
        logger.debug(
            "Flushing writer",
            extra={"key": self.key, "size_bytes": len(body)},
        )
        await self._upload(self.key, body, self.content_type)
        self._closed = True
        self._buffer = BytesIO()

    def abort(self) -> None:
        """Discard the buffer without uploading anything."""
        self._closed = True
        self._buffer = BytesIO()

    async def __aenter__(self) -> ObjectWriter:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            logger.warning(
                "Discarding writer after error",
                extra={"key": self.key, "error": str(exc_val)},
            )
            self.abort()
            return
        await self.close()
