"""Lazy byte streams for reads and byte-source handling for writes.

Reads hand back a ``ByteStream``: an async iterator that pulls one chunk at a
time from a blocking SDK response on a worker thread. Closing the stream, or
simply dropping it, releases the underlying response without raising.

Writes accept any of ``bytes``, a binary file-like object, or a sync/async
iterable of ``bytes``; ``iter_source`` normalizes these and ``rechunk`` slices
the result into fixed-size parts.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import AsyncIterable, AsyncIterator, Callable, Iterable, Iterator
from typing import BinaryIO, Union

from unistore.core.errors import ObjectStoreError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1024 * 1024

ByteSource = Union[bytes, bytearray, memoryview, BinaryIO, Iterable[bytes], AsyncIterable[bytes]]

_EXHAUSTED = object()


def _close_quietly(close: Callable[[], None]) -> None:
    try:
        close()
    except Exception as e:
        logger.debug(f"Ignoring error while closing stream: {e}")


class ByteStream:
    """Finite, non-restartable async sequence of byte chunks.

    Args:
        chunks: Iterator producing the body chunks
        close: Callback releasing the underlying response; runs exactly once
        translate: Maps a native error raised mid-read into the taxonomy
        blocking: Pull chunks on a worker thread (SDK responses block)
    """

    def __init__(
        self,
        chunks: Iterator[bytes],
        close: Callable[[], None] | None = None,
        translate: Callable[[Exception], ObjectStoreError] | None = None,
        blocking: bool = True,
    ):
        self._chunks = chunks
        self._translate = translate
        self._blocking = blocking
        self._closed = False
        self._finalizer = weakref.finalize(self, _close_quietly, close) if close else None

    @classmethod
    def from_bytes(cls, data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> ByteStream:
        """Stream over an in-memory buffer."""
        return cls(iter_chunks(data, chunk_size), blocking=False)

    @classmethod
    def empty(cls) -> ByteStream:
        return cls(iter(()), blocking=False)

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> ByteStream:
        return self

    async def __anext__(self) -> bytes:
        while not self._closed:
            try:
                if self._blocking:
                    chunk = await asyncio.to_thread(next, self._chunks, _EXHAUSTED)
                else:
                    chunk = next(self._chunks, _EXHAUSTED)
            except ObjectStoreError:
                await self.aclose()
                raise
            except Exception as e:
                await self.aclose()
                if self._translate is None:
                    raise
                raise self._translate(e) from e

            if chunk is _EXHAUSTED:
                await self.aclose()
                break
            if chunk:
                return chunk
        raise StopAsyncIteration

    async def aclose(self) -> None:
        """Stop the transfer and release the response. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        if self._finalizer is not None:
            self._finalizer()

    async def read(self) -> bytes:
        """Drain the remaining chunks into one buffer."""
        return b"".join([chunk async for chunk in self])

    async def __aenter__(self) -> ByteStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def iter_chunks(data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
    view = memoryview(data)
    for offset in range(0, len(view), chunk_size):
        yield bytes(view[offset : offset + chunk_size])


async def iter_source(source: ByteSource, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Normalize any supported byte source into an async chunk iterator."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        if len(source):
            yield bytes(source)
        return

    if isinstance(source, AsyncIterable):
        async for chunk in source:
            if chunk:
                yield bytes(chunk)

    elif hasattr(source, "read"):
        while True:
            chunk = await asyncio.to_thread(source.read, chunk_size)
            if not chunk:
                return
            yield chunk

    elif isinstance(source, Iterable):
        for chunk in source:
            if chunk:
                yield bytes(chunk)

    else:
        raise TypeError(f"Unsupported byte source: {type(source).__name__}")


async def rechunk(chunks: AsyncIterator[bytes], size: int) -> AsyncIterator[bytes]:
    """Re-slice ``chunks`` into pieces of exactly ``size`` bytes.

    Only the final piece may be shorter. Nothing is yielded for an empty
    source. At most one part plus one incoming chunk is buffered.
    """
    buffer = bytearray()
    async for chunk in chunks:
        buffer += chunk
        while len(buffer) >= size:
            yield bytes(buffer[:size])
            del buffer[:size]
    if buffer:
        yield bytes(buffer)
