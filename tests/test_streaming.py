"""Tests for byte streams and byte-source handling."""

from __future__ import annotations

from io import BytesIO
from unittest.mock import Mock

import pytest

from unistore.core.errors import GenericError, TransientError
from unistore.core.storage.streaming import ByteStream, iter_chunks, iter_source, rechunk


async def _collect(aiter):
    return [chunk async for chunk in aiter]


async def _agen(*chunks):
    for chunk in chunks:
        yield chunk


class TestByteStream:
    """Test ByteStream iteration and release."""

    @pytest.mark.asyncio
    async def test_read_all(self):
        stream = ByteStream(iter([b"ab", b"", b"cd"]))
        assert await stream.read() == b"abcd"
        assert stream.closed

    @pytest.mark.asyncio
    async def test_from_bytes_chunks(self):
        stream = ByteStream.from_bytes(b"abcdefg", chunk_size=3)
        assert await _collect(stream) == [b"abc", b"def", b"g"]

    @pytest.mark.asyncio
    async def test_empty(self):
        assert await ByteStream.empty().read() == b""

    @pytest.mark.asyncio
    async def test_close_called_once_on_exhaustion(self):
        close = Mock()
        stream = ByteStream(iter([b"x"]), close=close)

        await stream.read()
        await stream.aclose()

        close.assert_called_once()

    @pytest.mark.asyncio
    async def test_early_close_releases_response(self):
        """Test that abandoning a read midway releases the response."""
        close = Mock()
        stream = ByteStream(iter([b"a", b"b", b"c"]), close=close)

        async with stream:
            assert await stream.__anext__() == b"a"

        close.assert_called_once()
        assert await stream.read() == b""

    @pytest.mark.asyncio
    async def test_close_errors_are_ignored(self):
        stream = ByteStream(iter([b"a"]), close=Mock(side_effect=OSError("gone")))
        await stream.aclose()
        assert stream.closed

    @pytest.mark.asyncio
    async def test_mid_read_error_translated(self):
        def chunks():
            yield b"a"
            raise ConnectionResetError("reset")

        close = Mock()
        stream = ByteStream(
            chunks(), close=close, translate=lambda e: TransientError("read failed", diagnostic=str(e))
        )

        assert await stream.__anext__() == b"a"
        with pytest.raises(TransientError):
            await stream.__anext__()
        close.assert_called_once()

    @pytest.mark.asyncio
    async def test_mid_read_error_untranslated(self):
        def chunks():
            raise ValueError("bad")
            yield b""

        with pytest.raises(ValueError):
            await ByteStream(chunks()).read()

    @pytest.mark.asyncio
    async def test_taxonomy_errors_pass_through(self):
        def chunks():
            raise GenericError("already mapped")
            yield b""

        with pytest.raises(GenericError):
            await ByteStream(chunks(), translate=lambda e: TransientError("wrong")).read()


class TestByteSources:
    """Test source normalization and re-chunking."""

    def test_iter_chunks(self):
        assert list(iter_chunks(b"abcde", 2)) == [b"ab", b"cd", b"e"]
        assert list(iter_chunks(b"", 2)) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "source",
        [b"hello", bytearray(b"hello"), memoryview(b"hello"), [b"he", b"", b"llo"]],
    )
    async def test_in_memory_sources(self, source):
        assert b"".join(await _collect(iter_source(source))) == b"hello"

    @pytest.mark.asyncio
    async def test_file_source(self):
        chunks = await _collect(iter_source(BytesIO(b"hello"), chunk_size=2))
        assert chunks == [b"he", b"ll", b"o"]

    @pytest.mark.asyncio
    async def test_async_source(self):
        assert await _collect(iter_source(_agen(b"a", b"", b"b"))) == [b"a", b"b"]

    @pytest.mark.asyncio
    async def test_byte_stream_source(self):
        """Test that a read stream can feed a write."""
        stream = ByteStream.from_bytes(b"abcdef", chunk_size=4)
        assert await _collect(iter_source(stream)) == [b"abcd", b"ef"]

    @pytest.mark.asyncio
    async def test_unsupported_source(self):
        with pytest.raises(TypeError):
            await _collect(iter_source(12345))

    @pytest.mark.asyncio
    async def test_rechunk_exact_parts(self):
        parts = await _collect(rechunk(_agen(b"abc", b"defgh", b"i"), 4))
        assert parts == [b"abcd", b"efgh", b"i"]

    @pytest.mark.asyncio
    async def test_rechunk_empty(self):
        assert await _collect(rechunk(_agen(), 4)) == []
