"""Behavioral tests for ObjectStore, run against every local backend."""

from __future__ import annotations

import asyncio
from io import BytesIO

import pytest

from unistore import (
    BackendKind,
    ByteRange,
    GenericError,
    InvalidPathError,
    InvalidRangeError,
    NotFoundError,
    ObjectPath,
    ObjectStore,
)
from unistore.core.storage.backends.memory_backend import MemoryBackend
from unistore.core.storage.store import ObjectStoreBackend


async def _read(store, path, byte_range=None) -> bytes:
    result = await store.get(path, byte_range)
    return await result.read()


async def _names(store, prefix=None) -> list[str]:
    return [str(meta.path) async for meta in store.list(prefix)]


class CopyDeleteBackend(MemoryBackend):
    """Memory backend using the generic get+put copy and copy+delete rename."""

    supports_atomic_rename = False
    copy = ObjectStoreBackend.copy
    rename = ObjectStoreBackend.rename


class TestRoundTrip:
    """Test put/get round trips."""

    @pytest.mark.asyncio
    async def test_put_and_get(self, store):
        meta = await store.put("a/b.txt", b"hello world")

        assert meta.path == ObjectPath.parse("a/b.txt")
        assert meta.size == 11
        assert await _read(store, "a/b.txt") == b"hello world"

    @pytest.mark.asyncio
    async def test_empty_object(self, store):
        await store.put("empty", b"")

        result = await store.get("empty")
        assert result.meta.size == 0
        assert await result.read() == b""

    @pytest.mark.asyncio
    async def test_overwrite(self, store):
        await store.put("key", b"first version")
        await store.put("key", b"second")

        assert await _read(store, "key") == b"second"
        assert (await store.head("key")).size == 6

    @pytest.mark.asyncio
    async def test_head_matches_get(self, store):
        await store.put("x", b"12345")

        head = await store.head("x")
        result = await store.get("x")
        await result.stream.aclose()

        assert head.size == result.meta.size == 5
        assert head.path == result.meta.path

    @pytest.mark.asyncio
    async def test_path_object_and_string_equivalent(self, store):
        await store.put(ObjectPath.parse("dir/file"), b"x")
        assert await _read(store, "dir//file/") == b"x"

    @pytest.mark.asyncio
    async def test_special_characters(self, store):
        path = ObjectPath.from_parts("odd names", "100% a\\b", "..")
        await store.put(path, b"data")

        assert await _read(store, path) == b"data"
        assert [meta.path async for meta in store.list()] == [path]

    @pytest.mark.asyncio
    async def test_invalid_path(self, store):
        with pytest.raises(InvalidPathError):
            await store.put("//", b"x")


class TestStreaming:
    """Test streamed writes and multipart equivalence."""

    @pytest.mark.asyncio
    async def test_put_stream_larger_than_part(self, store):
        data = bytes(range(256)) * 3
        meta = await store.put_stream("big", [data[i : i + 100] for i in range(0, len(data), 100)])

        assert meta.size == len(data)
        assert await _read(store, "big") == data

    @pytest.mark.asyncio
    async def test_put_and_put_stream_equivalent(self, store):
        """Test that multipart writes match single writes byte for byte."""
        data = b"The quick brown fox jumps over the lazy dog"

        single = await store.put("single", data)
        multi = await store.put_stream("multi", BytesIO(data), total_size_hint=len(data))

        assert await _read(store, "single") == await _read(store, "multi")
        assert single.size == multi.size == (await store.head("multi")).size

    @pytest.mark.asyncio
    async def test_put_stream_async_source(self, store):
        async def source():
            for chunk in (b"ab", b"cd", b"ef"):
                yield chunk

        await store.put_stream("async", source())
        assert await _read(store, "async") == b"abcdef"

    @pytest.mark.asyncio
    async def test_read_in_chunks(self, store):
        await store.put("chunks", b"x" * 10)

        result = await store.get("chunks")
        chunks = [chunk async for chunk in result.stream]

        assert b"".join(chunks) == b"x" * 10
        assert result.stream.closed

    @pytest.mark.asyncio
    async def test_abandoned_read(self, store):
        await store.put("abandon", b"abc")

        result = await store.get("abandon")
        await result.stream.aclose()

        assert await result.read() == b""


class TestRanges:
    """Test byte-range reads."""

    @pytest.mark.asyncio
    async def test_range_slice(self, store):
        await store.put("r", b"0123456789")

        assert await _read(store, "r", (2, 5)) == b"234"
        assert await _read(store, "r", ByteRange(0, 10)) == b"0123456789"

    @pytest.mark.asyncio
    async def test_range_end_clamped(self, store):
        await store.put("r", b"0123456789")

        assert await _read(store, "r", (8, 100)) == b"89"

    @pytest.mark.asyncio
    async def test_empty_range(self, store):
        await store.put("r", b"0123456789")

        assert await _read(store, "r", (4, 4)) == b""
        assert await _read(store, "r", (10, 10)) == b""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("byte_range", [(10, 12), (11, 11), (5, 2), (-1, 3)])
    async def test_invalid_range(self, store, byte_range):
        await store.put("r", b"0123456789")

        with pytest.raises(InvalidRangeError):
            await store.get("r", byte_range)

    @pytest.mark.asyncio
    async def test_range_on_missing_object(self, store):
        with pytest.raises(NotFoundError):
            await store.get("missing", (0, 1))


class TestDelete:
    """Test deletion semantics."""

    @pytest.mark.asyncio
    async def test_delete_idempotent(self, store):
        await store.put("gone", b"x")

        await store.delete("gone")
        await store.delete("gone")

        with pytest.raises(NotFoundError):
            await store.get("gone")
        with pytest.raises(NotFoundError):
            await store.head("gone")

    @pytest.mark.asyncio
    async def test_delete_missing(self, store):
        await store.delete("never/existed")

    @pytest.mark.asyncio
    async def test_delete_leaves_siblings(self, store):
        await store.put("d/1", b"1")
        await store.put("d/2", b"2")

        await store.delete("d/1")

        assert await _names(store) == ["d/2"]


class TestListing:
    """Test flat and delimited listings."""

    @pytest.fixture
    def populate(self, store):
        async def populate():
            for name in ("a/1", "a/2", "b/1", "ab"):
                await store.put(name, name.encode())
            return store

        return populate

    @pytest.mark.asyncio
    async def test_list_prefix(self, populate):
        store = await populate()
        assert await _names(store, "a") == ["a/1", "a/2"]

    @pytest.mark.asyncio
    async def test_list_all(self, populate):
        store = await populate()
        assert await _names(store) == ["a/1", "a/2", "ab", "b/1"]
        assert await _names(store, "") == ["a/1", "a/2", "ab", "b/1"]

    @pytest.mark.asyncio
    async def test_list_missing_prefix(self, populate):
        store = await populate()
        assert await _names(store, "zzz") == []

    @pytest.mark.asyncio
    async def test_list_object_is_not_a_prefix(self, populate):
        store = await populate()
        assert await _names(store, "ab") == []

    @pytest.mark.asyncio
    async def test_list_with_delimiter_root(self, populate):
        store = await populate()
        result = await store.list_with_delimiter("")

        assert result.common_prefixes == {ObjectPath.parse("a"), ObjectPath.parse("b")}
        assert [str(meta.path) for meta in result.objects] == ["ab"]

    @pytest.mark.asyncio
    async def test_list_with_delimiter_nested(self, populate):
        store = await populate()
        await store.put("a/deep/x", b"x")

        result = await store.list_with_delimiter("a")

        assert result.common_prefixes == {ObjectPath.parse("a/deep")}
        assert {str(meta.path) for meta in result.objects} == {"a/1", "a/2"}

    @pytest.mark.asyncio
    async def test_list_with_delimiter_only_prefixes(self, store):
        for name in ("a/1", "a/2", "b/1"):
            await store.put(name, b"x")

        result = await store.list_with_delimiter(None)

        assert result.common_prefixes == {ObjectPath.parse("a"), ObjectPath.parse("b")}
        assert result.objects == ()

    @pytest.mark.asyncio
    async def test_listing_spans_pages(self, store):
        names = [f"p/{i:03d}" for i in range(25)]
        for name in names:
            await store.put(name, b"x")

        backend = store.backend
        collected = []
        marker = None
        while True:
            page = await backend.list_page(ObjectPath.parse("p"), marker=marker, max_results=10)
            collected.extend(str(meta.path) for meta in page.objects)
            if not page.is_truncated:
                break
            marker = page.next_marker

        assert collected == names

    @pytest.mark.asyncio
    async def test_delimited_listing_spans_pages(self, store):
        for name in ("a/1", "a/2", "b/1", "c", "d/1"):
            await store.put(name, b"x")

        backend = store.backend
        prefixes, objects, marker = [], [], None
        while True:
            page = await backend.list_page(None, delimiter=True, marker=marker, max_results=1)
            prefixes.extend(str(p) for p in page.common_prefixes)
            objects.extend(str(meta.path) for meta in page.objects)
            if not page.is_truncated:
                break
            marker = page.next_marker

        assert prefixes == ["a", "b", "d"]
        assert objects == ["c"]


class TestCopyRename:
    """Test copy and rename."""

    @pytest.mark.asyncio
    async def test_copy(self, store):
        await store.put("src", b"payload")

        await store.copy("src", "dst/copy")

        assert await _read(store, "src") == b"payload"
        assert await _read(store, "dst/copy") == b"payload"

    @pytest.mark.asyncio
    async def test_copy_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.copy("missing", "dst")

    @pytest.mark.asyncio
    async def test_rename(self, store):
        await store.put("old/name", b"payload")

        await store.rename("old/name", "new/name", require_atomic=True)

        assert await _read(store, "new/name") == b"payload"
        assert await _names(store) == ["new/name"]

    @pytest.mark.asyncio
    async def test_rename_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.rename("missing", "dst")


class TestNonAtomicRename:
    """Test rename on a backend without an atomic move."""

    @pytest.fixture
    def store(self):
        return ObjectStore(CopyDeleteBackend(part_size=4))

    @pytest.mark.asyncio
    async def test_require_atomic_fails(self, store):
        await store.put("a", b"x")

        with pytest.raises(GenericError):
            await store.rename("a", "b", require_atomic=True)

        assert await _read(store, "a") == b"x"

    @pytest.mark.asyncio
    async def test_copy_then_delete_fallback(self, store):
        await store.put("a", b"x" * 20)

        await store.rename("a", "b")

        assert await _read(store, "b") == b"x" * 20
        with pytest.raises(NotFoundError):
            await store.head("a")


class TestConcurrency:
    """Test concurrent operations on one store."""

    @pytest.mark.asyncio
    async def test_concurrent_puts(self, store):
        await asyncio.gather(*(store.put(f"c/{i}", str(i).encode()) for i in range(20)))

        assert len(await _names(store, "c")) == 20
        assert await _read(store, "c/7") == b"7"


class TestConstruction:
    """Test building stores from configuration."""

    @pytest.mark.asyncio
    async def test_from_config(self, tmp_path):
        async with ObjectStore.from_config({"type": "filesystem", "base_path": str(tmp_path)}) as store:
            assert store.backend_kind is BackendKind.FILESYSTEM
            await store.put("k", b"v")

        assert (tmp_path / "k").read_bytes() == b"v"

    def test_from_config_memory(self):
        store = ObjectStore.from_config({"type": "memory"})
        assert store.backend_kind is BackendKind.MEMORY
