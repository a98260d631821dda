"""Tests for the filesystem backend."""

from __future__ import annotations

import errno
import os

import pytest

from unistore.core.errors import (
    GenericError,
    NotFoundError,
    PermissionDeniedError,
    TransientError,
)
from unistore.core.path import ObjectPath
from unistore.core.storage.backends.filesystem_backend import STAGING_DIR, FilesystemBackend
from unistore.core.storage.multipart import MultipartUploadState
from unistore.core.storage.pagination import iter_pages
from unistore.core.storage.store import ObjectStore


class TestFilesystemBackendLayout:
    """Test how objects map onto the directory tree."""

    @pytest.fixture
    def backend(self, tmp_path):
        return FilesystemBackend(base_path=tmp_path, part_size=4)

    def test_base_path_created(self, tmp_path):
        backend = FilesystemBackend(base_path=tmp_path / "new" / "root")
        assert backend.base_path.is_dir()

    @pytest.mark.asyncio
    async def test_put_creates_nested_file(self, backend, tmp_path):
        await backend.put(ObjectPath.parse("a/b/c.txt"), b"data")

        assert (tmp_path / "a" / "b" / "c.txt").read_bytes() == b"data"

    @pytest.mark.asyncio
    async def test_put_leaves_no_temp_files(self, backend, tmp_path):
        await backend.put(ObjectPath.parse("a"), b"data")

        assert list((tmp_path / STAGING_DIR).iterdir()) == []

    @pytest.mark.asyncio
    async def test_staging_dir_hidden_from_listing(self, backend, tmp_path):
        (tmp_path / STAGING_DIR).mkdir(exist_ok=True)
        (tmp_path / STAGING_DIR / "leftover").write_bytes(b"x")
        await backend.put(ObjectPath.parse("visible"), b"x")

        store = ObjectStore(backend)
        names = [str(meta.path) async for meta in store.list()]
        result = await store.list_with_delimiter()

        assert names == ["visible"]
        assert result.common_prefixes == frozenset()

    @pytest.mark.asyncio
    async def test_user_key_cannot_hit_staging_dir(self, backend, tmp_path):
        await backend.put(ObjectPath.from_parts(STAGING_DIR), b"x")

        assert (tmp_path / "%25unistore-staging").is_file()

    @pytest.mark.asyncio
    async def test_dot_segments_stay_inside_root(self, backend, tmp_path):
        await backend.put(ObjectPath.from_parts("..", "escape"), b"x")

        assert (tmp_path / "%2E%2E" / "escape").is_file()
        assert not (tmp_path.parent / "escape").exists()

    @pytest.mark.asyncio
    async def test_delete_removes_empty_dirs(self, backend, tmp_path):
        await backend.put(ObjectPath.parse("a/b/c"), b"x")

        await backend.delete(ObjectPath.parse("a/b/c"))

        assert not (tmp_path / "a").exists()
        assert tmp_path.is_dir()

    @pytest.mark.asyncio
    async def test_delete_missing_raises_not_found(self, backend):
        with pytest.raises(NotFoundError):
            await backend.delete(ObjectPath.parse("missing"))

    @pytest.mark.asyncio
    async def test_directory_is_not_an_object(self, backend):
        await backend.put(ObjectPath.parse("dir/file"), b"x")

        with pytest.raises(NotFoundError):
            await backend.head(ObjectPath.parse("dir"))
        with pytest.raises(NotFoundError):
            await backend.get(ObjectPath.parse("dir"))
        with pytest.raises(NotFoundError):
            await backend.delete(ObjectPath.parse("dir"))

    @pytest.mark.asyncio
    async def test_object_over_prefix_conflicts(self, backend, tmp_path):
        await backend.put(ObjectPath.parse("a/b"), b"x")

        with pytest.raises(GenericError):
            await backend.put(ObjectPath.parse("a"), b"y")

        assert (tmp_path / "a" / "b").read_bytes() == b"x"
        assert list((tmp_path / STAGING_DIR).iterdir()) == []

    @pytest.mark.asyncio
    async def test_prefix_under_object_conflicts(self, backend):
        await backend.put(ObjectPath.parse("a"), b"y")

        with pytest.raises(GenericError):
            await backend.put(ObjectPath.parse("a/b"), b"x")

    @pytest.mark.asyncio
    async def test_copy_and_rename_onto_prefix_conflict(self, backend, tmp_path):
        await backend.put(ObjectPath.parse("dir/file"), b"x")
        await backend.put(ObjectPath.parse("src"), b"s")

        with pytest.raises(GenericError):
            await backend.copy(ObjectPath.parse("src"), ObjectPath.parse("dir"))
        with pytest.raises(GenericError):
            await backend.rename(ObjectPath.parse("src"), ObjectPath.parse("dir"))

        assert (tmp_path / "src").read_bytes() == b"s"

    @pytest.mark.asyncio
    async def test_multipart_onto_prefix_conflicts(self, backend, tmp_path):
        await backend.put(ObjectPath.parse("big/part"), b"x")

        with pytest.raises(GenericError):
            await ObjectStore(backend).put_stream("big", [b"0123456789"])

        assert list((tmp_path / STAGING_DIR).iterdir()) == []

    @pytest.mark.asyncio
    async def test_paged_listing_orders_by_encoded_key(self, backend):
        """Test that a segment holding "/" and two segments both survive paging."""
        single = ObjectPath.parse("a%2Fb")
        nested = ObjectPath.parse("a/b")
        await backend.put(single, b"1")
        await backend.put(nested, b"2")
        await backend.put(ObjectPath.parse("a-c"), b"3")

        seen = []
        async for page in iter_pages(lambda marker: backend.list_page(None, marker=marker, max_results=1)):
            seen.extend(meta.path for meta in page.objects)

        assert seen == [single, ObjectPath.parse("a-c"), nested]

    @pytest.mark.asyncio
    async def test_paged_delimited_listing(self, backend):
        await backend.put(ObjectPath.parse("a-x"), b"1")
        await backend.put(ObjectPath.parse("a/y"), b"2")
        await backend.put(ObjectPath.parse("b"), b"3")

        def fetch(marker):
            return backend.list_page(None, delimiter=True, marker=marker, max_results=1)

        seen = []
        async for page in iter_pages(fetch):
            seen.extend(str(meta.path) for meta in page.objects)
            seen.extend(f"{prefix}/" for prefix in page.common_prefixes)

        assert seen == ["a-x", "a/", "b"]

    @pytest.mark.asyncio
    async def test_empty_dirs_not_listed_as_prefixes(self, backend, tmp_path):
        (tmp_path / "empty" / "nested").mkdir(parents=True)
        await backend.put(ObjectPath.parse("full/x"), b"x")

        result = await ObjectStore(backend).list_with_delimiter()

        assert result.common_prefixes == {ObjectPath.parse("full")}

    @pytest.mark.asyncio
    async def test_e_tag_changes_on_overwrite(self, backend):
        path = ObjectPath.parse("etag")
        first = await backend.put(path, b"one")
        second = await backend.put(path, b"second")

        assert first.e_tag != second.e_tag
        assert (await backend.head(path)).e_tag == second.e_tag

    @pytest.mark.asyncio
    async def test_rename_is_atomic_move(self, backend, tmp_path):
        assert backend.supports_atomic_rename
        await backend.put(ObjectPath.parse("src/a"), b"x")

        await backend.rename(ObjectPath.parse("src/a"), ObjectPath.parse("dst/a"))

        assert (tmp_path / "dst" / "a").read_bytes() == b"x"
        assert not (tmp_path / "src").exists()


class TestFilesystemMultipart:
    """Test the staged multipart protocol."""

    @pytest.fixture
    def backend(self, tmp_path):
        return FilesystemBackend(base_path=tmp_path)

    @pytest.mark.asyncio
    async def test_complete_concatenates_parts(self, backend, tmp_path):
        path = ObjectPath.parse("big")
        state = MultipartUploadState(upload_id=await backend.initiate_multipart(path))
        for index, data in ((1, b"world"), (0, b"hello ")):
            state.record_part(index, await backend.upload_part(path, state, index, data))

        meta = await backend.complete_multipart(path, state)

        assert meta.size == 11
        assert (tmp_path / "big").read_bytes() == b"hello world"
        assert list((tmp_path / STAGING_DIR).iterdir()) == []

    @pytest.mark.asyncio
    async def test_abort_removes_staged_parts(self, backend, tmp_path):
        path = ObjectPath.parse("big")
        state = MultipartUploadState(upload_id=await backend.initiate_multipart(path))
        await backend.upload_part(path, state, 0, b"partial")

        await backend.abort_multipart(path, state)

        assert list((tmp_path / STAGING_DIR).iterdir()) == []
        assert not (tmp_path / "big").exists()

    @pytest.mark.asyncio
    async def test_abort_twice_is_harmless(self, backend):
        path = ObjectPath.parse("big")
        state = MultipartUploadState(upload_id=await backend.initiate_multipart(path))

        await backend.abort_multipart(path, state)
        await backend.abort_multipart(path, state)


class TestFilesystemErrorMapping:
    """Test OSError translation."""

    @pytest.fixture
    def backend(self, tmp_path):
        return FilesystemBackend(base_path=tmp_path)

    @pytest.mark.parametrize(
        "exc, expected",
        [
            (FileNotFoundError("gone"), NotFoundError),
            (NotADirectoryError("file in the way"), NotFoundError),
            (IsADirectoryError("dir"), NotFoundError),
            (PermissionError("denied"), PermissionDeniedError),
            (TimeoutError("slow"), TransientError),
            (OSError(errno.EBUSY, "busy"), TransientError),
            (OSError(errno.EAGAIN, "again"), TransientError),
            (OSError(errno.ENOSPC, "disk full"), GenericError),
        ],
    )
    def test_translate(self, backend, exc, expected):
        path = ObjectPath.parse("a")
        error = backend._translate_error(exc, path)

        assert type(error) is expected
        assert error.path == path

    @pytest.mark.asyncio
    @pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="needs POSIX permissions")
    async def test_unreadable_file(self, backend, tmp_path):
        await backend.put(ObjectPath.parse("secret"), b"x")
        (tmp_path / "secret").chmod(0)
        try:
            with pytest.raises(PermissionDeniedError):
                await backend.get(ObjectPath.parse("secret"))
        finally:
            (tmp_path / "secret").chmod(0o600)
