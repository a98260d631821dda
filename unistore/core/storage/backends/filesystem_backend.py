"""Filesystem backend implementation for object storage.

Objects are stored as plain files beneath a base directory, one directory
level per path segment. Writes go to a temporary file in a hidden staging
directory and are moved into place with ``os.replace``, so readers see
either the old object or the complete new one. Multipart uploads stage each
part as its own file and concatenate them on completion.

Known deviations from blob-store semantics:

* On case-insensitive filesystems (default macOS and Windows volumes)
  ``a/File`` and ``a/file`` refer to the same object. Paths are still compared
  case-sensitively by ``ObjectPath``; the host decides what is stored.
* A path cannot be both an object and a prefix of other objects, since a
  file cannot also be a directory. Such writes fail with ``GenericError``.
* ``e_tag`` is derived from the modification time and size, not content.
"""

from __future__ import annotations

import errno
import hashlib
import logging
import os
import shutil
import tempfile
import uuid
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

from unistore.core.errors import (
    GenericError,
    NotFoundError,
    ObjectStoreError,
    PermissionDeniedError,
    TransientError,
)
from unistore.core.path import BackendKind, ObjectPath
from unistore.core.storage.multipart import MultipartUploadState
from unistore.core.storage.pagination import DEFAULT_PAGE_SIZE, ListPage
from unistore.core.storage.store import ByteRange, GetResult, ObjectMeta, ObjectStoreBackend
from unistore.core.storage.streaming import DEFAULT_CHUNK_SIZE, ByteStream

logger = logging.getLogger(__name__)

# Percent-encoding never produces "%u", so no object can collide with this name.
STAGING_DIR = "%unistore-staging"

_TRANSIENT_ERRNOS = {errno.EAGAIN, errno.EBUSY, errno.EINTR, errno.ETIMEDOUT}


class FilesystemBackend(ObjectStoreBackend):
    """Filesystem implementation of the object store backend."""

    kind = BackendKind.FILESYSTEM
    supports_atomic_rename = True

    def __init__(self, base_path: str | Path, **kwargs):
        """Initialize filesystem backend.

        Args:
            base_path: Base directory path for storing objects
            **kwargs: Common backend options (retry, part_size, ...)
        """
        super().__init__(**kwargs)
        self._base_path = Path(base_path).expanduser().resolve()
        self._base_path.mkdir(parents=True, exist_ok=True)
        self._staging_path = self._base_path / STAGING_DIR
        logger.info(f"Initialized filesystem backend at: {self._base_path}")

    @property
    def base_path(self) -> Path:
        return self._base_path

    def _translate_error(self, exc: Exception, path: ObjectPath | None = None) -> ObjectStoreError:
        if isinstance(exc, (FileNotFoundError, NotADirectoryError, IsADirectoryError)):
            return NotFoundError(f"Object not found: {path}", path=path, diagnostic=str(exc))
        if isinstance(exc, PermissionError):
            return PermissionDeniedError(f"Permission denied: {path}", path=path, diagnostic=str(exc))
        if isinstance(exc, TimeoutError) or (
            isinstance(exc, OSError) and exc.errno in _TRANSIENT_ERRNOS
        ):
            return TransientError(f"Filesystem busy: {path}", path=path, diagnostic=str(exc))
        return GenericError(f"Filesystem operation failed for {path}: {exc}", path=path, diagnostic=repr(exc))

    def _get_object_path(self, path: ObjectPath) -> Path:
        """Get the full filesystem path for an object."""
        return self._base_path / self._key(path)

    def _meta(self, path: ObjectPath, stat: os.stat_result) -> ObjectMeta:
        return ObjectMeta(
            path=path,
            size=stat.st_size,
            last_modified=datetime.fromtimestamp(stat.st_mtime, UTC),
            e_tag=f"{stat.st_mtime_ns:x}-{stat.st_size:x}",
        )

    def _temp_file(self) -> tuple[int, str]:
        self._staging_path.mkdir(parents=True, exist_ok=True)
        return tempfile.mkstemp(dir=self._staging_path, prefix="put-")

    @staticmethod
    def _conflict(path: ObjectPath, exc: OSError) -> GenericError:
        return GenericError(
            f"Cannot write {path}: an object and a prefix would share this name",
            path=path,
            diagnostic=str(exc),
        )

    def _move_into(self, source: str | Path, path: ObjectPath) -> Path:
        """``os.replace`` onto the object location, creating parent directories."""
        target = self._get_object_path(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            os.replace(source, target)
        except (FileExistsError, IsADirectoryError, NotADirectoryError) as e:
            raise self._conflict(path, e) from e
        return target

    def _replace_into(self, temp_name: str, path: ObjectPath) -> ObjectMeta:
        try:
            target = self._move_into(temp_name, path)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise
        return self._meta(path, target.stat())

    def _cleanup_empty_dirs(self, path: Path) -> None:
        """Remove empty parent directories up to base_path."""
        try:
            while path != self._base_path and path.is_dir():
                if any(path.iterdir()):
                    break
                path.rmdir()
                path = path.parent
        except OSError as e:
            logger.debug(f"Stopped directory cleanup at {path}: {e}")

    # Blocking implementations, run on worker threads by _call

    def _put_sync(self, path: ObjectPath, data: bytes) -> ObjectMeta:
        fd, temp_name = self._temp_file()
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise
        return self._replace_into(temp_name, path)

    def _head_sync(self, path: ObjectPath) -> ObjectMeta:
        object_path = self._get_object_path(path)
        stat = object_path.stat()
        if object_path.is_dir():
            raise IsADirectoryError(str(object_path))
        return self._meta(path, stat)

    def _open_sync(self, path: ObjectPath, byte_range: ByteRange | None):
        f = open(self._get_object_path(path), "rb")
        try:
            meta = self._meta(path, os.fstat(f.fileno()))
            if byte_range is not None:
                byte_range = byte_range.validate(meta.size, path)
                f.seek(byte_range.start)
                remaining = byte_range.length
            else:
                remaining = meta.size
        except BaseException:
            f.close()
            raise
        return f, meta, remaining

    @staticmethod
    def _read_chunks(f, remaining: int) -> Iterator[bytes]:
        while remaining > 0:
            chunk = f.read(min(DEFAULT_CHUNK_SIZE, remaining))
            if not chunk:
                return
            remaining -= len(chunk)
            yield chunk

    def _delete_sync(self, path: ObjectPath) -> None:
        object_path = self._get_object_path(path)
        if object_path.is_dir():
            raise FileNotFoundError(str(object_path))
        object_path.unlink()
        self._cleanup_empty_dirs(object_path.parent)

    def _walk_keys(self, root: Path) -> Iterator[tuple[str, ObjectPath]]:
        for dirpath, dirnames, filenames in os.walk(root):
            if Path(dirpath) == self._base_path and STAGING_DIR in dirnames:
                dirnames.remove(STAGING_DIR)
            for filename in filenames:
                rel = os.path.relpath(os.path.join(dirpath, filename), self._base_path)
                yield self._list_key(rel), self._path(rel)

    @staticmethod
    def _list_key(rel: str) -> str:
        """Encoded key with ``/`` separators, the order every backend lists in."""
        return rel.replace(os.sep, "/")

    def _has_objects(self, directory: Path) -> bool:
        return any(files for _, _, files in os.walk(directory))

    def _list_page_sync(
        self,
        prefix: ObjectPath | None,
        delimiter: bool,
        marker: str | None,
        max_results: int,
    ) -> ListPage:
        search_path = self._get_object_path(prefix) if prefix else self._base_path
        page = ListPage()
        if not search_path.is_dir():
            return page

        entries: list[tuple[str, ObjectPath, bool]] = []
        if delimiter:
            with os.scandir(search_path) as it:
                for entry in it:
                    if search_path == self._base_path and entry.name == STAGING_DIR:
                        continue
                    rel = os.path.relpath(entry.path, self._base_path)
                    entry_path = self._path(rel)
                    key = self._list_key(rel)
                    if entry.is_dir():
                        # Sorts where the objects beneath it would
                        if self._has_objects(Path(entry.path)):
                            entries.append((key + "/", entry_path, True))
                    else:
                        entries.append((key, entry_path, False))
        else:
            entries = [(key, p, False) for key, p in self._walk_keys(search_path)]

        entries.sort(key=lambda entry: entry[0])
        page_marker: str | None = None
        for key, entry_path, is_prefix in entries:
            if marker is not None and key <= marker:
                continue
            if len(page.objects) + len(page.common_prefixes) >= max_results:
                page.next_marker = page_marker
                break
            if is_prefix:
                page.common_prefixes.append(entry_path)
            else:
                page.objects.append(self._meta(entry_path, self._get_object_path(entry_path).stat()))
            page_marker = key

        return page

    def _copy_sync(self, src: ObjectPath, dst: ObjectPath) -> None:
        source_path = self._get_object_path(src)
        if source_path.is_dir():
            raise FileNotFoundError(str(source_path))
        fd, temp_name = self._temp_file()
        os.close(fd)
        try:
            shutil.copyfile(source_path, temp_name)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise
        self._replace_into(temp_name, dst)

    def _rename_sync(self, src: ObjectPath, dst: ObjectPath) -> None:
        source_path = self._get_object_path(src)
        if not source_path.is_file():
            raise FileNotFoundError(str(source_path))
        self._move_into(source_path, dst)
        self._cleanup_empty_dirs(source_path.parent)

    def _upload_dir(self, state: MultipartUploadState) -> Path:
        return self._staging_path / f"upload-{state.upload_id}"

    def _write_part_sync(self, state: MultipartUploadState, index: int, data: bytes) -> str:
        part_path = self._upload_dir(state) / f"{index:08d}"
        part_path.write_bytes(data)
        return hashlib.md5(data, usedforsecurity=False).hexdigest()

    def _complete_sync(self, path: ObjectPath, state: MultipartUploadState) -> ObjectMeta:
        upload_dir = self._upload_dir(state)
        fd, temp_name = self._temp_file()
        try:
            with os.fdopen(fd, "wb") as out:
                for index, _ in state.ordered_parts():
                    with open(upload_dir / f"{index:08d}", "rb") as part:
                        shutil.copyfileobj(part, out)
                out.flush()
                os.fsync(out.fileno())
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise
        meta = self._replace_into(temp_name, path)
        shutil.rmtree(upload_dir)
        return meta

    def _abort_sync(self, state: MultipartUploadState) -> None:
        upload_dir = self._upload_dir(state)
        if upload_dir.exists():
            shutil.rmtree(upload_dir)

    # ObjectStoreBackend

    async def put(self, path: ObjectPath, data: bytes) -> ObjectMeta:
        """Store an object in the filesystem."""
        meta = await self._call(self._put_sync, path, data, path=path)
        logger.info(f"Stored object: {path} ({meta.size} bytes)")
        return meta

    async def get(self, path: ObjectPath, byte_range: ByteRange | None = None) -> GetResult:
        """Open an object on the filesystem for streaming."""
        f, meta, remaining = await self._call(self._open_sync, path, byte_range, path=path)
        stream = ByteStream(
            self._read_chunks(f, remaining),
            close=f.close,
            translate=lambda e: self._translate_error(e, path),
        )
        return GetResult(meta=meta, stream=stream)

    async def head(self, path: ObjectPath) -> ObjectMeta:
        return await self._call(self._head_sync, path, path=path)

    async def delete(self, path: ObjectPath) -> None:
        """Delete an object from the filesystem."""
        await self._call(self._delete_sync, path, path=path)
        logger.info(f"Deleted object: {path}")

    async def list_page(
        self,
        prefix: ObjectPath | None,
        delimiter: bool = False,
        marker: str | None = None,
        max_results: int = DEFAULT_PAGE_SIZE,
    ) -> ListPage:
        """List objects in the filesystem."""
        return await self._call(
            self._list_page_sync, prefix, delimiter, marker, max_results, path=prefix
        )

    async def copy(self, src: ObjectPath, dst: ObjectPath) -> None:
        """Copy an object in the filesystem via a staged temp file."""
        await self._call(self._copy_sync, src, dst, path=src)

    async def rename(self, src: ObjectPath, dst: ObjectPath) -> None:
        """Atomically move an object with ``os.replace``."""
        await self._call(self._rename_sync, src, dst, path=src)

    async def initiate_multipart(self, path: ObjectPath) -> str:
        upload_id = uuid.uuid4().hex
        state = MultipartUploadState(upload_id=upload_id)
        await self._call(self._upload_dir(state).mkdir, parents=True, path=path)
        return upload_id

    async def upload_part(
        self, path: ObjectPath, state: MultipartUploadState, index: int, data: bytes
    ) -> str:
        return await self._call(self._write_part_sync, state, index, data, path=path)

    async def complete_multipart(self, path: ObjectPath, state: MultipartUploadState) -> ObjectMeta:
        meta = await self._call(self._complete_sync, path, state, path=path)
        logger.info(f"Stored object: {path} ({meta.size} bytes, {len(state.parts)} parts)")
        return meta

    async def abort_multipart(self, path: ObjectPath, state: MultipartUploadState) -> None:
        await self._call(self._abort_sync, state, path=path)
