"""In-memory backend, mainly for tests and ephemeral data."""

from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import UTC, datetime

from unistore.core.errors import GenericError, NotFoundError, ObjectStoreError
from unistore.core.path import DELIMITER, BackendKind, ObjectPath
from unistore.core.storage.multipart import MultipartUploadState
from unistore.core.storage.pagination import DEFAULT_PAGE_SIZE, ListPage
from unistore.core.storage.store import ByteRange, GetResult, ObjectMeta, ObjectStoreBackend
from unistore.core.storage.streaming import ByteStream

logger = logging.getLogger(__name__)


class MemoryBackend(ObjectStoreBackend):
    """Dictionary-backed store living for the lifetime of the instance.

    Writes and renames replace a dictionary entry in one step, so both are
    atomic.
    """

    kind = BackendKind.MEMORY
    supports_atomic_rename = True

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._objects: dict[str, tuple[bytes, ObjectMeta]] = {}

    def _translate_error(self, exc: Exception, path: ObjectPath | None = None) -> ObjectStoreError:
        return GenericError(f"In-memory operation failed: {exc}", path=path, diagnostic=repr(exc))

    def _store(self, path: ObjectPath, data: bytes) -> ObjectMeta:
        meta = ObjectMeta(
            path=path,
            size=len(data),
            last_modified=datetime.now(UTC),
            e_tag=hashlib.md5(data, usedforsecurity=False).hexdigest(),
        )
        self._objects[self._key(path)] = (data, meta)
        return meta

    def _lookup(self, path: ObjectPath) -> tuple[bytes, ObjectMeta]:
        try:
            return self._objects[self._key(path)]
        except KeyError:
            raise NotFoundError(f"Object not found: {path}", path=path) from None

    async def put(self, path: ObjectPath, data: bytes) -> ObjectMeta:
        meta = self._store(path, bytes(data))
        logger.debug(f"Stored object: {path} ({meta.size} bytes)")
        return meta

    async def get(self, path: ObjectPath, byte_range: ByteRange | None = None) -> GetResult:
        data, meta = self._lookup(path)
        if byte_range is not None:
            byte_range = byte_range.validate(meta.size, path)
            data = data[byte_range.start : byte_range.end]
        return GetResult(meta=meta, stream=ByteStream.from_bytes(data))

    async def head(self, path: ObjectPath) -> ObjectMeta:
        return self._lookup(path)[1]

    async def delete(self, path: ObjectPath) -> None:
        self._objects.pop(self._key(path), None)

    async def list_page(
        self,
        prefix: ObjectPath | None,
        delimiter: bool = False,
        marker: str | None = None,
        max_results: int = DEFAULT_PAGE_SIZE,
    ) -> ListPage:
        prefix_key = self._prefix_key(prefix)
        page = ListPage()
        seen_prefixes: set[str] = set()
        count = 0

        for key in sorted(self._objects):
            if not key.startswith(prefix_key) or (marker is not None and key <= marker):
                continue

            remainder = key[len(prefix_key) :]
            if delimiter and DELIMITER in remainder:
                common = prefix_key + remainder.split(DELIMITER, 1)[0]
                if common in seen_prefixes:
                    continue
                seen_prefixes.add(common)
                entry_marker = common + DELIMITER + "\U0010ffff"
                page.common_prefixes.append(self._path(common))
            else:
                entry_marker = key
                page.objects.append(self._objects[key][1])

            count += 1
            if count >= max_results:
                page.next_marker = entry_marker
                break

        return page

    async def copy(self, src: ObjectPath, dst: ObjectPath) -> None:
        data, _ = self._lookup(src)
        self._store(dst, data)

    async def rename(self, src: ObjectPath, dst: ObjectPath) -> None:
        data, _ = self._lookup(src)
        self._store(dst, data)
        if src != dst:
            del self._objects[self._key(src)]

    async def initiate_multipart(self, path: ObjectPath) -> str:
        return uuid.uuid4().hex

    async def upload_part(
        self, path: ObjectPath, state: MultipartUploadState, index: int, data: bytes
    ) -> str:
        state.staged[index] = data
        return hashlib.md5(data, usedforsecurity=False).hexdigest()

    async def complete_multipart(self, path: ObjectPath, state: MultipartUploadState) -> ObjectMeta:
        data = b"".join(state.staged[index] for index, _ in state.ordered_parts())
        state.staged.clear()
        return self._store(path, data)

    async def abort_multipart(self, path: ObjectPath, state: MultipartUploadState) -> None:
        state.staged.clear()
