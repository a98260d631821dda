"""Unified object storage interface.

``ObjectStore`` is the only type callers depend on. It is bound once, at
construction, to one ``ObjectStoreBackend`` (S3-compatible, GCS, Azure Blob,
local filesystem or in-memory) and exposes the same asynchronous contract
whichever backend is active.
"""

from __future__ import annotations

import asyncio
import builtins
import logging
import math
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, TypeVar

from unistore.core.errors import (
    GenericError,
    InvalidConfigError,
    InvalidRangeError,
    NotFoundError,
    ObjectStoreError,
)
from unistore.core.path import BackendKind, ObjectPath, coerce_path, coerce_prefix
from unistore.core.storage.multipart import (
    DEFAULT_MAX_CONCURRENT_PARTS,
    MultipartUpload,
    MultipartUploadState,
)
from unistore.core.storage.pagination import DEFAULT_PAGE_SIZE, ListPage, iter_objects, iter_pages
from unistore.core.storage.retry import RetryPolicy
from unistore.core.storage.streaming import ByteSource, ByteStream, iter_source, rechunk

logger = logging.getLogger(__name__)

T = TypeVar("T")

MiB = 1024 * 1024
DEFAULT_PART_SIZE = 8 * MiB


@dataclass(frozen=True)
class ObjectMeta:
    """Metadata for a stored object."""

    path: ObjectPath
    size: int
    last_modified: datetime
    e_tag: str | None = None


@dataclass(frozen=True)
class ListResult:
    """Result of a single-level, delimiter-bounded listing."""

    objects: tuple[ObjectMeta, ...]
    common_prefixes: frozenset[ObjectPath]


@dataclass(frozen=True)
class ByteRange:
    """Half-open byte range ``[start, end)``."""

    start: int
    end: int

    @classmethod
    def coerce(cls, value: ByteRange | tuple[int, int] | None) -> ByteRange | None:
        if value is None or isinstance(value, ByteRange):
            return value
        start, end = value
        return cls(int(start), int(end))

    @property
    def length(self) -> int:
        return self.end - self.start

    def validate(self, size: int, path: ObjectPath | None = None) -> ByteRange:
        """Check the range against an object size and clamp ``end`` to it.

        Raises:
            InvalidRangeError: If the range is malformed or starts past the
                object (a non-empty range must start before ``size``)
        """
        if self.start < 0 or self.end < self.start:
            raise InvalidRangeError(f"Malformed byte range [{self.start}, {self.end})", path=path)
        if self.start > size or (self.start == size and self.end > self.start):
            raise InvalidRangeError(
                f"Byte range [{self.start}, {self.end}) outside object of {size} bytes",
                path=path,
            )
        return ByteRange(self.start, min(self.end, size))


@dataclass
class GetResult:
    """Object metadata plus a single-use stream over its bytes."""

    meta: ObjectMeta
    stream: ByteStream

    async def read(self) -> bytes:
        """Drain the stream. A second call returns only what is left (nothing)."""
        return await self.stream.read()


class ObjectStoreBackend(ABC):
    """Abstract base class for storage backend adapters.

    Adapters translate the generic operations into one provider protocol.
    Each owns its error mapping (``_translate_error``), its pagination
    cursor (``list_page``) and the protocol steps of its multipart upload
    (``initiate_multipart`` .. ``abort_multipart``), and decides its part
    size limits through the class attributes below.
    """

    kind: BackendKind
    supports_atomic_rename: bool = False
    min_part_size: int = 1
    max_part_size: int | None = None
    max_parts: int | None = None

    def __init__(
        self,
        retry: RetryPolicy | None = None,
        part_size: int | None = None,
        max_concurrent_parts: int = DEFAULT_MAX_CONCURRENT_PARTS,
        request_timeout: float | None = None,
    ):
        self._retry = retry or RetryPolicy()
        self._part_size = int(part_size) if part_size is not None else DEFAULT_PART_SIZE
        self._max_concurrent_parts = int(max_concurrent_parts)
        self._request_timeout = request_timeout

        if self._part_size < self.min_part_size:
            raise InvalidConfigError(
                f"part_size {self._part_size} is below the {self.kind.value} minimum "
                f"of {self.min_part_size} bytes"
            )
        if self.max_part_size is not None and self._part_size > self.max_part_size:
            raise InvalidConfigError(
                f"part_size {self._part_size} exceeds the {self.kind.value} maximum "
                f"of {self.max_part_size} bytes"
            )
        if self._max_concurrent_parts < 1:
            raise InvalidConfigError("max_concurrent_parts must be at least 1")

    @property
    def part_size(self) -> int:
        return self._part_size

    @property
    def multipart_threshold(self) -> int:
        """Payloads larger than this go through a multipart upload."""
        return self._part_size

    def part_size_for(self, total_size_hint: int | None) -> int:
        """Part size that keeps an upload of ``total_size_hint`` within ``max_parts``."""
        if total_size_hint is None or self.max_parts is None:
            return self._part_size
        needed = math.ceil(total_size_hint / self.max_parts)
        part_size = max(self._part_size, needed)
        if self.max_part_size is not None and part_size > self.max_part_size:
            raise GenericError(
                f"{total_size_hint} bytes exceeds the largest {self.kind.value} object "
                f"({self.max_parts} parts of {self.max_part_size} bytes)"
            )
        return part_size

    # Protocol plumbing

    @abstractmethod
    def _translate_error(self, exc: Exception, path: ObjectPath | None = None) -> ObjectStoreError:
        """Map a provider-native failure into the error taxonomy."""

    async def _call(
        self,
        fn: Callable[..., T],
        *args: Any,
        path: ObjectPath | None = None,
        **kwargs: Any,
    ) -> T:
        """Run a blocking SDK call on a worker thread, mapped and retried."""

        async def attempt() -> T:
            try:
                return await asyncio.to_thread(fn, *args, **kwargs)
            except ObjectStoreError:
                raise
            except Exception as e:
                raise self._translate_error(e, path) from e

        return await self._retry.run(attempt)

    def _key(self, path: ObjectPath) -> str:
        return path.to_backend_string(self.kind)

    def _prefix_key(self, prefix: ObjectPath | None) -> str:
        """Listing prefix selecting everything strictly beneath ``prefix``."""
        if prefix is None:
            return ""
        return self._key(prefix) + "/"

    def _path(self, key: str) -> ObjectPath:
        return ObjectPath.from_backend_string(key, self.kind)

    # Storage operations

    @abstractmethod
    async def put(self, path: ObjectPath, data: bytes) -> ObjectMeta:
        """Atomically store ``data`` at ``path``, replacing any existing object.

        Args:
            path: Object path
            data: Whole object body

        Returns:
            Metadata of the stored object
        """

    async def put_stream(
        self,
        path: ObjectPath,
        source: ByteSource,
        total_size_hint: int | None = None,
    ) -> ObjectMeta:
        """Store a streamed body, switching to multipart above the threshold.

        The source is re-chunked into parts. If it yields at most one part the
        object is written with a single ``put``; otherwise the parts go
        through a ``MultipartUpload`` driven by this adapter's hooks.
        """
        part_size = self.part_size_for(total_size_hint)
        parts = rechunk(iter_source(source), part_size)
        try:
            first = await anext(parts, None)
            if first is None:
                return await self.put(path, b"")
            second = await anext(parts, None)
            if second is None:
                return await self.put(path, first)

            async def all_parts() -> AsyncIterator[bytes]:
                yield first
                yield second
                async for part in parts:
                    yield part

            upload = MultipartUpload(
                self,
                path,
                max_concurrent_parts=self._max_concurrent_parts,
                max_parts=self.max_parts,
            )
            return await upload.run(all_parts())
        finally:
            await parts.aclose()

    @abstractmethod
    async def get(self, path: ObjectPath, byte_range: ByteRange | None = None) -> GetResult:
        """Open a stream over the object (or one byte range of it).

        Raises:
            NotFoundError: If the object doesn't exist
            InvalidRangeError: If the range starts past the object
        """

    @abstractmethod
    async def head(self, path: ObjectPath) -> ObjectMeta:
        """Get metadata without transferring the body.

        Raises:
            NotFoundError: If the object doesn't exist
        """

    @abstractmethod
    async def delete(self, path: ObjectPath) -> None:
        """Delete an object. Adapters may raise NotFoundError for absent objects."""

    @abstractmethod
    async def list_page(
        self,
        prefix: ObjectPath | None,
        delimiter: bool = False,
        marker: str | None = None,
        max_results: int = DEFAULT_PAGE_SIZE,
    ) -> ListPage:
        """Fetch one page of objects beneath ``prefix``.

        Args:
            prefix: Only list objects strictly beneath this path
            delimiter: Group one level down into common prefixes
            marker: Continuation token from the previous page
            max_results: Maximum entries per page

        Returns:
            Page with objects, prefixes and the next continuation token
        """

    async def copy(self, src: ObjectPath, dst: ObjectPath) -> None:
        """Copy an object. Fallback for backends without server-side copy."""
        result = await self.get(src)
        try:
            await self.put_stream(dst, result.stream, total_size_hint=result.meta.size)
        finally:
            await result.stream.aclose()

    async def rename(self, src: ObjectPath, dst: ObjectPath) -> None:
        """Move an object. Not atomic unless ``supports_atomic_rename``."""
        await self.copy(src, dst)
        await self.delete(src)

    # Multipart protocol hooks

    @abstractmethod
    async def initiate_multipart(self, path: ObjectPath) -> str:
        """Open an upload session and return its upload id."""

    @abstractmethod
    async def upload_part(
        self, path: ObjectPath, state: MultipartUploadState, index: int, data: bytes
    ) -> str:
        """Upload part ``index`` (0-based) and return its e_tag."""

    @abstractmethod
    async def complete_multipart(self, path: ObjectPath, state: MultipartUploadState) -> ObjectMeta:
        """Assemble the uploaded parts into the final object."""

    @abstractmethod
    async def abort_multipart(self, path: ObjectPath, state: MultipartUploadState) -> None:
        """Discard the session so no partial object remains visible."""

    async def close(self) -> None:
        """Release SDK clients and connection pools."""


class ObjectStore:
    """High-level object storage interface with a pluggable backend."""

    def __init__(self, backend: ObjectStoreBackend):
        """Initialize object storage.

        Args:
            backend: Storage backend implementation
        """
        self._backend = backend

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> ObjectStore:
        """Build a store from a backend configuration dict.

        Raises:
            InvalidConfigError: If the configuration is invalid
        """
        from unistore.core.storage.registry import StoreRegistry

        return cls(StoreRegistry({}).create_backend(config))

    @classmethod
    def from_name(cls, name: str) -> ObjectStore:
        """Build a store from a named configuration.

        Args:
            name: Backend name with optional namespace, e.g. "dev.images.thumbnails"
        """
        from unistore.core.storage.registry import get_store_backend

        return cls(get_store_backend(name))

    @property
    def backend(self) -> ObjectStoreBackend:
        return self._backend

    @property
    def backend_kind(self) -> BackendKind:
        return self._backend.kind

    async def put(self, path: ObjectPath | str, data: bytes) -> ObjectMeta:
        """Store a whole object atomically, overwriting silently."""
        return await self._backend.put(coerce_path(path), bytes(data))

    async def put_stream(
        self,
        path: ObjectPath | str,
        source: ByteSource,
        total_size_hint: int | None = None,
    ) -> ObjectMeta:
        """Store a streamed object.

        Args:
            path: Object path
            source: bytes, binary file-like object, or (async) iterable of bytes
            total_size_hint: Expected size; lets the backend pick a larger part
                size for very large uploads

        Returns:
            Metadata of the stored object
        """
        return await self._backend.put_stream(coerce_path(path), source, total_size_hint)

    async def get(
        self,
        path: ObjectPath | str,
        byte_range: ByteRange | tuple[int, int] | None = None,
    ) -> GetResult:
        """Open an object for reading.

        Args:
            path: Object path
            byte_range: Optional half-open ``[start, end)`` range

        Raises:
            NotFoundError: If the object doesn't exist
            InvalidRangeError: If the range falls outside the object
        """
        path = coerce_path(path)
        byte_range = ByteRange.coerce(byte_range)
        if byte_range is not None and byte_range.length <= 0:
            # Protocols cannot express an empty range; answer from metadata.
            meta = await self._backend.head(path)
            byte_range.validate(meta.size, path)
            return GetResult(meta=meta, stream=ByteStream.empty())
        return await self._backend.get(path, byte_range)

    async def head(self, path: ObjectPath | str) -> ObjectMeta:
        """Get object metadata without its body."""
        return await self._backend.head(coerce_path(path))

    async def delete(self, path: ObjectPath | str) -> None:
        """Delete an object. Deleting an absent object succeeds."""
        path = coerce_path(path)
        try:
            await self._backend.delete(path)
        except NotFoundError:
            logger.debug(f"Delete of absent object {path} treated as success")

    async def list(self, prefix: ObjectPath | str | None = None) -> AsyncIterator[ObjectMeta]:
        """Iterate over every object beneath ``prefix`` in path order.

        Args:
            prefix: Only list objects under this path; None lists everything

        Yields:
            ObjectMeta for each object
        """
        prefix = coerce_prefix(prefix)

        async def fetch(marker: str | None) -> ListPage:
            return await self._backend.list_page(prefix, delimiter=False, marker=marker)

        async for meta in iter_objects(fetch):
            yield meta

    async def list_with_delimiter(self, prefix: ObjectPath | str | None = None) -> ListResult:
        """List one level beneath ``prefix``, folding deeper paths into prefixes."""
        prefix = coerce_prefix(prefix)

        async def fetch(marker: str | None) -> ListPage:
            return await self._backend.list_page(prefix, delimiter=True, marker=marker)

        objects: builtins.list[ObjectMeta] = []
        prefixes: set[ObjectPath] = set()
        async for page in iter_pages(fetch):
            objects.extend(page.objects)
            prefixes.update(page.common_prefixes)
        return ListResult(objects=tuple(objects), common_prefixes=frozenset(prefixes))

    async def copy(self, src: ObjectPath | str, dst: ObjectPath | str) -> None:
        """Copy an object, server-side where the backend supports it."""
        src, dst = coerce_path(src), coerce_path(dst)
        await self._backend.copy(src, dst)
        logger.info(f"Copied {src} -> {dst}")

    async def rename(
        self,
        src: ObjectPath | str,
        dst: ObjectPath | str,
        require_atomic: bool = False,
    ) -> None:
        """Move an object.

        Uses the backend's atomic move where one exists, otherwise copy then
        delete, which is not atomic.

        Args:
            src: Source path
            dst: Destination path
            require_atomic: Fail instead of falling back to copy+delete

        Raises:
            GenericError: If ``require_atomic`` and the backend has no atomic move
        """
        src, dst = coerce_path(src), coerce_path(dst)
        if require_atomic and not self._backend.supports_atomic_rename:
            raise GenericError(
                f"Atomic rename is not supported by the {self.backend_kind.value} backend",
                path=src,
            )
        await self._backend.rename(src, dst)
        logger.info(f"Renamed {src} -> {dst}")

    async def close(self) -> None:
        await self._backend.close()

    async def __aenter__(self) -> ObjectStore:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
