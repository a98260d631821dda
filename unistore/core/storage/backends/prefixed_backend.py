"""Internal prefix wrapper for backends.

This module is for internal use by the registry only and should not be imported directly.
"""

from __future__ import annotations

from dataclasses import replace

from unistore.core.path import ObjectPath
from unistore.core.storage.multipart import MultipartUploadState
from unistore.core.storage.pagination import DEFAULT_PAGE_SIZE, ListPage
from unistore.core.storage.store import ByteRange, GetResult, ObjectMeta, ObjectStoreBackend
from unistore.core.storage.streaming import ByteSource


class PrefixedBackend(ObjectStoreBackend):
    """Wrapper that roots every path of a backend under a fixed prefix.

    This is an internal utility used by the registry to support hierarchical namespacing.
    Users should not instantiate this directly - use ObjectStore.from_name() instead.
    """

    def __init__(
        self,
        backend: ObjectStoreBackend,
        prefix: ObjectPath | str,
        owns_backend: bool = False,
    ):
        """Initialize prefixed backend wrapper.

        Args:
            backend: The underlying backend to wrap
            prefix: Prefix to add to all paths (e.g., "images/thumbnails")
            owns_backend: Close the wrapped backend on close(). Registry-cached
                backends are shared between prefixes and stay open
        """
        # The wrapped backend owns retries, part sizes and limits.
        self._backend = backend
        self._owns_backend = owns_backend
        self._prefix = prefix if isinstance(prefix, ObjectPath) else ObjectPath.parse(prefix)
        self.kind = backend.kind
        self.supports_atomic_rename = backend.supports_atomic_rename
        self.max_parts = backend.max_parts

    @property
    def prefix(self) -> ObjectPath:
        return self._prefix

    @property
    def inner(self) -> ObjectStoreBackend:
        return self._backend

    @property
    def part_size(self) -> int:
        return self._backend.part_size

    @property
    def multipart_threshold(self) -> int:
        return self._backend.multipart_threshold

    def part_size_for(self, total_size_hint: int | None) -> int:
        return self._backend.part_size_for(total_size_hint)

    def _translate_error(self, exc, path=None):
        return self._backend._translate_error(exc, self._add_prefix(path) if path else None)

    def _add_prefix(self, path: ObjectPath) -> ObjectPath:
        """Add prefix to a path."""
        return self._prefix / path

    def _remove_prefix(self, path: ObjectPath) -> ObjectPath:
        """Remove prefix from a path."""
        return path.relative_to(self._prefix)

    def _strip_meta(self, meta: ObjectMeta) -> ObjectMeta:
        return replace(meta, path=self._remove_prefix(meta.path))

    async def put(self, path: ObjectPath, data: bytes) -> ObjectMeta:
        """Store an object under the prefix."""
        return self._strip_meta(await self._backend.put(self._add_prefix(path), data))

    async def put_stream(
        self,
        path: ObjectPath,
        source: ByteSource,
        total_size_hint: int | None = None,
    ) -> ObjectMeta:
        """Stream an object under the prefix using the wrapped backend's multipart."""
        meta = await self._backend.put_stream(self._add_prefix(path), source, total_size_hint)
        return self._strip_meta(meta)

    async def get(self, path: ObjectPath, byte_range: ByteRange | None = None) -> GetResult:
        """Open an object under the prefix, returning metadata with the unprefixed path."""
        result = await self._backend.get(self._add_prefix(path), byte_range)
        return GetResult(meta=self._strip_meta(result.meta), stream=result.stream)

    async def head(self, path: ObjectPath) -> ObjectMeta:
        return self._strip_meta(await self._backend.head(self._add_prefix(path)))

    async def delete(self, path: ObjectPath) -> None:
        await self._backend.delete(self._add_prefix(path))

    async def list_page(
        self,
        prefix: ObjectPath | None,
        delimiter: bool = False,
        marker: str | None = None,
        max_results: int = DEFAULT_PAGE_SIZE,
    ) -> ListPage:
        """List objects, combining our prefix with the caller's."""
        full_prefix = self._add_prefix(prefix) if prefix else self._prefix
        page = await self._backend.list_page(full_prefix, delimiter, marker, max_results)
        return ListPage(
            objects=[self._strip_meta(meta) for meta in page.objects],
            common_prefixes=[self._remove_prefix(p) for p in page.common_prefixes],
            next_marker=page.next_marker,
        )

    async def copy(self, src: ObjectPath, dst: ObjectPath) -> None:
        await self._backend.copy(self._add_prefix(src), self._add_prefix(dst))

    async def rename(self, src: ObjectPath, dst: ObjectPath) -> None:
        await self._backend.rename(self._add_prefix(src), self._add_prefix(dst))

    async def initiate_multipart(self, path: ObjectPath) -> str:
        return await self._backend.initiate_multipart(self._add_prefix(path))

    async def upload_part(
        self, path: ObjectPath, state: MultipartUploadState, index: int, data: bytes
    ) -> str:
        return await self._backend.upload_part(self._add_prefix(path), state, index, data)

    async def complete_multipart(self, path: ObjectPath, state: MultipartUploadState) -> ObjectMeta:
        meta = await self._backend.complete_multipart(self._add_prefix(path), state)
        return self._strip_meta(meta)

    async def abort_multipart(self, path: ObjectPath, state: MultipartUploadState) -> None:
        await self._backend.abort_multipart(self._add_prefix(path), state)

    async def close(self) -> None:
        if self._owns_backend:
            await self._backend.close()
