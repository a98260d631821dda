"""Google Cloud Storage backend implementation.

GCS has no multipart protocol in its JSON API, so large uploads store each
part as a temporary object under ``UPLOAD_PREFIX`` and then ``compose`` them
into the target (at most 32 sources per call, chained for more). The
temporaries are deleted once the object is assembled or the upload aborts,
and are never reported by listings.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator

import requests
from google.api_core import exceptions as gexc
from google.auth.credentials import AnonymousCredentials
from google.auth.exceptions import TransportError
from google.cloud import storage

from unistore.core.errors import (
    GenericError,
    InvalidRangeError,
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

CONTENT_TYPE = "application/octet-stream"
DEFAULT_TIMEOUT = 60.0

# "%u" is never produced by key encoding, so user objects cannot land here.
UPLOAD_PREFIX = "%unistore-uploads/"
MAX_COMPOSE_SOURCES = 32


class GCSBackend(ObjectStoreBackend):
    """Google Cloud Storage implementation of the object store backend."""

    kind = BackendKind.GCS
    max_parts = 10_000

    def __init__(
        self,
        bucket: str,
        project: str | None = None,
        endpoint: str | None = None,
        credentials_file: str | None = None,
        **kwargs,
    ):
        """Initialize GCS backend.

        Args:
            bucket: Bucket name to use
            project: Optional GCP project; defaults to the one in the credentials
            endpoint: Optional API endpoint, e.g. a fake-gcs-server emulator.
                Without ``credentials_file`` the emulator is used anonymously
            credentials_file: Service account JSON key; defaults to
                application default credentials
            **kwargs: Common backend options (retry, part_size, ...)
        """
        super().__init__(**kwargs)
        self._bucket_name = bucket
        self._timeout = self._request_timeout or DEFAULT_TIMEOUT

        client_options = {"api_endpoint": endpoint} if endpoint else None
        if credentials_file:
            self._client = storage.Client.from_service_account_json(
                credentials_file, project=project, client_options=client_options
            )
        elif endpoint:
            self._client = storage.Client(
                project=project or "unistore",
                credentials=AnonymousCredentials(),
                client_options=client_options,
            )
        else:
            self._client = storage.Client(project=project, client_options=client_options)

        self._bucket = self._client.bucket(bucket)
        logger.info(f"Initialized GCS backend for bucket {bucket}")

    def _translate_error(self, exc: Exception, path: ObjectPath | None = None) -> ObjectStoreError:
        diagnostic = str(exc)
        if isinstance(exc, gexc.NotFound):
            return NotFoundError(f"Object not found: {path}", path=path, diagnostic=diagnostic)
        if isinstance(exc, (gexc.Forbidden, gexc.Unauthorized)):
            return PermissionDeniedError(f"Access denied: {path}", path=path, diagnostic=diagnostic)
        if isinstance(exc, gexc.RequestRangeNotSatisfiable):
            return InvalidRangeError(f"Invalid byte range for {path}", path=path, diagnostic=diagnostic)
        if isinstance(exc, (gexc.TooManyRequests, gexc.ServerError, gexc.RetryError)):
            return TransientError(f"GCS request failed for {path}", path=path, diagnostic=diagnostic)
        if isinstance(exc, gexc.GoogleAPICallError) and exc.code == 408:
            return TransientError(f"GCS request timed out for {path}", path=path, diagnostic=diagnostic)
        if isinstance(exc, (requests.ConnectionError, requests.Timeout, TransportError)):
            return TransientError(f"GCS transport failure for {path}", path=path, diagnostic=diagnostic)
        return GenericError(f"GCS operation failed for {path}: {exc}", path=path, diagnostic=repr(exc))

    def _meta(self, path: ObjectPath, blob: storage.Blob) -> ObjectMeta:
        return ObjectMeta(
            path=path,
            size=blob.size or 0,
            last_modified=blob.updated,
            e_tag=blob.etag,
        )

    def _get_blob(self, path: ObjectPath) -> storage.Blob:
        blob = self._bucket.get_blob(self._key(path), timeout=self._timeout, retry=None)
        if blob is None:
            raise NotFoundError(f"Object not found: {path}", path=path)
        return blob

    def _upload(self, name: str, data: bytes) -> storage.Blob:
        blob = self._bucket.blob(name)
        blob.upload_from_string(data, content_type=CONTENT_TYPE, timeout=self._timeout, retry=None)
        return blob

    def _read_chunks(self, blob: storage.Blob, start: int, end: int) -> Iterator[bytes]:
        """Download ``[start, end)`` in chunks pinned to one generation."""
        while start < end:
            stop = min(start + DEFAULT_CHUNK_SIZE, end)
            yield blob.download_as_bytes(
                start=start,
                end=stop - 1,
                if_generation_match=blob.generation,
                checksum=None,
                timeout=self._timeout,
                retry=None,
            )
            start = stop

    def _list_sync(
        self,
        prefix: ObjectPath | None,
        delimiter: bool,
        marker: str | None,
        max_results: int,
    ) -> ListPage:
        iterator = self._client.list_blobs(
            self._bucket_name,
            prefix=self._prefix_key(prefix) or None,
            delimiter="/" if delimiter else None,
            page_size=max_results,
            page_token=marker,
            timeout=self._timeout,
            retry=None,
        )

        page = ListPage()
        gcs_page = next(iterator.pages, None)
        if gcs_page is None:
            return page

        for blob in gcs_page:
            if blob.name.startswith(UPLOAD_PREFIX):
                continue
            page.objects.append(self._meta(self._path(blob.name), blob))
        for common in sorted(gcs_page.prefixes):
            if common == UPLOAD_PREFIX:
                continue
            page.common_prefixes.append(self._path(common.rstrip("/")))

        page.next_marker = iterator.next_page_token
        return page

    def _upload_dir(self, state: MultipartUploadState) -> str:
        return f"{UPLOAD_PREFIX}{state.upload_id}/"

    def _compose_sync(self, path: ObjectPath, state: MultipartUploadState) -> ObjectMeta:
        upload_dir = self._upload_dir(state)
        sources = [f"{upload_dir}{index:05d}" for index, _ in state.ordered_parts()]

        round_number = 0
        while len(sources) > MAX_COMPOSE_SOURCES:
            merged = []
            for i in range(0, len(sources), MAX_COMPOSE_SOURCES):
                name = f"{upload_dir}compose-{round_number}-{i // MAX_COMPOSE_SOURCES:05d}"
                self._compose_into(name, sources[i : i + MAX_COMPOSE_SOURCES])
                merged.append(name)
            sources = merged
            round_number += 1

        blob = self._compose_into(self._key(path), sources)
        self._delete_upload_dir(state)
        return self._meta(path, blob)

    def _compose_into(self, name: str, sources: list[str]) -> storage.Blob:
        blob = self._bucket.blob(name)
        blob.content_type = CONTENT_TYPE
        blob.compose(
            [self._bucket.blob(source) for source in sources],
            timeout=self._timeout,
            retry=None,
        )
        return blob

    def _delete_upload_dir(self, state: MultipartUploadState) -> None:
        blobs = list(
            self._client.list_blobs(
                self._bucket_name,
                prefix=self._upload_dir(state),
                timeout=self._timeout,
                retry=None,
            )
        )
        if blobs:
            self._bucket.delete_blobs(
                blobs,
                on_error=lambda blob: logger.debug(f"Temporary part already gone: {blob.name}"),
                timeout=self._timeout,
            )
        logger.debug(f"Removed {len(blobs)} temporary objects of upload {state.upload_id}")

    async def put(self, path: ObjectPath, data: bytes) -> ObjectMeta:
        """Store an object in GCS."""
        blob = await self._call(self._upload, self._key(path), data, path=path)
        logger.info(f"Stored object: {path} ({len(data)} bytes)")
        return self._meta(path, blob)

    async def get(self, path: ObjectPath, byte_range: ByteRange | None = None) -> GetResult:
        """Open an object in GCS for streaming."""
        blob = await self._call(self._get_blob, path, path=path)
        meta = self._meta(path, blob)
        if byte_range is None:
            byte_range = ByteRange(0, meta.size)
        else:
            byte_range = byte_range.validate(meta.size, path)

        stream = ByteStream(
            self._read_chunks(blob, byte_range.start, byte_range.end),
            translate=lambda e: self._translate_error(e, path),
        )
        logger.debug(f"Opened object: {path} ({meta.size} bytes)")
        return GetResult(meta=meta, stream=stream)

    async def head(self, path: ObjectPath) -> ObjectMeta:
        """Get metadata for an object in GCS."""
        blob = await self._call(self._get_blob, path, path=path)
        return self._meta(path, blob)

    async def delete(self, path: ObjectPath) -> None:
        """Delete an object from GCS."""
        await self._call(
            self._bucket.delete_blob, self._key(path), timeout=self._timeout, retry=None, path=path
        )
        logger.info(f"Deleted object: {path}")

    async def list_page(
        self,
        prefix: ObjectPath | None,
        delimiter: bool = False,
        marker: str | None = None,
        max_results: int = DEFAULT_PAGE_SIZE,
    ) -> ListPage:
        """List objects in GCS, resuming from the page token in ``marker``."""
        return await self._call(self._list_sync, prefix, delimiter, marker, max_results, path=prefix)

    async def copy(self, src: ObjectPath, dst: ObjectPath) -> None:
        """Server-side copy within the bucket."""
        await self._call(
            self._bucket.copy_blob,
            self._bucket.blob(self._key(src)),
            self._bucket,
            new_name=self._key(dst),
            timeout=self._timeout,
            retry=None,
            path=src,
        )

    async def initiate_multipart(self, path: ObjectPath) -> str:
        return uuid.uuid4().hex

    async def upload_part(
        self, path: ObjectPath, state: MultipartUploadState, index: int, data: bytes
    ) -> str:
        name = f"{self._upload_dir(state)}{index:05d}"
        blob = await self._call(self._upload, name, data, path=path)
        return blob.etag

    async def complete_multipart(self, path: ObjectPath, state: MultipartUploadState) -> ObjectMeta:
        return await self._call(self._compose_sync, path, state, path=path)

    async def abort_multipart(self, path: ObjectPath, state: MultipartUploadState) -> None:
        await self._call(self._delete_upload_dir, state, path=path)

    async def close(self) -> None:
        self._client.close()
