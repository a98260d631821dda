"""Azure Blob Storage backend implementation."""

from __future__ import annotations

import base64
import logging
import time
import uuid

from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.storage.blob import BlobBlock, BlobPrefix, BlobServiceClient, ContentSettings

from unistore.core.errors import (
    GenericError,
    InvalidConfigError,
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
from unistore.core.storage.streaming import ByteStream

logger = logging.getLogger(__name__)

CONTENT_TYPE = "application/octet-stream"
DEFAULT_TIMEOUT = 60.0
COPY_POLL_INTERVAL = 0.5

_TRANSIENT_STATUS = {408, 429}


class AzureBackend(ObjectStoreBackend):
    """Azure Blob Storage implementation of the object store backend.

    Multipart uploads stage blocks and commit them as a block list. Blocks
    that are never committed stay invisible and are garbage-collected by the
    service, so aborting needs no request.
    """

    kind = BackendKind.AZURE
    max_part_size = 4000 * 1024 * 1024
    max_parts = 50_000

    def __init__(
        self,
        container: str,
        account_url: str | None = None,
        connection_string: str | None = None,
        credential: str | None = None,
        **kwargs,
    ):
        """Initialize Azure backend.

        Args:
            container: Container name to use
            account_url: Blob service URL, e.g. 'https://<account>.blob.core.windows.net'
            connection_string: Storage connection string (alternative to account_url)
            credential: Account key or SAS token used with ``account_url``
            **kwargs: Common backend options (retry, part_size, ...)

        Raises:
            InvalidConfigError: If neither account_url nor connection_string is given
        """
        super().__init__(**kwargs)
        self._container_name = container

        timeout = self._request_timeout or DEFAULT_TIMEOUT
        client_kwargs = {
            "connection_timeout": timeout,
            "read_timeout": timeout,
            "retry_total": 0,
        }
        if connection_string:
            self._service = BlobServiceClient.from_connection_string(
                connection_string, credential=credential, **client_kwargs
            )
        elif account_url:
            self._service = BlobServiceClient(account_url, credential=credential, **client_kwargs)
        else:
            raise InvalidConfigError("Azure backend needs account_url or connection_string")

        self._container = self._service.get_container_client(container)
        logger.info(f"Initialized Azure backend for container {container}")

    def _translate_error(self, exc: Exception, path: ObjectPath | None = None) -> ObjectStoreError:
        diagnostic = str(exc)
        if isinstance(exc, ResourceNotFoundError):
            return NotFoundError(f"Object not found: {path}", path=path, diagnostic=diagnostic)
        if isinstance(exc, ClientAuthenticationError):
            return PermissionDeniedError(f"Access denied: {path}", path=path, diagnostic=diagnostic)
        if isinstance(exc, HttpResponseError):
            status = exc.status_code or 0
            error_code = getattr(exc, "error_code", None)
            if status == 416 or error_code == "InvalidRange":
                return InvalidRangeError(f"Invalid byte range for {path}", path=path, diagnostic=diagnostic)
            if status == 403:
                return PermissionDeniedError(f"Access denied: {path}", path=path, diagnostic=diagnostic)
            if status in _TRANSIENT_STATUS or status >= 500:
                return TransientError(f"Azure request failed for {path}", path=path, diagnostic=diagnostic)
            return GenericError(f"Azure request failed for {path}: {error_code}", path=path, diagnostic=diagnostic)
        if isinstance(exc, (ServiceRequestError, ServiceResponseError)):
            return TransientError(f"Azure transport failure for {path}", path=path, diagnostic=diagnostic)
        return GenericError(f"Azure operation failed for {path}: {exc}", path=path, diagnostic=repr(exc))

    def _blob_client(self, path: ObjectPath):
        return self._container.get_blob_client(self._key(path))

    def _meta(self, path: ObjectPath, props) -> ObjectMeta:
        return ObjectMeta(
            path=path,
            size=props.size,
            last_modified=props.last_modified,
            e_tag=props.etag,
        )

    def _head_sync(self, path: ObjectPath) -> ObjectMeta:
        return self._meta(path, self._blob_client(path).get_blob_properties())

    def _put_sync(self, path: ObjectPath, data: bytes) -> ObjectMeta:
        result = self._blob_client(path).upload_blob(
            data,
            overwrite=True,
            content_settings=ContentSettings(content_type=CONTENT_TYPE),
        )
        return ObjectMeta(
            path=path,
            size=len(data),
            last_modified=result["last_modified"],
            e_tag=result["etag"],
        )

    def _open_sync(self, path: ObjectPath, byte_range: ByteRange | None):
        if byte_range is None:
            downloader = self._blob_client(path).download_blob()
        else:
            downloader = self._blob_client(path).download_blob(
                offset=byte_range.start, length=byte_range.length
            )
        props = downloader.properties
        size = props.size
        content_range = getattr(props, "content_range", None)
        if byte_range is not None and content_range and "/" in content_range:
            size = int(content_range.rsplit("/", 1)[1])
        meta = ObjectMeta(path=path, size=size, last_modified=props.last_modified, e_tag=props.etag)
        return downloader, meta

    def _list_sync(
        self,
        prefix: ObjectPath | None,
        delimiter: bool,
        marker: str | None,
        max_results: int,
    ) -> ListPage:
        name_prefix = self._prefix_key(prefix) or None
        if delimiter:
            paged = self._container.walk_blobs(
                name_starts_with=name_prefix, delimiter="/", results_per_page=max_results
            )
        else:
            paged = self._container.list_blobs(
                name_starts_with=name_prefix, results_per_page=max_results
            )

        pages = paged.by_page(continuation_token=marker)
        page = ListPage()
        for item in next(pages, ()):
            if isinstance(item, BlobPrefix):
                page.common_prefixes.append(self._path(item.name.rstrip("/")))
            else:
                page.objects.append(self._meta(self._path(item.name), item))
        page.next_marker = pages.continuation_token or None
        return page

    def _copy_sync(self, src: ObjectPath, dst: ObjectPath) -> None:
        dest = self._blob_client(dst)
        dest.start_copy_from_url(self._blob_client(src).url)
        props = dest.get_blob_properties()
        while props.copy.status == "pending":
            time.sleep(COPY_POLL_INTERVAL)
            props = dest.get_blob_properties()
        if props.copy.status != "success":
            raise GenericError(
                f"Copy {src} -> {dst} ended with status {props.copy.status}",
                path=src,
                diagnostic=props.copy.status_description,
            )

    @staticmethod
    def _block_id(state: MultipartUploadState, index: int) -> str:
        # Every block id of a blob must have the same length.
        return base64.b64encode(f"{state.upload_id}-{index:06d}".encode()).decode()

    async def put(self, path: ObjectPath, data: bytes) -> ObjectMeta:
        """Store an object in Azure Blob Storage."""
        meta = await self._call(self._put_sync, path, data, path=path)
        logger.info(f"Stored object: {path} (etag: {meta.e_tag})")
        return meta

    async def get(self, path: ObjectPath, byte_range: ByteRange | None = None) -> GetResult:
        """Open an object in Azure Blob Storage for streaming."""
        downloader, meta = await self._call(self._open_sync, path, byte_range, path=path)
        stream = ByteStream(
            iter(downloader.chunks()),
            translate=lambda e: self._translate_error(e, path),
        )
        logger.debug(f"Opened object: {path} ({meta.size} bytes)")
        return GetResult(meta=meta, stream=stream)

    async def head(self, path: ObjectPath) -> ObjectMeta:
        return await self._call(self._head_sync, path, path=path)

    async def delete(self, path: ObjectPath) -> None:
        """Delete an object from Azure Blob Storage."""
        await self._call(self._blob_client(path).delete_blob, path=path)
        logger.info(f"Deleted object: {path}")

    async def list_page(
        self,
        prefix: ObjectPath | None,
        delimiter: bool = False,
        marker: str | None = None,
        max_results: int = DEFAULT_PAGE_SIZE,
    ) -> ListPage:
        """List blobs, resuming from the continuation token in ``marker``."""
        return await self._call(self._list_sync, prefix, delimiter, marker, max_results, path=prefix)

    async def copy(self, src: ObjectPath, dst: ObjectPath) -> None:
        """Server-side copy, waiting for the copy to finish."""
        await self._call(self._copy_sync, src, dst, path=src)

    async def initiate_multipart(self, path: ObjectPath) -> str:
        return uuid.uuid4().hex

    async def upload_part(
        self, path: ObjectPath, state: MultipartUploadState, index: int, data: bytes
    ) -> str:
        block_id = self._block_id(state, index)
        await self._call(
            self._blob_client(path).stage_block, block_id, data, length=len(data), path=path
        )
        return block_id

    async def complete_multipart(self, path: ObjectPath, state: MultipartUploadState) -> ObjectMeta:
        blocks = [BlobBlock(block_id=block_id) for _, block_id in state.ordered_parts()]
        await self._call(
            self._blob_client(path).commit_block_list,
            blocks,
            content_settings=ContentSettings(content_type=CONTENT_TYPE),
            path=path,
        )
        return await self.head(path)

    async def abort_multipart(self, path: ObjectPath, state: MultipartUploadState) -> None:
        logger.debug(
            f"Abandoned {len(state.parts)} uncommitted blocks of upload {state.upload_id} for {path}"
        )

    async def close(self) -> None:
        self._service.close()
