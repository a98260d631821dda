"""S3-compatible backend implementation (AWS S3, MinIO, ...) built on minio."""

from __future__ import annotations

import itertools
import logging
from datetime import UTC, datetime
from io import BytesIO
from urllib.parse import urlparse

import urllib3
from minio import Minio
from minio.commonconfig import CopySource
from minio.credentials.providers import (
    AWSConfigProvider,
    ChainedProvider,
    EnvAWSProvider,
    EnvMinioProvider,
    IamAwsProvider,
)
from minio.datatypes import Part
from minio.error import InvalidResponseError, S3Error, ServerError
from minio.time import from_http_header

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
from unistore.core.storage.store import MiB, ByteRange, GetResult, ObjectMeta, ObjectStoreBackend
from unistore.core.storage.streaming import DEFAULT_CHUNK_SIZE, ByteStream

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "s3.amazonaws.com"
CONTENT_TYPE = "application/octet-stream"
DEFAULT_TIMEOUT = 300.0

# Sorts after every valid key continuing a common prefix
_PREFIX_MARKER_SUFFIX = "\U0010ffff"

_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchBucket", "NoSuchUpload", "ResourceNotFound"}
_PERMISSION_CODES = {
    "AccessDenied",
    "AllAccessDisabled",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
    "InvalidToken",
}
_TRANSIENT_CODES = {
    "SlowDown",
    "RequestTimeout",
    "RequestTimeTooSkewed",
    "InternalError",
    "ServiceUnavailable",
    "XMinioServerNotInitialized",
}


class S3Backend(ObjectStoreBackend):
    """S3 implementation of the object store backend using the MinIO client."""

    kind = BackendKind.S3
    min_part_size = 5 * MiB
    max_part_size = 5 * 1024 * MiB
    max_parts = 10_000

    def __init__(
        self,
        bucket: str,
        endpoint: str | None = None,
        region: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        session_token: str | None = None,
        secure: bool = True,
        **kwargs,
    ):
        """Initialize S3 backend.

        No request is made here; a missing bucket or bad credentials surface
        on the first operation.

        Args:
            bucket: Bucket name to use
            endpoint: Server endpoint, either 'host:port' or a URL whose
                scheme overrides ``secure``. Defaults to AWS S3
            region: Optional region name
            access_key: Access key (user ID); falls back to the AWS/MinIO
                environment, AWS config files and instance metadata
            secret_key: Secret key (password)
            session_token: Optional session token for temporary credentials
            secure: Use HTTPS if True
            **kwargs: Common backend options (retry, part_size, ...)
        """
        super().__init__(**kwargs)
        self._bucket = bucket

        endpoint = endpoint or DEFAULT_ENDPOINT
        if "://" in endpoint:
            parsed = urlparse(endpoint)
            secure = parsed.scheme == "https"
            endpoint = parsed.netloc

        credentials = None
        if access_key is None:
            credentials = ChainedProvider(
                [EnvAWSProvider(), EnvMinioProvider(), AWSConfigProvider(), IamAwsProvider()]
            )

        timeout = self._request_timeout or DEFAULT_TIMEOUT
        http_client = urllib3.PoolManager(
            timeout=urllib3.Timeout(connect=timeout, read=timeout),
            maxsize=max(10, self._max_concurrent_parts),
            retries=False,
        )

        self._client = Minio(
            endpoint=endpoint,
            access_key=access_key,
            secret_key=secret_key,
            session_token=session_token,
            secure=secure,
            region=region,
            http_client=http_client,
            credentials=credentials,
        )
        self._http_client = http_client
        logger.info(f"Initialized S3 backend for bucket {bucket} at {endpoint}")

    @property
    def bucket(self) -> str:
        return self._bucket

    def _translate_error(self, exc: Exception, path: ObjectPath | None = None) -> ObjectStoreError:
        if isinstance(exc, S3Error):
            code = exc.code
            diagnostic = f"{code}: {exc.message}"
            if code in _NOT_FOUND_CODES:
                return NotFoundError(f"Object not found: {path}", path=path, diagnostic=diagnostic)
            if code in _PERMISSION_CODES:
                return PermissionDeniedError(f"Access denied: {path}", path=path, diagnostic=diagnostic)
            if code == "InvalidRange":
                return InvalidRangeError(f"Invalid byte range for {path}", path=path, diagnostic=diagnostic)
            if code in _TRANSIENT_CODES:
                return TransientError(f"S3 request failed for {path}", path=path, diagnostic=diagnostic)
            return GenericError(f"S3 request failed for {path}: {code}", path=path, diagnostic=diagnostic)
        if isinstance(exc, ServerError):
            if exc.status_code >= 500:
                return TransientError(f"S3 server error for {path}", path=path, diagnostic=str(exc))
            return GenericError(f"S3 server error for {path}", path=path, diagnostic=str(exc))
        if isinstance(exc, (InvalidResponseError, urllib3.exceptions.HTTPError, ConnectionError, TimeoutError)):
            return TransientError(f"S3 transport failure for {path}", path=path, diagnostic=str(exc))
        return GenericError(f"S3 operation failed for {path}: {exc}", path=path, diagnostic=repr(exc))

    def _meta_from_stat(self, path: ObjectPath, stat) -> ObjectMeta:
        return ObjectMeta(
            path=path,
            size=stat.size,
            last_modified=stat.last_modified,
            e_tag=stat.etag,
        )

    def _stat(self, path: ObjectPath) -> ObjectMeta:
        stat = self._client.stat_object(bucket_name=self._bucket, object_name=self._key(path))
        return self._meta_from_stat(path, stat)

    def _put_sync(self, path: ObjectPath, data: bytes) -> ObjectMeta:
        result = self._client.put_object(
            bucket_name=self._bucket,
            object_name=self._key(path),
            data=BytesIO(data),
            length=len(data),
            content_type=CONTENT_TYPE,
        )
        return ObjectMeta(
            path=path,
            size=len(data),
            last_modified=result.last_modified or datetime.now(UTC),
            e_tag=result.etag,
        )

    def _open_sync(self, path: ObjectPath, byte_range: ByteRange | None):
        offset, length = (byte_range.start, byte_range.length) if byte_range else (0, 0)
        response = self._client.get_object(
            bucket_name=self._bucket,
            object_name=self._key(path),
            offset=offset,
            length=length,
        )
        try:
            headers = response.headers
            content_range = headers.get("Content-Range")
            if content_range and "/" in content_range:
                size = int(content_range.rsplit("/", 1)[1])
            else:
                size = int(headers.get("Content-Length", 0))
            last_modified = headers.get("Last-Modified")
            meta = ObjectMeta(
                path=path,
                size=size,
                last_modified=from_http_header(last_modified) if last_modified else datetime.now(UTC),
                e_tag=(headers.get("ETag") or "").strip('"') or None,
            )
        except BaseException:
            response.close()
            response.release_conn()
            raise
        return response, meta

    def _list_sync(
        self,
        prefix: ObjectPath | None,
        delimiter: bool,
        marker: str | None,
        max_results: int,
    ) -> ListPage:
        objects = self._client.list_objects(
            bucket_name=self._bucket,
            prefix=self._prefix_key(prefix) or None,
            recursive=not delimiter,
            start_after=marker,
        )

        page = ListPage()
        entries = list(itertools.islice(objects, max_results + 1))
        for obj in entries[:max_results]:
            if obj.is_dir:
                page.common_prefixes.append(self._path(obj.object_name.rstrip("/")))
            else:
                page.objects.append(
                    ObjectMeta(
                        path=self._path(obj.object_name),
                        size=obj.size,
                        last_modified=obj.last_modified,
                        e_tag=obj.etag,
                    )
                )

        if len(entries) > max_results:
            last = entries[max_results - 1]
            page.next_marker = (
                last.object_name + _PREFIX_MARKER_SUFFIX if last.is_dir else last.object_name
            )
        return page

    async def put(self, path: ObjectPath, data: bytes) -> ObjectMeta:
        """Store an object in S3."""
        meta = await self._call(self._put_sync, path, data, path=path)
        logger.info(f"Stored object: {path} (etag: {meta.e_tag})")
        return meta

    async def get(self, path: ObjectPath, byte_range: ByteRange | None = None) -> GetResult:
        """Open an object in S3 for streaming."""
        response, meta = await self._call(self._open_sync, path, byte_range, path=path)

        def release() -> None:
            response.close()
            response.release_conn()

        stream = ByteStream(
            response.stream(DEFAULT_CHUNK_SIZE),
            close=release,
            translate=lambda e: self._translate_error(e, path),
        )
        logger.debug(f"Opened object: {path} ({meta.size} bytes)")
        return GetResult(meta=meta, stream=stream)

    async def head(self, path: ObjectPath) -> ObjectMeta:
        """Get metadata for an object in S3."""
        return await self._call(self._stat, path, path=path)

    async def delete(self, path: ObjectPath) -> None:
        """Delete an object from S3. S3 reports success for absent keys."""
        await self._call(
            self._client.remove_object,
            bucket_name=self._bucket,
            object_name=self._key(path),
            path=path,
        )
        logger.info(f"Deleted object: {path}")

    async def list_page(
        self,
        prefix: ObjectPath | None,
        delimiter: bool = False,
        marker: str | None = None,
        max_results: int = DEFAULT_PAGE_SIZE,
    ) -> ListPage:
        """List objects in S3, resuming after ``marker``."""
        return await self._call(self._list_sync, prefix, delimiter, marker, max_results, path=prefix)

    async def copy(self, src: ObjectPath, dst: ObjectPath) -> None:
        """Server-side copy within the bucket."""
        await self._call(
            self._client.copy_object,
            bucket_name=self._bucket,
            object_name=self._key(dst),
            source=CopySource(self._bucket, self._key(src)),
            path=src,
        )

    async def initiate_multipart(self, path: ObjectPath) -> str:
        return await self._call(
            self._client._create_multipart_upload,
            bucket_name=self._bucket,
            object_name=self._key(path),
            headers={"Content-Type": CONTENT_TYPE},
            path=path,
        )

    async def upload_part(
        self, path: ObjectPath, state: MultipartUploadState, index: int, data: bytes
    ) -> str:
        return await self._call(
            self._client._upload_part,
            bucket_name=self._bucket,
            object_name=self._key(path),
            data=data,
            headers=None,
            upload_id=state.upload_id,
            part_number=index + 1,
            path=path,
        )

    async def complete_multipart(self, path: ObjectPath, state: MultipartUploadState) -> ObjectMeta:
        parts = [Part(index + 1, e_tag) for index, e_tag in state.ordered_parts()]
        await self._call(
            self._client._complete_multipart_upload,
            bucket_name=self._bucket,
            object_name=self._key(path),
            upload_id=state.upload_id,
            parts=parts,
            path=path,
        )
        return await self.head(path)

    async def abort_multipart(self, path: ObjectPath, state: MultipartUploadState) -> None:
        await self._call(
            self._client._abort_multipart_upload,
            bucket_name=self._bucket,
            object_name=self._key(path),
            upload_id=state.upload_id,
            path=path,
        )

    async def close(self) -> None:
        self._http_client.clear()
