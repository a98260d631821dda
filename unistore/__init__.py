"""Unified asynchronous object storage.

One ``ObjectStore`` interface over S3-compatible stores, Google Cloud Storage,
Azure Blob Storage, the local filesystem and memory:

    from unistore import ObjectStore

    async with ObjectStore.from_config({"type": "memory"}) as store:
        await store.put("a/b", b"data")
"""

from unistore.core.errors import (
    AlreadyExistsError,
    ErrorKind,
    GenericError,
    InvalidConfigError,
    InvalidPathError,
    InvalidRangeError,
    NotFoundError,
    ObjectStoreError,
    PermissionDeniedError,
    TransientError,
)
from unistore.core.path import BackendKind, ObjectPath
from unistore.core.storage import ByteRange, GetResult, ListResult, ObjectMeta, ObjectStore

__version__ = "0.1.0"

__all__ = [
    "ObjectStore",
    "ObjectPath",
    "ObjectMeta",
    "ListResult",
    "GetResult",
    "ByteRange",
    "BackendKind",
    "ErrorKind",
    "ObjectStoreError",
    "NotFoundError",
    "AlreadyExistsError",
    "PermissionDeniedError",
    "InvalidPathError",
    "InvalidRangeError",
    "InvalidConfigError",
    "TransientError",
    "GenericError",
]
