"""Storage abstractions for object storage."""

from unistore.core.storage.multipart import MultipartUpload, MultipartUploadState, UploadPhase
from unistore.core.storage.registry import (
    BackendConfigError,
    BackendNotFoundError,
    StoreRegistry,
    get_default_registry,
    get_store_backend,
)
from unistore.core.storage.retry import RetryPolicy
from unistore.core.storage.store import (
    ByteRange,
    GetResult,
    ListResult,
    ObjectMeta,
    ObjectStore,
    ObjectStoreBackend,
)
from unistore.core.storage.streaming import ByteStream

__all__ = [
    # Object storage
    "ObjectStore",
    "ObjectStoreBackend",
    "ObjectMeta",
    "ListResult",
    "GetResult",
    "ByteRange",
    "ByteStream",
    "RetryPolicy",
    # Multipart
    "MultipartUpload",
    "MultipartUploadState",
    "UploadPhase",
    # Registry
    "StoreRegistry",
    "BackendConfigError",
    "BackendNotFoundError",
    "get_default_registry",
    "get_store_backend",
]
