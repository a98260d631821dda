"""Storage backend implementations."""

from unistore.core.storage.backends.azure_backend import AzureBackend
from unistore.core.storage.backends.filesystem_backend import FilesystemBackend
from unistore.core.storage.backends.gcs_backend import GCSBackend
from unistore.core.storage.backends.memory_backend import MemoryBackend
from unistore.core.storage.backends.prefixed_backend import PrefixedBackend
from unistore.core.storage.backends.s3_backend import S3Backend

__all__ = [
    "AzureBackend",
    "FilesystemBackend",
    "GCSBackend",
    "MemoryBackend",
    "PrefixedBackend",
    "S3Backend",
]
