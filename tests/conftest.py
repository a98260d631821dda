from __future__ import annotations

import os
from unittest.mock import Mock

import pytest

from unistore.core.storage.backends.filesystem_backend import FilesystemBackend
from unistore.core.storage.backends.memory_backend import MemoryBackend
from unistore.core.storage.retry import RetryPolicy
from unistore.core.storage.store import ObjectStore

# Small enough that a few bytes already take the multipart path
TINY_PART_SIZE = 4

FAST_RETRY = RetryPolicy(max_attempts=3, backoff_base=0, backoff_cap=0)


@pytest.fixture
def clean_env(monkeypatch):
    """Clean environment fixture to isolate tests."""
    for key in list(os.environ):
        if key.startswith(("UNISTORE_", "MINIO_", "AWS_", "AZURE_STORAGE_", "GCS_")):
            monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture
def memory_backend():
    return MemoryBackend(retry=FAST_RETRY, part_size=TINY_PART_SIZE)


@pytest.fixture
def filesystem_backend(tmp_path):
    return FilesystemBackend(base_path=tmp_path / "store", retry=FAST_RETRY, part_size=TINY_PART_SIZE)


@pytest.fixture(params=["memory", "filesystem"])
def store(request, tmp_path):
    """ObjectStore over each locally runnable backend."""
    if request.param == "memory":
        backend = MemoryBackend(retry=FAST_RETRY, part_size=TINY_PART_SIZE)
    else:
        backend = FilesystemBackend(
            base_path=tmp_path / "store", retry=FAST_RETRY, part_size=TINY_PART_SIZE
        )
    return ObjectStore(backend)


@pytest.fixture
def mock_response():
    """Mock streaming HTTP response as returned by minio.get_object."""
    response = Mock()
    response.headers = {
        "Content-Length": "10",
        "Last-Modified": "Mon, 15 Jan 2024 10:00:00 GMT",
        "ETag": '"abc123"',
    }
    response.stream.return_value = iter([b"0123456789"])
    return response
