"""Object store backend configuration.

This module defines the CONFIGURATION dict which maps backend names to their
connection parameters. Users can customize this file or point the registry at
their own module with ``UNISTORE_CONFIG_MODULE=myapp.stores``.

Configuration location: configs/object_stores.py

Example usage:
    from unistore import ObjectStore

    # Use named backend
    store = ObjectStore.from_name("dev")

    # Use with namespace: every path lives under "images/thumbnails"
    store = ObjectStore.from_name("dev.images.thumbnails")

Environment overrides:
    # Switch the dev namespace between filesystem and an S3-compatible server
    export UNISTORE_DEV_BACKEND=s3

Configuration inheritance:
    # Use the "__inherits__" key to reuse another entry's settings

    "lake": {"type": "s3", "endpoint": "localhost:9000", "bucket": "lake"},
    "archive": {
        "__inherits__": "lake",  # Inherits all settings from lake
        "bucket": "archive",     # Override only the bucket
    }

Options left unset (None or "") are ignored, so optional environment
variables can be referenced directly.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from unistore.core.utils.env import load_env_file_if_present

load_env_file_if_present()  # Load .env file if present
PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _resolve_default_base_path() -> Path:
    """Return the default filesystem storage root."""
    configured_path = os.environ.get("UNISTORE_STORAGE_PATH")
    if configured_path:
        return Path(configured_path).expanduser()

    return PROJECT_ROOT / "var" / "object_store"


DEFAULT_BASE_PATH = _resolve_default_base_path()


def _build_minio_config() -> dict[str, Any]:
    """Return an S3 configuration for a local MinIO server."""
    return {
        "type": "s3",
        "endpoint": os.getenv("MINIO_ENDPOINT", "http://localhost:9000"),
        "access_key": os.getenv("MINIO_ACCESS_KEY", "minioadmin"),
        "secret_key": os.getenv("MINIO_SECRET_KEY", "minioadmin"),
        "bucket": os.getenv("MINIO_BUCKET", "unistore"),
        "part_size": os.getenv("MINIO_PART_SIZE"),
    }


def _build_dev_config() -> dict[str, Any]:
    """Determine the base configuration for the dev namespace."""
    backend_type = os.getenv("UNISTORE_DEV_BACKEND", "filesystem").strip().lower()
    if backend_type in {"s3", "minio"}:
        return _build_minio_config()

    return {
        "type": "filesystem",
        "base_path": str(DEFAULT_BASE_PATH / "dev"),
    }


CONFIGURATION = {
    # Development store (filesystem unless UNISTORE_DEV_BACKEND says otherwise)
    "dev": _build_dev_config(),
    # Standalone filesystem backend
    "filesystem": {
        "type": "filesystem",
        "base_path": str(DEFAULT_BASE_PATH),
    },
    # Throwaway in-process store
    "memory": {
        "type": "memory",
    },
    # Local MinIO server (handy for integration tests or scripts)
    "minio": _build_minio_config(),
    # AWS S3; credentials fall back to the standard AWS environment and config files
    "s3": {
        "type": "s3",
        "endpoint": os.getenv("S3_ENDPOINT"),
        "region": os.getenv("AWS_REGION"),
        "access_key": os.getenv("AWS_ACCESS_KEY_ID"),
        "secret_key": os.getenv("AWS_SECRET_ACCESS_KEY"),
        "session_token": os.getenv("AWS_SESSION_TOKEN"),
        "bucket": os.getenv("S3_BUCKET", "unistore-prod"),
        "max_retries": 5,
    },
    # Long-term copies share everything with s3 except the bucket
    "s3-archive": {
        "__inherits__": "s3",
        "bucket": os.getenv("S3_ARCHIVE_BUCKET", "unistore-archive"),
    },
    # Google Cloud Storage with application default credentials
    "gcs": {
        "type": "gcs",
        "bucket": os.getenv("GCS_BUCKET", "unistore-prod"),
        "project": os.getenv("GOOGLE_CLOUD_PROJECT"),
        "credentials_file": os.getenv("GOOGLE_APPLICATION_CREDENTIALS"),
        "endpoint": os.getenv("STORAGE_EMULATOR_HOST"),
    },
    # Azure Blob Storage (Azurite accepts the same connection string format)
    "azure": {
        "type": "azure",
        "container": os.getenv("AZURE_STORAGE_CONTAINER", "unistore"),
        "connection_string": os.getenv("AZURE_STORAGE_CONNECTION_STRING"),
        "account_url": os.getenv("AZURE_STORAGE_ACCOUNT_URL"),
        "credential": os.getenv("AZURE_STORAGE_KEY"),
    },
    # Temporary storage backend
    "tmp": {
        "type": "filesystem",
        "base_path": "/tmp/unistore",
    },
}
