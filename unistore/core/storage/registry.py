"""Backend registry for named object store backends."""

from __future__ import annotations

import logging
import os
from typing import Any

from unistore.core.errors import InvalidConfigError
from unistore.core.storage.backends.azure_backend import AzureBackend
from unistore.core.storage.backends.filesystem_backend import FilesystemBackend
from unistore.core.storage.backends.gcs_backend import GCSBackend
from unistore.core.storage.backends.memory_backend import MemoryBackend
from unistore.core.storage.backends.prefixed_backend import PrefixedBackend
from unistore.core.storage.backends.s3_backend import S3Backend
from unistore.core.storage.retry import RetryPolicy
from unistore.core.storage.store import ObjectStoreBackend
from unistore.core.utils.config import load_and_resolve_config

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_MODULE = "configs.object_stores"
CONFIG_MODULE_ENV = "UNISTORE_CONFIG_MODULE"

COMMON_OPTIONS = frozenset(
    {
        "type",
        "request_timeout",
        "part_size",
        "max_concurrent_parts",
        "max_retries",
        "retry_backoff_base",
        "retry_backoff_cap",
    }
)

# type -> (backend class, required options, optional options)
BACKEND_TYPES: dict[str, tuple[type[ObjectStoreBackend], frozenset[str], frozenset[str]]] = {
    "s3": (
        S3Backend,
        frozenset({"bucket"}),
        frozenset({"endpoint", "region", "access_key", "secret_key", "session_token", "secure"}),
    ),
    "gcs": (
        GCSBackend,
        frozenset({"bucket"}),
        frozenset({"project", "endpoint", "credentials_file"}),
    ),
    "azure": (
        AzureBackend,
        frozenset({"container"}),
        frozenset({"account_url", "connection_string", "credential"}),
    ),
    "filesystem": (FilesystemBackend, frozenset({"base_path"}), frozenset()),
    "memory": (MemoryBackend, frozenset(), frozenset()),
}

# Older configurations name S3-compatible stores after the server they point at.
TYPE_ALIASES = {"minio": "s3"}


class BackendConfigError(InvalidConfigError):
    """Raised when backend configuration is invalid."""

    pass


class BackendNotFoundError(InvalidConfigError):
    """Raised when a named backend is not found in configuration."""

    pass


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _coerce(name: str, value: Any, kind: type) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise BackendConfigError(f"Option '{name}' must be {kind.__name__}, got {value!r}") from e


class StoreRegistry:
    """Registry for managing named object store backends.

    The registry resolves backend names to configured backends, with support
    for hierarchical namespacing using dot notation.

    Examples:
        >>> registry = StoreRegistry()
        >>> backend = registry.get_backend("dev")
        >>> backend = registry.get_backend("dev.images.thumbnails")
    """

    def __init__(self, configuration: dict[str, dict[str, Any]] | None = None):
        """Initialize the registry.

        Args:
            configuration: Backend configuration dict. If None, loads and resolves
                          configuration from the module named by $UNISTORE_CONFIG_MODULE,
                          falling back to configs/object_stores.py
        """
        if configuration is None:
            configuration = load_and_resolve_config(
                os.environ.get(CONFIG_MODULE_ENV, DEFAULT_CONFIG_MODULE),
                config_name="CONFIGURATION",
                default={},
                fallback_modules=[DEFAULT_CONFIG_MODULE],
            )

        self._config = configuration
        self._backend_cache: dict[str, ObjectStoreBackend] = {}

    def parse_name(self, name: str) -> tuple[str, str]:
        """Parse a backend name into base name and prefix.

        Args:
            name: Backend name (e.g., "dev", "dev.images", "dev.images.thumbnails")

        Returns:
            Tuple of (base_name, prefix) where prefix uses "/" separators

        Examples:
            >>> registry.parse_name("dev")
            ("dev", "")
            >>> registry.parse_name("dev.images.thumbnails")
            ("dev", "images/thumbnails")
        """
        parts = name.split(".")
        base_name = parts[0]
        prefix = "/".join(part for part in parts[1:] if part)
        return base_name, prefix

    def create_backend(self, config: dict[str, Any]) -> ObjectStoreBackend:
        """Create a backend instance from configuration.

        Options set to None or "" count as unset, so configurations can be
        filled from optional environment variables.

        Args:
            config: Backend configuration dict with "type" and backend-specific params

        Returns:
            Instantiated backend

        Raises:
            BackendConfigError: If the type is unknown, a required option is
                missing, or an option is not recognized
        """
        options = {k: v for k, v in config.items() if v is not None and v != ""}
        backend_type = options.get("type")

        if not backend_type:
            raise BackendConfigError("Backend configuration must specify 'type'")

        backend_type = TYPE_ALIASES.get(backend_type, backend_type)
        if backend_type not in BACKEND_TYPES:
            raise BackendConfigError(
                f"Unknown backend type: {backend_type}. "
                f"Supported types: {', '.join(sorted(BACKEND_TYPES))}"
            )

        backend_cls, required, optional = BACKEND_TYPES[backend_type]
        unknown = set(options) - COMMON_OPTIONS - required - optional
        if unknown:
            raise BackendConfigError(
                f"Unknown options for {backend_type} backend: {', '.join(sorted(unknown))}"
            )
        missing = [name for name in sorted(required) if name not in options]
        if missing:
            raise BackendConfigError(
                f"{backend_type} backend missing required fields: {', '.join(missing)}"
            )
        if backend_type == "azure" and not (
            options.get("account_url") or options.get("connection_string")
        ):
            raise BackendConfigError("azure backend requires 'account_url' or 'connection_string'")

        kwargs: dict[str, Any] = {
            name: value
            for name, value in options.items()
            if name in required or name in optional
        }
        if "secure" in kwargs:
            kwargs["secure"] = _as_bool(kwargs["secure"])

        kwargs["retry"] = RetryPolicy.from_config(options)
        if "part_size" in options:
            kwargs["part_size"] = _coerce("part_size", options["part_size"], int)
        if "max_concurrent_parts" in options:
            kwargs["max_concurrent_parts"] = _coerce(
                "max_concurrent_parts", options["max_concurrent_parts"], int
            )
        if "request_timeout" in options:
            kwargs["request_timeout"] = _coerce("request_timeout", options["request_timeout"], float)

        return backend_cls(**kwargs)

    def get_backend(self, name: str, use_cache: bool = True) -> ObjectStoreBackend:
        """Get a backend instance by name.

        Supports hierarchical namespacing with dot notation. The backend returned
        will automatically handle prefixing for dotted names.

        Args:
            name: Backend name with optional namespace (e.g., "dev", "dev.images.thumbnails")
            use_cache: Whether to use cached backend instances

        Returns:
            Backend instance (wrapped with prefix if needed)

        Raises:
            BackendNotFoundError: If base name not found in configuration
            BackendConfigError: If backend configuration is invalid
        """
        if use_cache and name in self._backend_cache:
            return self._backend_cache[name]

        base_name, prefix = self.parse_name(name)

        if base_name not in self._config:
            available = ", ".join(self._config.keys())
            raise BackendNotFoundError(
                f"Backend '{base_name}' not found in configuration. "
                f"Available backends: {available or 'none'}"
            )

        if use_cache and base_name in self._backend_cache:
            base_backend = self._backend_cache[base_name]
        else:
            base_backend = self.create_backend(self._config[base_name])
            if use_cache:
                self._backend_cache[base_name] = base_backend

        if prefix:
            backend = PrefixedBackend(base_backend, prefix, owns_backend=not use_cache)
        else:
            backend = base_backend

        if use_cache:
            self._backend_cache[name] = backend

        logger.info(f"Created backend for '{name}' (base: {base_name}, prefix: {prefix or 'none'})")
        return backend

    def list_backends(self) -> list[str]:
        """List all configured backend names."""
        return list(self._config.keys())

    def register(self, name: str, config: dict[str, Any]) -> None:
        """Register a new backend configuration.

        Cached instances of ``name`` and of its dotted sub-names are dropped.

        Args:
            name: Backend name (no dots)
            config: Backend configuration dict

        Raises:
            BackendConfigError: If the name contains a dot
        """
        if "." in name:
            raise BackendConfigError(f"Backend names cannot contain '.': {name}")
        self._config[name] = config
        stale = [k for k in self._backend_cache if k == name or k.startswith(name + ".")]
        for key in stale:
            del self._backend_cache[key]

    def clear_cache(self) -> None:
        """Clear the backend instance cache."""
        self._backend_cache.clear()


# Global registry instance
_default_registry: StoreRegistry | None = None


def get_default_registry() -> StoreRegistry:
    """Get the default global registry instance."""
    global _default_registry
    if _default_registry is None:
        _default_registry = StoreRegistry()
    return _default_registry


def get_store_backend(name: str) -> ObjectStoreBackend:
    """Get a backend by name from the default registry.

    Args:
        name: Backend name (e.g., "dev", "dev.images.thumbnails")

    Examples:
        >>> from unistore.core.storage.registry import get_store_backend
        >>> backend = get_store_backend("dev.images")
    """
    return get_default_registry().get_backend(name)
