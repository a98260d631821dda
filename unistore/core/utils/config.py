"""Configuration loading utilities using importlib.

Named object store configurations live in plain Python modules exposing a
``CONFIGURATION`` dict (see ``configs/object_stores.py``). This module loads
such dicts by dotted module path, so applications can point the registry at
their own module without hardcoded imports.

Supports configuration inheritance using the "__inherits__" key.
"""

from __future__ import annotations

import importlib
import logging
from typing import Any

from unistore.core.errors import InvalidConfigError

logger = logging.getLogger(__name__)

INHERITS_KEY = "__inherits__"


class ConfigError(InvalidConfigError):
    """Raised when configuration loading or resolution fails."""

    pass


def load_config_from_module(
    module_path: str,
    config_name: str = "CONFIGURATION",
    default: Any | None = None,
) -> Any:
    """Load a configuration object from a Python module using importlib.

    Args:
        module_path: Dotted module path (e.g., "configs.object_stores")
        config_name: Name of the configuration object to retrieve (default: "CONFIGURATION")
        default: Value returned when the module or attribute does not exist

    Returns:
        The configuration object from the module, or default if it is missing

    Raises:
        ConfigError: If the module exists but fails while being imported

    Examples:
        >>> config = load_config_from_module("configs.object_stores")
        >>> custom = load_config_from_module("myapp.stores", "STORES")
    """
    try:
        module = importlib.import_module(module_path)
    except ModuleNotFoundError as e:
        if e.name and module_path.startswith(e.name):
            logger.warning(f"Could not import module '{module_path}': {e}")
            return default
        raise ConfigError(f"Error loading configuration from '{module_path}': {e}") from e
    except Exception as e:
        raise ConfigError(f"Error loading configuration from '{module_path}': {e}") from e

    if not hasattr(module, config_name):
        logger.warning(f"Module '{module_path}' does not have attribute '{config_name}'")
        return default

    config = getattr(module, config_name)
    logger.debug(f"Loaded configuration from {module_path}.{config_name}")
    return config


def load_config_with_fallback(
    primary_module: str | None,
    fallback_modules: list[str] | None = None,
    config_name: str = "CONFIGURATION",
    default: Any | None = None,
) -> Any:
    """Load configuration with fallback to alternative modules.

    Attempts to load configuration from the primary module first, then tries
    fallback modules in order until one succeeds.

    Args:
        primary_module: Primary module path to try first; None skips it
        fallback_modules: List of fallback module paths to try
        config_name: Name of the configuration object to retrieve
        default: Default value if every module is missing

    Returns:
        Configuration object from first successful module, or default
    """
    if primary_module:
        config = load_config_from_module(primary_module, config_name, default=None)
        if config is not None:
            return config

    for fallback in fallback_modules or []:
        config = load_config_from_module(fallback, config_name, default=None)
        if config is not None:
            logger.info(f"Using fallback configuration from '{fallback}'")
            return config

    logger.warning("Could not load configuration from any module, using default")
    return default


def resolve_config_inheritance(config_dict: dict[str, dict[str, Any]]) -> dict[str, dict[str, Any]]:
    """Resolve inheritance in a configuration dictionary.

    Configurations can inherit from other configurations using the "__inherits__" key.
    Child keys override the parent's; the result holds no "__inherits__" keys.

    Args:
        config_dict: Configuration dictionary with potential inheritance relationships

    Returns:
        Fully resolved configuration dictionary with all inheritance applied

    Raises:
        ConfigError: If circular inheritance detected or parent not found

    Examples:
        >>> config = {
        ...     "lake": {"type": "s3", "bucket": "lake", "endpoint": "localhost:9000"},
        ...     "archive": {"__inherits__": "lake", "bucket": "archive"}
        ... }
        >>> resolved = resolve_config_inheritance(config)
        >>> resolved["archive"]["endpoint"]  # Inherited from lake
        'localhost:9000'
    """
    resolved_configs: dict[str, dict[str, Any]] = {}

    def _resolve_single(name: str, visited: tuple[str, ...]) -> dict[str, Any]:
        if name in visited:
            chain = " -> ".join(visited + (name,))
            raise ConfigError(f"Circular inheritance detected: {chain}")

        if name in resolved_configs:
            return resolved_configs[name]

        config = config_dict[name]
        if not isinstance(config, dict):
            raise ConfigError(f"Configuration '{name}' must be a dict, got {type(config).__name__}")

        if INHERITS_KEY not in config:
            resolved = dict(config)
        else:
            parent_name = config[INHERITS_KEY]
            if parent_name not in config_dict:
                raise ConfigError(
                    f"Configuration '{name}' inherits from '{parent_name}', "
                    f"but '{parent_name}' not found"
                )
            resolved = dict(_resolve_single(parent_name, visited + (name,)))
            resolved.update({k: v for k, v in config.items() if k != INHERITS_KEY})
            logger.debug(f"Resolved inheritance for '{name}' from '{parent_name}'")

        resolved_configs[name] = resolved
        return resolved

    for name in config_dict:
        _resolve_single(name, ())

    return resolved_configs


def load_and_resolve_config(
    module_path: str,
    config_name: str = "CONFIGURATION",
    default: dict[str, dict[str, Any]] | None = None,
    fallback_modules: list[str] | None = None,
) -> dict[str, dict[str, Any]]:
    """Load configuration from module and resolve all inheritance relationships.

    This is the main entry point for loading configurations.

    Args:
        module_path: Dotted module path (e.g., "configs.object_stores")
        config_name: Name of the configuration object to retrieve
        default: Value used when no module provides a configuration
        fallback_modules: Modules tried in order when ``module_path`` is missing

    Returns:
        Fully resolved configuration dictionary

    Raises:
        ConfigError: If the loaded object is not a dict or inheritance is broken
    """
    raw_config = load_config_with_fallback(module_path, fallback_modules, config_name, default=None)

    if raw_config is None:
        return dict(default or {})
    if not isinstance(raw_config, dict):
        raise ConfigError(
            f"{module_path}.{config_name} must be a dict, got {type(raw_config).__name__}"
        )

    try:
        resolved = resolve_config_inheritance(raw_config)
    except ConfigError as e:
        logger.error(f"Failed to resolve configuration inheritance: {e}")
        raise
    logger.info(f"Loaded and resolved {len(resolved)} configurations from {module_path}")
    return resolved
