"""Backend-agnostic error taxonomy.

Every adapter maps its provider-native failures into one of the exception
classes below. Callers match on the class (or on ``kind``); the
``diagnostic`` text is for logging only.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from unistore.core.path import ObjectPath


class ErrorKind(Enum):
    """Kinds of failure surfaced by the storage interface."""

    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    PERMISSION_DENIED = "permission_denied"
    INVALID_PATH = "invalid_path"
    INVALID_RANGE = "invalid_range"
    INVALID_CONFIG = "invalid_config"
    TRANSIENT = "transient"
    GENERIC = "generic"


class ObjectStoreError(Exception):
    """Base exception for object store errors."""

    kind: ErrorKind = ErrorKind.GENERIC

    def __init__(
        self,
        message: str,
        path: ObjectPath | None = None,
        diagnostic: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.path = path
        self.diagnostic = diagnostic

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT

    def __str__(self) -> str:
        if self.diagnostic:
            return f"{self.message} ({self.diagnostic})"
        return self.message


class NotFoundError(ObjectStoreError):
    """Raised when an object does not exist."""

    kind = ErrorKind.NOT_FOUND


class AlreadyExistsError(ObjectStoreError):
    """Raised by create-only writes when the object already exists."""

    kind = ErrorKind.ALREADY_EXISTS


class PermissionDeniedError(ObjectStoreError):
    """Raised when the backend rejects the caller's credentials."""

    kind = ErrorKind.PERMISSION_DENIED


class InvalidPathError(ObjectStoreError):
    """Raised when a path is empty or contains disallowed characters."""

    kind = ErrorKind.INVALID_PATH


class InvalidRangeError(ObjectStoreError):
    """Raised when a byte range falls outside the object bounds."""

    kind = ErrorKind.INVALID_RANGE


class InvalidConfigError(ObjectStoreError):
    """Raised when backend configuration is invalid."""

    kind = ErrorKind.INVALID_CONFIG


class TransientError(ObjectStoreError):
    """Raised for timeouts, overload and connection failures. Retryable."""

    kind = ErrorKind.TRANSIENT


class GenericError(ObjectStoreError):
    """Raised for backend-specific, non-retryable failures."""

    kind = ErrorKind.GENERIC


_ERROR_CLASSES: dict[ErrorKind, type[ObjectStoreError]] = {
    cls.kind: cls
    for cls in (
        NotFoundError,
        AlreadyExistsError,
        PermissionDeniedError,
        InvalidPathError,
        InvalidRangeError,
        InvalidConfigError,
        TransientError,
        GenericError,
    )
}


def error_for_kind(
    kind: ErrorKind,
    message: str,
    path: ObjectPath | None = None,
    diagnostic: str | None = None,
) -> ObjectStoreError:
    """Build the exception instance matching ``kind``."""
    return _ERROR_CLASSES[kind](message, path=path, diagnostic=diagnostic)
