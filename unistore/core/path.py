"""Hierarchical object keys.

An ``ObjectPath`` is an ordered sequence of non-empty segments. Surface
differences such as repeated separators or percent-encoding are normalized
away at parse time, so equality is purely segment-wise. Each backend has its
own string form, produced by ``to_backend_string`` and read back by
``from_backend_string``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from functools import total_ordering
from urllib.parse import unquote

from unistore.core.errors import InvalidPathError

DELIMITER = "/"


class BackendKind(Enum):
    """Closed set of supported storage protocols."""

    S3 = "s3"
    GCS = "gcs"
    AZURE = "azure"
    FILESYSTEM = "filesystem"
    MEMORY = "memory"

    @property
    def is_cloud(self) -> bool:
        return self in (BackendKind.S3, BackendKind.GCS, BackendKind.AZURE)


_CLOUD_RESERVED = frozenset("%/")
_AZURE_RESERVED = frozenset("%/\\")
_FS_RESERVED = frozenset(
    {"%", "/", os.sep}
    | ({os.altsep} if os.altsep else set())
    | (set('<>:"|?*') if os.name == "nt" else set())
)


def _reserved_for(kind: BackendKind) -> frozenset[str]:
    if kind is BackendKind.AZURE:
        return _AZURE_RESERVED
    if kind is BackendKind.FILESYSTEM:
        return _FS_RESERVED
    return _CLOUD_RESERVED


def _encode_segment(segment: str, reserved: frozenset[str]) -> str:
    return "".join(f"%{ord(ch):02X}" if ch in reserved else ch for ch in segment)


def _check_segment(segment: str, raw: str) -> None:
    for ch in segment:
        if ord(ch) < 0x20 or ord(ch) == 0x7F:
            raise InvalidPathError(
                f"Path contains a control character: {raw!r}",
                diagnostic=f"U+{ord(ch):04X}",
            )


@total_ordering
@dataclass(frozen=True)
class ObjectPath:
    """Normalized hierarchical key identifying one object."""

    parts: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.parts:
            raise InvalidPathError("Path is empty after normalization")
        for part in self.parts:
            if not part:
                raise InvalidPathError(f"Path has an empty segment: {self.parts!r}")
            _check_segment(part, DELIMITER.join(self.parts))

    @classmethod
    def parse(cls, raw: str) -> ObjectPath:
        """Parse a ``/``-separated string, dropping empty segments.

        Segments are percent-decoded, so ``"a%20b"`` and ``"a b"`` name the
        same object.

        Raises:
            InvalidPathError: If nothing remains after normalization or a
                segment holds a control character
        """
        if not isinstance(raw, str):
            raise InvalidPathError(f"Path must be a string, got {type(raw).__name__}")
        segments = tuple(unquote(s) for s in raw.split(DELIMITER) if s)
        if not segments:
            raise InvalidPathError(f"Path is empty after normalization: {raw!r}")
        return cls(segments)

    @classmethod
    def from_parts(cls, *parts: str) -> ObjectPath:
        """Build a path from already-split segments (no decoding)."""
        return cls(tuple(parts))

    @classmethod
    def from_backend_string(cls, raw: str, kind: BackendKind) -> ObjectPath:
        """Inverse of ``to_backend_string``."""
        separator = os.sep if kind is BackendKind.FILESYSTEM else DELIMITER
        if kind is BackendKind.FILESYSTEM and os.altsep:
            raw = raw.replace(os.altsep, separator)
        segments = tuple(unquote(s) for s in raw.split(separator) if s)
        if not segments:
            raise InvalidPathError(f"Backend key is empty: {raw!r}")
        return cls(segments)

    def to_backend_string(self, kind: BackendKind) -> str:
        """Serialize for ``kind``, escaping characters the backend reserves."""
        reserved = _reserved_for(kind)
        if kind is BackendKind.FILESYSTEM:
            encoded = []
            for part in self.parts:
                if part in (".", ".."):
                    encoded.append("%2E" * len(part))
                else:
                    encoded.append(_encode_segment(part, reserved))
            return os.sep.join(encoded)
        return DELIMITER.join(_encode_segment(part, reserved) for part in self.parts)

    @property
    def name(self) -> str:
        """Last segment."""
        return self.parts[-1]

    @property
    def parent(self) -> ObjectPath | None:
        """Path without its last segment, or None at the top level."""
        if len(self.parts) == 1:
            return None
        return ObjectPath(self.parts[:-1])

    def child(self, *parts: str) -> ObjectPath:
        return ObjectPath(self.parts + tuple(parts))

    def __truediv__(self, other: str | ObjectPath) -> ObjectPath:
        if isinstance(other, ObjectPath):
            return ObjectPath(self.parts + other.parts)
        return ObjectPath(self.parts + ObjectPath.parse(other).parts)

    def starts_with(self, prefix: ObjectPath | None) -> bool:
        """Segment-wise prefix test; every path starts with ``None``."""
        if prefix is None:
            return True
        return self.parts[: len(prefix.parts)] == prefix.parts

    def relative_to(self, prefix: ObjectPath) -> ObjectPath:
        if not self.starts_with(prefix) or len(self.parts) == len(prefix.parts):
            raise InvalidPathError(f"{self} is not beneath {prefix}")
        return ObjectPath(self.parts[len(prefix.parts) :])

    def __str__(self) -> str:
        return DELIMITER.join(self.parts)

    def __lt__(self, other: ObjectPath) -> bool:
        if not isinstance(other, ObjectPath):
            return NotImplemented
        return self.to_backend_string(BackendKind.MEMORY) < other.to_backend_string(BackendKind.MEMORY)


def coerce_path(path: ObjectPath | str) -> ObjectPath:
    """Accept either an ``ObjectPath`` or its string form."""
    if isinstance(path, ObjectPath):
        return path
    return ObjectPath.parse(path)


def coerce_prefix(prefix: ObjectPath | str | None) -> ObjectPath | None:
    """Like ``coerce_path`` but an empty or missing prefix means "everything"."""
    if prefix is None or isinstance(prefix, ObjectPath):
        return prefix
    if not prefix.strip(DELIMITER):
        return None
    return ObjectPath.parse(prefix)
