"""Per-upload multipart state machine.

Each ``put_stream`` that outgrows a single request creates one
``MultipartUpload``. It owns a ``MultipartUploadState`` for the lifetime of
that call and walks it through::

    INITIATED -> PARTS_UPLOADING -> COMPLETED
         \\              |
          +-----> ABORTED <----+

The protocol steps (initiate, upload part, complete, abort) are supplied by
the backend adapter; this module only sequences them, bounds the number of
parts in flight, and guarantees the abort step runs before any error or
cancellation escapes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from unistore.core.errors import GenericError

if TYPE_CHECKING:
    from unistore.core.path import ObjectPath
    from unistore.core.storage.store import ObjectMeta, ObjectStoreBackend

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_PARTS = 4


class UploadPhase(Enum):
    INITIATED = "initiated"
    PARTS_UPLOADING = "parts_uploading"
    COMPLETED = "completed"
    ABORTED = "aborted"


_TRANSITIONS: dict[UploadPhase, frozenset[UploadPhase]] = {
    UploadPhase.INITIATED: frozenset({UploadPhase.PARTS_UPLOADING, UploadPhase.ABORTED}),
    UploadPhase.PARTS_UPLOADING: frozenset({UploadPhase.COMPLETED, UploadPhase.ABORTED}),
    UploadPhase.COMPLETED: frozenset(),
    UploadPhase.ABORTED: frozenset(),
}


@dataclass
class MultipartUploadState:
    """State of one in-flight upload. Never shared between uploads.

    ``parts`` collects ``(part_index, e_tag)`` in completion order; adapters
    read them back through ``ordered_parts``. ``staged`` is scratch space for
    adapters that keep part payloads themselves.
    """

    upload_id: str
    parts: list[tuple[int, str]] = field(default_factory=list)
    staged: dict[int, bytes] = field(default_factory=dict)
    phase: UploadPhase = UploadPhase.INITIATED

    def transition(self, phase: UploadPhase) -> None:
        if phase not in _TRANSITIONS[self.phase]:
            raise GenericError(
                f"Illegal upload transition {self.phase.value} -> {phase.value}",
                diagnostic=f"upload_id={self.upload_id}",
            )
        self.phase = phase

    def record_part(self, index: int, e_tag: str) -> None:
        self.parts.append((index, e_tag))

    def ordered_parts(self) -> list[tuple[int, str]]:
        return sorted(self.parts)

    @property
    def is_terminal(self) -> bool:
        return self.phase in (UploadPhase.COMPLETED, UploadPhase.ABORTED)


def _raise_first_failure(done: set[asyncio.Task[None]]) -> None:
    """Re-raise the first part failure, retrieving every sibling's exception too."""
    errors = [task.exception() for task in done if not task.cancelled()]
    for error in errors:
        if error is not None:
            raise error


class MultipartUpload:
    """Drive one multipart upload through the backend's protocol hooks."""

    def __init__(
        self,
        backend: ObjectStoreBackend,
        path: ObjectPath,
        max_concurrent_parts: int = DEFAULT_MAX_CONCURRENT_PARTS,
        max_parts: int | None = None,
    ):
        self._backend = backend
        self._path = path
        self._max_concurrent = max(1, max_concurrent_parts)
        self._max_parts = max_parts
        self.state: MultipartUploadState | None = None

    async def run(self, parts: AsyncIterator[bytes]) -> ObjectMeta:
        """Upload every part from ``parts`` and assemble the object.

        The next part is only pulled from ``parts`` once fewer than
        ``max_concurrent_parts`` uploads are in flight.
        """
        upload_id = await self._backend.initiate_multipart(self._path)
        state = self.state = MultipartUploadState(upload_id=upload_id)
        logger.debug(f"Initiated multipart upload {upload_id} for {self._path}")

        in_flight: set[asyncio.Task[None]] = set()
        try:
            state.transition(UploadPhase.PARTS_UPLOADING)
            index = 0
            async for data in parts:
                if self._max_parts is not None and index >= self._max_parts:
                    raise GenericError(
                        f"Upload of {self._path} exceeds {self._max_parts} parts",
                        path=self._path,
                        diagnostic="pass total_size_hint or raise part_size",
                    )
                while len(in_flight) >= self._max_concurrent:
                    done, in_flight = await asyncio.wait(
                        in_flight, return_when=asyncio.FIRST_COMPLETED
                    )
                    _raise_first_failure(done)
                in_flight.add(asyncio.create_task(self._upload_part(state, index, data)))
                index += 1

            if in_flight:
                await asyncio.gather(*in_flight)
                in_flight = set()

            meta = await self._backend.complete_multipart(self._path, state)
            state.transition(UploadPhase.COMPLETED)
            logger.info(f"Completed multipart upload of {self._path} ({len(state.parts)} parts)")
            return meta

        except BaseException as e:
            await self._abort(state, in_flight, e)
            raise

    async def _upload_part(self, state: MultipartUploadState, index: int, data: bytes) -> None:
        e_tag = await self._backend.upload_part(self._path, state, index, data)
        state.record_part(index, e_tag)
        logger.debug(f"Uploaded part {index} of {state.upload_id} ({len(data)} bytes)")

    async def _abort(
        self,
        state: MultipartUploadState,
        in_flight: set[asyncio.Task[None]],
        cause: BaseException,
    ) -> None:
        for task in in_flight:
            task.cancel()
        await asyncio.gather(*in_flight, return_exceptions=True)

        if state.is_terminal:
            return
        state.transition(UploadPhase.ABORTED)
        try:
            await self._backend.abort_multipart(self._path, state)
        except Exception as abort_error:
            logger.error(
                f"Failed to abort multipart upload {state.upload_id} for {self._path}: "
                f"{abort_error} (original error: {cause!r})"
            )
        else:
            logger.info(f"Aborted multipart upload {state.upload_id} for {self._path}: {cause!r}")
