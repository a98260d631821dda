"""Turn marker-based backend listings into plain async sequences."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from unistore.core.errors import GenericError

if TYPE_CHECKING:
    from unistore.core.path import ObjectPath
    from unistore.core.storage.store import ObjectMeta

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000


@dataclass
class ListPage:
    """One page of a backend listing.

    ``next_marker`` is the backend's opaque continuation token; None means
    the listing is complete. It never leaves the adapter/pagination layer.
    """

    objects: list[ObjectMeta] = field(default_factory=list)
    common_prefixes: list[ObjectPath] = field(default_factory=list)
    next_marker: str | None = None

    @property
    def is_truncated(self) -> bool:
        return self.next_marker is not None


PageFetcher = Callable[[str | None], Awaitable[ListPage]]


async def iter_pages(fetch: PageFetcher) -> AsyncIterator[ListPage]:
    """Yield pages until the backend stops returning a marker.

    Raises:
        GenericError: If the backend hands back the marker it was given,
            which would otherwise loop forever
    """
    marker: str | None = None
    page_count = 0
    while True:
        page = await fetch(marker)
        page_count += 1
        logger.debug(
            f"Fetched list page {page_count}: {len(page.objects)} objects, "
            f"{len(page.common_prefixes)} prefixes"
        )
        yield page

        if page.next_marker is None:
            return
        if page.next_marker == marker:
            raise GenericError(
                "Listing did not advance", diagnostic=f"repeated marker {marker!r}"
            )
        marker = page.next_marker


async def iter_objects(fetch: PageFetcher) -> AsyncIterator[ObjectMeta]:
    """Flatten pages into a lazy sequence of ``ObjectMeta``."""
    async for page in iter_pages(fetch):
        for meta in page.objects:
            yield meta
