"""Draining of paginated upstream list endpoints."""

import logging
from collections.abc import Awaitable
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_TOTAL = 10_000


@dataclass
class Page:
    """One page of a list endpoint.

    Args:
        items: Records on this page
        total: Total record count reported by the upstream, if any
    """

    items: list[Any] = field(default_factory=list)
    total: int | None = None

    @classmethod
    def from_response(cls, payload: dict[str, Any]) -> "Page":
        """Read a Takaro ``{"data": [...], "meta": {"total": n}}`` envelope."""
        meta = payload.get("meta") or {}
        return cls(items=list(payload.get("data") or []), total=meta.get("total"))


PageFetcher = Callable[[int, int], Awaitable[Page]]


async def drain_paginated(
    fetch_page: PageFetcher,
    page_size: int = DEFAULT_PAGE_SIZE,
    max_total: int = DEFAULT_MAX_TOTAL,
) -> list[Any]:
    """Fetch pages 0, 1, 2, ... and concatenate their items.

    Stops as soon as one of these holds:

    - the accumulated count reaches the reported ``total``;
    - no ``total`` is reported and a page comes back short (or empty);
    - ``max_total`` items have been collected. The result is then truncated
      to exactly ``max_total`` and the truncation is logged, not raised.
    """
    results: list[Any] = []
    page = 0

    while True:
        current = await fetch_page(page, page_size)
        results.extend(current.items)
        page += 1

        if len(results) >= max_total:
            logger.warning(
                "Pagination hit max limit (%d), stopping after %d pages",
                max_total,
                page,
            )
            del results[max_total:]
            break

        if not current.items:
            break
        if current.total is not None:
            if len(results) >= current.total:
                break
        elif len(current.items) < page_size:
            break

    if page > 1:
        logger.info("Paginated fetch: %d results (%d pages)", len(results), page)
    return results
