"""Pagination helpers for draining remote result sets.

Both helpers request pages until one comes back shorter than the page
size. They never ask for a total count, never request the same page
twice, and always terminate because the offset grows with every full
page.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# fetch(offset, limit) -> page
OffsetFetcher = Callable[[int, int], Awaitable[Sequence[T]]]
# fetch(first, last) -> page, both bounds inclusive
RangeFetcher = Callable[[int, int], Awaitable[Sequence[T]]]


async def drain_offset(fetch: OffsetFetcher[T], page_size: int) -> list[T]:
    """Collect every page of an ``(offset, limit)`` paginated endpoint.

    Args:
        fetch: Coroutine function returning the page at ``offset``.
        page_size: Number of items requested per page.

    Returns:
        All items, in arrival order.
    """
    if page_size <= 0:
        raise ValueError("page_size must be positive")

    results: list[T] = []
    offset = 0
    pages = 0
    while True:
        page = await fetch(offset, page_size)
        pages += 1
        results.extend(page)
        if len(page) < page_size:
            break
        offset += page_size

    logger.debug("Drained %d items in %d pages", len(results), pages)
    return results


async def drain_range(fetch: RangeFetcher[T], page_size: int) -> list[T]:
    """Collect every page of a ``(from, to)`` range-paginated endpoint.

    Ranges are inclusive, as in HTTP ``Range`` headers: the first page is
    ``(0, page_size - 1)``.
    """

    async def by_offset(offset: int, limit: int) -> Sequence[T]:
        return await fetch(offset, offset + limit - 1)

    return await drain_offset(by_offset, page_size)
