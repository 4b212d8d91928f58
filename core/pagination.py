"""
Auto-pagination for non-aggregated Socrata queries.
"""

import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence

logger = logging.getLogger(__name__)

FetchPage = Callable[[int, int], Awaitable[Optional[Sequence[Any]]]]


async def auto_paginate(
    fetch_page: FetchPage,
    page_size: int = 1000,
    max_records: int = 10000,
    max_pages: int = 10,
) -> List[Any]:
    """
    Fetch pages at increasing offsets and concatenate them.

    Stops when a page comes back short or empty, when ``max_records`` rows
    have been collected, or after ``max_pages`` requests.

    Args:
        fetch_page: Coroutine function called as fetch_page(offset, limit)
        page_size: Rows requested per page
        max_records: Upper bound on returned rows
        max_pages: Upper bound on requests

    Returns:
        At most ``max_records`` rows, in page order
    """
    if page_size < 1:
        raise ValueError("page_size must be at least 1")

    records: List[Any] = []
    offset = 0

    for _ in range(max_pages):
        if len(records) >= max_records:
            break

        page = await fetch_page(offset, page_size)
        if not page:
            break

        records.extend(page)
        offset += page_size

        if len(page) < page_size:
            break
    else:
        if len(records) < max_records:
            logger.info(
                f"Pagination stopped at the {max_pages}-page safety limit ({len(records)} rows)"
            )

    return records[:max_records]
