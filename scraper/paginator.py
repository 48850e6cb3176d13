"""Bounded sequential pagination over a paged data source."""
import logging
from typing import Callable

from processor.models import Page, PageResult

logger = logging.getLogger(__name__)

PageFetcher = Callable[[int, int], Page]


def fetch_all(page_fetcher: PageFetcher, page_size: int, hard_cap: int) -> PageResult:
    """
    Fetch pages one after another until the source is exhausted or the cap is hit.

    Stops when a page returns fewer than page_size records, or when the next
    offset would exceed hard_cap; the latter sets PageResult.truncated.
    Exceptions raised by page_fetcher propagate unchanged.

    Args:
        page_fetcher: Callable taking (offset, limit) and returning a Page
        page_size: Records requested per page
        hard_cap: Largest offset that will still be requested

    Returns:
        PageResult with every record fetched
    """
    if page_size < 1:
        raise ValueError(f"page_size must be positive, got {page_size}")

    items = []
    offset = 0
    pages = 0
    truncated = False

    while True:
        logger.info(f"Fetching page at offset {offset} (limit {page_size})")
        page = page_fetcher(offset, page_size)
        pages += 1
        items.extend(page.records)

        if len(page.records) < page_size:
            break

        offset += page_size
        if offset > hard_cap:
            truncated = True
            logger.warning(
                f"Reached record cap of {hard_cap} after {len(items)} records; "
                f"result may be incomplete"
            )
            break

    logger.info(f"Fetched {len(items)} records in {pages} pages")
    return PageResult(items=items, truncated=truncated, pages_fetched=pages)
