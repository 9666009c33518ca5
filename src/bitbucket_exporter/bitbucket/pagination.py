"""Page walking for Bitbucket's paginated endpoints.

Bitbucket returns ``next`` as an absolute URL carrying a ``page`` query
parameter. The walker re-issues the original request with that page number
until ``next`` is missing or empty.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import TypeVar
from urllib.parse import parse_qs, urlparse

from bitbucket_exporter.bitbucket.exceptions import PaginationError
from bitbucket_exporter.bitbucket.http import BitbucketClient, QueryParams
from bitbucket_exporter.bitbucket.models import Page

logger = logging.getLogger(__name__)

T = TypeVar("T")


def next_page_number(next_link: str | None) -> int | None:
    """Extract the page number from a ``next`` link.

    Args:
        next_link: Value of the envelope's ``next`` field.

    Returns:
        The next page number, or None when there is no next page.

    Raises:
        PaginationError: If the link is not a URL or has no integer ``page``.
    """
    if not next_link:
        return None

    try:
        query = urlparse(next_link).query
    except ValueError as e:
        raise PaginationError(f"Invalid next link {next_link!r}: {e}") from e

    pages = parse_qs(query).get("page")
    if not pages:
        raise PaginationError(f"Next link {next_link!r} has no page parameter")

    try:
        return int(pages[0])
    except ValueError as e:
        raise PaginationError(f"Next link {next_link!r} has non-numeric page {pages[0]!r}") from e


async def walk_pages(
    client: BitbucketClient,
    endpoint: str,
    item_type: type[T],
    params: QueryParams | None = None,
    stop_on_empty: bool = False,
    page_interval: float = 0.0,
) -> AsyncIterator[Page[T]]:
    """Iterate over every page of a paginated endpoint.

    The next page is only requested once the caller asks for it, so work
    done between iterations throttles the walk.

    Args:
        client: HTTP client.
        endpoint: API endpoint relative to the base URL.
        item_type: Model each entry of ``values`` is decoded into.
        params: Query parameters sent with every page.
        stop_on_empty: Also stop on a page without values. Off by default,
            only the ``next`` link governs continuation.
        page_interval: Seconds to pause before requesting each following page.

    Yields:
        Decoded pages, starting at page 1.

    Raises:
        TransportError: On request failure.
        DecodeError: On malformed pages.
        PaginationError: On an unusable ``next`` link, or one leading back to
            a page already walked.
    """
    base_params = dict(params or {})
    page_num = 1
    visited = {page_num}

    while True:
        page = await client.get_page(endpoint, item_type, {**base_params, "page": page_num})
        yield page

        if stop_on_empty and not page.values:
            logger.debug("Empty page %d for %s, stopping", page_num, endpoint)
            return

        next_num = next_page_number(page.next)
        if next_num is None:
            return
        if next_num in visited:
            raise PaginationError(f"Next link for {endpoint} points back to page {next_num}")
        visited.add(next_num)

        page_num = next_num
        logger.debug("Following pagination to page %d for %s", page_num, endpoint)

        if page_interval > 0:
            await asyncio.sleep(page_interval)
