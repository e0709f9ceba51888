"""
Offset-paged retrieval with one cooldown retry.

The offset advances by exactly ``page_size`` after each non-empty page and the
fetch stops at the first empty page. A failed page is retried once after a
fixed cooldown; a second failure raises ``PageFetchError`` and ends the
iteration, since skipping a page would leave a silent gap downstream.

Pages are yielded lazily and handed to ``on_page`` (typically
``DataStore.write_page``) before being yielded, so a crash after N pages
leaves those N pages on disk and the next start offset recoverable.

Usage::

    fetcher = PagedFetcher(fetch_page, page_size=50, on_page=save)
    for page in fetcher.pages():
        ...
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

import requests

from marine_sdm.errors import PageFetchError

logger = logging.getLogger(__name__)

#: Errors that count as a failed page (HTTP status, connection, bad JSON).
FETCH_ERRORS: tuple[type[BaseException], ...] = (requests.RequestException, ValueError)

FetchPage = Callable[[int], list[dict[str, Any]]]


@dataclass(frozen=True)
class Page:
    """One retrieved page and the offset it was requested with."""

    offset: int
    records: tuple[dict[str, Any], ...]

    def __len__(self) -> int:
        return len(self.records)


class PagedFetcher:
    """Sequential offset pager over a ``fetch_page(offset)`` callable."""

    def __init__(
        self,
        fetch_page: FetchPage,
        page_size: int,
        *,
        start_offset: int = 1,
        cooldown_seconds: float = 60.0,
        on_page: Callable[[Page], object] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if page_size <= 0:
            msg = f"page_size must be positive, got {page_size}"
            raise ValueError(msg)
        self.fetch_page = fetch_page
        self.page_size = page_size
        self.start_offset = start_offset
        self.cooldown_seconds = cooldown_seconds
        self.on_page = on_page
        self.sleep = sleep
        self.next_offset = start_offset
        self.pages_fetched = 0

    def pages(self) -> Iterator[Page]:
        """Yield pages in offset order until the first empty page."""
        offset = self.start_offset
        while True:
            records = self._fetch_with_retry(offset)
            if not records:
                logger.info("Empty page at offset %d; %d pages fetched", offset, self.pages_fetched)
                return
            page = Page(offset=offset, records=tuple(records))
            if self.on_page is not None:
                self.on_page(page)
            self.pages_fetched += 1
            offset += self.page_size
            self.next_offset = offset
            yield page

    def fetch_all(self) -> list[Page]:
        """Materialize every page; raises ``PageFetchError`` on a second failure."""
        return list(self.pages())

    def _fetch_with_retry(self, offset: int) -> list[dict[str, Any]]:
        try:
            return self.fetch_page(offset)
        except FETCH_ERRORS as exc:
            logger.warning(
                "Page at offset %d failed (%s); retrying once in %.0fs",
                offset,
                exc,
                self.cooldown_seconds,
            )
        self.sleep(self.cooldown_seconds)
        try:
            return self.fetch_page(offset)
        except FETCH_ERRORS as exc:
            logger.error("Page at offset %d failed again; aborting paged fetch", offset)
            raise PageFetchError(offset, exc) from exc


def fetch_all(fetch_page: FetchPage, page_size: int, **kwargs: Any) -> list[Page]:
    """Fetch every page from ``fetch_page``; see ``PagedFetcher`` for options."""
    return PagedFetcher(fetch_page, page_size, **kwargs).fetch_all()
