"""Paged registry dump and record parsing."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from functools import partial
from typing import Any

from pydantic import ValidationError

from marine_sdm.datasources.worms import client
from marine_sdm.schemas import TaxonRecord
from marine_sdm.services.paging import Page, PagedFetcher

logger = logging.getLogger(__name__)


def fetch_registry(
    *,
    start_date: str,
    page_size: int = client.MAX_PAGE_SIZE,
    start_offset: int = 1,
    cooldown_seconds: float = 60.0,
    marine_only: bool = False,
    on_page: Callable[[Page], object] | None = None,
) -> Iterator[Page]:
    """Lazily page through the WoRMS register.

    Each page goes to ``on_page`` before it is yielded. A second consecutive
    failure of the same page raises ``PageFetchError`` carrying its offset.
    """
    fetch_page = partial(
        client.get_records_by_date, start_date=start_date, marine_only=marine_only
    )
    fetcher = PagedFetcher(
        fetch_page,
        page_size,
        start_offset=start_offset,
        cooldown_seconds=cooldown_seconds,
        on_page=on_page,
    )
    return fetcher.pages()


def parse_records(raw_records: Iterable[dict[str, Any]]) -> tuple[list[TaxonRecord], int]:
    """Validate raw WoRMS dicts into ``TaxonRecord``s.

    Returns the parsed records (in input order) and the number of raw records
    that could not be parsed (no AphiaID or name).
    """
    records: list[TaxonRecord] = []
    invalid = 0
    for raw in raw_records:
        try:
            records.append(TaxonRecord.model_validate(raw))
        except ValidationError as exc:
            invalid += 1
            logger.debug("Skipping unparseable WoRMS record %r: %s", raw.get("AphiaID"), exc)
    return records, invalid
