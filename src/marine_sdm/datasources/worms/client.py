"""
WoRMS REST client.

API docs: https://www.marinespecies.org/rest/
The records-by-date endpoint pages through the whole register 50 records at a
time; an empty page (HTTP 204) marks the end.
"""

from __future__ import annotations

from typing import Any

from marine_sdm.services.http import paged_session
from marine_sdm.services.pacing import RateLimiter

API_BASE = "https://www.marinespecies.org/rest"
MAX_PAGE_SIZE = 50  # records returned per AphiaRecordsByDate call

_limiter = RateLimiter(min_interval=0.5)


def get_records_by_date(
    offset: int,
    *,
    start_date: str,
    end_date: str | None = None,
    marine_only: bool = False,
) -> list[dict[str, Any]]:
    """GET /AphiaRecordsByDate: one page of records modified since ``start_date``.

    Returns an empty list when the service has no more records.
    Raises ``requests.HTTPError`` on any other non-success status.
    """
    params: dict[str, Any] = {
        "startdate": start_date,
        "marine_only": str(marine_only).lower(),
        "offset": offset,
    }
    if end_date is not None:
        params["enddate"] = end_date

    _limiter.wait()
    resp = paged_session.get(f"{API_BASE}/AphiaRecordsByDate", params=params)
    if resp.status_code == 204:
        return []
    resp.raise_for_status()
    data: list[dict[str, Any]] = resp.json() or []
    return data
