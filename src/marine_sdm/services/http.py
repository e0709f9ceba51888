"""
Shared HTTP sessions for the pipeline's services.

Two retry policies, picked by who owns the retry schedule:

``session``
    One-shot requests (a species match, an archive download). urllib3
    retries connection errors and 502/503/504 responses with exponential
    backoff. POST is never retried: resubmitting a download request would
    start a second job.

``paged_session``
    Requests whose caller already retries: WoRMS pages (one retry after a
    cooldown, see ``services.paging``) and download status polls (retried
    until the poll deadline). The transport makes exactly one attempt, so the
    caller's schedule is the only spacing between requests.

Both inject a default timeout and the pipeline's User-Agent. Datasource
modules use one of these sessions, never bare ``requests.get``.

Usage::

    from marine_sdm.services.http import paged_session

    resp = paged_session.get(f"{API_BASE}/AphiaRecordsByDate", params=params)
"""

from __future__ import annotations

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from marine_sdm import __version__

TRANSIENT_STATUSES = (502, 503, 504)

#: Transport retries for one-shot requests.
DEFAULT_RETRY = Retry(
    total=3,
    backoff_factor=2,  # 0s, 2s, 4s between retries
    status_forcelist=TRANSIENT_STATUSES,
    allowed_methods=["GET", "HEAD", "OPTIONS"],
    raise_on_status=False,  # let resp.raise_for_status() handle it
)

#: Single attempt; the caller decides whether and when to try again.
NO_RETRY = Retry(total=0, raise_on_status=False)

DEFAULT_TIMEOUT = 60  # seconds

USER_AGENT = f"marine-sdm/{__version__}"


def create_session(
    retry: Retry | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> requests.Session:
    """
    Build a ``requests.Session`` with the given retry policy mounted.

    Args:
        retry: Transport retry policy (defaults to ``DEFAULT_RETRY``).
        timeout: Timeout applied to every request that does not pass one.
    """
    s = requests.Session()
    adapter = HTTPAdapter(max_retries=retry if retry is not None else DEFAULT_RETRY)
    s.mount("https://", adapter)
    s.mount("http://", adapter)
    s.headers["User-Agent"] = USER_AGENT

    _original_send = s.send

    def _send_with_timeout(
        prepared: requests.PreparedRequest, **kwargs: object
    ) -> requests.Response:
        if kwargs.get("timeout") is None:
            kwargs["timeout"] = timeout
        return _original_send(prepared, **kwargs)  # type: ignore[arg-type]

    s.send = _send_with_timeout  # type: ignore[method-assign]
    return s


session: requests.Session = create_session()
paged_session: requests.Session = create_session(retry=NO_RETRY)
