"""Tests for the shared HTTP sessions and their retry policies."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest.mock import patch

import pytest
import requests
from urllib3.util.retry import Retry

from marine_sdm.datasources.worms import client as worms_client
from marine_sdm.datasources.worms.records import fetch_registry
from marine_sdm.errors import PageFetchError
from marine_sdm.services.http import (
    DEFAULT_RETRY,
    NO_RETRY,
    create_session,
    paged_session,
    session,
)


class UnavailableServer:
    """Local server answering every request with 503, counting requests per method."""

    def __init__(self) -> None:
        self.requests: list[str] = []
        recorded = self.requests

        class Handler(BaseHTTPRequestHandler):
            def _unavailable(self) -> None:
                recorded.append(self.command)
                self.send_response(503)
                self.send_header("Content-Length", "0")
                self.end_headers()

            do_GET = _unavailable  # noqa: N815
            do_POST = _unavailable  # noqa: N815

            def log_message(self, *_args: object) -> None:
                return None

        self._server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self.url = f"http://127.0.0.1:{self._server.server_address[1]}"
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)

    def __enter__(self) -> UnavailableServer:
        self._thread.start()
        return self

    def __exit__(self, *_exc: object) -> None:
        self._server.shutdown()
        self._server.server_close()


@pytest.fixture
def unavailable() -> Iterator[UnavailableServer]:
    with UnavailableServer() as server:
        yield server


def fast(retry: Retry) -> Retry:
    """The same policy without backoff sleeps."""
    return retry.new(backoff_factor=0)


class TestOneShotPolicy:
    """Transport retries for requests nobody else retries."""

    def test_get_retried_on_unavailable(self, unavailable: UnavailableServer) -> None:
        s = create_session(retry=fast(DEFAULT_RETRY))

        resp = s.get(f"{unavailable.url}/species/match")

        assert resp.status_code == 503
        assert unavailable.requests == ["GET"] * (1 + DEFAULT_RETRY.total)

    def test_post_sent_once(self, unavailable: UnavailableServer) -> None:
        """Resubmitting a download request would start a second job."""
        s = create_session(retry=fast(DEFAULT_RETRY))

        resp = s.post(f"{unavailable.url}/occurrence/download/request", json={})

        assert resp.status_code == 503
        assert unavailable.requests == ["POST"]

    def test_module_session_uses_policy(self) -> None:
        adapter = session.get_adapter("https://api.gbif.org")
        assert adapter.max_retries is DEFAULT_RETRY


class TestCallerRetriedPolicy:
    """Paged and polled endpoints get exactly one transport attempt."""

    def test_single_attempt(self, unavailable: UnavailableServer) -> None:
        resp = create_session(retry=NO_RETRY).get(f"{unavailable.url}/AphiaRecordsByDate")

        assert resp.status_code == 503
        assert unavailable.requests == ["GET"]

    def test_module_paged_session_uses_policy(self) -> None:
        adapter = paged_session.get_adapter("https://www.marinespecies.org")
        assert adapter.max_retries is NO_RETRY

    def test_failing_page_costs_two_requests(
        self, unavailable: UnavailableServer, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """One attempt plus the one retry after the cooldown; nothing more."""
        monkeypatch.setattr(worms_client, "API_BASE", unavailable.url)
        monkeypatch.setattr(worms_client._limiter, "wait", lambda: None)

        with pytest.raises(PageFetchError) as excinfo:
            list(fetch_registry(start_date="2000-01-01", cooldown_seconds=0))

        assert excinfo.value.offset == 1
        assert len(unavailable.requests) == 2


class TestDefaultTimeout:
    """A timeout is applied unless the caller passes one."""

    def test_injected_through_session_get(self) -> None:
        s = create_session(retry=NO_RETRY, timeout=42)
        with patch.object(
            requests.adapters.HTTPAdapter, "send", return_value=requests.Response()
        ) as mock_send:
            s.get("https://api.gbif.org/v1/species/match")
            _, kwargs = mock_send.call_args
            assert kwargs.get("timeout") == 42

    def test_explicit_timeout_kept(self) -> None:
        s = create_session(retry=NO_RETRY, timeout=42)
        with patch.object(
            requests.adapters.HTTPAdapter, "send", return_value=requests.Response()
        ) as mock_send:
            s.get("https://api.gbif.org/v1/species/match", timeout=5)
            _, kwargs = mock_send.call_args
            assert kwargs.get("timeout") == 5

    def test_user_agent(self) -> None:
        assert paged_session.headers["User-Agent"].startswith("marine-sdm/")
