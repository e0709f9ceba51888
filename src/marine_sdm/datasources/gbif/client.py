"""
GBIF API client.

Low-level HTTP for the GBIF API v1: backbone species matching and the
asynchronous occurrence download service.

API docs:
  - https://techdocs.gbif.org/en/openapi/v1/species#/Searching%20names/matchNames
  - https://techdocs.gbif.org/en/data-use/api-downloads
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from marine_sdm.services.http import paged_session, session
from marine_sdm.services.pacing import RateLimiter

API_BASE = "https://api.gbif.org/v1"

#: GBIF download states -> terminal/non-terminal.
SUCCEEDED = "SUCCEEDED"
FAILED_STATES = frozenset({"FAILED", "KILLED", "CANCELLED", "FILE_ERASED"})
RUNNING_STATES = frozenset({"PREPARING", "RUNNING", "SUSPENDED"})

_limiter = RateLimiter(min_interval=0.1)

CHUNK_BYTES = 1024 * 1024


def get_species_match(name: str, *, kingdom: str | None = None) -> dict[str, Any]:
    """GET /species/match?verbose=true: best match plus alternatives for one name."""
    params: dict[str, Any] = {"name": name, "verbose": "true", "strict": "false"}
    if kingdom:
        params["kingdom"] = kingdom
    _limiter.wait()
    resp = session.get(f"{API_BASE}/species/match", params=params)
    resp.raise_for_status()
    data: dict[str, Any] = resp.json()
    return data


def request_download(body: dict[str, Any], auth: tuple[str, str]) -> str:
    """POST /occurrence/download/request: returns the download key."""
    _limiter.wait()
    resp = session.post(f"{API_BASE}/occurrence/download/request", json=body, auth=auth)
    resp.raise_for_status()
    return resp.text.strip()


def get_download(key: str) -> dict[str, Any]:
    """GET /occurrence/download/{key}: download metadata including ``status``."""
    _limiter.wait()
    resp = paged_session.get(f"{API_BASE}/occurrence/download/{key}")
    resp.raise_for_status()
    data: dict[str, Any] = resp.json()
    return data


def fetch_archive(key: str, dest: Path) -> Path:
    """Stream the zip archive of a finished download to ``dest``."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_suffix(dest.suffix + ".part")
    with session.get(f"{API_BASE}/occurrence/download/request/{key}.zip", stream=True) as resp:
        resp.raise_for_status()
        with tmp.open("wb") as f:
            for chunk in resp.iter_content(chunk_size=CHUNK_BYTES):
                if chunk:
                    f.write(chunk)
    tmp.replace(dest)
    return dest
