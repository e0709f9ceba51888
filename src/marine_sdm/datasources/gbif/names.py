"""Backbone name reconciliation, one chunk at a time.

Each name in a chunk is matched with ``verbose=true`` so that alternative
candidates come back alongside the best one. Rows carry ``verbatim_index``,
the name's position inside the chunk; callers re-offset it by the chunk start.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from marine_sdm.datasources.gbif import client

MATCH_FIELDS = ("usageKey", "scientificName", "matchType", "status", "rank", "confidence")


def flatten_match(
    data: dict[str, Any], verbatim_index: int, verbatim_name: str
) -> list[dict[str, Any]]:
    """Best match + alternatives as flat rows for one query."""
    candidates = [data, *(data.get("alternatives") or [])]
    rows = []
    for candidate in candidates:
        row = {name: candidate.get(name) for name in MATCH_FIELDS}
        row["synonym"] = bool(candidate.get("synonym", False))
        row["verbatim_index"] = verbatim_index
        row["verbatim_name"] = verbatim_name
        rows.append(row)
    return rows


def match_chunk(names: Sequence[str], *, kingdom: str | None = None) -> list[dict[str, Any]]:
    """Match every name of a chunk; raises on the first HTTP failure."""
    rows: list[dict[str, Any]] = []
    for verbatim_index, name in enumerate(names):
        data = client.get_species_match(name, kingdom=kingdom)
        rows.extend(flatten_match(data, verbatim_index, name))
    return rows
