"""Rank backbone candidates and keep the best per query.

Rules, per query index:
  1. Drop candidates whose match type is HIGHERRANK or NONE, or whose rank is
     not SPECIES.
  2. Synonym and doubtful candidates lose one confidence point, so an accepted
     name beats a synonym of equal raw confidence.
  3. Keep every candidate tied at the maximum adjusted confidence. Residual
     duplicates are resolved downstream, explicitly.

A query with no surviving candidate simply has no rows. That is a valid
"no match", distinct from a chunk whose fetch failed, which is recorded in
``MatchReport.failures``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

import polars as pl
import requests

from marine_sdm.errors import ChunkMatchError
from marine_sdm.schemas import MATCH_SCHEMA, REJECTED_MATCH_TYPES, BackboneMatch, MatchType

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000

FetchChunk = Callable[[Sequence[str]], list[dict[str, Any]]]


@dataclass(frozen=True)
class ChunkFailure:
    """A chunk whose names were never matched."""

    chunk_start: int
    size: int
    error: str


@dataclass
class MatchReport:
    """Retained matches plus the chunks that failed."""

    query_count: int
    matches: list[BackboneMatch] = field(default_factory=list)
    failures: list[ChunkFailure] = field(default_factory=list)

    @property
    def failed_indices(self) -> set[int]:
        return {
            i for f in self.failures for i in range(f.chunk_start, f.chunk_start + f.size)
        }

    @property
    def unmatched_indices(self) -> list[int]:
        """Queries that were matched successfully but kept no candidate."""
        matched = {m.query_index for m in self.matches}
        failed = self.failed_indices
        return [i for i in range(self.query_count) if i not in matched and i not in failed]

    @property
    def ok(self) -> bool:
        return not self.failures


def chunk_bounds(total: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[tuple[int, int]]:
    """(start, stop) of each chunk covering ``range(total)``."""
    if chunk_size <= 0:
        msg = f"chunk_size must be positive, got {chunk_size}"
        raise ValueError(msg)
    return [(start, min(start + chunk_size, total)) for start in range(0, total, chunk_size)]


def _to_match_type(value: Any) -> MatchType:
    try:
        return MatchType(str(value).upper())
    except ValueError:
        return MatchType.NONE


def offset_rows(rows: Iterable[dict[str, Any]], chunk_start: int) -> list[BackboneMatch]:
    """Turn chunk-local rows into matches with global ``query_index``."""
    return [
        BackboneMatch(
            query_index=chunk_start + int(row["verbatim_index"]),
            verbatim_name=row.get("verbatim_name") or "",
            candidate_key=row.get("usageKey"),
            scientific_name=row.get("scientificName"),
            match_type=_to_match_type(row.get("matchType")),
            status=row.get("status"),
            rank=row.get("rank"),
            confidence=int(row.get("confidence") or 0),
            is_synonym=bool(row.get("synonym", False)),
        )
        for row in rows
    ]


def is_acceptable(match: BackboneMatch) -> bool:
    """Match type not rejected, species rank, and a usable key."""
    return (
        match.match_type not in REJECTED_MATCH_TYPES
        and (match.rank or "").upper() == "SPECIES"
        and match.candidate_key is not None
    )


def select_best(matches: Iterable[BackboneMatch]) -> list[BackboneMatch]:
    """Acceptable candidates tied at the top adjusted confidence, per query index.

    Output is ordered by query index, then by candidate order within a query.
    """
    by_query: dict[int, list[BackboneMatch]] = {}
    for match in matches:
        if is_acceptable(match):
            by_query.setdefault(match.query_index, []).append(match)

    best: list[BackboneMatch] = []
    for query_index in sorted(by_query):
        candidates = by_query[query_index]
        top = max(m.adjusted_confidence for m in candidates)
        best.extend(m for m in candidates if m.adjusted_confidence == top)
    return best


def match_chunk(
    names: Sequence[str],
    chunk_start: int,
    fetch_chunk: FetchChunk,
) -> list[BackboneMatch]:
    """Fetch, re-offset and rank one chunk. Raises ``ChunkMatchError`` on fetch failure."""
    try:
        rows = fetch_chunk(names)
    except (requests.RequestException, ValueError) as exc:
        raise ChunkMatchError(chunk_start, exc) from exc
    return select_best(offset_rows(rows, chunk_start))


def match_names(
    names: Sequence[str],
    fetch_chunk: FetchChunk,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> MatchReport:
    """Match ``names`` chunk by chunk; a failed chunk is recorded, not fatal."""
    report = MatchReport(query_count=len(names))
    for start, stop in chunk_bounds(len(names), chunk_size):
        try:
            report.matches.extend(match_chunk(names[start:stop], start, fetch_chunk))
        except ChunkMatchError as exc:
            logger.error("Name chunk %d-%d failed: %s", start, stop - 1, exc.cause)
            report.failures.append(ChunkFailure(start, stop - start, str(exc.cause)))
    return report


def matches_frame(matches: Iterable[BackboneMatch]) -> pl.DataFrame:
    """Match table with the fixed ``MATCH_SCHEMA``."""
    rows = [
        {
            **m.model_dump(),
            "match_type": m.match_type.value,
            "adjusted_confidence": m.adjusted_confidence,
        }
        for m in matches
    ]
    return pl.DataFrame(rows, schema=MATCH_SCHEMA)


def taxon_key_universe(matches: Iterable[BackboneMatch]) -> list[int]:
    """Distinct candidate keys of retained matches, ascending."""
    return sorted({m.candidate_key for m in matches if m.candidate_key is not None})
