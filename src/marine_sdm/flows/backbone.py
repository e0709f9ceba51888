"""
Prefect flow for backbone name reconciliation.

Reads the shortlist, submits one task per name chunk (chunks are independent
and run concurrently), and writes the ranked match table plus the taxon-key
universe the download stage consumes.

Run locally:
    python -m marine_sdm.flows.backbone
"""

from __future__ import annotations

from functools import partial

from prefect import flow, task

from marine_sdm.config import get_settings
from marine_sdm.curation import backbone
from marine_sdm.curation.backbone import ChunkFailure, MatchReport
from marine_sdm.curation.taxonomy import records_from_frame
from marine_sdm.datasources import gbif
from marine_sdm.errors import ArtifactMissingError, ChunkMatchError
from marine_sdm.schemas import BackboneMatch
from marine_sdm.store import MATCHES_PATH, SHORTLIST_PATH, TAXON_KEYS_PATH, DataStore

store = DataStore(get_settings().data_dir)

GBIF_SOURCE = "api.gbif.org"


@task(name="load-query-names")
def load_query_names() -> list[str]:
    """Shortlist rows as ``name authority`` query strings, in shortlist order."""
    shortlist = store.read_table(SHORTLIST_PATH)
    if shortlist is None:
        raise ArtifactMissingError("taxonomy", store.base / SHORTLIST_PATH)
    return [record.query_string for record in records_from_frame(shortlist)]


@task(name="match-chunk")
def match_chunk(
    names: list[str], chunk_start: int, kingdom: str | None = None
) -> tuple[list[BackboneMatch], ChunkFailure | None]:
    """Match one chunk; a failed fetch comes back as a ``ChunkFailure``."""
    fetch = partial(gbif.match_chunk, kingdom=kingdom)
    try:
        return backbone.match_chunk(names, chunk_start, fetch), None
    except ChunkMatchError as exc:
        print(f"Chunk starting at {chunk_start} failed: {exc.cause}")
        return [], ChunkFailure(chunk_start, len(names), str(exc.cause))


@task(name="save-matches")
def save_matches(report: MatchReport) -> list[int]:
    """Write the match table and the taxon-key universe; returns the universe."""
    universe = backbone.taxon_key_universe(report.matches)
    store.write_table(
        MATCHES_PATH,
        backbone.matches_frame(report.matches),
        source=GBIF_SOURCE,
        query_count=report.query_count,
        failed_chunks=[f.chunk_start for f in report.failures],
    )
    store.write(
        TAXON_KEYS_PATH,
        universe,
        source=GBIF_SOURCE,
        query_count=report.query_count,
        complete=report.ok,
    )
    return universe


@flow(name="backbone", log_prints=True)
def backbone_flow() -> MatchReport:
    """
    Reconcile every shortlist name against the GBIF backbone.

    Queries with only rejected candidates have no rows ("no match"); chunks
    whose fetch failed are listed in ``MatchReport.failures``.
    """
    settings = get_settings().backbone
    names = load_query_names()
    bounds = backbone.chunk_bounds(len(names), settings.chunk_size)
    print(f"Matching {len(names)} names in {len(bounds)} chunks of {settings.chunk_size}...")

    futures = [
        match_chunk.submit(names[start:stop], start, settings.kingdom) for start, stop in bounds
    ]
    report = MatchReport(query_count=len(names))
    for future in futures:
        matches, failure = future.result()
        report.matches.extend(matches)
        if failure is not None:
            report.failures.append(failure)
    report.matches.sort(key=lambda m: m.query_index)
    report.failures.sort(key=lambda f: f.chunk_start)

    universe = save_matches(report)
    print(
        f"Kept {len(report.matches)} candidate rows; {len(report.unmatched_indices)} names "
        f"without a match; {len(universe)} distinct taxon keys"
    )
    for failure in report.failures:
        print(f"  failed chunk {failure.chunk_start}-{failure.chunk_start + failure.size - 1}")
    return report


if __name__ == "__main__":
    result = backbone_flow()
    print(f"Flow complete: {len(result.matches)} matches, {len(result.failures)} failed chunks")
