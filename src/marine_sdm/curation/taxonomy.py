"""Curate the WoRMS dump into a marine species-level shortlist.

The filter is a fixed, ordered list of named predicates; a record is rejected
by the first predicate it fails, and rejections are counted per predicate.
Deduplication keeps one record per valid id using an explicit status ranking
with retrieval order as the final tie-break, so the result does not depend on
sort stability.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

import polars as pl

from marine_sdm.schemas import SHORTLIST_SCHEMA, SPECIES_LEVEL_RANKS, TaxonRecord

ALLOWED_STATUSES = frozenset({"accepted", "alternative representation"})
ALLOWED_KINGDOMS = frozenset({"Animalia", "Plantae", "Protozoa"})

#: Dedup order: lower wins. Unknown status sorts after every known one.
STATUS_PRIORITY: dict[str | None, int] = {
    "accepted": 0,
    "alternative representation": 1,
    None: 2,
}

Predicate = Callable[[TaxonRecord], bool]


def is_marine(record: TaxonRecord) -> bool:
    return record.is_marine is not False


def is_not_extinct(record: TaxonRecord) -> bool:
    return record.is_extinct is not True


def has_allowed_status(record: TaxonRecord) -> bool:
    return record.status is None or record.status in ALLOWED_STATUSES


def has_allowed_kingdom(record: TaxonRecord) -> bool:
    return record.kingdom is None or record.kingdom in ALLOWED_KINGDOMS


def is_self_canonical(record: TaxonRecord) -> bool:
    return record.valid_external_id == record.external_id


def is_species_level(record: TaxonRecord) -> bool:
    return record.rank is None or record.rank in SPECIES_LEVEL_RANKS


#: Applied in this order; the first failure rejects the record.
SHORTLIST_PREDICATES: tuple[tuple[str, Predicate], ...] = (
    ("marine", is_marine),
    ("not_extinct", is_not_extinct),
    ("status", has_allowed_status),
    ("kingdom", has_allowed_kingdom),
    ("self_canonical", is_self_canonical),
    ("species_level", is_species_level),
)


@dataclass
class CurationResult:
    """Shortlist plus attrition counts for data-quality reporting."""

    records: list[TaxonRecord]
    input_count: int
    rejected: Counter[str] = field(default_factory=Counter)
    duplicates_dropped: int = 0

    @property
    def kept(self) -> int:
        return len(self.records)


def first_failed_predicate(
    record: TaxonRecord,
    predicates: tuple[tuple[str, Predicate], ...] = SHORTLIST_PREDICATES,
) -> str | None:
    """Name of the first predicate ``record`` fails, or None if it passes all."""
    for name, predicate in predicates:
        if not predicate(record):
            return name
    return None


def filter_records(
    records: Iterable[TaxonRecord],
) -> tuple[list[TaxonRecord], Counter[str]]:
    """Keep records passing every shortlist predicate, preserving input order."""
    kept: list[TaxonRecord] = []
    rejected: Counter[str] = Counter()
    for record in records:
        failed = first_failed_predicate(record)
        if failed is None:
            kept.append(record)
        else:
            rejected[failed] += 1
    return kept, rejected


def status_rank(status: str | None) -> int:
    """Position of ``status`` in the dedup order (unknown and unlisted last)."""
    return STATUS_PRIORITY.get(status, STATUS_PRIORITY[None])


def deduplicate(records: list[TaxonRecord]) -> list[TaxonRecord]:
    """One record per ``valid_external_id``: the best status, then the earliest retrieved.

    Output is ordered by first appearance of each valid id.
    """
    best: dict[int | None, tuple[int, int]] = {}
    for position, record in enumerate(records):
        valid_id = record.valid_external_id
        key = (status_rank(record.status), position)
        current = best.get(valid_id)
        if current is None or key < current:
            best[valid_id] = key

    # Keys keep first-appearance order; later replacements only change values.
    return [records[position] for _, position in best.values()]


def curate(records: Iterable[TaxonRecord]) -> CurationResult:
    """Filter then deduplicate raw registry records into the shortlist."""
    records = list(records)
    kept, rejected = filter_records(records)
    unique = deduplicate(kept)
    return CurationResult(
        records=unique,
        input_count=len(records),
        rejected=rejected,
        duplicates_dropped=len(kept) - len(unique),
    )


def shortlist_frame(records: list[TaxonRecord]) -> pl.DataFrame:
    """Shortlist as a table with the fixed ``SHORTLIST_SCHEMA``."""
    rows = [record.model_dump(by_alias=False) for record in records]
    return pl.DataFrame(rows, schema=SHORTLIST_SCHEMA)


def records_from_frame(df: pl.DataFrame) -> list[TaxonRecord]:
    """Inverse of ``shortlist_frame``."""
    return [TaxonRecord.model_validate(row) for row in df.iter_rows(named=True)]
