"""Join occurrences to their own month's environmental stack.

Steps:
  1. Lazily scan the occurrence dataset and filter to PRESENT records of the
     target and background taxa.
  2. Still lazily, coerce event dates with ``clean_dates_expr`` (unrecoverable
     dates dropped), keep dates on or after the start date, derive
     ``year_month`` and the class label (TARGET=1, BACKGROUND=0, the
     target-group background). Only then collect.
  3. For each year-month, load exactly that month's stack and sample it at
     the month's points. A month with the wrong layer count or an unreadable
     file contributes zero rows and is reported; it never yields a partial
     stack.
  4. Concatenate months, TARGET rows before BACKGROUND rows, and drop rows
     with any missing covariate. Nothing is imputed.

Every drop is counted in ``JoinReport.counts``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date

import polars as pl

from marine_sdm.curation.dates import clean_dates_expr, year_month_expr
from marine_sdm.datasources.environment import EnvironmentalStack, LayerFile, load_stack
from marine_sdm.errors import LayerCountError, LayerReadError
from marine_sdm.schemas import JOINED_BASE_SCHEMA, ObservationClass, OccurrenceStatus

logger = logging.getLogger(__name__)

BASE_COLUMNS = list(JOINED_BASE_SCHEMA)

LoadStack = Callable[[str, Sequence[LayerFile]], EnvironmentalStack]


@dataclass
class JoinReport:
    """Row attrition per step and the months that could not be joined."""

    counts: dict[str, int] = field(default_factory=dict)
    failed_months: dict[str, str] = field(default_factory=dict)
    joined_months: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_months

    def dropped(self, before: str, after: str) -> int:
        """Rows lost between two recorded steps."""
        return self.counts.get(before, 0) - self.counts.get(after, 0)


# =============================================================================
# Occurrence subset
# =============================================================================


def scan_subset(
    occurrences: pl.LazyFrame,
    taxon_keys: Collection[int] | None,
) -> pl.LazyFrame:
    """PRESENT records of ``taxon_keys`` (all taxa if None) with coordinates, still lazy."""
    status = pl.col("occurrencestatus").cast(pl.Utf8).str.to_uppercase()
    lf = occurrences.filter(
        (status == OccurrenceStatus.PRESENT.value)
        & pl.col("decimallongitude").is_not_null()
        & pl.col("decimallatitude").is_not_null()
    )
    if taxon_keys is not None:
        lf = lf.filter(pl.col("taxonkey").is_in(list(taxon_keys)))
    return lf.select(
        pl.col("taxonkey").cast(pl.Int64).alias("taxon_key"),
        pl.col("eventdate").cast(pl.Utf8).alias("event_date_raw"),
        pl.col("decimallongitude").cast(pl.Float64).alias("lon"),
        pl.col("decimallatitude").cast(pl.Float64).alias("lat"),
    )


def label_occurrences(
    occurrences: pl.LazyFrame,
    target_keys: Collection[int],
    background_keys: Collection[int] | None,
    start_date: date,
    counts: dict[str, int],
) -> pl.DataFrame:
    """Clean dates, apply the start date, and label TARGET/BACKGROUND rows.

    Date coercion and every filter run on the lazy frame; only labeled rows
    inside the date range are collected. Records that are neither target nor
    (when given) background are dropped.
    """
    target = list(target_keys)
    is_target = pl.col("taxon_key").is_in(target)
    is_background = ~is_target
    if background_keys is not None:
        is_background = is_background & pl.col("taxon_key").is_in(list(background_keys))
    in_range = pl.col("event_date") >= start_date

    dated = occurrences.with_columns(clean_dates_expr("event_date_raw").alias("event_date"))
    tallies = (
        dated.select(
            pl.len().alias("scanned"),
            pl.col("event_date").is_not_null().sum().alias("valid_date"),
            in_range.fill_null(False).sum().alias("after_start_date"),
        )
        .collect()
        .row(0, named=True)
    )
    counts.update({step: int(n) for step, n in tallies.items()})

    labeled = (
        dated.filter(in_range & (is_target | is_background))
        .with_columns(
            pl.when(is_target)
            .then(pl.lit(ObservationClass.TARGET.value))
            .otherwise(pl.lit(ObservationClass.BACKGROUND.value))
            .cast(pl.Int8)
            .alias("class"),
            year_month_expr("event_date").alias("year_month"),
        )
        .select(BASE_COLUMNS)
        .collect()
    )
    counts["target"] = labeled.filter(pl.col("class") == ObservationClass.TARGET.value).height
    counts["background"] = labeled.height - counts["target"]
    return labeled


# =============================================================================
# Per-month extraction
# =============================================================================


def extract_month(points: pl.DataFrame, stack: EnvironmentalStack) -> pl.DataFrame:
    """Attach one column per covariate; returns exactly one row per input point."""
    values = stack.extract(points["lon"].to_numpy(), points["lat"].to_numpy())
    return points.with_columns(
        [pl.Series(name, column, dtype=pl.Float64) for name, column in values.items()]
    )


def join_months(
    labeled: pl.DataFrame,
    index: Mapping[str, Sequence[LayerFile]],
    load: LoadStack,
    report: JoinReport,
    months: Iterable[str] | None = None,
    on_month: Callable[[str, pl.DataFrame], object] | None = None,
) -> list[pl.DataFrame]:
    """Extract each year-month present in ``labeled`` (or just ``months``).

    A ``LayerCountError`` or ``LayerReadError`` is recorded against its month
    and the month is skipped. ``on_month`` receives each successful month's rows, e.g. to
    write that month's partition.
    """
    present = set(labeled["year_month"].unique().to_list())
    wanted = sorted(present if months is None else present & set(months))

    frames: list[pl.DataFrame] = []
    for ym in wanted:
        points = labeled.filter(pl.col("year_month") == ym)
        try:
            stack = load(ym, index.get(ym, []))
        except (LayerCountError, LayerReadError) as exc:
            logger.error("Year-month %s skipped: %s", ym, exc)
            report.failed_months[ym] = str(exc)
            continue
        extracted = extract_month(points, stack)
        if on_month is not None:
            on_month(ym, extracted)
        report.joined_months.append(ym)
        frames.append(extracted)
    return frames


def combine_months(frames: Sequence[pl.DataFrame], report: JoinReport) -> pl.DataFrame:
    """Concatenate month extractions, TARGET first, and keep complete cases only."""
    if not frames:
        report.counts["extracted"] = 0
        report.counts["complete"] = 0
        return pl.DataFrame(schema=JOINED_BASE_SCHEMA)

    joined = pl.concat(frames, how="diagonal")
    report.counts["extracted"] = joined.height
    joined = pl.concat(
        [
            joined.filter(pl.col("class") == ObservationClass.TARGET.value),
            joined.filter(pl.col("class") == ObservationClass.BACKGROUND.value),
        ]
    )

    covariates = [c for c in joined.columns if c not in BASE_COLUMNS]
    if covariates:
        joined = joined.filter(
            pl.all_horizontal(
                [pl.col(c).is_not_null() & pl.col(c).is_not_nan() for c in covariates]
            )
        )
    report.counts["complete"] = joined.height
    return joined


# =============================================================================
# Entry point
# =============================================================================


def join_environment(
    occurrences: pl.LazyFrame,
    index: Mapping[str, Sequence[LayerFile]],
    *,
    target_keys: Collection[int],
    background_keys: Collection[int] | None = None,
    start_date: date,
    expected_layers: int,
    drop_layers: Sequence[str] = (),
    months: Iterable[str] | None = None,
    on_month: Callable[[str, pl.DataFrame], object] | None = None,
) -> tuple[pl.DataFrame, JoinReport]:
    """Build the joined observation table from the occurrence dataset.

    Args:
        occurrences: Lazy scan of the partitioned occurrence dataset.
        index: Year-month -> environmental files (see ``index_environment``).
        target_keys: Taxon keys of the modelled species (class 1).
        background_keys: Taxon keys of the background group (class 0);
            None means every non-target taxon in the dataset.
        start_date: First event date kept.
        expected_layers: Files required per year-month.
        drop_layers: Layer names removed from every stack after the count check.
        months: Restrict extraction to these year-months (targeted rerun).
        on_month: Callback for each successfully extracted month.

    Returns:
        The joined table and its ``JoinReport``.
    """
    report = JoinReport()
    subset_keys = None
    if background_keys is not None:
        subset_keys = set(target_keys) | set(background_keys)

    subset = scan_subset(occurrences, subset_keys)
    labeled = label_occurrences(subset, target_keys, background_keys, start_date, report.counts)
    logger.info(
        "%d labeled occurrences (%d target, %d background) across %d months",
        labeled.height,
        report.counts["target"],
        report.counts["background"],
        labeled["year_month"].n_unique(),
    )

    def load(ym: str, files: Sequence[LayerFile]) -> EnvironmentalStack:
        return load_stack(ym, files, expected_layers, drop_layers)

    frames = join_months(labeled, index, load, report, months=months, on_month=on_month)
    return combine_months(frames, report), report
