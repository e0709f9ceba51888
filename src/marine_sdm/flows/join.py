"""
Prefect flow for the environmental join.

Labels the downloaded occurrences TARGET/BACKGROUND, samples each point from
its own month's environmental stack, writes one ``year_month=YYYYMM``
partition per joined month, and combines the partitions into
``joined/observations.parquet``.

Run locally:
    python -m marine_sdm.flows.join
"""

from __future__ import annotations

import polars as pl
from prefect import flow, task

from marine_sdm.analysis.join import JoinReport, combine_months, join_environment
from marine_sdm.config import get_settings
from marine_sdm.datasources.environment import index_environment
from marine_sdm.errors import ArtifactMissingError
from marine_sdm.store import JOINED_DATASET, JOINED_PATH, OCCURRENCES_DATASET, DataStore

store = DataStore(get_settings().data_dir)

JOIN_SOURCE = "marine-sdm join"


def month_partition(year_month: str) -> str:
    return f"year_month={year_month}"


def write_month(year_month: str, rows: pl.DataFrame) -> None:
    """Replace one month's partition with its freshly extracted rows."""
    directory = store.replace_partition(JOINED_DATASET, month_partition(year_month))
    rows.write_parquet(directory / "part.parquet")


@task(name="join-months")
def join_months(months: list[str] | None = None) -> tuple[pl.DataFrame, JoinReport]:
    """Join the occurrence dataset to the environmental stacks.

    A full run (``months=None``) first clears every month partition; a
    targeted run only rewrites the listed months. Failed months lose their
    partition so stale rows never survive a rerun.
    """
    settings = get_settings()
    if not settings.target_taxon_keys:
        msg = "No target_taxon_keys configured; nothing can be labeled TARGET"
        raise ValueError(msg)
    try:
        occurrences = store.scan_dataset(OCCURRENCES_DATASET)
    except FileNotFoundError:
        raise ArtifactMissingError("download", store.base / OCCURRENCES_DATASET) from None

    index = index_environment(settings.join.environment_dir, settings.join.filename_pattern)
    print(f"Indexed environmental files for {len(index)} year-months")

    if months is None:
        for key in store.list_partitions(JOINED_DATASET):
            store.drop_partition(JOINED_DATASET, key)

    joined, report = join_environment(
        occurrences,
        index,
        target_keys=settings.target_taxon_keys,
        background_keys=settings.background_taxon_keys,
        start_date=settings.join.start_date,
        expected_layers=settings.join.expected_layers,
        drop_layers=settings.join.drop_layers,
        months=months,
        on_month=write_month,
    )
    for year_month in report.failed_months:
        store.drop_partition(JOINED_DATASET, month_partition(year_month))

    if months is not None:
        partitions = [pl.read_parquet(path) for path in store.parquet_files(JOINED_DATASET)]
        joined = combine_months(partitions, report)
    return joined, report


@task(name="save-joined")
def save_joined(joined: pl.DataFrame, report: JoinReport) -> None:
    store.write_table(
        JOINED_PATH,
        joined,
        source=JOIN_SOURCE,
        counts=report.counts,
        failed_months=sorted(report.failed_months),
    )


@flow(name="join", log_prints=True)
def join_flow(months: list[str] | None = None) -> JoinReport:
    """
    Build the joined observation table.

    Args:
        months: ``YYYYMM`` keys to (re)extract; None extracts every month.

    Returns:
        ``JoinReport`` with row counts per step and the failed months.
    """
    joined, report = join_months(months)
    save_joined(joined, report)

    for step, count in report.counts.items():
        print(f"  {step}: {count}")
    print(f"Joined {len(report.joined_months)} months into {joined.height} rows")
    for year_month, error in sorted(report.failed_months.items()):
        print(f"  failed {year_month}: {error}")
    print(f"Saved joined table to {store.base / JOINED_PATH}")
    return report


if __name__ == "__main__":
    result = join_flow()
    print(f"Flow complete: {result.counts}")
