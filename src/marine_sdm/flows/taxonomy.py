"""
Prefect flow for the taxonomy stage.

Pages through the WoRMS register (each page written to ``raw/worms/`` as it
arrives), then filters and deduplicates the pages into the species shortlist.

Run locally:
    python -m marine_sdm.flows.taxonomy
"""

from __future__ import annotations

from dataclasses import dataclass, field

from prefect import flow, task

from marine_sdm.config import get_settings
from marine_sdm.curation import taxonomy
from marine_sdm.datasources import worms
from marine_sdm.errors import PageFetchError
from marine_sdm.services.paging import Page
from marine_sdm.store import SHORTLIST_PATH, DataStore

store = DataStore(get_settings().data_dir)

WORMS_STAGE = "worms"
WORMS_SOURCE = "marinespecies.org"


@dataclass
class FetchReport:
    """Outcome of one paged registry dump."""

    start_offset: int
    pages: int = 0
    records: int = 0
    next_offset: int | None = None
    failed_offset: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.failed_offset is None


@dataclass
class TaxonomyReport:
    """Fetch outcome plus shortlist attrition."""

    fetch: FetchReport
    input_count: int = 0
    invalid: int = 0
    rejected: dict[str, int] = field(default_factory=dict)
    duplicates_dropped: int = 0
    shortlisted: int = 0

    @property
    def ok(self) -> bool:
        return self.fetch.ok


@task(name="fetch-registry")
def fetch_registry(resume: bool = False) -> FetchReport:
    """Dump the register page by page into the raw tier.

    A fresh run clears previously stored pages; ``resume`` keeps them and
    starts after the last contiguous stored page. A page failing twice ends
    the dump; the pages already written stay on disk.
    """
    settings = get_settings().taxonomy
    if resume:
        start = store.next_page_offset(WORMS_STAGE, settings.page_size, settings.start_offset)
    else:
        store.clear_pages(WORMS_STAGE)
        start = settings.start_offset
    report = FetchReport(start_offset=start, next_offset=start)

    def save(page: Page) -> None:
        store.write_page(WORMS_STAGE, page, source=WORMS_SOURCE)

    pages = worms.fetch_registry(
        start_date=settings.registry_start_date,
        page_size=settings.page_size,
        start_offset=start,
        cooldown_seconds=settings.cooldown_seconds,
        marine_only=settings.marine_only,
        on_page=save,
    )
    try:
        for page in pages:
            report.pages += 1
            report.records += len(page)
            report.next_offset = page.offset + settings.page_size
    except PageFetchError as exc:
        report.failed_offset = exc.offset
        report.error = str(exc)
    return report


@task(name="curate-shortlist")
def curate_shortlist(fetched: FetchReport) -> TaxonomyReport:
    """Filter and deduplicate every stored page into ``curated/shortlist.parquet``."""
    raw = [record for page in store.read_pages(WORMS_STAGE) for record in page.records]
    records, invalid = worms.parse_records(raw)
    result = taxonomy.curate(records)
    store.write_table(
        SHORTLIST_PATH,
        taxonomy.shortlist_frame(result.records),
        source=WORMS_SOURCE,
        input_count=result.input_count,
        rejected=dict(result.rejected),
        duplicates_dropped=result.duplicates_dropped,
    )
    return TaxonomyReport(
        fetch=fetched,
        input_count=result.input_count,
        invalid=invalid,
        rejected=dict(result.rejected),
        duplicates_dropped=result.duplicates_dropped,
        shortlisted=result.kept,
    )


@flow(name="taxonomy", log_prints=True)
def taxonomy_flow(resume: bool = False) -> TaxonomyReport:
    """
    Fetch the register and build the species shortlist.

    A failed fetch is reported with the offending page offset and the
    shortlist is not rebuilt from an incomplete dump.
    """
    print("Fetching WoRMS register" + (" (resuming)" if resume else "") + "...")
    fetched = fetch_registry(resume)
    print(
        f"Stored {fetched.pages} pages ({fetched.records} records) "
        f"from offset {fetched.start_offset}"
    )

    if not fetched.ok:
        print(f"Registry dump failed at offset {fetched.failed_offset}: {fetched.error}")
        print(f"Rerun with --resume to continue from offset {fetched.failed_offset}.")
        return TaxonomyReport(fetch=fetched)

    report = curate_shortlist(fetched)
    print(
        f"Shortlisted {report.shortlisted} of {report.input_count} records "
        f"({report.duplicates_dropped} duplicates, {report.invalid} unparseable)"
    )
    for name, count in sorted(report.rejected.items()):
        print(f"  rejected by {name}: {count}")
    print(f"Saved shortlist to {store.base / SHORTLIST_PATH}")
    return report


if __name__ == "__main__":
    result = taxonomy_flow()
    print(f"Flow complete: {result}")
