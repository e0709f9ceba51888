"""
Prefect flow for the occurrence download stage.

Plans seeded batches over the taxon-key universe, submits one GBIF download
per batch (batches run concurrently and fail independently), and records
every batch's outcome in ``curated/download_manifest.json``.

In ``handle`` mode batches stop at the download key; ``materialize_handles``
fetches and unpacks those archives later.

Run locally:
    python -m marine_sdm.flows.occurrences
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from prefect import flow, task

from marine_sdm.config import get_settings
from marine_sdm.curation.occurrences import build_predicate, download_request, plan_batches
from marine_sdm.curation.search_area import build_search_area, to_wkt
from marine_sdm.datasources.gbif import downloads
from marine_sdm.datasources.gbif.downloads import DownloadReport
from marine_sdm.errors import ArtifactMissingError, DownloadJobError
from marine_sdm.schemas import DownloadJob, JobStatus
from marine_sdm.store import MANIFEST_PATH, OCCURRENCES_DATASET, TAXON_KEYS_PATH, DataStore

store = DataStore(get_settings().data_dir)

GBIF_SOURCE = "api.gbif.org"
ARCHIVE_DIR = Path("raw/downloads")


def _auth() -> tuple[str, str]:
    creds = get_settings().gbif
    return creds.user, creds.password.get_secret_value()


def _partition_dir(job: DownloadJob) -> Path:
    return store.replace_partition(OCCURRENCES_DATASET, job.partition)


@task(name="load-taxon-keys")
def load_taxon_keys() -> list[int]:
    """The taxon-key universe written by the backbone stage."""
    keys = store.read(TAXON_KEYS_PATH)
    if keys is None:
        raise ArtifactMissingError("backbone", store.base / TAXON_KEYS_PATH)
    return [int(k) for k in keys]


@task(name="download-batch")
def download_batch(job: DownloadJob, body: dict[str, Any]) -> DownloadJob:
    """Run one batch to a terminal state; a failure is returned, not raised."""
    settings = get_settings().download
    try:
        return downloads.run_job(
            job,
            body,
            _auth(),
            mode=settings.mode,
            partition_dir=_partition_dir,
            archive_dir=store.base / ARCHIVE_DIR,
            poll_interval=settings.poll_interval_seconds,
            timeout=settings.poll_timeout_seconds,
        )
    except DownloadJobError as exc:
        print(f"Batch {job.batch_index} failed: {exc}")
        return downloads.mark_failed(job, exc)


@task(name="save-manifest")
def save_manifest(jobs: list[DownloadJob], **plan: Any) -> Path:
    """Merge this run's batches into the manifest; other batches keep their entries."""
    envelope = store.read_raw(MANIFEST_PATH) or {}
    previous = envelope.get("meta", {})
    params = {k: v for k, v in previous.items() if k not in ("source", "fetched_at")}
    params.update(plan)
    existing = envelope.get("data") or {}
    by_index = {int(entry["batch_index"]): entry for entry in existing.get("jobs", [])}
    for job in jobs:
        by_index[job.batch_index] = job.model_dump(mode="json")
    return store.write(
        MANIFEST_PATH,
        {"jobs": [by_index[i] for i in sorted(by_index)]},
        source=GBIF_SOURCE,
        **params,
    )


def load_manifest() -> list[DownloadJob]:
    """Every batch recorded in the manifest, by batch index."""
    data = store.read(MANIFEST_PATH)
    if data is None:
        raise ArtifactMissingError("download", store.base / MANIFEST_PATH)
    return [DownloadJob.model_validate(entry) for entry in data.get("jobs", [])]


def select_batches(jobs: list[DownloadJob], batches: list[int] | None) -> list[DownloadJob]:
    """Restrict ``jobs`` to the requested batch indices (all if None)."""
    if batches is None:
        return jobs
    wanted = set(batches)
    unknown = wanted - {job.batch_index for job in jobs}
    if unknown:
        print(f"Ignoring unknown batch indices: {sorted(unknown)}")
    return [job for job in jobs if job.batch_index in wanted]


def _print_report(report: DownloadReport) -> None:
    print(f"{len(report.completed)} batches completed, {len(report.failed)} failed")
    for job in report.failed:
        print(f"  batch {job.batch_index}: {job.error}")


@flow(name="occurrences", log_prints=True)
def occurrences_flow(batches: list[int] | None = None) -> DownloadReport:
    """
    Download occurrences for the taxon-key universe.

    Args:
        batches: Batch indices to (re)run; None runs every planned batch.

    Returns:
        ``DownloadReport`` of the batches run; failed batches are listed, not raised.
    """
    settings = get_settings().download
    keys = load_taxon_keys()

    # Invalid polygons stop the stage before anything is submitted.
    area = build_search_area(settings.search_area, normalize_winding=settings.normalize_winding)
    wkt = to_wkt(area)

    planned = plan_batches(keys, settings.batch_size, settings.shuffle_seed)
    jobs = select_batches(planned, batches)
    print(
        f"Planned {len(planned)} batches over {len(keys)} taxon keys; "
        f"running {len(jobs)} in {settings.mode} mode"
    )

    futures = []
    for job in jobs:
        predicate = build_predicate(
            job.taxon_keys,
            wkt,
            licenses=settings.licenses,
            excluded_basis_of_record=settings.excluded_basis_of_record,
            max_coordinate_uncertainty_m=settings.max_coordinate_uncertainty_m,
            min_distance_from_centroid_m=settings.min_distance_from_centroid_m,
        )
        body = download_request(
            predicate,
            creator=get_settings().gbif.user,
            email=get_settings().gbif.email or None,
            format=settings.format,
        )
        futures.append(download_batch.submit(job, body))

    report = DownloadReport.from_jobs(future.result() for future in futures)
    save_manifest(
        report.jobs,
        batch_size=settings.batch_size,
        shuffle_seed=settings.shuffle_seed,
        mode=settings.mode,
        planned_batches=len(planned),
        search_area=wkt,
    )
    _print_report(report)
    return report


@task(name="materialize-handle")
def materialize_handle(job: DownloadJob) -> DownloadJob:
    """Fetch and unpack one finished download recorded in handle mode."""
    try:
        return downloads.materialize(job, _partition_dir(job), store.base / ARCHIVE_DIR)
    except DownloadJobError as exc:
        print(f"Batch {job.batch_index} failed: {exc}")
        return downloads.mark_failed(job, exc)


@flow(name="materialize-handles", log_prints=True)
def materialize_handles(batches: list[int] | None = None) -> DownloadReport:
    """Materialize every recorded download key that has no partition yet."""
    pending = [
        job
        for job in select_batches(load_manifest(), batches)
        if job.status is JobStatus.DONE and job.download_key and job.result_location is None
    ]
    print(f"Materializing {len(pending)} recorded downloads...")
    futures = [materialize_handle.submit(job) for job in pending]
    report = DownloadReport.from_jobs(future.result() for future in futures)
    save_manifest(report.jobs)
    _print_report(report)
    return report


if __name__ == "__main__":
    result = occurrences_flow()
    print(f"Flow complete: {len(result.completed)} batches, {len(result.failed)} failed")
