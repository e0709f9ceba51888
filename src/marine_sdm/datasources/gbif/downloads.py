"""Asynchronous occurrence download jobs.

One ``DownloadJob`` per batch of taxon keys: submit, poll until the service
reports a terminal state, then either materialize the archive into the
batch's partition of the occurrence dataset or just record the download key
for later (``mode="handle"``). Polling only blocks the batch being polled.

A failing batch raises ``DownloadJobError`` from ``run_job``; ``run_batches``
catches it per batch so siblings keep going, and the failure shows up in
``DownloadReport.failed``.
"""

from __future__ import annotations

import logging
import shutil
import time
import zipfile
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import polars as pl
import requests

from marine_sdm.datasources.gbif import client
from marine_sdm.errors import DownloadJobError
from marine_sdm.schemas import OCCURRENCE_COLUMNS, DownloadJob, JobStatus

logger = logging.getLogger(__name__)

DownloadMode = Literal["materialize", "handle"]

#: Extra columns kept from the export next to ``OCCURRENCE_COLUMNS``.
EXTRA_COLUMNS: dict[str, pl.DataType] = {
    "gbifid": pl.Utf8(),
    "species": pl.Utf8(),
    "basisofrecord": pl.Utf8(),
    "coordinateuncertaintyinmeters": pl.Float64(),
}
PARTITION_SCHEMA: dict[str, pl.DataType] = {**OCCURRENCE_COLUMNS, **EXTRA_COLUMNS}


@dataclass
class DownloadReport:
    """Terminal jobs of a download run, split by outcome."""

    completed: list[DownloadJob] = field(default_factory=list)
    failed: list[DownloadJob] = field(default_factory=list)

    @classmethod
    def from_jobs(cls, jobs: Iterable[DownloadJob]) -> DownloadReport:
        report = cls()
        for job in jobs:
            if job.status is JobStatus.DONE:
                report.completed.append(job)
            else:
                report.failed.append(job)
        return report

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def jobs(self) -> list[DownloadJob]:
        return sorted([*self.completed, *self.failed], key=lambda j: j.batch_index)


def submit(job: DownloadJob, body: dict[str, Any], auth: tuple[str, str]) -> DownloadJob:
    """Submit one batch; returns the job RUNNING with its download key."""
    try:
        key = client.request_download(body, auth)
    except requests.RequestException as exc:
        raise DownloadJobError(job.batch_index, f"submit failed: {exc}") from exc
    logger.info(
        "Batch %d submitted as download %s (%d keys)", job.batch_index, key, len(job.taxon_keys)
    )
    return job.model_copy(update={"download_key": key, "status": JobStatus.RUNNING})


def wait_for_completion(
    job: DownloadJob,
    *,
    poll_interval: float = 60.0,
    timeout: float = 6 * 3600.0,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> dict[str, Any]:
    """Poll until the download succeeds; returns its metadata.

    Raises:
        DownloadJobError: the service reports a failed state, or ``timeout``
            seconds pass without a terminal state.
    """
    if job.download_key is None:
        raise DownloadJobError(job.batch_index, "job was never submitted")
    deadline = clock() + timeout
    while True:
        try:
            meta = client.get_download(job.download_key)
        except requests.RequestException as exc:
            # Poll errors are retried until the deadline.
            logger.warning("Batch %d: status poll failed (%s)", job.batch_index, exc)
            meta = {}
        state = str(meta.get("status", "")).upper()
        if state == client.SUCCEEDED:
            return meta
        if state in client.FAILED_STATES:
            raise DownloadJobError(job.batch_index, f"download {job.download_key} ended {state}")
        if clock() >= deadline:
            raise DownloadJobError(
                job.batch_index,
                f"download {job.download_key} not finished after {timeout:.0f}s"
                f" (last state {state or 'unknown'})",
            )
        logger.debug("Batch %d: download %s is %s", job.batch_index, job.download_key, state)
        sleep(poll_interval)


def _is_parquet_member(name: str) -> bool:
    return not name.endswith("/") and (".parquet/" in name or name.endswith(".parquet"))


def _normalize_part(src: Path, dest: Path) -> None:
    """Rewrite one exported part with the uniform partition schema."""
    lf = pl.scan_parquet(src)
    present = lf.collect_schema()
    columns = []
    for name, dtype in PARTITION_SCHEMA.items():
        if name not in present:
            columns.append(pl.lit(None, dtype=dtype).alias(name))
        elif present[name] in (pl.Date, pl.Datetime):
            columns.append(pl.col(name).dt.strftime("%Y-%m-%d").alias(name))
        else:
            columns.append(pl.col(name).cast(dtype, strict=False))
    lf.select(columns).sink_parquet(dest)


def extract_archive(archive: Path, partition_dir: Path) -> list[Path]:
    """Unpack the parquet parts of a download archive into ``partition_dir``."""
    written: list[Path] = []
    with zipfile.ZipFile(archive) as zf:
        members = sorted(name for name in zf.namelist() if _is_parquet_member(name))
        for i, name in enumerate(members):
            raw = partition_dir / f".raw-{i:05d}.parquet"
            with zf.open(name) as src, raw.open("wb") as dst:
                shutil.copyfileobj(src, dst)
            part = partition_dir / f"part-{i:05d}.parquet"
            _normalize_part(raw, part)
            raw.unlink()
            written.append(part)
    return written


def materialize(job: DownloadJob, partition_dir: Path, archive_dir: Path) -> DownloadJob:
    """Fetch the finished archive and unpack it into the (already emptied) partition."""
    if job.download_key is None:
        raise DownloadJobError(job.batch_index, "no download key to materialize")
    archive = archive_dir / f"{job.download_key}.zip"
    try:
        client.fetch_archive(job.download_key, archive)
        parts = extract_archive(archive, partition_dir)
    except (
        requests.RequestException,
        zipfile.BadZipFile,
        OSError,
        pl.exceptions.PolarsError,
    ) as exc:
        raise DownloadJobError(job.batch_index, f"materialize failed: {exc}") from exc
    logger.info("Batch %d: %d parquet parts in %s", job.batch_index, len(parts), partition_dir)
    return job.model_copy(update={"status": JobStatus.DONE, "result_location": str(partition_dir)})


def run_job(
    job: DownloadJob,
    body: dict[str, Any],
    auth: tuple[str, str],
    *,
    mode: DownloadMode = "materialize",
    partition_dir: Callable[[DownloadJob], Path] | None = None,
    archive_dir: Path | None = None,
    poll_interval: float = 60.0,
    timeout: float = 6 * 3600.0,
    sleep: Callable[[float], None] = time.sleep,
) -> DownloadJob:
    """Submit, poll and (optionally) materialize one batch.

    ``partition_dir`` is called only once the download has succeeded, so an
    earlier failure leaves the batch's previous partition untouched.
    """
    job = submit(job, body, auth)
    wait_for_completion(job, poll_interval=poll_interval, timeout=timeout, sleep=sleep)
    if mode == "handle":
        return job.model_copy(update={"status": JobStatus.DONE})
    if partition_dir is None or archive_dir is None:
        raise DownloadJobError(job.batch_index, "materialize mode needs partition and archive dirs")
    return materialize(job, partition_dir(job), archive_dir)


def mark_failed(job: DownloadJob, exc: BaseException) -> DownloadJob:
    return job.model_copy(update={"status": JobStatus.FAILED, "error": str(exc)})


def run_batches(
    jobs: Iterable[DownloadJob],
    runner: Callable[[DownloadJob], DownloadJob],
) -> DownloadReport:
    """Run every batch; a batch failure is logged and recorded, never propagated."""
    finished: list[DownloadJob] = []
    for job in jobs:
        try:
            finished.append(runner(job))
        except DownloadJobError as exc:
            logger.error("Batch %d failed: %s", job.batch_index, exc)
            finished.append(mark_failed(job, exc))
    return DownloadReport.from_jobs(finished)
