"""Stage artifacts on disk.

Every stage writes whole-unit artifacts under one base directory:
  - raw/: Page dumps and download archives, as retrieved (one file per page)
  - curated/: Shortlist, backbone matches, download manifest
  - occurrences/: Partitioned parquet dataset, one ``batch=NNNN/`` per download batch
  - joined/: One ``year_month=YYYYMM/`` partition per month plus the combined table

JSON files are wrapped in a metadata envelope (source, fetched_at, params).
Tables are parquet with a sidecar ``.meta.json``. Writing a table or a
partition replaces it as a whole; nothing is appended in place, so reruns of
one page, batch or month are idempotent and never collide with siblings.
"""

from __future__ import annotations

import json
import re
import shutil
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import polars as pl

from marine_sdm.services.paging import Page

PAGE_FILE_RE = re.compile(r"^page_(\d+)\.json$")

# Relative artifact locations shared by the flows.
SHORTLIST_PATH = Path("curated/shortlist.parquet")
MATCHES_PATH = Path("curated/backbone_matches.parquet")
TAXON_KEYS_PATH = Path("curated/taxon_keys.json")
MANIFEST_PATH = Path("curated/download_manifest.json")
OCCURRENCES_DATASET = Path("occurrences")
JOINED_DATASET = Path("joined/by_month")
JOINED_PATH = Path("joined/observations.parquet")


class DataStore:
    """Reads and writes stage artifacts under a base directory."""

    def __init__(self, base_dir: Path) -> None:
        self.base = base_dir
        self.raw = base_dir / "raw"
        self.curated = base_dir / "curated"
        self.occurrences = base_dir / "occurrences"
        self.joined = base_dir / "joined"

    # -------------------------------------------------------------------------
    # JSON envelopes
    # -------------------------------------------------------------------------

    def read(self, path: Path) -> Any:
        """Read the data payload from a metadata-enveloped JSON file.

        Returns the ``data`` field, or None if the file doesn't exist.
        """
        envelope = self.read_raw(path)
        if envelope is None:
            return None
        return envelope.get("data", envelope)

    def read_raw(self, path: Path) -> dict[str, Any] | None:
        """Read the full envelope (meta + data) from a JSON file."""
        full = self._resolve(path)
        if not full.exists():
            return None
        with full.open() as f:
            result: dict[str, Any] = json.load(f)
        return result

    def write(self, path: Path, data: Any, source: str, **params: Any) -> Path:
        """Write data wrapped in a metadata envelope, replacing any previous file.

        Args:
            path: Relative path under base_dir (e.g. ``curated/download_manifest.json``).
            data: Payload to store under the ``data`` key.
            source: Data source identifier (e.g. ``"api.gbif.org"``).
            **params: Extra metadata fields (offset, batch index, query params, ...).

        Returns:
            Absolute path of the written file.
        """
        full = self._resolve(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        envelope = {"meta": self._meta(source, params), "data": data}
        tmp = full.with_suffix(full.suffix + ".tmp")
        with tmp.open("w") as f:
            json.dump(envelope, f, indent=2, default=str)
        tmp.replace(full)
        return full

    # -------------------------------------------------------------------------
    # Paged dumps
    # -------------------------------------------------------------------------

    def page_dir(self, stage: str) -> Path:
        return self.raw / stage

    @staticmethod
    def page_path(stage: str, offset: int) -> Path:
        """Relative path of the page dump requested at `offset`."""
        return Path("raw") / stage / f"page_{offset:09d}.json"

    def write_page(self, stage: str, page: Page, source: str = "") -> Path:
        """Persist one retrieved page as ``raw/{stage}/page_{offset}.json``."""
        path = self.page_path(stage, page.offset)
        return self.write(path, list(page.records), source=source, offset=page.offset)

    def page_offsets(self, stage: str) -> list[int]:
        """Offsets of the pages stored for ``stage``, ascending."""
        directory = self.page_dir(stage)
        if not directory.exists():
            return []
        offsets = []
        for child in directory.iterdir():
            m = PAGE_FILE_RE.match(child.name)
            if m:
                offsets.append(int(m.group(1)))
        return sorted(offsets)

    def read_pages(self, stage: str) -> list[Page]:
        """Load stored pages in offset order."""
        pages = []
        for offset in self.page_offsets(stage):
            records = self.read(self.page_path(stage, offset)) or []
            pages.append(Page(offset=offset, records=tuple(records)))
        return pages

    def next_page_offset(self, stage: str, page_size: int, start_offset: int = 1) -> int:
        """Offset to resume from: the one after the last contiguous stored page."""
        stored = set(self.page_offsets(stage))
        offset = start_offset
        while offset in stored:
            offset += page_size
        return offset

    def clear_pages(self, stage: str) -> None:
        """Drop every stored page of ``stage`` (start of a fresh, non-resumed run)."""
        shutil.rmtree(self.page_dir(stage), ignore_errors=True)

    # -------------------------------------------------------------------------
    # Tables
    # -------------------------------------------------------------------------

    def write_table(self, path: Path, df: pl.DataFrame, source: str, **params: Any) -> Path:
        """Write a parquet table with a ``.meta.json`` sidecar, replacing any previous one."""
        full = self._resolve(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        tmp = full.with_suffix(full.suffix + ".tmp")
        df.write_parquet(tmp)
        tmp.replace(full)

        meta = self._meta(source, {"rows": df.height, **params})
        meta_path = full.with_suffix(full.suffix + ".meta.json")
        with meta_path.open("w") as f:
            json.dump({"meta": meta}, f, indent=2, default=str)
        return full

    def read_table(self, path: Path) -> pl.DataFrame | None:
        """Read a parquet table, or None if it doesn't exist."""
        full = self._resolve(path)
        if not full.exists():
            return None
        return pl.read_parquet(full)

    def table_meta(self, path: Path) -> dict[str, Any]:
        """Sidecar metadata of a table (empty if missing)."""
        full = self._resolve(path)
        sidecar = full.with_suffix(full.suffix + ".meta.json")
        if not sidecar.exists():
            return {}
        with sidecar.open() as f:
            result: dict[str, Any] = json.load(f)
        return result.get("meta", {})

    # -------------------------------------------------------------------------
    # Partitioned datasets
    # -------------------------------------------------------------------------

    def replace_partition(self, dataset: Path, key: str) -> Path:
        """Empty (or create) ``dataset/key`` and return it.

        Each partition key has a single writer, so replacing it never touches
        another batch's or month's files.
        """
        full = self._resolve(dataset / key)
        shutil.rmtree(full, ignore_errors=True)
        full.mkdir(parents=True)
        return full

    def drop_partition(self, dataset: Path, key: str) -> None:
        """Remove ``dataset/key`` if present."""
        shutil.rmtree(self._resolve(dataset / key), ignore_errors=True)

    def list_partitions(self, dataset: Path) -> list[str]:
        full = self._resolve(dataset)
        if not full.exists():
            return []
        return sorted(p.name for p in full.iterdir() if p.is_dir() and "=" in p.name)

    def parquet_files(self, dataset: Path) -> list[Path]:
        """All parquet files under a partitioned dataset, in path order."""
        full = self._resolve(dataset)
        if not full.exists():
            return []
        return sorted(p for p in full.rglob("*.parquet") if p.is_file())

    def scan_dataset(self, dataset: Path) -> pl.LazyFrame:
        """Lazily scan every parquet file of a partitioned dataset.

        Nothing is read until the caller collects, so filters applied to the
        returned frame are pushed down into the scan.
        """
        files = self.parquet_files(dataset)
        if not files:
            msg = f"No parquet files under {self._resolve(dataset)}"
            raise FileNotFoundError(msg)
        return pl.scan_parquet(files)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _resolve(self, path: Path) -> Path:
        full = self.base / path if not path.is_absolute() else path
        try:
            full.resolve().relative_to(self.base.resolve())
        except ValueError:
            msg = f"Path escapes store base directory: {path}"
            raise ValueError(msg) from None
        return full

    @staticmethod
    def _meta(source: str, params: dict[str, Any]) -> dict[str, Any]:
        meta: dict[str, Any] = {
            "source": source,
            "fetched_at": datetime.now(UTC).isoformat(),
        }
        meta.update(params)
        return meta
