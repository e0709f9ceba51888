"""Tests for the DataStore module."""

from __future__ import annotations

import json
from pathlib import Path

import polars as pl
import pytest

from marine_sdm.services.paging import Page
from marine_sdm.store import OCCURRENCES_DATASET, DataStore


class TestDataStoreInit:
    """Test DataStore initialization."""

    def test_creates_tier_paths(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        assert store.base == tmp_path
        assert store.raw == tmp_path / "raw"
        assert store.curated == tmp_path / "curated"
        assert store.occurrences == tmp_path / "occurrences"
        assert store.joined == tmp_path / "joined"


class TestDataStoreWrite:
    """Test writing data with metadata envelopes."""

    def test_write_envelope_format(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        store.write(Path("curated/keys.json"), [1, 2], source="api.gbif.org", complete=True)

        data = json.loads((tmp_path / "curated" / "keys.json").read_text())
        assert data["meta"]["source"] == "api.gbif.org"
        assert data["meta"]["complete"] is True
        assert "fetched_at" in data["meta"]
        assert data["data"] == [1, 2]

    def test_write_replaces_previous(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        store.write(Path("curated/a.json"), {"v": 1}, source="test")
        store.write(Path("curated/a.json"), {"v": 2}, source="test")
        assert store.read(Path("curated/a.json")) == {"v": 2}
        assert not (tmp_path / "curated" / "a.json.tmp").exists()

    def test_read_missing_file(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        assert store.read(Path("nonexistent.json")) is None
        assert store.read_raw(Path("nonexistent.json")) is None

    def test_rejects_escaping_path(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path / "data")
        with pytest.raises(ValueError, match="escapes"):
            store.write(Path("../outside.json"), {}, source="test")


class TestDataStorePages:
    """Test page dumps and resume offsets."""

    def test_page_file_named_by_offset(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        path = store.write_page("worms", Page(offset=51, records=({"AphiaID": 1},)))
        assert path == tmp_path / "raw" / "worms" / "page_000000051.json"

    def test_read_pages_in_offset_order(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        store.write_page("worms", Page(offset=101, records=({"AphiaID": 3},)))
        store.write_page("worms", Page(offset=1, records=({"AphiaID": 1},)))
        store.write_page("worms", Page(offset=51, records=({"AphiaID": 2},)))

        pages = store.read_pages("worms")
        assert [p.offset for p in pages] == [1, 51, 101]
        assert pages[1].records == ({"AphiaID": 2},)

    def test_next_offset_after_last_contiguous_page(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        for offset in (1, 51, 101):
            store.write_page("worms", Page(offset=offset, records=({"AphiaID": offset},)))
        assert store.next_page_offset("worms", page_size=50) == 151

    def test_next_offset_stops_at_gap(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        for offset in (1, 101):
            store.write_page("worms", Page(offset=offset, records=({"AphiaID": offset},)))
        assert store.next_page_offset("worms", page_size=50) == 51

    def test_next_offset_without_pages(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        assert store.next_page_offset("worms", page_size=50) == 1

    def test_clear_pages(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        store.write_page("worms", Page(offset=1, records=({"AphiaID": 1},)))
        store.clear_pages("worms")
        assert store.page_offsets("worms") == []


class TestDataStoreTables:
    """Test parquet tables with sidecar metadata."""

    def test_write_and_read_table(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        df = pl.DataFrame({"taxon_key": [1, 2], "name": ["a", "b"]})
        path = store.write_table(Path("curated/t.parquet"), df, source="test", stage="x")

        assert path.exists()
        assert store.read_table(Path("curated/t.parquet")).equals(df)
        meta = store.table_meta(Path("curated/t.parquet"))
        assert meta["rows"] == 2
        assert meta["stage"] == "x"

    def test_read_missing_table(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        assert store.read_table(Path("curated/missing.parquet")) is None
        assert store.table_meta(Path("curated/missing.parquet")) == {}


class TestDataStorePartitions:
    """Test partitioned datasets."""

    def test_replace_partition_only_touches_its_key(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        first = store.replace_partition(OCCURRENCES_DATASET, "batch=0000")
        second = store.replace_partition(OCCURRENCES_DATASET, "batch=0001")
        pl.DataFrame({"x": [1]}).write_parquet(first / "part-00000.parquet")
        pl.DataFrame({"x": [2]}).write_parquet(second / "part-00000.parquet")

        store.replace_partition(OCCURRENCES_DATASET, "batch=0000")

        assert list(first.iterdir()) == []
        assert (second / "part-00000.parquet").exists()

    def test_list_and_drop_partitions(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        store.replace_partition(OCCURRENCES_DATASET, "batch=0001")
        store.replace_partition(OCCURRENCES_DATASET, "batch=0000")
        assert store.list_partitions(OCCURRENCES_DATASET) == ["batch=0000", "batch=0001"]

        store.drop_partition(OCCURRENCES_DATASET, "batch=0000")
        assert store.list_partitions(OCCURRENCES_DATASET) == ["batch=0001"]

    def test_scan_dataset_spans_partitions(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        for i in range(2):
            part = store.replace_partition(OCCURRENCES_DATASET, f"batch={i:04d}")
            pl.DataFrame({"x": [i, i + 10]}).write_parquet(part / "part-00000.parquet")

        lf = store.scan_dataset(OCCURRENCES_DATASET)
        assert isinstance(lf, pl.LazyFrame)
        assert sorted(lf.collect()["x"].to_list()) == [0, 1, 10, 11]

    def test_scan_empty_dataset_raises(self, tmp_path: Path) -> None:
        store = DataStore(tmp_path)
        with pytest.raises(FileNotFoundError):
            store.scan_dataset(OCCURRENCES_DATASET)
