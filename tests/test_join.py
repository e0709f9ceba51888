"""Tests for the occurrence x environment join."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date
from pathlib import Path
from typing import Any

import polars as pl

from marine_sdm.analysis.join import (
    BASE_COLUMNS,
    JoinReport,
    combine_months,
    join_environment,
    label_occurrences,
    scan_subset,
)
from marine_sdm.datasources.environment import index_environment
from marine_sdm.schemas import JOINED_BASE_SCHEMA, ObservationClass

WriteLayer = Callable[..., Path]
WriteOccurrences = Callable[[list[dict[str, Any]]], pl.LazyFrame]

TARGET = 2417522
BACKGROUND = 5212345


def occ(
    key: int, when: str | None, lon: float = 1.5, lat: float = 50.5, status: str = "PRESENT"
) -> dict[str, Any]:
    return {
        "taxonkey": key,
        "eventdate": when,
        "decimallongitude": lon,
        "decimallatitude": lat,
        "occurrencestatus": status,
    }


def join(
    tmp_path: Path, occurrences: pl.LazyFrame, expected_layers: int = 2, **kwargs: Any
) -> tuple[pl.DataFrame, JoinReport]:
    params: dict[str, Any] = {
        "target_keys": [TARGET],
        "start_date": date(2000, 1, 1),
        "expected_layers": expected_layers,
    }
    params.update(kwargs)
    return join_environment(occurrences, index_environment(tmp_path / "environment"), **params)


class TestScanSubset:
    """Lazy filtering before collection."""

    def test_present_with_coordinates_only(self, write_occurrences: WriteOccurrences) -> None:
        lf = write_occurrences(
            [
                occ(TARGET, "2020-01-15"),
                occ(TARGET, "2020-01-15", status="ABSENT"),
                occ(TARGET, "2020-01-15", status="present"),
                {**occ(TARGET, "2020-01-15"), "decimallatitude": None},
                occ(999, "2020-01-15"),
            ]
        )
        subset = scan_subset(lf, {TARGET})
        assert isinstance(subset, pl.LazyFrame)
        assert subset.collect().height == 2

    def test_all_taxa_when_keys_none(self, write_occurrences: WriteOccurrences) -> None:
        lf = write_occurrences([occ(TARGET, "2020"), occ(999, "2020")])
        assert scan_subset(lf, None).collect()["taxon_key"].to_list() == [TARGET, 999]


class TestLabelOccurrences:
    """Date cleaning, start date and class labels."""

    def _frame(self, rows: list[dict[str, Any]]) -> pl.DataFrame:
        return pl.DataFrame(
            [
                {
                    "taxon_key": r["taxonkey"],
                    "event_date_raw": r["eventdate"],
                    "lon": r["decimallongitude"],
                    "lat": r["decimallatitude"],
                }
                for r in rows
            ],
            schema={
                "taxon_key": pl.Int64,
                "event_date_raw": pl.Utf8,
                "lon": pl.Float64,
                "lat": pl.Float64,
            },
        )

    def test_labels_and_counts(self) -> None:
        df = self._frame(
            [
                occ(TARGET, "2020-01-15/2020-01-20"),
                occ(TARGET, "not-a-date"),
                occ(BACKGROUND, "2020-02"),
                occ(BACKGROUND, "1995-06-01"),
                occ(777, "2020-03-03"),
            ]
        )
        counts: dict[str, int] = {}

        labeled = label_occurrences(df.lazy(), [TARGET], [BACKGROUND], date(2000, 1, 1), counts)

        assert labeled.columns == BASE_COLUMNS
        assert labeled["class"].to_list() == [1, 0]
        assert labeled["year_month"].to_list() == ["202001", "202002"]
        assert counts == {
            "scanned": 5,
            "valid_date": 4,
            "after_start_date": 3,
            "target": 1,
            "background": 1,
        }

    def test_background_defaults_to_every_other_taxon(self) -> None:
        df = self._frame([occ(TARGET, "2020"), occ(777, "2020"), occ(888, "2020")])
        labeled = label_occurrences(df.lazy(), [TARGET], None, date(2000, 1, 1), {})
        assert labeled["class"].to_list() == [1, 0, 0]


class TestJoinEnvironment:
    """End to end over tiny NetCDF months."""

    def test_month_with_missing_layer_is_reported(
        self,
        tmp_path: Path,
        write_layer: WriteLayer,
        write_occurrences: WriteOccurrences,
    ) -> None:
        """Full January stack joins; February is one layer short and yields nothing."""
        write_layer("so_202001.nc", base=30.0)
        write_layer("thetao_202001.nc", base=10.0)
        write_layer("so_202002.nc", base=31.0)
        lf = write_occurrences([occ(TARGET, "2020-01-15"), occ(TARGET, "2020-02-10")])

        joined, report = join(tmp_path, lf)

        assert joined.height == 1
        assert joined["year_month"].to_list() == ["202001"]
        assert joined["so"].to_list() == [41.0]
        assert joined["thetao"].to_list() == [21.0]
        assert list(report.failed_months) == ["202002"]
        assert "expected 2" in report.failed_months["202002"]
        assert report.joined_months == ["202001"]
        assert not report.ok

    def test_month_with_unreadable_file_is_reported(
        self,
        tmp_path: Path,
        write_layer: WriteLayer,
        write_occurrences: WriteOccurrences,
    ) -> None:
        """A corrupt February file costs February only."""
        write_layer("so_202001.nc", base=30.0)
        write_layer("thetao_202001.nc", base=10.0)
        write_layer("thetao_202002.nc", base=11.0)
        (tmp_path / "environment" / "so_202002.nc").write_bytes(b"garbage")
        lf = write_occurrences([occ(TARGET, "2020-01-15"), occ(TARGET, "2020-02-10")])

        joined, report = join(tmp_path, lf)

        assert joined["year_month"].to_list() == ["202001"]
        assert list(report.failed_months) == ["202002"]
        assert "so_202002.nc" in report.failed_months["202002"]
        assert report.joined_months == ["202001"]

    def test_points_sample_their_own_month(
        self,
        tmp_path: Path,
        write_layer: WriteLayer,
        write_occurrences: WriteOccurrences,
    ) -> None:
        write_layer("so_202001.nc", base=1.0, with_depth=False)
        write_layer("so_202002.nc", base=2.0, with_depth=False)
        lf = write_occurrences(
            [
                occ(TARGET, "2020-02-01", lon=0.5, lat=49.5),
                occ(TARGET, "2020-01-31", lon=0.5, lat=49.5),
            ]
        )

        joined, report = join(tmp_path, lf, expected_layers=1)

        assert report.ok
        values = dict(zip(joined["year_month"], joined["so"], strict=True))
        assert values == {"202001": 1.0, "202002": 2.0}

    def test_n_points_n_rows_target_first(
        self,
        tmp_path: Path,
        write_layer: WriteLayer,
        write_occurrences: WriteOccurrences,
    ) -> None:
        write_layer("so_202001.nc")
        rows = [occ(BACKGROUND, "2020-01-02"), occ(TARGET, "2020-01-03")] * 3
        lf = write_occurrences(rows)

        joined, report = join(tmp_path, lf, expected_layers=1, background_keys=[BACKGROUND])

        assert joined.height == 6
        assert report.counts["extracted"] == 6
        assert joined["class"].to_list() == [1, 1, 1, 0, 0, 0]

    def test_missing_covariate_rows_dropped(
        self,
        tmp_path: Path,
        write_layer: WriteLayer,
        write_occurrences: WriteOccurrences,
    ) -> None:
        write_layer("so_202001.nc")
        lf = write_occurrences([occ(TARGET, "2020-01-02"), occ(TARGET, "2020-01-02", lon=40.0)])

        joined, report = join(tmp_path, lf, expected_layers=1)

        assert joined.height == 1
        assert report.counts["extracted"] == 2
        assert report.counts["complete"] == 1
        assert report.dropped("extracted", "complete") == 1

    def test_targeted_months(
        self,
        tmp_path: Path,
        write_layer: WriteLayer,
        write_occurrences: WriteOccurrences,
    ) -> None:
        write_layer("so_202001.nc", with_depth=False)
        write_layer("so_202002.nc", with_depth=False)
        lf = write_occurrences([occ(TARGET, "2020-01-02"), occ(TARGET, "2020-02-02")])
        written: list[str] = []

        joined, report = join(
            tmp_path,
            lf,
            expected_layers=1,
            months=["202002"],
            on_month=lambda ym, _rows: written.append(ym),
        )

        assert written == ["202002"]
        assert joined["year_month"].to_list() == ["202002"]
        assert report.joined_months == ["202002"]


class TestCombineMonths:
    """Concatenation and complete cases."""

    def test_empty(self) -> None:
        report = JoinReport()
        joined = combine_months([], report)
        assert joined.columns == BASE_COLUMNS
        assert report.counts["complete"] == 0

    def test_nan_and_null_both_dropped(self) -> None:
        base = {"taxon_key": 1, "lon": 0.0, "lat": 0.0, "year_month": "202001"}
        frame = pl.DataFrame(
            [
                {**base, "class": ObservationClass.BACKGROUND.value, "so": 1.0},
                {**base, "class": ObservationClass.TARGET.value, "so": float("nan")},
                {**base, "class": ObservationClass.TARGET.value, "so": None},
                {**base, "class": ObservationClass.TARGET.value, "so": 2.0},
            ],
            schema={**JOINED_BASE_SCHEMA, "so": pl.Float64},
        )
        joined = combine_months([frame], JoinReport())
        assert joined["so"].to_list() == [2.0, 1.0]
