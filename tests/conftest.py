"""Shared fixtures: tiny gridded layers and occurrence partitions."""

from __future__ import annotations

import io
import zipfile
from collections.abc import Callable, Sequence
from pathlib import Path

import numpy as np
import polars as pl
import pytest
import xarray as xr

LATS = (49.5, 50.5, 51.5)
LONS = (0.5, 1.5, 2.5)

WriteLayer = Callable[..., Path]


@pytest.fixture
def write_layer(tmp_path: Path) -> WriteLayer:
    """Write a one-variable NetCDF file shaped like a monthly Copernicus product.

    Cell value at depth 0 is ``base + 10 * lat_index + lon_index``; deeper
    levels add 1000 so tests can tell which level was read.
    """

    def write(
        name: str,
        base: float = 0.0,
        *,
        variable: str = "var",
        lats: Sequence[float] = LATS,
        lons: Sequence[float] = LONS,
        with_depth: bool = True,
        directory: Path | None = None,
    ) -> Path:
        grid = base + 10 * np.arange(len(lats))[:, None] + np.arange(len(lons))[None, :]
        coords: dict[str, object] = {
            "time": [np.datetime64("2020-01-16")],
            "latitude": list(lats),
            "longitude": list(lons),
        }
        if with_depth:
            data = np.stack([grid, grid + 1000])[None, ...]
            dims: tuple[str, ...] = ("time", "depth", "latitude", "longitude")
            coords["depth"] = [0.5, 10.0]
        else:
            data = grid[None, ...]
            dims = ("time", "latitude", "longitude")
        ds = xr.Dataset({variable: (dims, data.astype("float32"))}, coords=coords)
        path = (directory or tmp_path / "environment") / name
        path.parent.mkdir(parents=True, exist_ok=True)
        ds.to_netcdf(path)
        return path

    return write


@pytest.fixture
def write_occurrences(tmp_path: Path) -> Callable[[list[dict[str, object]]], pl.LazyFrame]:
    """Write rows as one batch partition and return a lazy scan of it."""

    def write(rows: list[dict[str, object]]) -> pl.LazyFrame:
        partition = tmp_path / "occurrences" / "batch=0000"
        partition.mkdir(parents=True, exist_ok=True)
        path = partition / "part-00000.parquet"
        pl.DataFrame(
            rows,
            schema={
                "taxonkey": pl.Int64,
                "eventdate": pl.Utf8,
                "decimallongitude": pl.Float64,
                "decimallatitude": pl.Float64,
                "occurrencestatus": pl.Utf8,
            },
        ).write_parquet(path)
        return pl.scan_parquet(path)

    return write


def export_part(rows: int, start: int = 0) -> bytes:
    """One part of a SIMPLE_PARQUET export, with a column the pipeline ignores."""
    df = pl.DataFrame(
        {
            "gbifid": [str(1000 + start + i) for i in range(rows)],
            "taxonkey": [2417522] * rows,
            "eventdate": ["2020-01-15"] * rows,
            "decimallongitude": [1.5] * rows,
            "decimallatitude": [50.5] * rows,
            "occurrencestatus": ["PRESENT"] * rows,
            "kingdom": ["Animalia"] * rows,
        }
    )
    buf = io.BytesIO()
    df.write_parquet(buf)
    return buf.getvalue()


@pytest.fixture
def write_archive() -> Callable[[Path], Path]:
    """Write a download archive: two parquet parts (2 + 3 rows) plus metadata files."""

    def write(dest: Path) -> Path:
        dest.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(dest, "w") as zf:
            zf.writestr("occurrence.parquet/000000", export_part(2))
            zf.writestr("occurrence.parquet/000001", export_part(3, start=2))
            zf.writestr("metadata.xml", "<eml/>")
            zf.writestr("citations.txt", "cite me")
        return dest

    return write
