"""Monthly gridded environmental files.

Files are downloaded out of band, one directory per dataset id, and named
``{variable}{sep}{YYYYMM}.nc``. This module indexes them by year-month,
loads one month into an ``EnvironmentalStack`` (first depth level only, time
dropped), and samples the stack at point coordinates.

A month must have exactly the configured number of files; anything else
raises ``LayerCountError`` rather than producing a partial stack.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
import xarray as xr

from marine_sdm.errors import LayerCountError, LayerReadError

logger = logging.getLogger(__name__)

DEFAULT_PATTERN = r"^(?P<variable>.+?)[_-]?(?P<year_month>\d{6})\.nc$"

LAT_NAMES = ("latitude", "lat", "y")
LON_NAMES = ("longitude", "lon", "x")
DEPTH_NAMES = ("depth", "deptht", "depthu", "depthv", "lev", "elevation")
TIME_NAMES = ("time", "t")


@dataclass(frozen=True)
class LayerFile:
    """One gridded file and what its name encodes."""

    path: Path
    variable: str
    year_month: str


def index_environment(
    directory: Path, pattern: str = DEFAULT_PATTERN
) -> dict[str, list[LayerFile]]:
    """Map year-month -> files for every matching file under ``directory``.

    The pattern needs ``variable`` and ``year_month`` named groups and is
    matched against file names only. Files within a month are sorted by
    variable name.
    """
    regex = re.compile(pattern)
    index: dict[str, list[LayerFile]] = {}
    if not directory.exists():
        logger.warning("Environment directory %s does not exist", directory)
        return index
    for path in sorted(directory.rglob("*")):
        if not path.is_file():
            continue
        m = regex.match(path.name)
        if m is None:
            continue
        layer = LayerFile(
            path=path, variable=m.group("variable"), year_month=m.group("year_month")
        )
        index.setdefault(layer.year_month, []).append(layer)
    for files in index.values():
        files.sort(key=lambda f: (f.variable, str(f.path)))
    return dict(sorted(index.items()))


def _find_dim(dims: Sequence[str], candidates: Sequence[str]) -> str | None:
    for name in candidates:
        if name in dims:
            return name
    return None


def load_layer(layer: LayerFile) -> xr.DataArray:
    """Load the gridded variable of one file as a 2-D ``(lat, lon)`` array.

    Depth and time dimensions are reduced to their first level and dropped.
    """
    with xr.open_dataset(layer.path) as ds:
        for name in ds.data_vars:
            da = ds[name]
            lat = _find_dim(da.dims, LAT_NAMES)
            lon = _find_dim(da.dims, LON_NAMES)
            if lat is not None and lon is not None:
                break
        else:
            msg = f"{layer.path}: no variable with latitude/longitude dimensions"
            raise ValueError(msg)

        for dim in list(da.dims):
            if dim in DEPTH_NAMES or dim in TIME_NAMES:
                da = da.isel({dim: 0}, drop=True)
        extra = [d for d in da.dims if d not in (lat, lon)]
        if any(da.sizes[d] != 1 for d in extra):
            msg = f"{layer.path}: unexpected extra dimensions {extra}"
            raise ValueError(msg)
        if extra:
            da = da.isel({d: 0 for d in extra}, drop=True)

        renames = {old: new for old, new in ((lat, "lat"), (lon, "lon")) if old != new}
        da = da.rename(renames).transpose("lat", "lon").load()
    return da.rename(layer.variable)


def _cell_index(axis: np.ndarray, values: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Nearest cell index on a monotonic axis, and whether each value falls in the grid."""
    descending = axis.size > 1 and axis[0] > axis[-1]
    ordered = axis[::-1] if descending else axis
    n = ordered.size
    if n == 1:
        return np.zeros(values.shape, dtype=int), values == ordered[0]

    pos = np.clip(np.searchsorted(ordered, values), 1, n - 1)
    left = ordered[pos - 1]
    right = ordered[pos]
    idx = np.where(np.abs(values - left) <= np.abs(right - values), pos - 1, pos)

    half_cell = np.abs(np.diff(ordered)).min() / 2
    inside = (values >= ordered[0] - half_cell) & (values <= ordered[-1] + half_cell)
    if descending:
        idx = n - 1 - idx
    return idx, inside


@dataclass
class EnvironmentalStack:
    """All covariate layers of one year-month, keyed by layer name."""

    year_month: str
    layers: dict[str, xr.DataArray] = field(default_factory=dict)

    @property
    def covariates(self) -> list[str]:
        return list(self.layers)

    def extract(self, lons: np.ndarray, lats: np.ndarray) -> dict[str, np.ndarray]:
        """Value of the containing (nearest) cell for each point, per layer.

        Points outside a layer's grid get NaN; there is no interpolation.
        """
        lons = np.asarray(lons, dtype=float)
        lats = np.asarray(lats, dtype=float)
        values: dict[str, np.ndarray] = {}
        for name, da in self.layers.items():
            lat_axis = np.asarray(da["lat"].values, dtype=float)
            lon_axis = np.asarray(da["lon"].values, dtype=float)
            point_lons = np.mod(lons, 360.0) if lon_axis.max() > 180.0 else lons
            lat_idx, lat_in = _cell_index(lat_axis, lats)
            lon_idx, lon_in = _cell_index(lon_axis, point_lons)
            sampled = np.asarray(da.values, dtype=float)[lat_idx, lon_idx]
            sampled[~(lat_in & lon_in)] = np.nan
            values[name] = sampled
        return values


def load_stack(
    year_month: str,
    files: Sequence[LayerFile],
    expected_layers: int,
    drop_layers: Sequence[str] = (),
) -> EnvironmentalStack:
    """Load every layer of one month.

    Raises:
        LayerCountError: the month has a file count other than
            ``expected_layers``, or two files encode the same variable.
        LayerReadError: a file of the month is unreadable or has no
            latitude/longitude grid.
    """
    if len(files) != expected_layers:
        raise LayerCountError(year_month, expected_layers, len(files))
    variables = {f.variable for f in files}
    if len(variables) != len(files):
        raise LayerCountError(year_month, expected_layers, len(variables))

    stack = EnvironmentalStack(year_month=year_month)
    for layer in files:
        if layer.variable in drop_layers:
            continue
        try:
            stack.layers[layer.variable] = load_layer(layer)
        except (ValueError, OSError) as exc:
            raise LayerReadError(year_month, layer.path, exc) from exc
    logger.debug("Loaded %d layers for %s", len(stack.layers), year_month)
    return stack
