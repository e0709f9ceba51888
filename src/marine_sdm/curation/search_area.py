"""Search polygon validation.

The download service expects a closed, simple polygon wound
counter-clockwise. Unclosed or self-intersecting rings are rejected before
any job is submitted; clockwise rings are re-wound, or rejected when
normalization is turned off.
"""

from __future__ import annotations

from collections.abc import Sequence

import shapely
from shapely.geometry import Polygon
from shapely.geometry.polygon import orient
from shapely.validation import explain_validity

from marine_sdm.errors import SearchAreaError

MIN_RING_POINTS = 4  # three distinct vertices plus the closing one


def build_search_area(
    vertices: Sequence[tuple[float, float]],
    *,
    normalize_winding: bool = True,
) -> Polygon:
    """Validate ``(lon, lat)`` vertices and return a counter-clockwise polygon.

    Raises:
        SearchAreaError: ring not closed, too few vertices, self-intersecting,
            or clockwise with ``normalize_winding=False``.
    """
    points = [(float(lon), float(lat)) for lon, lat in vertices]
    if len(points) < MIN_RING_POINTS:
        msg = f"Search area needs at least {MIN_RING_POINTS} vertices, got {len(points)}"
        raise SearchAreaError(msg)
    if points[0] != points[-1]:
        msg = f"Search area is not closed: first vertex {points[0]} != last {points[-1]}"
        raise SearchAreaError(msg)

    polygon = Polygon(points)
    if not polygon.is_valid:
        msg = f"Search area is not a simple polygon: {explain_validity(polygon)}"
        raise SearchAreaError(msg)

    if not polygon.exterior.is_ccw:
        if not normalize_winding:
            msg = "Search area is wound clockwise; counter-clockwise required"
            raise SearchAreaError(msg)
        polygon = orient(polygon, sign=1.0)
    return polygon


def to_wkt(polygon: Polygon) -> str:
    """WKT for the download predicate (6 decimals is ~0.1 m)."""
    return shapely.to_wkt(polygon, rounding_precision=6, trim=True)
