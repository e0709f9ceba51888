"""Occurrence download planning.

``build_predicate`` assembles the fixed quality filter sent with every
download job. ``plan_batches`` shuffles the taxon-key universe with a fixed
seed and slices it into bounded batches, so batch composition does not follow
the alphabetical or taxonomic clustering of the key list.
"""

from __future__ import annotations

import random
from collections.abc import Iterable, Sequence
from typing import Any

from marine_sdm.schemas import DownloadJob, OccurrenceStatus

DEFAULT_BATCH_SIZE = 20_000


def _text(value: float | int) -> str:
    """Predicate values go over the wire as text: ``1000.0`` -> ``"1000"``."""
    number = float(value)
    return str(int(number)) if number.is_integer() else repr(number)


def build_predicate(
    taxon_keys: Iterable[int],
    geometry_wkt: str,
    *,
    licenses: Sequence[str],
    excluded_basis_of_record: Sequence[str],
    max_coordinate_uncertainty_m: float,
    min_distance_from_centroid_m: float,
) -> dict[str, Any]:
    """GBIF download predicate for one batch of taxon keys."""
    return {
        "type": "and",
        "predicates": [
            {"type": "equals", "key": "OCCURRENCE_STATUS", "value": OccurrenceStatus.PRESENT.value},
            {"type": "in", "key": "TAXON_KEY", "values": [str(k) for k in taxon_keys]},
            {"type": "within", "geometry": geometry_wkt},
            {"type": "in", "key": "LICENSE", "values": list(licenses)},
            {
                "type": "not",
                "predicate": {
                    "type": "in",
                    "key": "BASIS_OF_RECORD",
                    "values": list(excluded_basis_of_record),
                },
            },
            {"type": "equals", "key": "HAS_GEOSPATIAL_ISSUE", "value": "false"},
            {"type": "equals", "key": "HAS_COORDINATE", "value": "true"},
            {
                "type": "or",
                "predicates": [
                    {
                        "type": "lessThan",
                        "key": "COORDINATE_UNCERTAINTY_IN_METERS",
                        "value": _text(max_coordinate_uncertainty_m),
                    },
                    {"type": "isNull", "parameter": "COORDINATE_UNCERTAINTY_IN_METERS"},
                ],
            },
            {
                "type": "greaterThan",
                "key": "DISTANCE_FROM_CENTROID_IN_METERS",
                "value": _text(min_distance_from_centroid_m),
            },
        ],
    }


def download_request(
    predicate: dict[str, Any],
    *,
    creator: str,
    email: str | None = None,
    format: str = "SIMPLE_PARQUET",  # noqa: A002
) -> dict[str, Any]:
    """Request body for POST /occurrence/download/request."""
    body: dict[str, Any] = {
        "creator": creator,
        "format": format,
        "predicate": predicate,
        "sendNotification": bool(email),
    }
    if email:
        body["notificationAddresses"] = [email]
    return body


def shuffled_keys(taxon_keys: Iterable[int], seed: int) -> list[int]:
    """Distinct keys in a seeded random order (same input + seed -> same order)."""
    keys = sorted(set(taxon_keys))
    random.Random(seed).shuffle(keys)
    return keys


def plan_batches(
    taxon_keys: Iterable[int],
    batch_size: int = DEFAULT_BATCH_SIZE,
    seed: int = 42,
) -> list[DownloadJob]:
    """Shuffle then slice the taxon-key universe into PENDING download jobs."""
    if batch_size <= 0:
        msg = f"batch_size must be positive, got {batch_size}"
        raise ValueError(msg)
    keys = shuffled_keys(taxon_keys, seed)
    return [
        DownloadJob(batch_index=i, taxon_keys=keys[start : start + batch_size])
        for i, start in enumerate(range(0, len(keys), batch_size))
    ]
