"""
Domain models for the marine SDM pipeline.

Pydantic models for records coming from external APIs, plus the polars
schemas of the tables each stage persists. Services normalize API responses
to these models; stages hand these tables to the next stage.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum
from typing import Any

import polars as pl
from pydantic import BaseModel, ConfigDict, Field, field_validator

# =============================================================================
# Taxonomy (WoRMS)
# =============================================================================

#: Ranks treated as species-level when curating the shortlist.
SPECIES_LEVEL_RANKS = frozenset({"Species", "Subspecies", "Variety", "Forma"})


class TaxonRecord(BaseModel):
    """One WoRMS (Aphia) record, normalized.

    Unknown flags and attributes are ``None``; the curation rules decide
    whether unknowns pass.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    external_id: int = Field(..., alias="AphiaID")
    scientific_name: str = Field(..., alias="scientificname")
    authority: str | None = Field(default=None, alias="authority")
    kingdom: str | None = Field(default=None, alias="kingdom")
    rank: str | None = Field(default=None, alias="rank")
    status: str | None = Field(default=None, alias="status")
    valid_external_id: int | None = Field(default=None, alias="valid_AphiaID")
    is_marine: bool | None = Field(default=None, alias="isMarine")
    is_extinct: bool | None = Field(default=None, alias="isExtinct")

    @field_validator("authority", "kingdom", "rank", "status", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def query_string(self) -> str:
        """Name + authority, the string sent to backbone matching."""
        if self.authority:
            return f"{self.scientific_name} {self.authority}"
        return self.scientific_name


SHORTLIST_SCHEMA: dict[str, pl.DataType] = {
    "external_id": pl.Int64(),
    "scientific_name": pl.Utf8(),
    "authority": pl.Utf8(),
    "kingdom": pl.Utf8(),
    "rank": pl.Utf8(),
    "status": pl.Utf8(),
    "valid_external_id": pl.Int64(),
    "is_marine": pl.Boolean(),
    "is_extinct": pl.Boolean(),
}


# =============================================================================
# Backbone matching (GBIF)
# =============================================================================


class MatchType(StrEnum):
    """GBIF backbone match types."""

    EXACT = "EXACT"
    FUZZY = "FUZZY"
    VARIANT = "VARIANT"
    HIGHERRANK = "HIGHERRANK"
    NONE = "NONE"


#: Match types that never count as a match.
REJECTED_MATCH_TYPES = frozenset({MatchType.HIGHERRANK, MatchType.NONE})

#: Statuses that lose one confidence point when ranking candidates.
PENALIZED_STATUSES = frozenset({"SYNONYM", "DOUBTFUL"})


class BackboneMatch(BaseModel):
    """One candidate returned for a name query."""

    model_config = ConfigDict(frozen=True)

    query_index: int
    verbatim_name: str
    candidate_key: int | None = None
    scientific_name: str | None = None
    match_type: MatchType = MatchType.NONE
    status: str | None = None
    rank: str | None = None
    confidence: int = 0
    is_synonym: bool = False

    @property
    def is_penalized(self) -> bool:
        """Synonyms and doubtful names rank below accepted names of equal confidence."""
        return self.is_synonym or (self.status or "").upper() in PENALIZED_STATUSES

    @property
    def adjusted_confidence(self) -> int:
        return self.confidence - 1 if self.is_penalized else self.confidence


MATCH_SCHEMA: dict[str, pl.DataType] = {
    "query_index": pl.Int64(),
    "verbatim_name": pl.Utf8(),
    "candidate_key": pl.Int64(),
    "scientific_name": pl.Utf8(),
    "match_type": pl.Utf8(),
    "status": pl.Utf8(),
    "rank": pl.Utf8(),
    "confidence": pl.Int64(),
    "is_synonym": pl.Boolean(),
    "adjusted_confidence": pl.Int64(),
}


# =============================================================================
# Occurrence downloads (GBIF)
# =============================================================================


class JobStatus(StrEnum):
    """Lifecycle of one download batch. DONE and FAILED are terminal."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.FAILED)


class DownloadJob(BaseModel):
    """One bounded-size slice of the taxon-key universe."""

    batch_index: int = Field(..., ge=0)
    taxon_keys: list[int]
    status: JobStatus = JobStatus.PENDING
    download_key: str | None = None
    result_location: str | None = None
    error: str | None = None

    @property
    def partition(self) -> str:
        """Directory name of this batch under the occurrence dataset."""
        return f"batch={self.batch_index:04d}"


class OccurrenceStatus(StrEnum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"


class ObservationClass(IntEnum):
    """Label for the modelling stage: target presence vs. target-group background."""

    BACKGROUND = 0
    TARGET = 1


#: Columns read from the GBIF SIMPLE_PARQUET export (lower-case names).
OCCURRENCE_COLUMNS: dict[str, pl.DataType] = {
    "taxonkey": pl.Int64(),
    "eventdate": pl.Utf8(),
    "decimallongitude": pl.Float64(),
    "decimallatitude": pl.Float64(),
    "occurrencestatus": pl.Utf8(),
}


# =============================================================================
# Joined observations
# =============================================================================

#: Leading columns of the joined table; covariate columns follow.
JOINED_BASE_SCHEMA: dict[str, pl.DataType] = {
    "class": pl.Int8(),
    "taxon_key": pl.Int64(),
    "lon": pl.Float64(),
    "lat": pl.Float64(),
    "year_month": pl.Utf8(),
}
