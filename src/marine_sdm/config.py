"""Application settings.

Settings are read, in order of precedence, from constructor arguments,
``MARINE_SDM_*`` environment variables (nested groups use ``__``, e.g.
``MARINE_SDM_DOWNLOAD__BATCH_SIZE=5000``), a ``.env`` file, and a TOML file
(``marine_sdm.toml`` in the working directory, or the path in
``MARINE_SDM_CONFIG``).

Example ``marine_sdm.toml``::

    target_taxon_keys = [2417522]

    [download]
    batch_size = 20000
    search_area = [[-10.0, 48.0], [10.0, 48.0], [10.0, 62.0], [-10.0, 62.0], [-10.0, 48.0]]

    [datasets.thetao]
    dataset_id = "cmems_mod_glo_phy-thetao_anfc_0.083deg_P1M-m"
    timescale = "monthly"

GBIF credentials are supplied out of band (environment or TOML) and are
never logged.
"""

from __future__ import annotations

import os
from datetime import date
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

DEFAULT_CONFIG_FILE = "marine_sdm.toml"

# North-east Atlantic shelf, counter-clockwise, closed.
DEFAULT_SEARCH_AREA: list[tuple[float, float]] = [
    (-12.0, 43.0),
    (10.0, 43.0),
    (10.0, 62.0),
    (-12.0, 62.0),
    (-12.0, 43.0),
]


class TaxonomySettings(BaseModel):
    """Paged WoRMS registry dump."""

    page_size: int = Field(default=50, gt=0, description="Records per WoRMS page")
    start_offset: int = Field(default=1, ge=0, description="Offset of the first page")
    cooldown_seconds: float = Field(default=60.0, ge=0, description="Wait before the one retry")
    registry_start_date: str = Field(
        default="1900-01-01T00:00:00+00:00",
        description="Lower bound of the modification-date window that spans the registry",
    )
    marine_only: bool = False


class BackboneSettings(BaseModel):
    """GBIF backbone name reconciliation."""

    chunk_size: int = Field(default=1000, gt=0)
    kingdom: str | None = None


class DownloadSettings(BaseModel):
    """GBIF asynchronous occurrence downloads."""

    batch_size: int = Field(default=20_000, gt=0)
    shuffle_seed: int = 42
    poll_interval_seconds: float = Field(default=60.0, ge=0)
    poll_timeout_seconds: float = Field(default=6 * 3600.0, gt=0)
    mode: Literal["materialize", "handle"] = "materialize"
    format: str = "SIMPLE_PARQUET"
    search_area: list[tuple[float, float]] = Field(
        default_factory=lambda: list(DEFAULT_SEARCH_AREA)
    )
    normalize_winding: bool = True
    licenses: list[str] = Field(default_factory=lambda: ["CC0_1_0", "CC_BY_4_0", "CC_BY_NC_4_0"])
    excluded_basis_of_record: list[str] = Field(
        default_factory=lambda: [
            "FOSSIL_SPECIMEN",
            "LIVING_SPECIMEN",
            "PRESERVED_SPECIMEN",
            "MATERIAL_SAMPLE",
            "MATERIAL_CITATION",
        ]
    )
    max_coordinate_uncertainty_m: float = Field(default=1000.0, gt=0)
    min_distance_from_centroid_m: float = Field(default=2000.0, ge=0)


class DatasetEntry(BaseModel):
    """One row of the environmental dataset-id lookup table."""

    dataset_id: str
    timescale: str = "monthly"


class JoinSettings(BaseModel):
    """Environmental join over monthly gridded files."""

    environment_dir: Path = Path("data/environment")
    filename_pattern: str = r"^(?P<variable>.+?)[_-]?(?P<year_month>\d{6})\.nc$"
    expected_layers: int = Field(default=19, gt=0, description="Files required per year-month")
    drop_layers: list[str] = Field(default_factory=list)
    start_date: date = date(2000, 1, 1)


class GbifCredentials(BaseModel):
    """Supplied out of band; only used to submit download requests."""

    user: str = ""
    password: SecretStr = SecretStr("")
    email: str = ""


class Settings(BaseSettings):
    """Application settings loaded from env vars, ``.env`` and TOML."""

    model_config = SettingsConfigDict(
        env_prefix="MARINE_SDM_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    app_name: str = "marine-sdm"
    app_env: str = "development"
    debug: bool = False
    data_dir: Path = Path("data")

    target_taxon_keys: list[int] = Field(default_factory=list)
    background_taxon_keys: list[int] | None = None
    datasets: dict[str, DatasetEntry] = Field(default_factory=dict)

    taxonomy: TaxonomySettings = Field(default_factory=TaxonomySettings)
    backbone: BackboneSettings = Field(default_factory=BackboneSettings)
    download: DownloadSettings = Field(default_factory=DownloadSettings)
    join: JoinSettings = Field(default_factory=JoinSettings)
    gbif: GbifCredentials = Field(default_factory=GbifCredentials)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        toml_file = Path(os.environ.get("MARINE_SDM_CONFIG", DEFAULT_CONFIG_FILE))
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            file_secret_settings,
        )

    def expected_variables(self, timescale: str | None = None) -> list[str]:
        """Variable keys from the dataset lookup table, optionally for one timescale."""
        return sorted(
            key
            for key, entry in self.datasets.items()
            if timescale is None or entry.timescale == timescale
        )


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings (cached)."""
    return Settings()
