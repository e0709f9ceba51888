"""Tests for the backbone flow."""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import Mock, patch

import pytest
import requests

from marine_sdm.config import Settings
from marine_sdm.curation.taxonomy import shortlist_frame
from marine_sdm.errors import ArtifactMissingError
from marine_sdm.flows import backbone
from marine_sdm.schemas import TaxonRecord
from marine_sdm.store import MATCHES_PATH, SHORTLIST_PATH, TAXON_KEYS_PATH, DataStore

SPECIES_MATCH = "marine_sdm.datasources.gbif.client.get_species_match"


@pytest.fixture
def store(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> DataStore:
    data = DataStore(tmp_path)
    monkeypatch.setattr(backbone, "store", data)
    settings = Settings(backbone={"chunk_size": 2})
    monkeypatch.setattr(backbone, "get_settings", lambda: settings)
    return data


def write_shortlist(store: DataStore, names: list[str]) -> None:
    records = [
        TaxonRecord(
            external_id=i + 1,
            scientific_name=name,
            authority="L.",
            valid_external_id=i + 1,
        )
        for i, name in enumerate(names)
    ]
    store.write_table(SHORTLIST_PATH, shortlist_frame(records), source="test")


def species_match(name: str, **_kwargs: Any) -> dict[str, Any]:
    """One exact species match per name, keyed by the name's trailing digit."""
    if name.startswith("Nomatch"):
        return {"matchType": "NONE", "confidence": 100}
    key = 1000 + int(name.split()[0][-1])
    return {
        "usageKey": key,
        "scientificName": name,
        "matchType": "EXACT",
        "status": "ACCEPTED",
        "rank": "SPECIES",
        "confidence": 98,
    }


class TestLoadQueryNames:
    """Test building query strings from the shortlist."""

    def test_requires_shortlist(self, store: DataStore) -> None:
        with pytest.raises(ArtifactMissingError, match="taxonomy"):
            backbone.load_query_names()

    def test_name_plus_authority(self, store: DataStore) -> None:
        write_shortlist(store, ["Gadus1 morhua"])
        assert backbone.load_query_names() == ["Gadus1 morhua L."]


class TestBackboneFlow:
    """Test the whole stage."""

    @patch(SPECIES_MATCH)
    def test_matches_and_universe_written(self, mock_match: Mock, store: DataStore) -> None:
        mock_match.side_effect = species_match
        write_shortlist(store, ["Sp1 a", "Sp2 b", "Nomatch c", "Sp1 d", "Sp4 e"])

        report = backbone.backbone_flow()

        assert report.ok
        assert [m.query_index for m in report.matches] == [0, 1, 3, 4]
        assert report.unmatched_indices == [2]
        assert store.read(TAXON_KEYS_PATH) == [1001, 1002, 1004]
        matches = store.read_table(MATCHES_PATH)
        assert matches is not None
        assert matches["query_index"].to_list() == [0, 1, 3, 4]

    @patch(SPECIES_MATCH)
    def test_failed_chunk_reported(self, mock_match: Mock, store: DataStore) -> None:
        def flaky(name: str, **kwargs: Any) -> dict[str, Any]:
            if name.startswith("Sp3"):
                raise requests.HTTPError("502")
            return species_match(name, **kwargs)

        mock_match.side_effect = flaky
        write_shortlist(store, ["Sp1 a", "Sp2 b", "Sp3 c", "Sp4 d"])

        report = backbone.backbone_flow()

        assert not report.ok
        assert [(f.chunk_start, f.size) for f in report.failures] == [(2, 2)]
        assert [m.query_index for m in report.matches] == [0, 1]
        envelope = store.read_raw(TAXON_KEYS_PATH)
        assert envelope is not None
        assert envelope["meta"]["complete"] is False
