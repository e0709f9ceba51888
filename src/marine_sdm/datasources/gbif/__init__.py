"""GBIF occurrence archive source.

Public API:
  - client: Low-level HTTP (rate-limited species match, download request/status/archive)
  - names: match_chunk, flatten_match (backbone name reconciliation)
  - downloads: submit, wait_for_completion, materialize, run_job
"""

from marine_sdm.datasources.gbif.client import API_BASE
from marine_sdm.datasources.gbif.downloads import (
    materialize,
    run_job,
    submit,
    wait_for_completion,
)
from marine_sdm.datasources.gbif.names import flatten_match, match_chunk

__all__ = [
    "API_BASE",
    "flatten_match",
    "match_chunk",
    "materialize",
    "run_job",
    "submit",
    "wait_for_completion",
]
