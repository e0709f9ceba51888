"""WoRMS (World Register of Marine Species) taxonomy source.

Public API:
  - client: Low-level HTTP (rate-limited, one page per call)
  - records: fetch_registry, parse_records
"""

from marine_sdm.datasources.worms.client import API_BASE, MAX_PAGE_SIZE
from marine_sdm.datasources.worms.records import fetch_registry, parse_records

__all__ = [
    "API_BASE",
    "MAX_PAGE_SIZE",
    "fetch_registry",
    "parse_records",
]
