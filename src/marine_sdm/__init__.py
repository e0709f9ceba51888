"""Marine SDM - acquisition-and-join pipeline for marine species distribution models.

Architecture::

    datasources/   External APIs (WoRMS taxonomy, GBIF names + downloads, gridded env files)
    services/      Shared utilities (HTTP client with retry, paged fetching)
    curation/      Per-record rules (taxonomy filters, backbone ranking, dates, predicates)
    analysis/      Cross-datasource joins (occurrences x monthly environmental stacks)
    store.py       Stage artifacts on disk (raw pages, curated tables, partitioned parquet)
    flows/         Prefect orchestration (taxonomy -> backbone -> occurrences -> join)

Data flow: worms pages -> shortlist -> backbone matches -> occurrence batches
-> joined observation table -> (external) modelling stage.
"""

__version__ = "0.1.0"
__author__ = "Michael Howden"

from marine_sdm.config import Settings

__all__ = ["Settings", "__version__"]
