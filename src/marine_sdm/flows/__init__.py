"""
Prefect flows for the acquisition-and-join pipeline.

Flows:
- taxonomy: Page through the WoRMS register and curate the species shortlist
- backbone: Reconcile shortlist names against the GBIF backbone
- occurrences: Batched asynchronous GBIF occurrence downloads
- join: Label occurrences and join them to monthly environmental layers
- pipeline: All four in order, with an optional modelling hand-off

Usage (local):
    python -m marine_sdm.flows.pipeline
    marine-sdm run

Usage (Prefect):
    prefect server start  # Optional, for dashboard
    python -m marine_sdm.flows.pipeline
"""
