"""Per-record rules applied between retrieval and persistence.

Dependency rule: curation/ imports ``schemas`` only. No I/O, no HTTP, no
Prefect decorators; every rule is a pure function that can be tested alone.

Modules:
  - taxonomy: ordered shortlist predicates + status-ranked deduplication
  - backbone: accept/penalize/tie-keep ranking of backbone candidates
  - dates: ``clean_dates`` coercion (python + polars expression)
  - search_area: polygon validation and winding normalization
  - occurrences: download predicate, seeded batch planning
"""
