"""Cross-datasource joins.

Each module combines the outputs of 2+ stages into the table the modelling
stage consumes. This is the domain logic layer.

Dependency rule: analysis/ reads datasources/ loaders and curation/ rules.
It never calls a remote API and never writes to the store; flows do that.

Modules:
  - join: occurrence dataset + monthly environmental stacks -> joined observations
"""

from marine_sdm.analysis.join import JoinReport, join_environment

__all__ = ["JoinReport", "join_environment"]
