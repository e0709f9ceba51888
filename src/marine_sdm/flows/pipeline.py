"""
Prefect flow running every stage in order.

taxonomy -> backbone -> occurrences -> join -> (optional) modelling stage.

A stage whose report carries failures stops the pipeline: later stages would
otherwise run on an incomplete artifact. Fix the failing partition with a
targeted rerun of that stage, then run the remaining stages.

Run locally:
    python -m marine_sdm.flows.pipeline
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import polars as pl
from prefect import flow

from marine_sdm.analysis.join import JoinReport
from marine_sdm.curation.backbone import MatchReport
from marine_sdm.datasources.gbif.downloads import DownloadReport
from marine_sdm.flows import backbone, join, occurrences, taxonomy
from marine_sdm.flows.taxonomy import TaxonomyReport
from marine_sdm.store import JOINED_PATH


@runtime_checkable
class ModelingStage(Protocol):
    """External consumer of the joined observation table."""

    def fit_predict(self, observations: pl.DataFrame) -> Any: ...


@dataclass
class PipelineResult:
    """Per-stage reports; a stage that did not run is None."""

    taxonomy: TaxonomyReport | None = None
    backbone: MatchReport | None = None
    occurrences: DownloadReport | None = None
    join: JoinReport | None = None
    model_output: Any = None

    @property
    def ok(self) -> bool:
        reports = (self.taxonomy, self.backbone, self.occurrences, self.join)
        return all(report is not None and report.ok for report in reports)


@flow(name="pipeline", log_prints=True)
def pipeline_flow(
    resume: bool = False,
    model: ModelingStage | None = None,
) -> PipelineResult:
    """Run taxonomy, backbone, occurrences and join, stopping at the first failed stage."""
    result = PipelineResult()

    result.taxonomy = taxonomy.taxonomy_flow(resume=resume)
    if not result.taxonomy.ok:
        print("Taxonomy stage failed; stopping.")
        return result

    result.backbone = backbone.backbone_flow()
    if not result.backbone.ok:
        print("Backbone stage had failed chunks; stopping.")
        return result

    result.occurrences = occurrences.occurrences_flow()
    if not result.occurrences.ok:
        print("Occurrence stage had failed batches; stopping.")
        return result

    result.join = join.join_flow()

    if model is not None:
        observations = join.store.read_table(JOINED_PATH)
        if observations is not None:
            print(f"Handing {observations.height} observations to the modelling stage...")
            result.model_output = model.fit_predict(observations)
    return result


if __name__ == "__main__":
    outcome = pipeline_flow()
    print(f"Flow complete: ok={outcome.ok}")
