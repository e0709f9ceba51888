"""Pipeline exceptions.

Every error that stops a partition carries enough identity (page offset,
chunk start, batch index, year-month) to rerun just that partition.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline failures."""


class PageFetchError(PipelineError):
    """A page failed twice in a row; the paged fetch is aborted."""

    def __init__(self, offset: int, cause: BaseException | None = None) -> None:
        self.offset = offset
        self.cause = cause
        super().__init__(f"Page at offset {offset} failed after retry: {cause}")


class ChunkMatchError(PipelineError):
    """A name-reconciliation chunk could not be fetched."""

    def __init__(self, chunk_start: int, cause: BaseException | None = None) -> None:
        self.chunk_start = chunk_start
        self.cause = cause
        super().__init__(f"Name chunk starting at {chunk_start} failed: {cause}")


class SearchAreaError(PipelineError):
    """The search polygon is unclosed, self-intersecting or wrongly wound."""


class DownloadJobError(PipelineError):
    """An occurrence download job ended FAILED, timed out or could not be retrieved."""

    def __init__(self, batch_index: int, message: str) -> None:
        self.batch_index = batch_index
        super().__init__(f"Batch {batch_index}: {message}")


class LayerCountError(PipelineError):
    """A year-month does not have exactly the expected number of layers."""

    def __init__(self, year_month: str, expected: int, found: int) -> None:
        self.year_month = year_month
        self.expected = expected
        self.found = found
        super().__init__(
            f"Year-month {year_month}: expected {expected} environmental layers, found {found}"
        )


class LayerReadError(PipelineError):
    """An environmental file of one year-month could not be opened or read."""

    def __init__(self, year_month: str, path: object, cause: BaseException) -> None:
        self.year_month = year_month
        self.path = path
        self.cause = cause
        super().__init__(f"Year-month {year_month}: cannot read {path}: {cause}")


class ArtifactMissingError(PipelineError):
    """A stage's input artifact has not been written yet."""

    def __init__(self, stage: str, path: object) -> None:
        self.stage = stage
        super().__init__(f"No {stage} artifact at {path}; run the {stage} stage first")
