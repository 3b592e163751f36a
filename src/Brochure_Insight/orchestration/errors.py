"""Exception hierarchy raised by the extraction pipeline."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from Brochure_Insight.utils.errors import FoundationError


class PipelineError(FoundationError):
    """Base class for pipeline failures carrying a problem detail."""

    problem_type = "pipeline-error"

    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        status: int = 500,
        detail: str | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> None:
        payload = dict(extra or {})
        if stage:
            payload.setdefault("stage", stage)
        super().__init__(
            message,
            status=status,
            detail=detail,
            extra=payload,
        )
        self.stage = stage


class ConfigurationError(PipelineError):
    """Graph wiring is invalid; raised before any job runs or mutates state."""

    problem_type = "configuration"


class PageExtractionError(PipelineError):
    """A single page could not be extracted. Recorded in the page slot."""

    problem_type = "page-extraction"

    def __init__(self, message: str, *, page_index: int, error_type: str = "extraction") -> None:
        super().__init__(message, stage="mapping", extra={"page_index": page_index})
        self.page_index = page_index
        self.kind = error_type


class IngestionError(PipelineError):
    problem_type = "ingestion"


class AggregationError(PipelineError):
    problem_type = "aggregation"


class InsightStageError(PipelineError):
    problem_type = "insight"


class JobCancelledError(PipelineError):
    problem_type = "cancelled"

    def __init__(self, job_id: str, *, stage: str | None = None) -> None:
        super().__init__("Job cancelled", stage=stage, status=409, extra={"job_id": job_id})
        self.job_id = job_id


__all__ = [
    "AggregationError",
    "ConfigurationError",
    "IngestionError",
    "InsightStageError",
    "JobCancelledError",
    "PageExtractionError",
    "PipelineError",
]
