"""Workflow state threaded through the stage graph.

Every stage receives a :class:`WorkflowState` and returns a new one. The
dataclasses are frozen: a stage builds its output with :meth:`WorkflowState.evolve`
and the executor swaps the whole value in once the stage succeeds, so no
partially updated state is ever observable.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from Brochure_Insight.config.settings import PipelineSettings
from Brochure_Insight.models import (
    AggregateRecord,
    AnalysisReport,
    MarketContext,
    MarketingContent,
    PageError,
    PageSlot,
    QualityReport,
)
from Brochure_Insight.storage.asset_cache import compute_document_hash


class ProcessingStage(str, Enum):
    """Coarse lifecycle position of a workflow."""

    INGESTION = "ingestion"
    MAPPING = "mapping"
    QUALITY_CHECK = "qualityCheck"
    RETRYING = "retrying"
    INSIGHT = "insight"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_STAGES = frozenset({ProcessingStage.COMPLETE, ProcessingStage.ERROR})


@dataclass(frozen=True, slots=True)
class ProcessingOptions:
    """Per-job tuning supplied at submission."""

    pages_per_chunk: int = 5
    batch_size: int = 10
    batch_delay_ms: int = 1000

    def __post_init__(self) -> None:
        if self.pages_per_chunk < 1:
            raise ValueError("pages_per_chunk must be at least 1")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.batch_delay_ms < 0:
            raise ValueError("batch_delay_ms must not be negative")

    @classmethod
    def from_settings(cls, settings: PipelineSettings, **overrides: Any) -> ProcessingOptions:
        values = {
            "pages_per_chunk": settings.pages_per_chunk,
            "batch_size": settings.batch_size,
            "batch_delay_ms": settings.batch_delay_ms,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


@dataclass(frozen=True, slots=True)
class SourceDocument:
    name: str
    data: bytes = field(repr=False)
    document_hash: str

    @classmethod
    def from_bytes(cls, name: str, data: bytes) -> SourceDocument:
        return cls(name=name, data=data, document_hash=compute_document_hash(data))


@dataclass(frozen=True, slots=True)
class PageImage:
    """A rendered page. ``index`` is the global slot index across documents."""

    index: int
    document_index: int
    page_number: int
    chunk_index: int
    document_hash: str
    asset_name: str
    reference: str
    data: bytes = field(repr=False)


@dataclass(frozen=True, slots=True)
class WorkflowState:
    """Immutable snapshot of one job between stages."""

    job_id: str
    source_documents: tuple[SourceDocument, ...]
    options: ProcessingOptions = field(default_factory=ProcessingOptions)
    page_images: tuple[PageImage, ...] = ()
    per_page_results: tuple[PageSlot, ...] = ()
    aggregate: AggregateRecord | None = None
    quality: QualityReport | None = None
    market_context: MarketContext | None = None
    analysis: AnalysisReport | None = None
    marketing: MarketingContent | None = None
    processing_stage: ProcessingStage = ProcessingStage.INGESTION
    retry_count: int = 0
    warnings: tuple[str, ...] = ()
    error: str | None = None
    started_at: float = field(default_factory=time.monotonic)

    def __post_init__(self) -> None:
        if self.retry_count < 0:
            raise ValueError("retry_count must not be negative")

    def evolve(self, **changes: Any) -> WorkflowState:
        """Return a copy with ``changes`` applied."""
        return replace(self, **changes)

    def fail(self, message: str) -> WorkflowState:
        return self.evolve(processing_stage=ProcessingStage.ERROR, error=message)

    def with_warning(self, message: str) -> WorkflowState:
        return self.evolve(warnings=(*self.warnings, message))

    @property
    def is_terminal(self) -> bool:
        return self.processing_stage in TERMINAL_STAGES

    @property
    def page_count(self) -> int:
        return len(self.page_images)

    @property
    def failed_pages(self) -> list[int]:
        return [slot.page_index for slot in self.per_page_results if isinstance(slot, PageError)]

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.started_at


__all__ = [
    "PageImage",
    "ProcessingOptions",
    "ProcessingStage",
    "SourceDocument",
    "TERMINAL_STAGES",
    "WorkflowState",
]
