"""Orchestration engine: stage graph, fan-out, quality gate and progress."""

from __future__ import annotations

from .aggregation import aggregate
from .errors import (
    AggregationError,
    ConfigurationError,
    IngestionError,
    InsightStageError,
    JobCancelledError,
    PageExtractionError,
    PipelineError,
)
from .fanout import ExtractionContext, FanOutDispatcher, PageExtractor, PageTask
from .graph import END, CompiledGraph, StageGraph, StageObserver
from .insight import InsightProvider
from .pipeline import build_extraction_graph, create_pipeline
from .progress import JobRegistry, JobStatus, ProgressChannel, ProgressEvent
from .quality import MAX_RETRIES, QualityGate, RetryController
from .runner import JobRunner
from .stages import PageRasterizer
from .state import ProcessingOptions, ProcessingStage, SourceDocument, WorkflowState

__all__ = [
    "END",
    "MAX_RETRIES",
    "AggregationError",
    "CompiledGraph",
    "ConfigurationError",
    "ExtractionContext",
    "FanOutDispatcher",
    "IngestionError",
    "InsightProvider",
    "InsightStageError",
    "JobCancelledError",
    "JobRegistry",
    "JobRunner",
    "JobStatus",
    "PageExtractionError",
    "PageExtractor",
    "PageRasterizer",
    "PageTask",
    "PipelineError",
    "ProcessingOptions",
    "ProcessingStage",
    "ProgressChannel",
    "ProgressEvent",
    "QualityGate",
    "RetryController",
    "SourceDocument",
    "StageGraph",
    "StageObserver",
    "WorkflowState",
    "aggregate",
    "build_extraction_graph",
    "create_pipeline",
]
