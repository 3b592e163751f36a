"""Wiring of the brochure extraction graph.

::

    ingestion -> mapping -> aggregation -> qualityCheck
                    ^                          |
                    +------- retry ------------+
                                               | advance
                                               v
                 marketResearch -> analysis -> copywriting -> END
"""

from __future__ import annotations

from collections.abc import Callable

from Brochure_Insight.config.settings import PipelineSettings
from Brochure_Insight.storage.asset_cache import AssetCache

from .aggregation import aggregate
from .fanout import FanOutDispatcher, PageExtractor
from .graph import END, CompiledGraph, StageFn, StageGraph
from .insight import AnalysisStage, CopywritingStage, InsightProvider, MarketResearchStage
from .progress import ProgressChannel
from .quality import ADVANCE_TARGET, RETRY_TARGET, QualityGate, RetryController
from .stages import AggregationStage, IngestionStage, MappingStage, PageRasterizer, QualityCheckStage

GRAPH_NAME = "brochure-extraction"


def build_extraction_graph(
    *,
    ingestion: StageFn,
    mapping: StageFn,
    aggregation: StageFn,
    quality_check: StageFn,
    market_research: StageFn,
    analysis: StageFn,
    copywriting: StageFn,
    route_quality: Callable[..., str] = RetryController.route,
    max_transitions: int = 64,
) -> CompiledGraph:
    """Register the extraction stages and their transitions.

    Raises:
        ConfigurationError: If the wiring is invalid.
    """
    graph = StageGraph(GRAPH_NAME)
    graph.register_stage("ingestion", ingestion)
    graph.register_stage("mapping", mapping)
    graph.register_stage("aggregation", aggregation)
    graph.register_stage("qualityCheck", quality_check)
    graph.register_stage("marketResearch", market_research)
    graph.register_stage("analysis", analysis)
    graph.register_stage("copywriting", copywriting)

    graph.set_entry_point("ingestion")
    graph.register_edge("ingestion", "mapping")
    graph.register_edge("mapping", "aggregation")
    graph.register_edge("aggregation", "qualityCheck")
    graph.register_conditional_edge("qualityCheck", route_quality, [RETRY_TARGET, ADVANCE_TARGET])
    graph.register_edge("marketResearch", "analysis")
    graph.register_edge("analysis", "copywriting")
    graph.register_edge("copywriting", END)
    return graph.compile(max_transitions=max_transitions)


def create_pipeline(
    settings: PipelineSettings,
    *,
    cache: AssetCache,
    rasterizer: PageRasterizer,
    extractor: PageExtractor,
    insight_provider: InsightProvider,
    channel: ProgressChannel,
) -> CompiledGraph:
    """Build the production graph from settings and collaborators."""
    dispatcher = FanOutDispatcher(extractor, page_timeout_seconds=settings.page_timeout_seconds)
    controller = RetryController(
        QualityGate(
            threshold=settings.quality_threshold,
            max_failed_page_ratio=settings.max_failed_page_ratio,
        ),
        max_retries=settings.max_retries,
    )
    return build_extraction_graph(
        ingestion=IngestionStage(cache, rasterizer, reporter=channel),
        mapping=MappingStage(dispatcher, reporter=channel, cancellation=channel.cancellation),
        aggregation=AggregationStage(aggregate),
        quality_check=QualityCheckStage(controller),
        market_research=MarketResearchStage(insight_provider),
        analysis=AnalysisStage(insight_provider),
        copywriting=CopywritingStage(insight_provider),
        max_transitions=settings.max_transitions,
    )


__all__ = ["GRAPH_NAME", "build_extraction_graph", "create_pipeline"]
