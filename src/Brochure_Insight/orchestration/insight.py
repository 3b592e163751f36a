"""Sequential insight chain: market research, analysis, then copywriting.

Each stage consumes what the previous one produced and fails the whole job on
any error; there is no partial-insight fallback.
"""

from __future__ import annotations

from collections.abc import Awaitable, Mapping
from statistics import mean
from typing import Any, Protocol, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from Brochure_Insight.models import (
    AggregateRecord,
    AnalysisReport,
    MarketContext,
    MarketingContent,
    UnitMetrics,
)

from .errors import InsightStageError
from .state import WorkflowState

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class InsightProvider(Protocol):
    """External enrichment backend, typically a language model gateway."""

    async def research_market(self, record: AggregateRecord) -> MarketContext | Mapping[str, Any]: ...

    async def synthesize_analysis(
        self,
        record: AggregateRecord,
        market: MarketContext,
        metrics: UnitMetrics,
    ) -> AnalysisReport | Mapping[str, Any]: ...

    async def write_marketing(
        self,
        record: AggregateRecord,
        market: MarketContext,
        analysis: AnalysisReport,
    ) -> MarketingContent | Mapping[str, Any]: ...


def compute_unit_metrics(record: AggregateRecord) -> UnitMetrics:
    """Price and size figures derived locally from the extracted units."""
    prices = [unit.price for unit in record.units if unit.price]
    areas = [unit.area_sqft for unit in record.units if unit.area_sqft]
    per_sqft = [unit.price / unit.area_sqft for unit in record.units if unit.price and unit.area_sqft]
    return UnitMetrics(
        unit_count=len(record.units),
        min_price=min(prices) if prices else None,
        max_price=max(prices) if prices else None,
        min_area_sqft=min(areas) if areas else None,
        max_area_sqft=max(areas) if areas else None,
        avg_price_per_sqft=round(mean(per_sqft), 2) if per_sqft else None,
    )


async def _call(stage: str, job_id: str, model: type[ModelT], call: Awaitable[Any]) -> ModelT:
    try:
        raw = await call
        return raw if isinstance(raw, model) else model.model_validate(raw)
    except ValidationError as exc:
        raise InsightStageError(
            f"{stage} returned an invalid payload",
            stage=stage,
            detail=str(exc),
        ) from exc
    except InsightStageError:
        raise
    except Exception as exc:
        logger.warning("insight.stage.failed", stage=stage, job_id=job_id, error=str(exc))
        raise InsightStageError(f"{stage} failed: {exc}", stage=stage) from exc


def _require(value: ModelT | None, stage: str, what: str) -> ModelT:
    if value is None:
        raise InsightStageError(f"{stage} requires {what}", stage=stage)
    return value


class MarketResearchStage:
    name = "marketResearch"

    def __init__(self, provider: InsightProvider) -> None:
        self._provider = provider

    async def __call__(self, state: WorkflowState) -> WorkflowState:
        record = _require(state.aggregate, self.name, "an aggregate")
        context = await _call(self.name, state.job_id, MarketContext, self._provider.research_market(record))
        logger.info(
            "insight.market.complete",
            job_id=state.job_id,
            competitors=len(context.competitors),
            transit=len(context.nearby_transit),
        )
        return state.evolve(market_context=context)


class AnalysisStage:
    name = "analysis"

    def __init__(self, provider: InsightProvider) -> None:
        self._provider = provider

    async def __call__(self, state: WorkflowState) -> WorkflowState:
        record = _require(state.aggregate, self.name, "an aggregate")
        market = _require(state.market_context, self.name, "market context")
        metrics = compute_unit_metrics(record)
        report = await _call(
            self.name,
            state.job_id,
            AnalysisReport,
            self._provider.synthesize_analysis(record, market, metrics),
        )
        if report.metrics.unit_count == 0 and metrics.unit_count:
            report = report.model_copy(update={"metrics": metrics})
        return state.evolve(analysis=report)


class CopywritingStage:
    name = "copywriting"

    def __init__(self, provider: InsightProvider) -> None:
        self._provider = provider

    async def __call__(self, state: WorkflowState) -> WorkflowState:
        record = _require(state.aggregate, self.name, "an aggregate")
        market = _require(state.market_context, self.name, "market context")
        analysis = _require(state.analysis, self.name, "an analysis")
        content = await _call(
            self.name,
            state.job_id,
            MarketingContent,
            self._provider.write_marketing(record, market, analysis),
        )
        return state.evolve(marketing=content)


__all__ = [
    "AnalysisStage",
    "CopywritingStage",
    "InsightProvider",
    "MarketResearchStage",
    "compute_unit_metrics",
]
