"""Insight provider backed by the model gateway."""

from __future__ import annotations

from typing import Any

from Brochure_Insight.models import (
    AggregateRecord,
    AnalysisReport,
    MarketContext,
    UnitMetrics,
)

from .model_client import ModelGatewayClient


class GatewayInsightProvider:
    """Runs the market, analysis and marketing tasks on the model gateway.

    Payload validation happens in the insight stages; this class only shapes
    requests and returns the raw JSON objects.
    """

    def __init__(self, client: ModelGatewayClient, *, model: str) -> None:
        self._client = client
        self._model = model

    async def research_market(self, record: AggregateRecord) -> dict[str, Any]:
        return await self._client.run_task(
            "market-research",
            {
                "model": self._model,
                "project": record.project.model_dump(mode="json"),
            },
        )

    async def synthesize_analysis(
        self,
        record: AggregateRecord,
        market: MarketContext,
        metrics: UnitMetrics,
    ) -> dict[str, Any]:
        body = await self._client.run_task(
            "investment-analysis",
            {
                "model": self._model,
                "project": record.project.model_dump(mode="json"),
                "payment_plans": [plan.model_dump(mode="json") for plan in record.payment_plans],
                "amenities": record.amenities,
                "market": market.model_dump(mode="json"),
                "metrics": metrics.model_dump(mode="json"),
            },
        )
        body.setdefault("metrics", metrics.model_dump(mode="json"))
        return body

    async def write_marketing(
        self,
        record: AggregateRecord,
        market: MarketContext,
        analysis: AnalysisReport,
    ) -> dict[str, Any]:
        return await self._client.run_task(
            "marketing-copy",
            {
                "model": self._model,
                "project": record.project.model_dump(mode="json"),
                "amenities": record.amenities,
                "market": market.model_dump(mode="json"),
                "analysis": analysis.model_dump(mode="json"),
            },
        )


__all__ = ["GatewayInsightProvider"]
