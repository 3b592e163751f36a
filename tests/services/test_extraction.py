from __future__ import annotations

import base64
from typing import Any

import pytest

from Brochure_Insight.models import AggregateRecord, AnalysisReport, MarketContext, UnitMetrics
from Brochure_Insight.orchestration.errors import PageExtractionError
from Brochure_Insight.orchestration.fanout import ExtractionContext, PageTask
from Brochure_Insight.orchestration.state import PageImage
from Brochure_Insight.services.extraction import GatewayPageExtractor
from Brochure_Insight.services.insight import GatewayInsightProvider
from Brochure_Insight.services.model_client import ModelServiceError

REFERENCE = "pdf-cache/abc/images/page_2.png"


class StubClient:
    def __init__(self, response: dict[str, Any] | Exception) -> None:
        self.response = response
        self.requests: list[tuple[str, dict[str, Any]]] = []

    async def run_task(self, task: str, payload: dict[str, Any]) -> dict[str, Any]:
        self.requests.append((task, payload))
        if isinstance(self.response, Exception):
            raise self.response
        return dict(self.response)


def _task(page_index: int = 1) -> PageTask:
    pages = tuple(
        PageImage(
            index=index,
            document_index=0,
            page_number=index + 1,
            chunk_index=0,
            document_hash="abc",
            asset_name=f"page_{index + 1}.png",
            reference=f"pdf-cache/abc/images/page_{index + 1}.png",
            data=b"png-bytes",
        )
        for index in range(2)
    )
    return PageTask(page_index=page_index, context=ExtractionContext(job_id="job-1", pages=pages, attempt=2))


@pytest.mark.asyncio
async def test_floor_plan_page_links_rendered_image() -> None:
    client = StubClient(
        {
            "category": "floor_plan",
            "confidence": 0.8,
            "pageIndex": 7,
            "units": [
                {"unitType": "1BR", "areaSqft": 750},
                {"unitType": "2BR", "floorPlanImage": "https://cdn.example.com/custom.png"},
            ],
        }
    )
    extractor = GatewayPageExtractor(client, model="vision-extractor")

    extraction = await extractor.extract(_task())

    assert extraction.page_index == 1
    assert extraction.media == [REFERENCE]
    assert extraction.units[0].floor_plan_image == REFERENCE
    assert extraction.units[1].floor_plan_image == "https://cdn.example.com/custom.png"
    task, payload = client.requests[0]
    assert task == "extract-page"
    assert payload["attempt"] == 2
    assert payload["page_number"] == 2
    assert base64.b64decode(payload["image"]["data"]) == b"png-bytes"


@pytest.mark.asyncio
async def test_text_pages_do_not_attach_media() -> None:
    extractor = GatewayPageExtractor(StubClient({"category": "payment_plan"}), model="vision-extractor")

    extraction = await extractor.extract(_task())

    assert extraction.media == []


@pytest.mark.asyncio
async def test_invalid_payload_raises_page_error() -> None:
    extractor = GatewayPageExtractor(StubClient({"category": "brochure-cover"}), model="vision-extractor")

    with pytest.raises(PageExtractionError) as excinfo:
        await extractor.extract(_task())

    assert excinfo.value.kind == "invalid_payload"
    assert excinfo.value.page_index == 1


@pytest.mark.asyncio
async def test_model_failure_raises_page_error() -> None:
    failure = ModelServiceError("Model task 'extract-page' failed with status 503", task="extract-page", status_code=503)
    extractor = GatewayPageExtractor(StubClient(failure), model="vision-extractor")

    with pytest.raises(PageExtractionError) as excinfo:
        await extractor.extract(_task(0))

    assert excinfo.value.kind == "model"


@pytest.mark.asyncio
async def test_insight_provider_routes_each_stage_to_its_task() -> None:
    client = StubClient({"summary": "ok", "headline": "Hi", "description": "Desc"})
    provider = GatewayInsightProvider(client, model="insight-writer")
    record = AggregateRecord()
    market = MarketContext()
    metrics = UnitMetrics(unit_count=2)

    await provider.research_market(record)
    analysis = await provider.synthesize_analysis(record, market, metrics)
    await provider.write_marketing(record, market, AnalysisReport(summary="ok"))

    assert [task for task, _ in client.requests] == ["market-research", "investment-analysis", "marketing-copy"]
    assert analysis["metrics"]["unit_count"] == 2
    assert all(payload["model"] == "insight-writer" for _, payload in client.requests)
