"""Page extractor backed by the model gateway."""

from __future__ import annotations

import base64

import structlog
from pydantic import ValidationError

from Brochure_Insight.models import PageExtraction
from Brochure_Insight.orchestration.errors import PageExtractionError
from Brochure_Insight.orchestration.fanout import PageTask

from .model_client import ModelGatewayClient, ModelServiceError

logger = structlog.get_logger(__name__)

# Page categories whose rendered image is worth showing to end users.
VISUAL_CATEGORIES = frozenset({"cover", "floor_plan", "amenities", "location"})


class GatewayPageExtractor:
    """Sends a rendered page to the vision model and validates the answer."""

    task = "extract-page"

    def __init__(self, client: ModelGatewayClient, *, model: str) -> None:
        self._client = client
        self._model = model

    async def extract(self, task: PageTask) -> PageExtraction:
        page = task.page
        payload = {
            "model": self._model,
            "job_id": task.context.job_id,
            "page_index": task.page_index,
            "page_number": page.page_number,
            "total_pages": task.context.total_pages,
            "attempt": task.context.attempt,
            "image": {
                "content_type": "image/png",
                "data": base64.b64encode(page.data).decode("ascii"),
            },
        }
        try:
            body = await self._client.run_task(self.task, payload)
        except ModelServiceError as exc:
            raise PageExtractionError(str(exc), page_index=task.page_index, error_type="model") from exc
        body["pageIndex"] = task.page_index
        body.pop("page_index", None)
        try:
            extraction = PageExtraction.model_validate(body)
        except ValidationError as exc:
            raise PageExtractionError(
                f"Invalid extraction for page {page.page_number}: {exc.error_count()} errors",
                page_index=task.page_index,
                error_type="invalid_payload",
            ) from exc
        return self._attach_page_image(extraction, page.reference)

    @staticmethod
    def _attach_page_image(extraction: PageExtraction, reference: str) -> PageExtraction:
        if extraction.category not in VISUAL_CATEGORIES:
            return extraction
        updates: dict[str, object] = {"media": [*extraction.media, reference]}
        if extraction.category == "floor_plan":
            updates["units"] = [
                unit if unit.floor_plan_image else unit.model_copy(update={"floor_plan_image": reference})
                for unit in extraction.units
            ]
        return extraction.model_copy(update=updates)


__all__ = ["GatewayPageExtractor", "VISUAL_CATEGORIES"]
