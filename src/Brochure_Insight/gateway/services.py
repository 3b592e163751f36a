"""Gateway service layer composing the pipeline for HTTP handlers."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

import structlog
from fastapi import Request

from Brochure_Insight.config.settings import AppSettings
from Brochure_Insight.orchestration.fanout import PageExtractor
from Brochure_Insight.orchestration.insight import InsightProvider
from Brochure_Insight.orchestration.pipeline import create_pipeline
from Brochure_Insight.orchestration.progress import ProgressChannel, Subscription
from Brochure_Insight.orchestration.runner import JobRunner
from Brochure_Insight.orchestration.stages import PageRasterizer
from Brochure_Insight.orchestration.state import ProcessingOptions
from Brochure_Insight.services import (
    GatewayInsightProvider,
    GatewayPageExtractor,
    ModelGatewayClient,
    PyMuPDFRasterizer,
)
from Brochure_Insight.storage import AssetCache, AssetReferenceResolver, ObjectStore, create_object_store

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class IntakeService:
    """Facade used by the REST and SSE routes."""

    settings: AppSettings
    channel: ProgressChannel
    runner: JobRunner
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    def submit(
        self,
        documents: Sequence[tuple[str, bytes]],
        *,
        pages_per_chunk: int | None = None,
        batch_size: int | None = None,
        batch_delay_ms: int | None = None,
    ) -> str:
        options = ProcessingOptions.from_settings(
            self.settings.pipeline,
            pages_per_chunk=pages_per_chunk,
            batch_size=batch_size,
            batch_delay_ms=batch_delay_ms,
        )
        return self.runner.submit(documents, options)

    def is_active(self, job_id: str) -> bool:
        return self.channel.is_active(job_id)

    def cancel(self, job_id: str) -> bool:
        return self.channel.cancel(job_id)

    def open_stream(self, job_id: str) -> Subscription | None:
        return self.channel.open_subscription(job_id)

    def close_stream(self, subscription: Subscription) -> None:
        self.channel.release(subscription)

    async def aclose(self) -> None:
        await self.runner.shutdown()
        for closer in self.closers:
            await closer()


def build_intake_service(
    settings: AppSettings,
    *,
    store: ObjectStore | None = None,
    rasterizer: PageRasterizer | None = None,
    extractor: PageExtractor | None = None,
    insight_provider: InsightProvider | None = None,
) -> IntakeService:
    """Assemble the pipeline from settings, using injected collaborators when given."""
    channel = ProgressChannel(replay_last_event=settings.progress.replay_last_event)
    storage = settings.object_storage
    cache = AssetCache(
        store or create_object_store(storage),
        key_prefix=storage.key_prefix,
        write_attempts=storage.write_attempts,
    )
    closers: list[Callable[[], Awaitable[None]]] = []
    if extractor is None or insight_provider is None:
        client = ModelGatewayClient.from_settings(settings.model_service)
        closers.append(client.aclose)
        if extractor is None:
            extractor = GatewayPageExtractor(client, model=settings.model_service.extraction_model)
        if insight_provider is None:
            insight_provider = GatewayInsightProvider(client, model=settings.model_service.insight_model)
    graph = create_pipeline(
        settings.pipeline,
        cache=cache,
        rasterizer=rasterizer or PyMuPDFRasterizer(),
        extractor=extractor,
        insight_provider=insight_provider,
        channel=channel,
    )
    runner = JobRunner(graph, channel, AssetReferenceResolver(storage.public_base_url))
    if not storage.public_base_url:
        logger.warning("gateway.storage.public_url_missing", hint="asset references will be empty")
    return IntakeService(settings=settings, channel=channel, runner=runner, closers=closers)


def get_intake_service(request: Request) -> IntakeService:
    """FastAPI dependency returning the service bound to the application."""
    return request.app.state.intake_service


__all__ = ["IntakeService", "build_intake_service", "get_intake_service"]
