from __future__ import annotations

import pytest
from tenacity import wait_none

from Brochure_Insight.config.settings import (
    AppSettings,
    ObjectStorageSettings,
    PipelineSettings,
    ProgressSettings,
    get_settings,
)
from Brochure_Insight.orchestration.pipeline import create_pipeline
from Brochure_Insight.orchestration.progress import ProgressChannel
from Brochure_Insight.orchestration.runner import JobRunner
from Brochure_Insight.storage.asset_cache import AssetCache
from Brochure_Insight.storage.references import AssetReferenceResolver

from .fakes import (
    CountingObjectStore,
    FakeInsightProvider,
    FakeRasterizer,
    ScriptedExtractor,
    complete_extractions,
)

PUBLIC_BASE_URL = "https://cdn.example.com"


@pytest.fixture(autouse=True)
def _reset_settings(monkeypatch):
    monkeypatch.delenv("BI_ENV", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(
        pipeline=PipelineSettings(batch_delay_ms=0, page_timeout_seconds=5),
        object_storage=ObjectStorageSettings(public_base_url=PUBLIC_BASE_URL),
        progress=ProgressSettings(heartbeat_seconds=0.05),
    )


@pytest.fixture
def store() -> CountingObjectStore:
    return CountingObjectStore()


@pytest.fixture
def cache(store: CountingObjectStore) -> AssetCache:
    return AssetCache(store, write_wait=wait_none())


@pytest.fixture
def rasterizer() -> FakeRasterizer:
    return FakeRasterizer(pages=3)


@pytest.fixture
def extractor() -> ScriptedExtractor:
    return ScriptedExtractor(complete_extractions())


@pytest.fixture
def insight_provider() -> FakeInsightProvider:
    return FakeInsightProvider()


@pytest.fixture
def channel() -> ProgressChannel:
    return ProgressChannel()


@pytest.fixture
def build_runner(settings: AppSettings, cache: AssetCache, channel: ProgressChannel):
    """Factory wiring a :class:`JobRunner` around the given collaborators."""

    def _build(*, rasterizer, extractor, insight_provider, asset_cache: AssetCache | None = None) -> JobRunner:
        graph = create_pipeline(
            settings.pipeline,
            cache=asset_cache if asset_cache is not None else cache,
            rasterizer=rasterizer,
            extractor=extractor,
            insight_provider=insight_provider,
            channel=channel,
        )
        return JobRunner(graph, channel, AssetReferenceResolver(settings.object_storage.public_base_url))

    return _build
