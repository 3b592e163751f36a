"""Extraction stages: ingestion, mapping, aggregation and the quality check."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol

import orjson
import structlog

from Brochure_Insight.models import AggregateRecord, PageSlot
from Brochure_Insight.storage.asset_cache import AssetCache, AssetReference, short_hash
from Brochure_Insight.storage.base import StorageError

from .aggregation import aggregate
from .errors import AggregationError, IngestionError
from .fanout import ExtractionContext, FanOutDispatcher
from .quality import RetryController
from .state import PageImage, ProcessingStage, SourceDocument, WorkflowState

logger = structlog.get_logger(__name__)

MANIFEST_NAME = "manifest.json"

STAGE_PROGRESS: Mapping[str, tuple[int, int]] = {
    "ingestion": (5, 15),
    "mapping": (15, 70),
    "aggregation": (70, 75),
    "qualityCheck": (75, 80),
    "marketResearch": (80, 88),
    "analysis": (88, 94),
    "copywriting": (94, 99),
}


def page_asset_name(page_number: int) -> str:
    return f"page_{page_number}.png"


def interpolate(stage: str, done: int, total: int) -> int:
    start, end = STAGE_PROGRESS[stage]
    if total <= 0:
        return start
    return start + round((end - start) * min(done, total) / total)


class ProgressReporter(Protocol):
    def emit(
        self,
        job_id: str,
        stage: str,
        message: str,
        progress: int,
        payload: Mapping[str, Any] | None = None,
    ) -> Any: ...


class PageRasterizer(Protocol):
    """Renders document pages to PNG bytes."""

    async def page_count(self, data: bytes) -> int: ...

    async def render(self, data: bytes, start: int, stop: int) -> list[bytes]:
        """Render pages ``start`` (inclusive) to ``stop`` (exclusive), zero based."""
        ...


class IngestionStage:
    """Derives page images through the content-addressed asset cache.

    A fully cached document (its manifest and every page present) is loaded
    from storage without touching the rasterizer. Storage failures degrade to
    ``local://`` references so the job keeps running with a warning.
    """

    name = "ingestion"

    def __init__(
        self,
        cache: AssetCache,
        rasterizer: PageRasterizer,
        *,
        reporter: ProgressReporter | None = None,
    ) -> None:
        self._cache = cache
        self._rasterizer = rasterizer
        self._reporter = reporter

    async def __call__(self, state: WorkflowState) -> WorkflowState:
        pages: list[PageImage] = []
        warnings: list[str] = []
        for document_index, document in enumerate(state.source_documents):
            document_pages = await self._ingest(state, document, document_index, len(pages), warnings)
            pages.extend(document_pages)
        if not pages:
            raise IngestionError("Submitted documents contain no pages", stage=self.name)
        logger.info(
            "ingestion.complete",
            job_id=state.job_id,
            documents=len(state.source_documents),
            pages=len(pages),
        )
        return state.evolve(
            page_images=tuple(pages),
            processing_stage=ProcessingStage.MAPPING,
            warnings=(*state.warnings, *warnings),
        )

    async def _ingest(
        self,
        state: WorkflowState,
        document: SourceDocument,
        document_index: int,
        offset: int,
        warnings: list[str],
    ) -> list[PageImage]:
        chunk_size = state.options.pages_per_chunk
        cached = await self._lookup(document, warnings)
        if cached is not None:
            pages = await self._load_cached(document, document_index, offset, chunk_size, cached)
            if pages is not None:
                logger.info(
                    "ingestion.cache.reused",
                    job_id=state.job_id,
                    document=short_hash(document.document_hash),
                    pages=len(pages),
                )
                return pages

        try:
            count = await self._rasterizer.page_count(document.data)
        except Exception as exc:
            raise IngestionError(f"Could not read '{document.name}': {exc}", stage=self.name) from exc

        pages: list[PageImage] = []
        stored_all = True
        for chunk_index, start in enumerate(range(0, count, chunk_size)):
            stop = min(start + chunk_size, count)
            images = await self._rasterizer.render(document.data, start, stop)
            if len(images) != stop - start:
                raise IngestionError(
                    f"Rasterizer returned {len(images)} images for pages {start + 1}-{stop}",
                    stage=self.name,
                )
            for position, data in enumerate(images):
                page_number = start + position + 1
                name = page_asset_name(page_number)
                reference = await self._store(state.job_id, document, name, data, warnings)
                stored_all = stored_all and not reference.startswith("local://")
                pages.append(
                    PageImage(
                        index=offset + len(pages),
                        document_index=document_index,
                        page_number=page_number,
                        chunk_index=chunk_index,
                        document_hash=document.document_hash,
                        asset_name=name,
                        reference=reference,
                        data=data,
                    )
                )
            if self._reporter is not None:
                self._reporter.emit(
                    state.job_id,
                    self.name,
                    f"Rendered pages {start + 1}-{stop} of {document.name}",
                    interpolate(self.name, stop, count),
                )
        if stored_all and count:
            manifest = orjson.dumps({"page_count": count, "document": document.name})
            await self._store(state.job_id, document, MANIFEST_NAME, manifest, warnings, "application/json")
        return pages

    async def _lookup(self, document: SourceDocument, warnings: list[str]) -> dict[str, AssetReference] | None:
        try:
            return await self._cache.check_cache(document.document_hash)
        except StorageError as exc:
            warnings.append(f"Asset cache unavailable for {document.name}: {exc}")
            logger.warning("ingestion.cache.unavailable", document=short_hash(document.document_hash), error=str(exc))
            return None

    async def _load_cached(
        self,
        document: SourceDocument,
        document_index: int,
        offset: int,
        chunk_size: int,
        cached: dict[str, AssetReference],
    ) -> list[PageImage] | None:
        manifest_ref = cached.get(MANIFEST_NAME)
        if manifest_ref is None:
            return None
        try:
            manifest = orjson.loads(await self._cache.read(manifest_ref))
            count = int(manifest["page_count"])
            pages: list[PageImage] = []
            for page_number in range(1, count + 1):
                reference = cached.get(page_asset_name(page_number))
                if reference is None:
                    return None
                pages.append(
                    PageImage(
                        index=offset + page_number - 1,
                        document_index=document_index,
                        page_number=page_number,
                        chunk_index=(page_number - 1) // chunk_size,
                        document_hash=document.document_hash,
                        asset_name=reference.name,
                        reference=reference.key,
                        data=await self._cache.read(reference),
                    )
                )
        except (StorageError, KeyError, ValueError, orjson.JSONDecodeError) as exc:
            logger.warning(
                "ingestion.cache.unreadable",
                document=short_hash(document.document_hash),
                error=str(exc),
            )
            return None
        return pages

    async def _store(
        self,
        job_id: str,
        document: SourceDocument,
        name: str,
        data: bytes,
        warnings: list[str],
        content_type: str = "image/png",
    ) -> str:
        try:
            reference = await self._cache.put_if_absent(
                document.document_hash, name, data, content_type=content_type
            )
        except StorageError as exc:
            warnings.append(f"Could not cache {name} of {document.name}: {exc}")
            logger.warning(
                "ingestion.cache.write_failed",
                job_id=job_id,
                document=short_hash(document.document_hash),
                asset=name,
                error=str(exc),
            )
            return f"local://{job_id}/{short_hash(document.document_hash)}/{name}"
        return reference.key


class MappingStage:
    """Fans out one extraction task per page and waits for all of them."""

    name = "mapping"

    def __init__(
        self,
        dispatcher: FanOutDispatcher,
        *,
        reporter: ProgressReporter | None = None,
        cancellation: Callable[[str], asyncio.Event | None] | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._reporter = reporter
        self._cancellation = cancellation

    async def __call__(self, state: WorkflowState) -> WorkflowState:
        context = ExtractionContext(job_id=state.job_id, pages=state.page_images, attempt=state.retry_count + 1)
        tasks = self._dispatcher.plan(context)
        logger.info(
            "mapping.dispatch",
            job_id=state.job_id,
            tasks=len(tasks),
            attempt=context.attempt,
            batch_size=state.options.batch_size,
        )

        def on_resolved(slot: PageSlot, resolved: int, total: int) -> None:
            if self._reporter is None:
                return
            self._reporter.emit(
                state.job_id,
                self.name,
                f"Extracted page {slot.page_index + 1}/{total}",
                interpolate(self.name, resolved, total),
                {"current_page": resolved, "total_pages": total, "attempt": context.attempt},
            )

        slots = await self._dispatcher.dispatch(
            tasks,
            batch_size=state.options.batch_size,
            batch_delay_seconds=state.options.batch_delay_ms / 1000,
            cancel_event=self._cancellation(state.job_id) if self._cancellation else None,
            on_resolved=on_resolved,
        )
        if len(slots) != state.page_count:
            raise AggregationError(
                f"Dispatched {state.page_count} pages but joined {len(slots)} slots",
                stage=self.name,
            )
        return state.evolve(per_page_results=slots, processing_stage=ProcessingStage.MAPPING)


class AggregationStage:
    name = "aggregation"

    def __init__(
        self,
        aggregate_fn: Callable[..., AggregateRecord] = aggregate,
    ) -> None:
        self._aggregate = aggregate_fn

    async def __call__(self, state: WorkflowState) -> WorkflowState:
        slots: Sequence[PageSlot] = state.per_page_results
        record = self._aggregate(slots, page_count=state.page_count)
        return state.evolve(aggregate=record, processing_stage=ProcessingStage.QUALITY_CHECK)


class QualityCheckStage:
    name = "qualityCheck"

    def __init__(self, controller: RetryController) -> None:
        self.controller = controller

    async def __call__(self, state: WorkflowState) -> WorkflowState:
        return self.controller.apply(state)


__all__ = [
    "AggregationStage",
    "IngestionStage",
    "MANIFEST_NAME",
    "MappingStage",
    "PageRasterizer",
    "ProgressReporter",
    "QualityCheckStage",
    "STAGE_PROGRESS",
    "interpolate",
    "page_asset_name",
]
