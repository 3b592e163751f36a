"""Background job execution for submitted documents.

Key Responsibilities:
    - Register a job with the progress channel and return its identifier
      before any processing happens
    - Run the compiled graph in a background task, translating stage
      entry/exit into progress events
    - Emit exactly one terminal event: ``complete`` with the resolved final
      payload, or ``error`` with the failure message

Collaborators:
    - Upstream: The gateway's job routes
    - Downstream: :class:`CompiledGraph`, :class:`ProgressChannel`,
      :class:`AssetReferenceResolver`

Side Effects:
    - Spawns one ``asyncio`` task per job
    - Binds the job identifier as the logging correlation identifier
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Sequence
from typing import Any

import structlog

from Brochure_Insight.storage.references import AssetReferenceResolver
from Brochure_Insight.utils.logging import bind_correlation_id, reset_correlation_id

from .graph import CompiledGraph
from .progress import ProgressChannel
from .stages import STAGE_PROGRESS
from .state import ProcessingOptions, ProcessingStage, SourceDocument, WorkflowState

logger = structlog.get_logger(__name__)

STARTING_STAGE = "starting"

_STAGE_MESSAGES: dict[str, tuple[str, str]] = {
    "ingestion": ("Rendering document pages", "Pages ready for extraction"),
    "mapping": ("Extracting pages", "All pages extracted"),
    "aggregation": ("Merging page results", "Results merged"),
    "qualityCheck": ("Checking extraction quality", "Quality check finished"),
    "marketResearch": ("Researching market context", "Market context ready"),
    "analysis": ("Analysing the project", "Analysis ready"),
    "copywriting": ("Writing marketing content", "Marketing content ready"),
}


class ProgressObserver:
    """Forwards graph stage notifications to the progress channel."""

    def __init__(self, channel: ProgressChannel) -> None:
        self._channel = channel

    async def stage_started(self, stage: str, state: WorkflowState) -> None:
        message = _STAGE_MESSAGES.get(stage, (stage, stage))[0]
        if stage == "mapping" and state.retry_count:
            message = f"{message} (retry {state.retry_count})"
        self._channel.emit(
            state.job_id,
            stage,
            message,
            STAGE_PROGRESS.get(stage, (0, 0))[0],
            {"attempt": state.retry_count + 1, "total_pages": state.page_count or None},
        )

    async def stage_completed(self, stage: str, state: WorkflowState) -> None:
        message = _STAGE_MESSAGES.get(stage, (stage, stage))[1]
        payload: dict[str, Any] = {"attempt": state.retry_count + 1}
        if stage == "qualityCheck" and state.quality is not None:
            payload.update(score=state.quality.score, passed=state.quality.passed)
            if state.processing_stage is ProcessingStage.RETRYING:
                message = f"Quality score {state.quality.score:g} too low, retrying extraction"
        self._channel.emit(state.job_id, stage, message, STAGE_PROGRESS.get(stage, (0, 0))[1], payload)


class JobRunner:
    """Submits jobs and drives them through the graph in the background."""

    def __init__(
        self,
        graph: CompiledGraph,
        channel: ProgressChannel,
        resolver: AssetReferenceResolver,
    ) -> None:
        self.graph = graph
        self.channel = channel
        self.resolver = resolver
        self._tasks: dict[str, asyncio.Task[dict[str, Any] | None]] = {}
        self._observer = ProgressObserver(channel)

    def submit(self, documents: Sequence[tuple[str, bytes]], options: ProcessingOptions) -> str:
        """Register a job and start it in the background; returns the job id.

        Must be called from within a running event loop.
        """
        if not documents:
            raise ValueError("At least one document is required")
        job_id = uuid.uuid4().hex
        state = WorkflowState(
            job_id=job_id,
            source_documents=tuple(SourceDocument.from_bytes(name, data) for name, data in documents),
            options=options,
        )
        self.channel.start_job(job_id)
        task = asyncio.create_task(self.run(state), name=f"brochure-job-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job_id, None))
        logger.info(
            "runner.job.submitted",
            job_id=job_id,
            documents=len(documents),
            pages_per_chunk=options.pages_per_chunk,
            batch_size=options.batch_size,
            batch_delay_ms=options.batch_delay_ms,
        )
        return job_id

    async def run(self, state: WorkflowState) -> dict[str, Any] | None:
        """Execute ``state`` to completion and emit its terminal event."""
        job_id = state.job_id
        token = bind_correlation_id(job_id)
        try:
            self.channel.emit(
                job_id,
                STARTING_STAGE,
                "Processing started",
                0,
                {"documents": [document.name for document in state.source_documents]},
            )
            terminal = await self.graph.run(
                state,
                observer=self._observer,
                cancel_event=self.channel.cancellation(job_id),
            )
            if terminal.processing_stage is ProcessingStage.ERROR:
                logger.warning("runner.job.failed", job_id=job_id, error=terminal.error)
                self.channel.error(job_id, terminal.error or "Processing failed")
                return None
            payload = self.build_payload(terminal)
        except asyncio.CancelledError:
            self.channel.error(job_id, "Job cancelled")
            raise
        except Exception as exc:
            logger.exception("runner.job.crashed", job_id=job_id)
            self.channel.error(job_id, f"Pipeline failure: {exc}")
            return None
        finally:
            reset_correlation_id(token)

        self.channel.complete(job_id, payload)
        logger.info(
            "runner.job.complete",
            job_id=job_id,
            retry_count=terminal.retry_count,
            warnings=len(terminal.warnings),
            seconds=payload["processing_seconds"],
        )
        return payload

    def build_payload(self, state: WorkflowState) -> dict[str, Any]:
        """Final result handed to the subscriber, with asset references resolved."""
        record = state.aggregate.model_dump(mode="json") if state.aggregate is not None else {}
        payload: dict[str, Any] = {
            "job_id": state.job_id,
            **record,
            "market_context": _dump(state.market_context),
            "analysis": _dump(state.analysis),
            "marketing": _dump(state.marketing),
            "quality": _dump(state.quality),
            "warnings": list(state.warnings),
            "retry_count": state.retry_count,
            "processing_seconds": round(state.elapsed_seconds, 3),
        }
        return self.resolver.resolve_payload(payload)

    async def wait(self, job_id: str) -> dict[str, Any] | None:
        """Await a running job; returns ``None`` once it is no longer tracked."""
        task = self._tasks.get(job_id)
        if task is None:
            return None
        return await task

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def _dump(model: Any) -> dict[str, Any] | None:
    return model.model_dump(mode="json") if model is not None else None


__all__ = ["JobRunner", "ProgressObserver", "STARTING_STAGE"]
