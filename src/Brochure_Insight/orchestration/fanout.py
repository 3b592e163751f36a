"""Fan-out dispatcher running one extraction task per page.

Key Responsibilities:
    - Plan exactly one :class:`PageTask` per rendered page; a task carries only
      its page index and a reference to the shared, frozen
      :class:`ExtractionContext`
    - Run tasks in sequential batches of ``batch_size``, fully concurrent
      within a batch, pausing ``batch_delay`` between batches
    - Turn every task failure into a :class:`PageError` in that task's slot
      without disturbing sibling tasks

Collaborators:
    - Upstream: :class:`~Brochure_Insight.orchestration.stages.MappingStage`
    - Downstream: A :class:`PageExtractor` implementation

Thread Safety:
    - Each dispatch owns its slot list; tasks write only their own index.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

import structlog

from Brochure_Insight.models import PageError, PageExtraction, PageSlot
from Brochure_Insight.observability.metrics import record_page_task

from .errors import AggregationError, JobCancelledError, PageExtractionError
from .state import PageImage

logger = structlog.get_logger(__name__)

ResolvedCallback = Callable[[PageSlot, int, int], None]


@dataclass(frozen=True, slots=True)
class ExtractionContext:
    """Read-only data shared by every task of one mapping attempt."""

    job_id: str
    pages: tuple[PageImage, ...]
    attempt: int = 1

    @property
    def total_pages(self) -> int:
        return len(self.pages)


@dataclass(frozen=True, slots=True)
class PageTask:
    page_index: int
    context: ExtractionContext

    @property
    def page(self) -> PageImage:
        return self.context.pages[self.page_index]


class PageExtractor(Protocol):
    """Opaque per-page extraction function backed by an external model."""

    async def extract(self, task: PageTask) -> PageExtraction: ...


class FanOutDispatcher:
    """Batches page tasks and joins their results by page index."""

    def __init__(
        self,
        extractor: PageExtractor,
        *,
        page_timeout_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._extractor = extractor
        self._page_timeout = page_timeout_seconds
        self._sleep = sleep

    @staticmethod
    def plan(context: ExtractionContext) -> list[PageTask]:
        return [PageTask(page_index=index, context=context) for index in range(context.total_pages)]

    @staticmethod
    def batches(tasks: Sequence[PageTask], batch_size: int) -> list[list[PageTask]]:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        return [list(tasks[start : start + batch_size]) for start in range(0, len(tasks), batch_size)]

    async def process(self, task: PageTask) -> PageSlot:
        """Run a single page task, converting every failure into a slot marker."""
        try:
            result = await asyncio.wait_for(self._extractor.extract(task), timeout=self._page_timeout)
            if not isinstance(result, PageExtraction):
                result = PageExtraction.model_validate(result)
        except TimeoutError:
            return self._error(task, "timeout", f"Extraction exceeded {self._page_timeout}s")
        except PageExtractionError as exc:
            return self._error(task, exc.kind, str(exc))
        except Exception as exc:
            return self._error(task, type(exc).__name__, str(exc) or type(exc).__name__)
        if result.page_index != task.page_index:
            result = result.model_copy(update={"page_index": task.page_index})
        record_page_task("success")
        return result

    async def dispatch(
        self,
        tasks: Sequence[PageTask],
        *,
        batch_size: int,
        batch_delay_seconds: float = 0.0,
        cancel_event: asyncio.Event | None = None,
        on_resolved: ResolvedCallback | None = None,
    ) -> tuple[PageSlot, ...]:
        """Run every task and return one slot per task ordered by page index.

        Raises:
            JobCancelledError: If ``cancel_event`` is set before a batch starts.
            AggregationError: If a slot is left unresolved.
        """
        total = len(tasks)
        slots: list[PageSlot | None] = [None] * total
        resolved = 0
        batches = self.batches(tasks, batch_size)
        job_id = tasks[0].context.job_id if tasks else ""

        async def run(task: PageTask) -> None:
            nonlocal resolved
            slot = await self.process(task)
            slots[task.page_index] = slot
            resolved += 1
            if on_resolved is not None:
                on_resolved(slot, resolved, total)

        for number, batch in enumerate(batches, start=1):
            if cancel_event is not None and cancel_event.is_set():
                raise JobCancelledError(job_id, stage="mapping")
            logger.info(
                "fanout.batch.start",
                job_id=job_id,
                batch=number,
                batches=len(batches),
                pages=[task.page_index for task in batch],
            )
            await asyncio.gather(*(run(task) for task in batch))
            if number < len(batches) and batch_delay_seconds > 0:
                await self._sleep(batch_delay_seconds)

        missing = [index for index, slot in enumerate(slots) if slot is None]
        if missing or resolved != total:
            raise AggregationError(
                f"Join barrier released with unresolved pages: {missing}",
                stage="mapping",
            )
        failures = sum(1 for slot in slots if isinstance(slot, PageError))
        logger.info("fanout.complete", job_id=job_id, pages=total, failed=failures)
        return tuple(slot for slot in slots if slot is not None)

    @staticmethod
    def _error(task: PageTask, error_type: str, message: str) -> PageError:
        record_page_task(error_type if error_type == "timeout" else "error")
        logger.warning(
            "fanout.page.failed",
            job_id=task.context.job_id,
            page_index=task.page_index,
            error_type=error_type,
            error=message,
        )
        return PageError(page_index=task.page_index, error_type=error_type, message=message)


__all__ = [
    "ExtractionContext",
    "FanOutDispatcher",
    "PageExtractor",
    "PageTask",
    "ResolvedCallback",
]
