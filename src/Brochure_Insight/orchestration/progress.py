"""Job registry and progress channel for live job observation.

Key Responsibilities:
    - Track running jobs in a :class:`JobRegistry` whose entries are created at
      submission and disposed once the terminal event is delivered
    - Deliver progress events fire-and-forget to at most one live subscriber
      per job, clamping progress so it never decreases
    - Emit exactly one terminal event (``complete`` or ``error``) per job

Collaborators:
    - Upstream: The job runner and the mapping stage emit events; the SSE
      route opens subscriptions
    - Downstream: ``asyncio.Queue`` per subscription

Thread Safety:
    - Not thread-safe. All calls must happen on the event loop that owns the
      jobs; queues are fed with ``put_nowait``.

Note:
    Events are not buffered. A subscriber only sees events emitted after it
    registered, unless ``replay_last_event`` is enabled, in which case the
    most recent event is delivered on registration.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, Field

from Brochure_Insight.observability.metrics import (
    ACTIVE_JOBS,
    record_job_terminal,
    record_progress_event,
)

logger = structlog.get_logger(__name__)

COMPLETE_STAGE = "complete"
ERROR_STAGE = "error"
CONNECTED_STAGE = "connected"
TERMINAL_EVENT_STAGES = frozenset({COMPLETE_STAGE, ERROR_STAGE})


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


class ProgressEvent(BaseModel):
    """Single progress notification delivered to a job's subscriber."""

    job_id: str
    stage: str
    message: str
    progress: int = Field(ge=0, le=100)
    data: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_EVENT_STAGES


class Subscription:
    """Queue-backed stream of events for one subscriber."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        self._queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, event: ProgressEvent) -> bool:
        if self._closed:
            return False
        self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    async def get(self, timeout: float | None = None) -> ProgressEvent | None:
        """Wait for the next event; ``None`` means the stream was closed.

        Raises:
            TimeoutError: If nothing arrives within ``timeout`` seconds.
        """
        return await asyncio.wait_for(self._queue.get(), timeout)

    async def events(self) -> AsyncIterator[ProgressEvent]:
        """Yield events until the terminal event or until the stream is closed."""
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event
            if event.is_terminal:
                return


class CallbackSubscriber:
    """Subscriber that hands each event straight to ``callback``."""

    def __init__(self, job_id: str, callback: Callable[[ProgressEvent], None]) -> None:
        self.job_id = job_id
        self._callback = callback
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, event: ProgressEvent) -> bool:
        if self._closed:
            return False
        try:
            self._callback(event)
        except Exception:
            logger.exception("progress.subscriber.callback_failed", job_id=self.job_id, stage=event.stage)
            return False
        return True

    def close(self) -> None:
        self._closed = True


Subscriber = Subscription | CallbackSubscriber


@dataclass(slots=True)
class JobRecord:
    """Registry entry for one running job."""

    job_id: str
    status: JobStatus = JobStatus.RUNNING
    subscriber: Subscriber | None = None
    last_progress: int = 0
    last_event: ProgressEvent | None = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_terminal(self) -> bool:
        return self.status is not JobStatus.RUNNING


class JobRegistry:
    """Create/lookup/dispose bookkeeping for jobs keyed by ``job_id``."""

    def __init__(self) -> None:
        self._records: dict[str, JobRecord] = {}

    def create(self, job_id: str) -> JobRecord:
        if job_id in self._records:
            raise ValueError(f"Job '{job_id}' is already registered")
        record = JobRecord(job_id=job_id)
        self._records[job_id] = record
        ACTIVE_JOBS.set(len(self._records))
        return record

    def get(self, job_id: str) -> JobRecord | None:
        return self._records.get(job_id)

    def dispose(self, job_id: str) -> None:
        self._records.pop(job_id, None)
        ACTIVE_JOBS.set(len(self._records))

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._records

    def __len__(self) -> int:
        return len(self._records)


class ProgressChannel:
    """Fire-and-forget progress delivery backed by a :class:`JobRegistry`."""

    def __init__(self, registry: JobRegistry | None = None, *, replay_last_event: bool = False) -> None:
        self._registry = registry or JobRegistry()
        self._replay_last_event = replay_last_event

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    def start_job(self, job_id: str) -> JobRecord:
        record = self._registry.create(job_id)
        logger.info("progress.job.registered", job_id=job_id)
        return record

    def is_active(self, job_id: str) -> bool:
        record = self._registry.get(job_id)
        return record is not None and not record.is_terminal

    def cancel(self, job_id: str) -> bool:
        record = self._registry.get(job_id)
        if record is None or record.is_terminal:
            return False
        record.cancel_event.set()
        logger.info("progress.job.cancel_requested", job_id=job_id)
        return True

    def cancellation(self, job_id: str) -> asyncio.Event | None:
        record = self._registry.get(job_id)
        return record.cancel_event if record else None

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------
    def open_subscription(self, job_id: str) -> Subscription | None:
        """Attach a new subscriber, replacing any existing one.

        Returns ``None`` when the job is unknown or already terminal.
        """
        subscription = Subscription(job_id)
        return subscription if self._attach(subscription) else None

    def register_subscriber(self, job_id: str, callback: Callable[[ProgressEvent], None]) -> bool:
        """Attach ``callback`` as the job's subscriber, replacing any existing one.

        Returns ``False`` when the job is unknown or already terminal; nothing
        is attached in that case.
        """
        return self._attach(CallbackSubscriber(job_id, callback))

    def _attach(self, subscriber: Subscriber) -> bool:
        job_id = subscriber.job_id
        record = self._registry.get(job_id)
        if record is None or record.is_terminal:
            logger.info("progress.subscriber.rejected", job_id=job_id)
            return False
        if record.subscriber is not None:
            logger.info("progress.subscriber.replaced", job_id=job_id)
            record.subscriber.close()
        record.subscriber = subscriber
        subscriber.deliver(
            ProgressEvent(
                job_id=job_id,
                stage=CONNECTED_STAGE,
                message="Connected to progress stream",
                progress=record.last_progress,
            )
        )
        if self._replay_last_event and record.last_event is not None:
            subscriber.deliver(record.last_event)
        logger.info("progress.subscriber.registered", job_id=job_id)
        return True

    def release(self, subscription: Subscriber) -> None:
        """Detach ``subscription`` after its consumer went away."""
        subscription.close()
        record = self._registry.get(subscription.job_id)
        if record is not None and record.subscriber is subscription:
            record.subscriber = None
            logger.info("progress.subscriber.disconnected", job_id=subscription.job_id)

    def has_subscriber(self, job_id: str) -> bool:
        record = self._registry.get(job_id)
        return record is not None and record.subscriber is not None and not record.subscriber.closed

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def emit(
        self,
        job_id: str,
        stage: str,
        message: str,
        progress: int,
        payload: Mapping[str, Any] | None = None,
    ) -> ProgressEvent | None:
        """Deliver a non-terminal event. Returns the event, or ``None`` if dropped."""
        if stage in TERMINAL_EVENT_STAGES:
            raise ValueError(f"Use complete() or error() for the '{stage}' event")
        record = self._registry.get(job_id)
        if record is None or record.is_terminal:
            logger.debug("progress.emit.unknown_job", job_id=job_id, stage=stage)
            return None
        event = self._record_event(record, stage, message, progress, payload)
        self._deliver(record, event)
        return event

    def complete(self, job_id: str, result: Mapping[str, Any]) -> bool:
        record = self._registry.get(job_id)
        if record is None or record.is_terminal:
            logger.warning("progress.terminal.duplicate", job_id=job_id, stage=COMPLETE_STAGE)
            return False
        event = self._record_event(record, COMPLETE_STAGE, "Processing complete", 100, result)
        record.status = JobStatus.COMPLETE
        self._finish(record, event)
        return True

    def error(self, job_id: str, message: str) -> bool:
        record = self._registry.get(job_id)
        if record is None or record.is_terminal:
            logger.warning("progress.terminal.duplicate", job_id=job_id, stage=ERROR_STAGE)
            return False
        event = self._record_event(
            record, ERROR_STAGE, message, record.last_progress, {"error": message}
        )
        record.status = JobStatus.ERROR
        self._finish(record, event)
        return True

    def _record_event(
        self,
        record: JobRecord,
        stage: str,
        message: str,
        progress: int,
        payload: Mapping[str, Any] | None,
    ) -> ProgressEvent:
        clamped = max(record.last_progress, min(100, max(0, int(progress))))
        event = ProgressEvent(
            job_id=record.job_id,
            stage=stage,
            message=message,
            progress=clamped,
            data=dict(payload) if payload is not None else None,
        )
        record.last_progress = clamped
        record.last_event = event
        return event

    def _deliver(self, record: JobRecord, event: ProgressEvent) -> None:
        delivered = record.subscriber is not None and record.subscriber.deliver(event)
        record_progress_event(event.stage, delivered=delivered)
        if not delivered:
            logger.debug("progress.emit.no_subscriber", job_id=record.job_id, stage=event.stage)

    def _finish(self, record: JobRecord, event: ProgressEvent) -> None:
        self._deliver(record, event)
        if record.subscriber is not None:
            record.subscriber.close()
            record.subscriber = None
        self._registry.dispose(record.job_id)
        record_job_terminal(record.status.value)
        logger.info(
            "progress.job.retired",
            job_id=record.job_id,
            status=record.status.value,
            progress=event.progress,
        )


__all__ = [
    "COMPLETE_STAGE",
    "CONNECTED_STAGE",
    "ERROR_STAGE",
    "CallbackSubscriber",
    "JobRecord",
    "JobRegistry",
    "JobStatus",
    "ProgressChannel",
    "ProgressEvent",
    "Subscriber",
    "Subscription",
]
