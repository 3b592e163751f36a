"""Server-Sent Event endpoint streaming job progress."""

from __future__ import annotations

from collections.abc import AsyncIterator

import orjson
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from Brochure_Insight.orchestration.progress import ProgressEvent, Subscription

from ..services import IntakeService, get_intake_service

router = APIRouter(prefix="/v1", tags=["sse"])

KEEP_ALIVE = b": keep-alive\n\n"


def format_event(event: ProgressEvent) -> bytes:
    payload = event.model_dump(mode="json", exclude={"job_id"}, exclude_none=True)
    return b"".join(
        [
            f"id: {event.job_id}\n".encode(),
            f"event: {event.stage}\n".encode(),
            b"data: " + orjson.dumps(payload) + b"\n\n",
        ]
    )


async def _event_iterator(
    service: IntakeService,
    subscription: Subscription,
    heartbeat_seconds: float,
) -> AsyncIterator[bytes]:
    try:
        while True:
            try:
                event = await subscription.get(timeout=heartbeat_seconds)
            except TimeoutError:
                yield KEEP_ALIVE
                continue
            if event is None:
                return
            yield format_event(event)
            if event.is_terminal:
                return
    finally:
        service.close_stream(subscription)


@router.get("/jobs/{job_id}/events", response_class=StreamingResponse)
async def stream_job_events(
    job_id: str,
    service: IntakeService = Depends(get_intake_service),
) -> StreamingResponse:
    subscription = service.open_stream(job_id)
    if subscription is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found or already finished")
    return StreamingResponse(
        _event_iterator(service, subscription, service.settings.progress.heartbeat_seconds),
        status_code=status.HTTP_200_OK,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )


__all__ = ["format_event", "router"]
