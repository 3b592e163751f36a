from __future__ import annotations

import asyncio

import orjson
import pytest

from Brochure_Insight.gateway.services import build_intake_service
from Brochure_Insight.gateway.sse.routes import KEEP_ALIVE, _event_iterator, format_event
from Brochure_Insight.orchestration.progress import ProgressEvent

from ..fakes import CountingObjectStore, FakeInsightProvider, FakeRasterizer, ScriptedExtractor


def _parse(frame: bytes) -> dict[str, object]:
    lines = frame.decode().strip().split("\n")
    fields = dict(line.split(": ", 1) for line in lines)
    return {"id": fields["id"], "event": fields["event"], "data": orjson.loads(fields["data"])}


def _service(settings):
    return build_intake_service(
        settings,
        store=CountingObjectStore(),
        rasterizer=FakeRasterizer(),
        extractor=ScriptedExtractor(),
        insight_provider=FakeInsightProvider(),
    )


def test_format_event_emits_sse_frame() -> None:
    event = ProgressEvent(
        job_id="job-1",
        stage="mapping",
        message="Extracted page 2/4",
        progress=42,
        data={"current_page": 2, "total_pages": 4},
    )

    frame = format_event(event)

    assert frame.endswith(b"\n\n")
    parsed = _parse(frame)
    assert parsed["id"] == "job-1"
    assert parsed["event"] == "mapping"
    assert parsed["data"]["progress"] == 42
    assert parsed["data"]["data"] == {"current_page": 2, "total_pages": 4}
    assert "job_id" not in parsed["data"]


@pytest.mark.asyncio
async def test_stream_ends_after_terminal_event_and_releases_subscriber(settings) -> None:
    service = _service(settings)
    service.channel.start_job("job-1")
    subscription = service.open_stream("job-1")
    assert subscription is not None

    frames: list[bytes] = []

    async def consume() -> None:
        async for frame in _event_iterator(service, subscription, heartbeat_seconds=0.02):
            frames.append(frame)

    consumer = asyncio.create_task(consume())
    await asyncio.sleep(0.05)
    service.channel.emit("job-1", "mapping", "Extracted page 1/1", 70)
    service.channel.complete("job-1", {"project": {"name": "Skyline"}})
    await asyncio.wait_for(consumer, 2)

    events = [_parse(frame) for frame in frames if frame != KEEP_ALIVE]
    assert [event["event"] for event in events] == ["connected", "mapping", "complete"]
    assert KEEP_ALIVE in frames
    assert events[-1]["data"]["data"] == {"project": {"name": "Skyline"}}
    assert service.channel.has_subscriber("job-1") is False


@pytest.mark.asyncio
async def test_disconnect_releases_subscriber_but_job_keeps_running(settings) -> None:
    service = _service(settings)
    service.channel.start_job("job-1")
    subscription = service.open_stream("job-1")
    assert subscription is not None

    stream = _event_iterator(service, subscription, heartbeat_seconds=1.0)
    first = await stream.__anext__()
    await stream.aclose()

    assert _parse(first)["event"] == "connected"
    assert service.channel.has_subscriber("job-1") is False
    assert service.is_active("job-1") is True
