from __future__ import annotations

import httpx
import pytest
from tenacity import wait_none

from Brochure_Insight.services.model_client import ModelGatewayClient, ModelServiceError


def _client(handler, *, attempts: int = 3) -> ModelGatewayClient:
    return ModelGatewayClient(
        base_url="http://model-gateway",
        api_key="secret-token",
        attempts=attempts,
        wait=wait_none(),
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_run_task_posts_payload_and_returns_body() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"category": "cover"})

    client = _client(handler)
    body = await client.run_task("extract-page", {"page_index": 0})
    await client.aclose()

    assert body == {"category": "cover"}
    assert seen[0].url.path == "/v1/tasks/extract-page"
    assert seen[0].headers["Authorization"] == "Bearer secret-token"


@pytest.mark.asyncio
async def test_retryable_status_is_retried_until_success() -> None:
    statuses = iter([503, 429, 200])

    def handler(request: httpx.Request) -> httpx.Response:
        status = next(statuses)
        if status == 200:
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(status, json={"error": "busy"})

    client = _client(handler)
    body = await client.run_task("market-research", {})
    await client.aclose()

    assert body == {"ok": True}


@pytest.mark.asyncio
async def test_exhausted_retries_raise_model_service_error() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(502)

    client = _client(handler, attempts=2)
    with pytest.raises(ModelServiceError) as excinfo:
        await client.run_task("marketing-copy", {})
    await client.aclose()

    assert calls == 2
    assert excinfo.value.status_code == 502
    assert excinfo.value.task == "marketing-copy"


@pytest.mark.asyncio
async def test_client_errors_are_not_retried() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(422, json={"detail": "bad image"})

    client = _client(handler)
    with pytest.raises(ModelServiceError) as excinfo:
        await client.run_task("extract-page", {})
    await client.aclose()

    assert calls == 1
    assert excinfo.value.status_code == 422


@pytest.mark.asyncio
async def test_transport_errors_are_retried_then_reported() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler, attempts=2)
    with pytest.raises(ModelServiceError):
        await client.run_task("extract-page", {})
    await client.aclose()


@pytest.mark.asyncio
async def test_non_object_body_is_rejected() -> None:
    client = _client(lambda request: httpx.Response(200, json=["not", "an", "object"]))

    with pytest.raises(ModelServiceError):
        await client.run_task("extract-page", {})
    await client.aclose()
