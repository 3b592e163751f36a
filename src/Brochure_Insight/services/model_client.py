"""JSON client for the model gateway used by extraction and insight services.

Key Responsibilities:
    - POST task payloads to ``{base_url}/v1/tasks/{task}`` and return the
      decoded JSON body
    - Retry transport errors and retryable statuses with exponential backoff
    - Emit an OpenTelemetry span per request

Collaborators:
    - Upstream: :class:`~Brochure_Insight.services.extraction.GatewayPageExtractor`
      and :class:`~Brochure_Insight.services.insight.GatewayInsightProvider`
    - Downstream: ``httpx`` and ``tenacity``
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import httpx
import structlog
from opentelemetry import trace
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from Brochure_Insight.config.settings import ModelServiceSettings

logger = structlog.get_logger(__name__)

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


class ModelServiceError(RuntimeError):
    """The model gateway could not produce a usable response."""

    def __init__(self, message: str, *, task: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.task = task
        self.status_code = status_code


class RetryableStatusError(httpx.HTTPStatusError):
    """Response status that is worth another attempt."""


class ModelGatewayClient:
    """Async JSON-over-HTTP client with retries."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 60.0,
        attempts: int = 3,
        wait: wait_base | None = None,
        retry_statuses: Iterable[int] = RETRYABLE_STATUSES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self._attempts = attempts
        self._wait = wait or wait_exponential(multiplier=0.5, max=10)
        self._retry_statuses = frozenset(retry_statuses)
        self._tracer = trace.get_tracer(__name__)

    @classmethod
    def from_settings(cls, settings: ModelServiceSettings) -> ModelGatewayClient:
        return cls(
            base_url=settings.base_url,
            api_key=settings.api_key.get_secret_value() if settings.api_key else None,
            timeout=settings.timeout_seconds,
            attempts=settings.retry_attempts,
        )

    async def run_task(self, task: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Execute ``task`` and return its JSON object result.

        Raises:
            ModelServiceError: When the gateway keeps failing or returns a
                non-object body.
        """
        url = f"/v1/tasks/{task}"
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._attempts),
                wait=self._wait,
                retry=retry_if_exception_type((httpx.TransportError, RetryableStatusError)),
                reraise=True,
            ):
                with attempt:
                    number = attempt.retry_state.attempt_number
                    if number > 1:
                        logger.warning("model_client.retry", task=task, attempt=number)
                    response = await self._post(url, payload)
        except httpx.HTTPStatusError as exc:
            raise ModelServiceError(
                f"Model task '{task}' failed with status {exc.response.status_code}",
                task=task,
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise ModelServiceError(f"Model task '{task}' failed: {exc}", task=task) from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise ModelServiceError(f"Model task '{task}' returned invalid JSON", task=task) from exc
        if not isinstance(body, dict):
            raise ModelServiceError(f"Model task '{task}' returned {type(body).__name__}", task=task)
        return body

    async def _post(self, url: str, payload: Mapping[str, Any]) -> httpx.Response:
        with self._tracer.start_as_current_span("model_gateway.request") as span:
            span.set_attribute("http.url", url)
            response = await self._client.post(url, json=dict(payload))
            span.set_attribute("http.status_code", response.status_code)
        if response.status_code in self._retry_statuses:
            raise RetryableStatusError(
                f"Retryable status {response.status_code}",
                request=response.request,
                response=response,
            )
        response.raise_for_status()
        return response

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["ModelGatewayClient", "ModelServiceError", "RETRYABLE_STATUSES", "RetryableStatusError"]
