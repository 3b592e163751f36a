"""Prometheus metrics for the brochure extraction pipeline.

Key Responsibilities:
    - Define Prometheus metrics for stage execution, page tasks, quality
      retries, asset cache traffic and progress delivery
    - Provide small recording helpers so call sites never touch label sets
    - Mount the Prometheus exposition endpoint on the FastAPI application

Collaborators:
    - Upstream: Graph executor, fan-out dispatcher, asset cache, job runner
    - Downstream: Prometheus scraping via ``/metrics``

Thread Safety:
    - Thread-safe: Prometheus client operations are atomic
"""

# ==============================================================================
# IMPORTS
# ==============================================================================

from __future__ import annotations

from typing import Any

from prometheus_client import Counter, Gauge, Histogram, make_asgi_app

# ==============================================================================
# METRIC DEFINITIONS
# ==============================================================================

STAGE_DURATION_SECONDS = Histogram(
    "brochure_stage_duration_seconds",
    "Duration of pipeline stage execution",
    ["stage", "outcome"],
    buckets=[0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
)

PAGE_TASKS_TOTAL = Counter(
    "brochure_page_tasks_total",
    "Page extraction tasks by outcome",
    ["outcome"],
)

QUALITY_RETRIES_TOTAL = Counter(
    "brochure_quality_retries_total",
    "Extraction attempts re-entered after a failed quality check",
)

QUALITY_SCORE = Histogram(
    "brochure_quality_score",
    "Quality score assigned to aggregated extractions",
    buckets=[10, 20, 30, 40, 50, 60, 70, 80, 90, 100],
)

ASSET_CACHE_TOTAL = Counter(
    "brochure_asset_cache_total",
    "Content-addressed asset cache operations",
    ["outcome"],
)

PROGRESS_EVENTS_TOTAL = Counter(
    "brochure_progress_events_total",
    "Progress events emitted per stage and delivery result",
    ["stage", "delivered"],
)

JOBS_TOTAL = Counter(
    "brochure_jobs_total",
    "Jobs reaching a terminal state",
    ["status"],
)

ACTIVE_JOBS = Gauge(
    "brochure_active_jobs",
    "Jobs currently registered with the progress channel",
)

# ==============================================================================
# UTILITY FUNCTIONS
# ==============================================================================


def observe_stage(stage: str, duration_seconds: float, *, outcome: str = "success") -> None:
    """Record how long a graph stage took and whether it succeeded."""
    STAGE_DURATION_SECONDS.labels(stage=stage, outcome=outcome).observe(duration_seconds)


def record_page_task(outcome: str) -> None:
    PAGE_TASKS_TOTAL.labels(outcome=outcome).inc()


def record_quality_check(score: float, *, retried: bool) -> None:
    QUALITY_SCORE.observe(score)
    if retried:
        QUALITY_RETRIES_TOTAL.inc()


def record_asset_cache(outcome: str) -> None:
    """Count cache lookups and writes.

    Args:
        outcome: One of ``hit``, ``miss``, ``write``, ``skip`` or ``error``.
    """
    ASSET_CACHE_TOTAL.labels(outcome=outcome).inc()


def record_progress_event(stage: str, *, delivered: bool) -> None:
    PROGRESS_EVENTS_TOTAL.labels(stage=stage, delivered=str(delivered).lower()).inc()


def record_job_terminal(status: str) -> None:
    JOBS_TOTAL.labels(status=status).inc()


def register_metrics(app: Any, path: str = "/metrics") -> None:
    """Mount the Prometheus ASGI exposition app on ``app``."""
    app.mount(path, make_asgi_app())


# ==============================================================================
# EXPORTS
# ==============================================================================

__all__ = [
    "ACTIVE_JOBS",
    "ASSET_CACHE_TOTAL",
    "JOBS_TOTAL",
    "PAGE_TASKS_TOTAL",
    "PROGRESS_EVENTS_TOTAL",
    "QUALITY_RETRIES_TOTAL",
    "QUALITY_SCORE",
    "STAGE_DURATION_SECONDS",
    "observe_stage",
    "record_asset_cache",
    "record_job_terminal",
    "record_page_task",
    "record_progress_event",
    "record_quality_check",
    "register_metrics",
]
