"""Order-preserving reducer joining per-page results into one record."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any, TypeVar

import orjson
import structlog
from pydantic import BaseModel

from Brochure_Insight.models import AggregateRecord, PageError, PageExtraction, PageSlot, ProjectInfo

from .errors import AggregationError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_SCALAR_PROJECT_FIELDS = ("name", "developer", "address", "area", "completion_date", "launch_date")


def canonical_key(item: Any) -> bytes:
    """Serialise ``item`` to sorted-key JSON so equal structures compare equal."""
    payload = item.model_dump(mode="json") if isinstance(item, BaseModel) else item
    return orjson.dumps(payload, option=orjson.OPT_SORT_KEYS)


def dedupe_structural(items: Iterable[T]) -> list[T]:
    """Drop exact structural duplicates, keeping the first occurrence."""
    seen: set[bytes] = set()
    unique: list[T] = []
    for item in items:
        key = canonical_key(item)
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


def merge_project(extractions: Sequence[PageExtraction]) -> ProjectInfo:
    """First non-empty value per field in page order; the longest description wins."""
    merged: dict[str, str] = {}
    for extraction in extractions:
        project = extraction.project
        for name in _SCALAR_PROJECT_FIELDS:
            value = getattr(project, name)
            if name not in merged and value and value.strip():
                merged[name] = value.strip()
        description = (project.description or "").strip()
        if len(description) > len(merged.get("description", "")):
            merged["description"] = description
    return ProjectInfo(**merged)


def order_slots(per_page_results: Sequence[PageSlot], *, page_count: int | None = None) -> list[PageSlot]:
    """Sort slots by page index and verify they cover every page exactly once.

    Raises:
        AggregationError: If slots are missing, duplicated or out of range.
    """
    expected = len(per_page_results) if page_count is None else page_count
    if len(per_page_results) != expected:
        raise AggregationError(
            f"Expected {expected} page slots, received {len(per_page_results)}",
            stage="aggregation",
        )
    ordered = sorted(per_page_results, key=lambda slot: slot.page_index)
    indices = [slot.page_index for slot in ordered]
    if indices != list(range(expected)):
        raise AggregationError(
            f"Page slots do not cover pages 0..{expected - 1}: {indices}",
            stage="aggregation",
        )
    return ordered


def aggregate(per_page_results: Sequence[PageSlot], *, page_count: int | None = None) -> AggregateRecord:
    """Merge per-page results in ascending page-index order.

    Per-category lists are concatenated page by page and exact duplicates are
    removed afterwards, so the output never depends on task completion order.
    Error slots contribute nothing but their index in ``failed_pages``.
    """
    ordered = order_slots(per_page_results, page_count=page_count)
    extractions = [slot for slot in ordered if isinstance(slot, PageExtraction)]
    failed = [slot.page_index for slot in ordered if isinstance(slot, PageError)]

    amenities = (amenity.strip() for page in extractions for amenity in page.amenities)
    record = AggregateRecord(
        project=merge_project(extractions),
        units=dedupe_structural(unit for page in extractions for unit in page.units),
        payment_plans=dedupe_structural(plan for page in extractions for plan in page.payment_plans),
        amenities=dedupe_structural(amenity for amenity in amenities if amenity),
        media=dedupe_structural(reference for page in extractions for reference in page.media if reference),
        page_count=len(ordered),
        extracted_pages=[page.page_index for page in extractions],
        failed_pages=failed,
    )
    logger.info(
        "aggregation.complete",
        pages=record.page_count,
        failed=len(failed),
        units=len(record.units),
        payment_plans=len(record.payment_plans),
        amenities=len(record.amenities),
        media=len(record.media),
    )
    return record


__all__ = ["aggregate", "canonical_key", "dedupe_structural", "merge_project", "order_slots"]
