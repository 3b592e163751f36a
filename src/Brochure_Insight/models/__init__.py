"""Domain models shared by orchestration, services and the gateway."""

from __future__ import annotations

from .brochure import (
    AggregateRecord,
    AnalysisReport,
    MarketContext,
    MarketingContent,
    PageError,
    PageExtraction,
    PageSlot,
    PaymentMilestone,
    PaymentPlan,
    ProjectInfo,
    QualityIssue,
    QualityReport,
    UnitEntry,
    UnitMetrics,
)

__all__ = [
    "AggregateRecord",
    "AnalysisReport",
    "MarketContext",
    "MarketingContent",
    "PageError",
    "PageExtraction",
    "PageSlot",
    "PaymentMilestone",
    "PaymentPlan",
    "ProjectInfo",
    "QualityIssue",
    "QualityReport",
    "UnitEntry",
    "UnitMetrics",
]
