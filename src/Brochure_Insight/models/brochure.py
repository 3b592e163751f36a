"""Domain models for per-page extractions, aggregates and insight outputs."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PageCategory = Literal[
    "cover",
    "floor_plan",
    "payment_plan",
    "amenities",
    "location",
    "pricing",
    "other",
]


class _ExtractionModel(BaseModel):
    """Accepts camelCase payloads from the model gateway, dumps snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ProjectInfo(_ExtractionModel):
    name: str | None = None
    developer: str | None = None
    address: str | None = None
    area: str | None = None
    completion_date: str | None = None
    launch_date: str | None = None
    description: str | None = None


class UnitEntry(_ExtractionModel):
    """One unit type offered by the project."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    category: str | None = None
    unit_type: str | None = None
    bedrooms: int | None = None
    area_sqft: float | None = None
    price: float | None = None
    floor_plan_image: str | None = None


class PaymentMilestone(_ExtractionModel):
    milestone: str
    percentage: float = Field(ge=0.0, le=100.0)


class PaymentPlan(_ExtractionModel):
    name: str | None = None
    milestones: list[PaymentMilestone] = Field(default_factory=list)

    @property
    def total_percentage(self) -> float:
        return sum(item.percentage for item in self.milestones)


class PageExtraction(_ExtractionModel):
    """Successful extraction for a single page."""

    page_index: int = Field(ge=0)
    category: PageCategory = "other"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    project: ProjectInfo = Field(default_factory=ProjectInfo)
    units: list[UnitEntry] = Field(default_factory=list)
    payment_plans: list[PaymentPlan] = Field(default_factory=list)
    amenities: list[str] = Field(default_factory=list)
    media: list[str] = Field(default_factory=list)


class PageError(_ExtractionModel):
    """Error marker occupying the slot of a page whose extraction failed."""

    page_index: int = Field(ge=0)
    error_type: str
    message: str


PageSlot = PageExtraction | PageError


class AggregateRecord(_ExtractionModel):
    """Page-ordered merge of every per-page extraction of one attempt."""

    project: ProjectInfo = Field(default_factory=ProjectInfo)
    units: list[UnitEntry] = Field(default_factory=list)
    payment_plans: list[PaymentPlan] = Field(default_factory=list)
    amenities: list[str] = Field(default_factory=list)
    media: list[str] = Field(default_factory=list)
    page_count: int = 0
    extracted_pages: list[int] = Field(default_factory=list)
    failed_pages: list[int] = Field(default_factory=list)


class QualityIssue(BaseModel):
    severity: Literal["critical", "warning"]
    field: str
    message: str


class QualityReport(BaseModel):
    passed: bool
    score: float = Field(ge=0.0, le=100.0)
    issues: list[QualityIssue] = Field(default_factory=list)
    attempt: int = Field(default=1, ge=1)

    @property
    def critical_issues(self) -> list[QualityIssue]:
        return [issue for issue in self.issues if issue.severity == "critical"]


class MarketContext(_ExtractionModel):
    nearby_transit: list[dict[str, Any]] = Field(default_factory=list)
    competitors: list[dict[str, Any]] = Field(default_factory=list)
    area_insights: list[str] = Field(default_factory=list)
    government_plans: list[str] = Field(default_factory=list)


class UnitMetrics(BaseModel):
    unit_count: int = 0
    min_price: float | None = None
    max_price: float | None = None
    min_area_sqft: float | None = None
    max_area_sqft: float | None = None
    avg_price_per_sqft: float | None = None


class AnalysisReport(_ExtractionModel):
    summary: str
    strengths: list[str] = Field(default_factory=list)
    considerations: list[str] = Field(default_factory=list)
    recommended_for: list[str] = Field(default_factory=list)
    appreciation_potential: str | None = None
    metrics: UnitMetrics = Field(default_factory=UnitMetrics)


class MarketingContent(_ExtractionModel):
    headline: str
    tagline: str | None = None
    description: str
    highlights: list[str] = Field(default_factory=list)
    call_to_action: str | None = None


__all__ = [
    "AggregateRecord",
    "AnalysisReport",
    "MarketContext",
    "MarketingContent",
    "PageCategory",
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
