"""Quality gate and bounded retry controller.

The gate scores an aggregate out of 100 across four areas:

==================  ======  ==================================================
Area                Points  Breakdown
==================  ======  ==================================================
Project             30      name 10, developer 8, address 7, completion 5
Units               40      any units 15, completeness 15, pricing 10
Payment plans       20      milestones 10, totals close to 100% 10 (else 5)
Amenities           10      scaled by count, full marks at five
==================  ======  ==================================================

An aggregate passes when it reaches the threshold and has no critical issue.
A failing aggregate is not an error: the controller either schedules another
extraction attempt or advances with a warning once retries are exhausted.
"""

from __future__ import annotations

import structlog

from Brochure_Insight.models import AggregateRecord, QualityIssue, QualityReport
from Brochure_Insight.observability.metrics import record_quality_check

from .errors import AggregationError
from .state import ProcessingStage, WorkflowState

logger = structlog.get_logger(__name__)

MAX_RETRIES = 2
RETRY_TARGET = "mapping"
ADVANCE_TARGET = "marketResearch"


class QualityGate:
    """Completeness predicate over an :class:`AggregateRecord`."""

    def __init__(self, *, threshold: float = 60.0, max_failed_page_ratio: float = 0.5) -> None:
        self.threshold = threshold
        self.max_failed_page_ratio = max_failed_page_ratio

    def evaluate(self, record: AggregateRecord, *, attempt: int = 1) -> QualityReport:
        issues: list[QualityIssue] = []
        score = (
            self._score_project(record, issues)
            + self._score_units(record, issues)
            + self._score_payment_plans(record, issues)
            + self._score_amenities(record, issues)
        )
        self._check_pages(record, issues)
        score = round(min(score, 100.0), 2)
        critical = any(issue.severity == "critical" for issue in issues)
        return QualityReport(
            passed=score >= self.threshold and not critical,
            score=score,
            issues=issues,
            attempt=attempt,
        )

    @staticmethod
    def _score_project(record: AggregateRecord, issues: list[QualityIssue]) -> float:
        project = record.project
        score = 0.0
        if project.name:
            score += 10
        else:
            issues.append(QualityIssue(severity="critical", field="project.name", message="Project name missing"))
        if project.developer:
            score += 8
        else:
            issues.append(
                QualityIssue(severity="critical", field="project.developer", message="Developer missing")
            )
        if project.address and len(project.address) > 5:
            score += 7
        else:
            issues.append(QualityIssue(severity="warning", field="project.address", message="Address incomplete"))
        if project.completion_date:
            score += 5
        else:
            issues.append(
                QualityIssue(severity="warning", field="project.completion_date", message="Completion date missing")
            )
        return score

    @staticmethod
    def _score_units(record: AggregateRecord, issues: list[QualityIssue]) -> float:
        units = record.units
        if not units:
            issues.append(QualityIssue(severity="critical", field="units", message="No units extracted"))
            return 0.0
        complete = sum(1 for unit in units if unit.unit_type and unit.area_sqft)
        priced = sum(1 for unit in units if unit.price)
        if complete < len(units):
            issues.append(
                QualityIssue(
                    severity="warning",
                    field="units",
                    message=f"{len(units) - complete} of {len(units)} units lack type or area",
                )
            )
        if priced / len(units) < 0.5:
            issues.append(QualityIssue(severity="warning", field="units.price", message="Most units are unpriced"))
        return 15 + complete / len(units) * 15 + priced / len(units) * 10

    @staticmethod
    def _score_payment_plans(record: AggregateRecord, issues: list[QualityIssue]) -> float:
        plan = next((plan for plan in record.payment_plans if plan.milestones), None)
        if plan is None:
            issues.append(QualityIssue(severity="warning", field="payment_plans", message="No payment plan found"))
            return 0.0
        if abs(plan.total_percentage - 100.0) <= 5.0:
            return 20.0
        issues.append(
            QualityIssue(
                severity="warning",
                field="payment_plans",
                message=f"Payment plan totals {plan.total_percentage:g}%",
            )
        )
        return 15.0

    @staticmethod
    def _score_amenities(record: AggregateRecord, issues: list[QualityIssue]) -> float:
        if not record.amenities:
            issues.append(QualityIssue(severity="warning", field="amenities", message="No amenities listed"))
        return min(len(record.amenities) / 5, 1.0) * 10

    def _check_pages(self, record: AggregateRecord, issues: list[QualityIssue]) -> None:
        if record.page_count == 0:
            issues.append(QualityIssue(severity="critical", field="pages", message="Document has no pages"))
            return
        ratio = len(record.failed_pages) / record.page_count
        if ratio > self.max_failed_page_ratio:
            issues.append(
                QualityIssue(
                    severity="critical",
                    field="pages",
                    message=f"{len(record.failed_pages)} of {record.page_count} pages failed extraction",
                )
            )
        elif record.failed_pages:
            issues.append(
                QualityIssue(
                    severity="warning",
                    field="pages",
                    message=f"Pages {record.failed_pages} failed extraction",
                )
            )


class RetryController:
    """Routes a checked state to another extraction attempt or onward."""

    def __init__(self, gate: QualityGate, *, max_retries: int = MAX_RETRIES) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        self.gate = gate
        self.max_retries = max_retries

    def apply(self, state: WorkflowState) -> WorkflowState:
        if state.aggregate is None:
            raise AggregationError("Quality check reached without an aggregate", stage="qualityCheck")
        report = self.gate.evaluate(state.aggregate, attempt=state.retry_count + 1)
        retry = not report.passed and state.retry_count < self.max_retries
        record_quality_check(report.score, retried=retry)
        logger.info(
            "quality.checked",
            job_id=state.job_id,
            score=report.score,
            passed=report.passed,
            attempt=report.attempt,
            retry=retry,
            critical=[issue.field for issue in report.critical_issues],
        )
        if retry:
            return state.evolve(
                quality=report,
                processing_stage=ProcessingStage.RETRYING,
                retry_count=state.retry_count + 1,
                per_page_results=(),
                aggregate=None,
            )
        advanced = state.evolve(quality=report, processing_stage=ProcessingStage.INSIGHT)
        if not report.passed:
            advanced = advanced.with_warning(
                f"Quality score {report.score:g} below threshold {self.gate.threshold:g} "
                f"after {state.retry_count} retries"
            )
        return advanced

    @staticmethod
    def route(state: WorkflowState) -> str:
        return RETRY_TARGET if state.processing_stage is ProcessingStage.RETRYING else ADVANCE_TARGET


__all__ = [
    "ADVANCE_TARGET",
    "MAX_RETRIES",
    "QualityGate",
    "RETRY_TARGET",
    "RetryController",
]
