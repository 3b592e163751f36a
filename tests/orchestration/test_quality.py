from __future__ import annotations

import pytest

from Brochure_Insight.models import (
    AggregateRecord,
    PageError,
    PaymentMilestone,
    PaymentPlan,
    ProjectInfo,
)
from Brochure_Insight.orchestration.aggregation import aggregate
from Brochure_Insight.orchestration.errors import AggregationError
from Brochure_Insight.orchestration.quality import (
    ADVANCE_TARGET,
    MAX_RETRIES,
    RETRY_TARGET,
    QualityGate,
    RetryController,
)
from Brochure_Insight.orchestration.state import ProcessingStage, SourceDocument, WorkflowState

from ..fakes import complete_extractions


def _complete_record() -> AggregateRecord:
    return aggregate(list(complete_extractions().values()))


def _state(record: AggregateRecord | None, *, retry_count: int = 0) -> WorkflowState:
    return WorkflowState(
        job_id="job-1",
        source_documents=(SourceDocument.from_bytes("a.pdf", b"%PDF"),),
        aggregate=record,
        per_page_results=tuple(complete_extractions().values()),
        retry_count=retry_count,
    )


def test_complete_record_scores_full_marks() -> None:
    report = QualityGate().evaluate(_complete_record())

    assert report.passed is True
    assert report.score == 100
    assert report.critical_issues == []


def test_missing_project_identity_is_critical() -> None:
    record = _complete_record().model_copy(update={"project": ProjectInfo(address="12 Marina Walk")})

    report = QualityGate().evaluate(record)

    assert report.passed is False
    assert {issue.field for issue in report.critical_issues} == {"project.name", "project.developer"}


def test_empty_record_fails_with_zero_score() -> None:
    report = QualityGate().evaluate(AggregateRecord(page_count=3, failed_pages=[]))

    assert report.passed is False
    assert report.score == 0


def test_unbalanced_payment_plan_loses_points() -> None:
    plan = PaymentPlan(milestones=[PaymentMilestone(milestone="Booking", percentage=30)])
    record = _complete_record().model_copy(update={"payment_plans": [plan]})

    report = QualityGate().evaluate(record)

    assert report.score == 95
    assert report.passed is True
    assert any(issue.field == "payment_plans" for issue in report.issues)


def test_majority_failed_pages_is_critical() -> None:
    record = _complete_record().model_copy(update={"page_count": 3, "failed_pages": [1, 2]})

    report = QualityGate().evaluate(record)

    assert report.passed is False
    assert [issue.field for issue in report.critical_issues] == ["pages"]


def test_controller_schedules_retry_and_clears_attempt_results() -> None:
    controller = RetryController(QualityGate())
    state = _state(AggregateRecord(page_count=3))

    retried = controller.apply(state)

    assert retried.processing_stage is ProcessingStage.RETRYING
    assert retried.retry_count == 1
    assert retried.per_page_results == ()
    assert retried.aggregate is None
    assert retried.quality is not None and retried.quality.attempt == 1
    assert RetryController.route(retried) == RETRY_TARGET


def test_controller_advances_with_warning_once_retries_are_exhausted() -> None:
    controller = RetryController(QualityGate())
    state = _state(AggregateRecord(page_count=3), retry_count=MAX_RETRIES)

    advanced = controller.apply(state)

    assert advanced.processing_stage is ProcessingStage.INSIGHT
    assert advanced.retry_count == MAX_RETRIES
    assert advanced.quality is not None and advanced.quality.attempt == MAX_RETRIES + 1
    assert len(advanced.warnings) == 1
    assert "below threshold" in advanced.warnings[0]
    assert RetryController.route(advanced) == ADVANCE_TARGET


def test_controller_advances_silently_when_passed() -> None:
    advanced = RetryController(QualityGate()).apply(_state(_complete_record()))

    assert advanced.processing_stage is ProcessingStage.INSIGHT
    assert advanced.warnings == ()
    assert advanced.retry_count == 0


def test_retry_count_never_exceeds_cap() -> None:
    controller = RetryController(QualityGate(), max_retries=2)
    state = _state(AggregateRecord(page_count=1, failed_pages=[0]))

    for _ in range(5):
        state = controller.apply(state)
        if state.processing_stage is ProcessingStage.INSIGHT:
            break
        state = state.evolve(
            aggregate=aggregate([PageError(page_index=0, error_type="model", message="down")]),
        )

    assert state.processing_stage is ProcessingStage.INSIGHT
    assert state.retry_count == 2


def test_controller_requires_an_aggregate() -> None:
    with pytest.raises(AggregationError):
        RetryController(QualityGate()).apply(_state(None))
    with pytest.raises(ValueError):
        RetryController(QualityGate(), max_retries=-1)
