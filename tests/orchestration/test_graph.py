from __future__ import annotations

import asyncio

import pytest

from Brochure_Insight.orchestration.errors import ConfigurationError, IngestionError
from Brochure_Insight.orchestration.graph import END, StageGraph
from Brochure_Insight.orchestration.state import ProcessingStage, SourceDocument, WorkflowState


def _state() -> WorkflowState:
    return WorkflowState(job_id="job-1", source_documents=(SourceDocument.from_bytes("a.pdf", b"%PDF"),))


def _append(label: str):
    async def stage(state: WorkflowState) -> WorkflowState:
        return state.with_warning(label)

    return stage


class RecordingObserver:
    def __init__(self) -> None:
        self.started: list[str] = []
        self.completed: list[str] = []

    async def stage_started(self, stage: str, state: WorkflowState) -> None:
        self.started.append(stage)

    async def stage_completed(self, stage: str, state: WorkflowState) -> None:
        self.completed.append(stage)


@pytest.mark.asyncio
async def test_linear_graph_runs_stages_in_order() -> None:
    graph = (
        StageGraph("linear")
        .register_stage("first", _append("first"))
        .register_stage("second", _append("second"))
        .register_edge("first", "second")
        .register_edge("second", END)
        .compile()
    )
    observer = RecordingObserver()

    result = await graph.run(_state(), observer=observer)

    assert result.warnings == ("first", "second")
    assert result.processing_stage is ProcessingStage.COMPLETE
    assert observer.started == ["first", "second"]
    assert observer.completed == ["first", "second"]


@pytest.mark.asyncio
async def test_conditional_edge_loops_until_routing_advances() -> None:
    def route(state: WorkflowState) -> str:
        return "work" if state.retry_count < 2 else "finish"

    async def work(state: WorkflowState) -> WorkflowState:
        return state.evolve(retry_count=state.retry_count + 1)

    graph = (
        StageGraph("loop")
        .register_stage("work", work)
        .register_stage("finish", _append("done"))
        .register_conditional_edge("work", route, ["work", "finish"])
        .register_edge("finish", END)
        .compile()
    )

    result = await graph.run(_state())

    assert result.retry_count == 2
    assert result.warnings == ("done",)


@pytest.mark.asyncio
async def test_stage_failure_keeps_last_committed_state() -> None:
    async def explode(state: WorkflowState) -> WorkflowState:
        state.evolve(retry_count=99)
        raise IngestionError("Submitted documents contain no pages", stage="explode")

    never_called = []

    async def after(state: WorkflowState) -> WorkflowState:
        never_called.append(state)
        return state

    graph = (
        StageGraph("failing")
        .register_stage("first", _append("first"))
        .register_stage("explode", explode)
        .register_stage("after", after)
        .register_edge("first", "explode")
        .register_edge("explode", "after")
        .register_edge("after", END)
        .compile()
    )

    result = await graph.run(_state())

    assert result.processing_stage is ProcessingStage.ERROR
    assert result.error == "Submitted documents contain no pages"
    assert result.warnings == ("first",)
    assert result.retry_count == 0
    assert never_called == []


@pytest.mark.asyncio
async def test_unexpected_exception_is_described_with_stage_name() -> None:
    async def broken(state: WorkflowState) -> WorkflowState:
        raise KeyError("page")

    graph = StageGraph("broken").register_stage("broken", broken).register_edge("broken", END).compile()

    result = await graph.run(_state())

    assert result.processing_stage is ProcessingStage.ERROR
    assert result.error is not None
    assert result.error.startswith("Stage 'broken' failed")


@pytest.mark.asyncio
async def test_route_outside_candidates_raises_configuration_error() -> None:
    observer = RecordingObserver()
    graph = (
        StageGraph("bad-route")
        .register_stage("check", _append("check"))
        .register_stage("next", _append("next"))
        .register_conditional_edge("check", lambda state: "elsewhere", ["next"])
        .register_edge("next", END)
        .compile()
    )

    with pytest.raises(ConfigurationError):
        await graph.run(_state(), observer=observer)

    assert observer.completed == []


@pytest.mark.asyncio
async def test_stage_returning_wrong_type_is_a_configuration_error() -> None:
    async def sloppy(state: WorkflowState):
        return {"job_id": state.job_id}

    graph = StageGraph("sloppy").register_stage("sloppy", sloppy).register_edge("sloppy", END).compile()

    with pytest.raises(ConfigurationError):
        await graph.run(_state())


@pytest.mark.asyncio
async def test_cancellation_stops_before_next_stage() -> None:
    cancel = asyncio.Event()

    async def first(state: WorkflowState) -> WorkflowState:
        cancel.set()
        return state.with_warning("first")

    graph = (
        StageGraph("cancel")
        .register_stage("first", first)
        .register_stage("second", _append("second"))
        .register_edge("first", "second")
        .register_edge("second", END)
        .compile()
    )

    result = await graph.run(_state(), cancel_event=cancel)

    assert result.processing_stage is ProcessingStage.ERROR
    assert result.error == "Job cancelled"
    assert result.warnings == ("first",)


@pytest.mark.asyncio
async def test_transition_limit_guards_runaway_loops() -> None:
    graph = (
        StageGraph("spin")
        .register_stage("spin", _append("spin"))
        .register_conditional_edge("spin", lambda state: "spin", ["spin", END])
        .compile(max_transitions=5)
    )

    with pytest.raises(ConfigurationError):
        await graph.run(_state())


def test_compile_rejects_unknown_edge_target() -> None:
    graph = StageGraph("invalid").register_stage("only", _append("only")).register_edge("only", "missing")

    with pytest.raises(ConfigurationError, match="missing"):
        graph.compile()


def test_compile_rejects_stage_without_outgoing_edge() -> None:
    graph = (
        StageGraph("dangling")
        .register_stage("first", _append("first"))
        .register_stage("second", _append("second"))
        .register_edge("first", "second")
    )

    with pytest.raises(ConfigurationError, match="second"):
        graph.compile()


def test_compile_rejects_unknown_conditional_candidate() -> None:
    graph = (
        StageGraph("candidates")
        .register_stage("check", _append("check"))
        .register_conditional_edge("check", lambda state: END, [END, "ghost"])
    )

    with pytest.raises(ConfigurationError, match="ghost"):
        graph.compile()


def test_registration_rejects_duplicates() -> None:
    graph = StageGraph("dupes").register_stage("first", _append("first")).register_edge("first", END)

    with pytest.raises(ConfigurationError):
        graph.register_stage("first", _append("again"))
    with pytest.raises(ConfigurationError):
        graph.register_edge("first", END)
    with pytest.raises(ConfigurationError):
        graph.register_stage(END, _append("end"))


def test_compile_requires_registered_entry_point() -> None:
    with pytest.raises(ConfigurationError):
        StageGraph("empty").compile()

    graph = StageGraph("entry").register_stage("first", _append("first")).register_edge("first", END)
    graph.set_entry_point("nowhere")
    with pytest.raises(ConfigurationError):
        graph.compile()
