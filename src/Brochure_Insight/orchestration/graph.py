"""Stage graph and finite-state executor driving a workflow to completion.

Key Responsibilities:
    - Register named stages, unconditional edges and conditional edges whose
      routing function picks among a declared candidate set
    - Validate the transition table once, at compile time, raising
      :class:`ConfigurationError` for any wiring defect
    - Execute stages one at a time, replacing the whole state after each
      stage succeeds and jumping to the terminal error state otherwise

Collaborators:
    - Upstream: :mod:`Brochure_Insight.orchestration.pipeline` builds the
      extraction graph; the job runner calls :meth:`CompiledGraph.run`
    - Downstream: Stage callables, an optional :class:`StageObserver`

Thread Safety:
    - A compiled graph is immutable and can run many jobs concurrently on one
      event loop. Each run only touches its own state value.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from time import perf_counter
from typing import Protocol

import structlog
from opentelemetry import trace

from Brochure_Insight.observability.metrics import observe_stage

from .errors import ConfigurationError, JobCancelledError, PipelineError
from .state import ProcessingStage, WorkflowState

END = "__end__"

StageFn = Callable[[WorkflowState], Awaitable[WorkflowState]]
RoutingFn = Callable[[WorkflowState], str]


class StageObserver(Protocol):
    """Receives entry and exit notifications for every stage."""

    async def stage_started(self, stage: str, state: WorkflowState) -> None: ...

    async def stage_completed(self, stage: str, state: WorkflowState) -> None: ...


@dataclass(frozen=True, slots=True)
class Edge:
    target: str


@dataclass(frozen=True, slots=True)
class ConditionalEdge:
    routing_fn: RoutingFn
    candidates: frozenset[str]


Transition = Edge | ConditionalEdge


class StageGraph:
    """Mutable builder for a stage transition table."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._stages: dict[str, StageFn] = {}
        self._transitions: dict[str, Transition] = {}
        self._entry: str | None = None

    def register_stage(self, name: str, fn: StageFn) -> StageGraph:
        if name == END:
            raise ConfigurationError(f"'{END}' is reserved for the terminal transition")
        if name in self._stages:
            raise ConfigurationError(f"Stage '{name}' is already registered", stage=name)
        self._stages[name] = fn
        if self._entry is None:
            self._entry = name
        return self

    def register_edge(self, source: str, target: str) -> StageGraph:
        self._ensure_unrouted(source)
        self._transitions[source] = Edge(target)
        return self

    def register_conditional_edge(
        self,
        source: str,
        routing_fn: RoutingFn,
        candidate_names: Iterable[str],
    ) -> StageGraph:
        candidates = frozenset(candidate_names)
        if not candidates:
            raise ConfigurationError("Conditional edge needs at least one candidate", stage=source)
        self._ensure_unrouted(source)
        self._transitions[source] = ConditionalEdge(routing_fn, candidates)
        return self

    def set_entry_point(self, name: str) -> StageGraph:
        self._entry = name
        return self

    def compile(self, *, max_transitions: int = 64) -> CompiledGraph:
        """Validate the wiring and freeze it into an executable graph."""
        if self._entry is None:
            raise ConfigurationError(f"Graph '{self.name}' has no stages")
        if self._entry not in self._stages:
            raise ConfigurationError(f"Entry point '{self._entry}' is not a registered stage")
        known = set(self._stages) | {END}
        for source in self._transitions:
            if source not in self._stages:
                raise ConfigurationError(f"Edge source '{source}' is not a registered stage")
        for name in self._stages:
            transition = self._transitions.get(name)
            if transition is None:
                raise ConfigurationError(f"Stage '{name}' has no outgoing edge", stage=name)
            targets = {transition.target} if isinstance(transition, Edge) else set(transition.candidates)
            unknown = targets - known
            if unknown:
                raise ConfigurationError(
                    f"Stage '{name}' routes to unknown stage(s): {', '.join(sorted(unknown))}",
                    stage=name,
                )
        return CompiledGraph(
            name=self.name,
            stages=dict(self._stages),
            transitions=dict(self._transitions),
            entry=self._entry,
            max_transitions=max_transitions,
        )

    def _ensure_unrouted(self, source: str) -> None:
        if source in self._transitions:
            raise ConfigurationError(f"Stage '{source}' already has an outgoing edge", stage=source)


class CompiledGraph:
    """Validated transition table with an async executor."""

    def __init__(
        self,
        *,
        name: str,
        stages: Mapping[str, StageFn],
        transitions: Mapping[str, Transition],
        entry: str,
        max_transitions: int,
    ) -> None:
        self.name = name
        self._stages = dict(stages)
        self._transitions = dict(transitions)
        self._entry = entry
        self._max_transitions = max_transitions

    @property
    def stage_names(self) -> list[str]:
        return list(self._stages)

    @property
    def entry(self) -> str:
        return self._entry

    def next_stage(self, source: str, state: WorkflowState) -> str:
        """Resolve the successor of ``source`` for ``state``.

        Raises:
            ConfigurationError: If a routing function returns a name outside
                its declared candidates.
        """
        transition = self._transitions[source]
        if isinstance(transition, Edge):
            return transition.target
        target = transition.routing_fn(state)
        if target not in transition.candidates:
            raise ConfigurationError(
                f"Routing from '{source}' returned '{target}', expected one of "
                f"{sorted(transition.candidates)}",
                stage=source,
            )
        return target

    async def run(
        self,
        initial: WorkflowState,
        *,
        observer: StageObserver | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> WorkflowState:
        """Drive ``initial`` through the graph and return the terminal state.

        Stage failures never escape: the last committed state is returned with
        ``processing_stage`` set to ``error``. Wiring defects discovered while
        routing raise :class:`ConfigurationError`.
        """
        current = initial
        stage = self._entry
        transitions = 0
        logger.info("graph.run.start", graph=self.name, job_id=initial.job_id, entry=stage)
        while stage != END:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("graph.run.cancelled", graph=self.name, job_id=current.job_id, stage=stage)
                return current.fail(str(JobCancelledError(current.job_id, stage=stage)))
            transitions += 1
            if transitions > self._max_transitions:
                raise ConfigurationError(
                    f"Graph '{self.name}' exceeded {self._max_transitions} transitions",
                    stage=stage,
                )
            if observer is not None:
                await observer.stage_started(stage, current)
            outcome = await self._invoke(stage, current)
            if isinstance(outcome, BaseException):
                return current.fail(self._describe_failure(stage, outcome))
            successor = self.next_stage(stage, outcome)
            current = outcome
            if observer is not None:
                await observer.stage_completed(stage, current)
            stage = successor
        if not current.is_terminal:
            current = current.evolve(processing_stage=ProcessingStage.COMPLETE)
        logger.info(
            "graph.run.complete",
            graph=self.name,
            job_id=current.job_id,
            transitions=transitions,
            retry_count=current.retry_count,
        )
        return current

    async def _invoke(self, stage: str, state: WorkflowState) -> WorkflowState | Exception:
        started = perf_counter()
        outcome = "success"
        with _TRACER.start_as_current_span(f"{self.name}.{stage}") as span:
            span.set_attribute("pipeline.stage", stage)
            span.set_attribute("job_id", state.job_id)
            logger.info("graph.stage.start", stage=stage, job_id=state.job_id)
            try:
                result = await self._stages[stage](state)
                if not isinstance(result, WorkflowState):
                    raise ConfigurationError(
                        f"Stage '{stage}' returned {type(result).__name__}, expected WorkflowState",
                        stage=stage,
                    )
            except ConfigurationError:
                outcome = "error"
                raise
            except Exception as exc:
                outcome = "error"
                span.record_exception(exc)
                logger.warning(
                    "graph.stage.failed",
                    stage=stage,
                    job_id=state.job_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    problem=exc.problem.model_dump() if isinstance(exc, PipelineError) else None,
                )
                return exc
            finally:
                duration = perf_counter() - started
                observe_stage(stage, duration, outcome=outcome)
                span.set_attribute("stage.duration_ms", round(duration * 1000, 3))
                span.set_attribute("stage.status", outcome)
        logger.info("graph.stage.complete", stage=stage, job_id=state.job_id, duration=round(duration, 3))
        return result

    @staticmethod
    def _describe_failure(stage: str, exc: BaseException) -> str:
        if isinstance(exc, PipelineError):
            return str(exc)
        return f"Stage '{stage}' failed: {exc}"


__all__ = [
    "END",
    "CompiledGraph",
    "ConditionalEdge",
    "Edge",
    "RoutingFn",
    "StageFn",
    "StageGraph",
    "StageObserver",
]

logger = structlog.get_logger(__name__)
_TRACER = trace.get_tracer(__name__)
