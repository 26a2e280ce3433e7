"""Semantic executor agent.

Runs a compiled :class:`ExecutionPlan` against a profile's sample rows and
precomputed aggregates, then attaches insights, chart suggestions and
follow-up questions. The agent keeps no state between requests; callers
that want result reuse pass ``known_results`` keyed by plan cache key.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from csvsense.agents.base import (
    AgentError,
    AgentExecutionContext,
    AgentOutput,
    AgentType,
    AgentValidationError,
    CancellationToken,
)
from csvsense.agents.contracts import (
    AnalysisMetadata,
    AnalysisResult,
    DataProfile,
    ExecutionPlan,
    PlanStep,
    QueryIntent,
    StepType,
)
from csvsense.execution import insights as result_insights
from csvsense.execution import steps
from csvsense.logging_config import get_logger


logger = get_logger(__name__)


@dataclass
class ExecutionRequest:
    """Executor input."""

    query_intent: QueryIntent
    profile: DataProfile
    execution_plan: ExecutionPlan
    known_results: dict[str, list[dict[str, Any]]] | None = None


@dataclass
class _RunState:
    working: pd.DataFrame | None = None
    rows_loaded: int = 0
    filtered: bool = False
    source: str = "sample"
    executed: list[str] = field(default_factory=list)


def dependency_order(plan: ExecutionPlan) -> list[PlanStep]:
    """Topological order of plan steps (Kahn), stable on declaration order.

    Raises:
        AgentValidationError: On unknown dependencies or cycles
    """
    by_id = {s.id: s for s in plan.steps}
    pending: dict[str, int] = {}
    dependents: dict[str, list[str]] = {s.id: [] for s in plan.steps}
    for step in plan.steps:
        unknown = [d for d in step.depends_on if d not in by_id]
        if unknown:
            raise AgentValidationError(
                f"Step {step.id} depends on unknown step(s) {unknown}",
                agent_type=AgentType.SEMANTIC_EXECUTOR,
            )
        pending[step.id] = len(set(step.depends_on))
        for dep in set(step.depends_on):
            dependents[dep].append(step.id)

    ready = deque(s.id for s in plan.steps if pending[s.id] == 0)
    order: list[PlanStep] = []
    while ready:
        current = ready.popleft()
        order.append(by_id[current])
        for child in dependents[current]:
            pending[child] -= 1
            if pending[child] == 0:
                ready.append(child)
    if len(order) != len(plan.steps):
        stuck = sorted(set(by_id) - {s.id for s in order})
        raise AgentValidationError(
            f"Plan {plan.id} has a dependency cycle among {stuck}",
            agent_type=AgentType.SEMANTIC_EXECUTOR,
        )
    return order


class SemanticExecutorAgent:
    """Plan -> AnalysisResult over sample data and precomputed aggregates."""

    agent_type = AgentType.SEMANTIC_EXECUTOR
    name = "semantic_executor"
    version = "1.0.0"

    def validate_input(self, input: object) -> bool:
        if not isinstance(input, ExecutionRequest):
            raise AgentValidationError("expected an ExecutionRequest")
        if not isinstance(input.query_intent, QueryIntent):
            raise AgentValidationError("query_intent is required")
        if not isinstance(input.profile, DataProfile):
            raise AgentValidationError("profile is required")
        aggs = input.profile.aggregations
        if not (input.profile.sample_data or aggs.numeric or aggs.categorical):
            raise AgentValidationError("profile has neither sample data nor aggregations")
        if not isinstance(input.execution_plan, ExecutionPlan) or not input.execution_plan.steps:
            raise AgentValidationError("execution plan has no steps")
        return True

    async def execute_internal(
        self,
        input: ExecutionRequest,
        context: AgentExecutionContext,
        cancel_token: CancellationToken,
    ) -> AgentOutput[AnalysisResult]:
        return await asyncio.to_thread(self.run, input, cancel_token)

    def run(self, request: ExecutionRequest, token: CancellationToken | None = None) -> AgentOutput[AnalysisResult]:
        token = token or CancellationToken()
        started = time.perf_counter()
        plan, intent, profile = request.execution_plan, request.query_intent, request.profile
        log = logger.bind(plan_id=plan.id, profile_id=profile.id)

        order = dependency_order(plan)
        cached = self._cached_rows(plan, request.known_results)
        if cached is not None:
            first = order[0]
            log.info("plan_cache_hit", cache_key=plan.cache_key)
            result = self._result(
                intent, plan, profile, cached, pd.DataFrame(cached),
                AnalysisMetadata(
                    execution_time_ms=(time.perf_counter() - started) * 1000,
                    data_points=0,
                    cache_hit=True,
                    agent_path=[self.agent_type.value],
                    steps_executed=[first.id] if first.type is StepType.CACHE else [],
                    source="cache",
                ),
            )
            return AgentOutput(data=result, cache_hit=True)

        state = _RunState()
        outputs: dict[str, pd.DataFrame | None] = {}
        for step in order:
            token.raise_if_cancelled()
            upstream = outputs.get(step.depends_on[-1]) if step.depends_on else None
            try:
                outputs[step.id] = self._run_step(step, upstream, profile, state)
            except steps.StepError as exc:
                raise AgentError(
                    f"Step {step.id} ({step.type.value}) failed: {exc}",
                    agent_type=self.agent_type,
                    code="STEP_FAILED",
                    details={"step_id": step.id, "step_type": step.type.value},
                ) from exc
            state.executed.append(step.id)
            log.debug("plan_step_executed", step_id=step.id, step_type=step.type.value)

        final = outputs.get(order[-1].id)
        if final is None:
            final = state.working if state.working is not None else pd.DataFrame()
        rows = steps.to_records(final)
        elapsed_ms = (time.perf_counter() - started) * 1000
        result = self._result(
            intent, plan, profile, rows, final,
            AnalysisMetadata(
                execution_time_ms=elapsed_ms,
                data_points=state.rows_loaded,
                cache_hit=False,
                agent_path=[self.agent_type.value],
                steps_executed=state.executed,
                source=state.source,
            ),
        )
        log.info(
            "plan_executed",
            steps=len(state.executed),
            rows_loaded=state.rows_loaded,
            rows_returned=len(rows),
            source=state.source,
            execution_time_ms=round(elapsed_ms, 2),
        )
        return AgentOutput(data=result)

    @staticmethod
    def _cached_rows(
        plan: ExecutionPlan,
        known_results: dict[str, list[dict[str, Any]]] | None,
    ) -> list[dict[str, Any]] | None:
        if not known_results or not plan.cache_key:
            return None
        if not any(s.type is StepType.CACHE for s in plan.steps):
            return None
        return known_results.get(plan.cache_key)

    def _run_step(
        self,
        step: PlanStep,
        upstream: pd.DataFrame | None,
        profile: DataProfile,
        state: _RunState,
    ) -> pd.DataFrame | None:
        params = step.params
        if step.type is StepType.CACHE:
            return None
        if step.type is StepType.LOAD:
            state.working = steps.build_frame(profile, params.get("columns") or None)
            state.rows_loaded = len(state.working)
            return state.working

        frame = upstream if upstream is not None else self._working(profile, state)
        if step.type is StepType.FILTER:
            state.filtered = True
            return steps.apply_filters(frame, profile, params.get("conditions", []), params.get("time_range"))
        if step.type is StepType.AGGREGATE:
            group_by = params.get("group_by", [])
            if not state.filtered and not group_by:
                precomputed = steps.aggregate_precomputed(profile, params["function"], params.get("measures", []))
                if precomputed is not None:
                    state.source = "aggregations"
                    return precomputed
            return steps.aggregate(
                frame,
                profile,
                params["function"],
                params.get("measures", []),
                group_by,
                time_column=params.get("time_column"),
                time_grain=params.get("time_grain"),
            )
        if step.type is StepType.SORT:
            return steps.sort_rows(frame, params.get("keys", []))
        if step.type is StepType.LIMIT:
            return steps.limit_rows(frame, int(params.get("count", 0)))
        kind = params.get("kind", step.operation)
        extra = {k: v for k, v in params.items() if k != "kind"}
        return steps.transform(frame, profile, kind, **extra)

    @staticmethod
    def _working(profile: DataProfile, state: _RunState) -> pd.DataFrame:
        if state.working is None:
            state.working = steps.build_frame(profile)
            state.rows_loaded = len(state.working)
        return state.working

    def _result(
        self,
        intent: QueryIntent,
        plan: ExecutionPlan,
        profile: DataProfile,
        rows: list[dict[str, Any]],
        frame: pd.DataFrame,
        metadata: AnalysisMetadata,
    ) -> AnalysisResult:
        return AnalysisResult(
            id=f"analysis_{uuid.uuid4().hex[:12]}",
            query=intent.original_query,
            intent=intent,
            execution_plan=plan,
            data=rows,
            insights=result_insights.generate_insights(frame, intent, plan, profile),
            metadata=metadata,
            suggestions=result_insights.follow_up_questions(intent, profile),
            chart_suggestions=result_insights.suggest_charts(frame, intent, profile),
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name})>"
