"""Compile a :class:`QueryIntent` into an :class:`ExecutionPlan`.

Steps are emitted in canonical order and each one depends only on its
predecessor:

    cache -> load -> filter -> aggregate -> sort -> limit -> transform

Optional steps are skipped when the intent does not need them. The plan is
pure data; the executor owns the semantics of each step.
"""

from __future__ import annotations

import hashlib
import math
import re
import uuid
from typing import Any

from csvsense.agents.contracts import (
    AggregationFunction,
    DataProfile,
    DateTimeStats,
    ExecutionPlan,
    Granularity,
    IntentType,
    PlanStep,
    QueryIntent,
    SortDirection,
    SortKey,
    StepType,
)
from csvsense.planning.intent import QueryType


STEP_BASE_MS: dict[StepType, float] = {
    StepType.CACHE: 1.0,
    StepType.LOAD: 50.0,
    StepType.FILTER: 20.0,
    StepType.AGGREGATE: 100.0,
    StepType.SORT: 30.0,
    StepType.LIMIT: 5.0,
    StepType.TRANSFORM: 40.0,
}

BASE_COST: dict[IntentType, float] = {
    IntentType.PROFILE: 1.0,
    IntentType.FILTER: 1.5,
    IntentType.AGGREGATION: 2.0,
    IntentType.COMPARISON: 2.5,
    IntentType.TREND: 3.0,
    IntentType.CUSTOM: 3.5,
}

DEFAULT_RANKING_LIMIT = 10
DEFAULT_FILTER_LIMIT = 100

# Functions the precomputed numeric aggregates can answer directly
PRECOMPUTED_FUNCTIONS = frozenset({
    AggregationFunction.SUM,
    AggregationFunction.AVG,
    AggregationFunction.MIN,
    AggregationFunction.MAX,
    AggregationFunction.MEDIAN,
    AggregationFunction.COUNT,
})

_CUMULATIVE = re.compile(r"\b(cumulative|running total|year to date|ytd)\b")


def normalize_for_cache(query: str) -> str:
    """Lowercase, collapse whitespace, strip trailing punctuation."""
    return " ".join(query.lower().split()).rstrip(" ?!.;,")


def cache_key(query: str, profile: DataProfile) -> str:
    payload = f"{normalize_for_cache(query)}|{profile.id}|{profile.version}"
    return "q_" + hashlib.sha256(payload.encode("utf-8")).hexdigest()[:24]


def estimate_step_ms(step_type: StepType, rows: int, columns: int) -> float:
    scale = (1 + 0.1 * math.log10(rows + 1)) * (1 + columns / 100)
    return round(STEP_BASE_MS[step_type] * scale, 2)


def estimate_cost(intent_type: IntentType, confidence: float, step_count: int) -> float:
    return round(BASE_COST[intent_type] * (1 + 0.5 * (1 - confidence)) + 0.1 * step_count, 3)


def default_time_grain(profile: DataProfile, column: str) -> Granularity:
    """Pick a readable bucket size from the column's span."""
    col = profile.column(column)
    stats = col.statistics if col else None
    if not isinstance(stats, DateTimeStats):
        return Granularity.MONTH
    days = stats.range_days
    if days <= 2:
        return Granularity.HOUR
    if days <= 60:
        return Granularity.DAY
    if days <= 365:
        return Granularity.WEEK if days <= 120 else Granularity.MONTH
    if days <= 3 * 365:
        return Granularity.MONTH
    return Granularity.QUARTER if days <= 8 * 365 else Granularity.YEAR


def output_measures(intent: QueryIntent) -> list[str]:
    """Names of the value columns an aggregate step will produce."""
    if intent.entities.measures and intent.operation.aggregation is not AggregationFunction.COUNT:
        return list(intent.entities.measures)
    return ["count"]


# =============================================================================
# Compilation
# =============================================================================

class _StepBuilder:
    def __init__(self, rows: int, columns: int):
        self.rows = rows
        self.columns = columns
        self.steps: list[PlanStep] = []

    def add(self, step_type: StepType, operation: str, **params: Any) -> None:
        depends_on = [self.steps[-1].id] if self.steps else []
        self.steps.append(PlanStep(
            id=f"step_{len(self.steps) + 1}_{step_type.value}",
            type=step_type,
            operation=operation,
            params=params,
            estimated_time_ms=estimate_step_ms(step_type, self.rows, self.columns),
            depends_on=depends_on,
        ))


def compile_plan(
    intent: QueryIntent,
    profile: DataProfile,
    *,
    query_type: QueryType,
    fallback_to_llm: bool = False,
) -> ExecutionPlan:
    """Build the step DAG for ``intent`` over ``profile``.

    Args:
        intent: Resolved query intent
        profile: Profile the plan will run against
        query_type: Fine-grained classifier label (selects transforms)
        fallback_to_llm: Flag copied onto the plan

    Returns:
        ExecutionPlan with a cache key and estimates
    """
    key = cache_key(intent.original_query, profile)
    builder = _StepBuilder(profile.metadata.row_count, profile.metadata.column_count)
    entities, operation = intent.entities, intent.operation
    optimizations = ["cacheable"]

    builder.add(StepType.CACHE, "cache_lookup", cache_key=key)

    columns = _referenced_columns(intent)
    builder.add(StepType.LOAD, "load_sample", columns=columns, source="sample")
    if columns and len(columns) < profile.metadata.column_count:
        optimizations.append("column_pruning")

    timeframe = entities.timeframe
    has_time_bounds = timeframe is not None and (timeframe.start is not None or timeframe.end is not None)
    if entities.filters or has_time_bounds:
        builder.add(
            StepType.FILTER,
            "apply_filters",
            conditions=[f.model_dump(mode="json") for f in entities.filters],
            time_range=timeframe.model_dump(mode="json") if has_time_bounds else None,
        )
        optimizations.append("predicate_pushdown")

    if intent.type is IntentType.PROFILE:
        builder.add(StepType.TRANSFORM, "column_summary", kind="column_summary")
        return _finish(intent, builder, key, fallback_to_llm, optimizations)

    measures = output_measures(intent)
    aggregated = _needs_aggregate(intent, query_type)
    group_by = list(operation.group_by)
    time_column = None
    if aggregated:
        time_grain = None
        if intent.type is IntentType.TREND and timeframe is not None:
            time_column = timeframe.column
            time_grain = timeframe.granularity or default_time_grain(profile, time_column)
            group_by = [time_column] + [g for g in group_by if g != time_column]
        builder.add(
            StepType.AGGREGATE,
            f"aggregate_{operation.aggregation.value}",
            function=operation.aggregation.value,
            measures=[] if measures == ["count"] else measures,
            group_by=group_by,
            time_column=time_column,
            time_grain=time_grain.value if time_grain else None,
        )
        if _precomputable(intent, profile, group_by):
            optimizations.append("precomputed_aggregation")

    filtered = {f.column for f in entities.filters} | set(group_by)
    if filtered & profile.indexes.indexed_columns():
        optimizations.append("index_usage")

    sort_keys = _sort_keys(intent, query_type, measures if aggregated else [], time_column)
    if sort_keys:
        builder.add(StepType.SORT, "sort_rows", keys=[k.model_dump(mode="json") for k in sort_keys])

    limit = operation.limit
    if limit is None and query_type is QueryType.RANKING:
        limit = DEFAULT_RANKING_LIMIT
    if limit is None and intent.type is IntentType.FILTER:
        limit = DEFAULT_FILTER_LIMIT
    if limit is not None:
        builder.add(StepType.LIMIT, "limit_rows", count=limit)

    for kind, params in _transforms(intent, query_type, measures, aggregated):
        builder.add(StepType.TRANSFORM, kind, kind=kind, **params)

    return _finish(intent, builder, key, fallback_to_llm, optimizations)


def _finish(
    intent: QueryIntent,
    builder: _StepBuilder,
    key: str,
    fallback_to_llm: bool,
    optimizations: list[str],
) -> ExecutionPlan:
    steps = builder.steps
    return ExecutionPlan(
        id=f"plan_{uuid.uuid4().hex[:12]}",
        steps=steps,
        estimated_time_ms=round(sum(s.estimated_time_ms for s in steps), 2),
        estimated_cost=estimate_cost(intent.type, intent.confidence, len(steps)),
        cache_key=key,
        fallback_to_llm=fallback_to_llm,
        optimizations=list(dict.fromkeys(optimizations)),
    )


def _referenced_columns(intent: QueryIntent) -> list[str]:
    e, op = intent.entities, intent.operation
    cols = e.measures + e.dimensions + op.group_by + [f.column for f in e.filters]
    cols += [k.column for k in op.sort]
    if e.timeframe:
        cols.append(e.timeframe.column)
    if intent.type is IntentType.PROFILE:
        return []
    return list(dict.fromkeys(cols))


def _needs_aggregate(intent: QueryIntent, query_type: QueryType) -> bool:
    if intent.type is IntentType.FILTER or intent.operation.aggregation is None:
        return False
    if query_type is QueryType.RELATIONSHIP:
        return False
    if query_type is QueryType.DISTRIBUTION and not intent.operation.group_by:
        return False
    return True


def _precomputable(intent: QueryIntent, profile: DataProfile, group_by: list[str]) -> bool:
    if group_by or intent.entities.filters or intent.entities.timeframe is not None:
        return False
    if intent.operation.aggregation not in PRECOMPUTED_FUNCTIONS:
        return False
    measures = [m for m in intent.entities.measures if intent.operation.aggregation is not AggregationFunction.COUNT]
    return all(m in profile.aggregations.numeric for m in measures)


def _sort_keys(
    intent: QueryIntent,
    query_type: QueryType,
    measures: list[str],
    time_column: str | None,
) -> list[SortKey]:
    if intent.operation.sort:
        return list(intent.operation.sort)
    if time_column:
        return [SortKey(column=time_column, direction=SortDirection.ASC)]
    if not measures or not intent.operation.group_by:
        return []
    if query_type in (QueryType.RANKING, QueryType.COMPARISON, QueryType.AGGREGATION, QueryType.DISTRIBUTION):
        # Largest first unless the question asked for a direction
        return [SortKey(column=measures[0], direction=SortDirection.DESC)]
    return []


def _transforms(
    intent: QueryIntent,
    query_type: QueryType,
    measures: list[str],
    aggregated: bool,
) -> list[tuple[str, dict[str, Any]]]:
    value = measures[0] if measures else None
    numeric = list(intent.entities.measures)
    out: list[tuple[str, dict[str, Any]]] = []

    if query_type is QueryType.RELATIONSHIP and len(numeric) >= 2:
        out.append(("correlation", {"columns": numeric}))
    elif query_type is QueryType.DISTRIBUTION and not aggregated and numeric:
        out.append(("histogram", {"column": numeric[0], "bins": 10}))
    elif aggregated and value:
        if intent.type is IntentType.TREND:
            out.append(("pct_change", {"column": value}))
        elif intent.type is IntentType.COMPARISON and intent.operation.group_by:
            out.append(("pct_of_total", {"column": value}))
        elif query_type is QueryType.RANKING:
            out.append(("rank", {"column": value}))

    if aggregated and value and _CUMULATIVE.search(intent.original_query.lower()):
        out.append(("cumulative", {"column": value}))
    return out


__all__ = [
    "cache_key",
    "compile_plan",
    "default_time_grain",
    "estimate_cost",
    "estimate_step_ms",
    "normalize_for_cache",
    "output_measures",
]
