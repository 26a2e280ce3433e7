"""Query planning agent.

Turns a natural-language question plus a :class:`DataProfile` into a typed
:class:`QueryIntent` and a compiled :class:`ExecutionPlan`.

Pipeline:
1. Classify the question (pluggable :class:`IntentClassifier`)
2. Extract entities against the profile's schema
3. Fill in operation defaults for the intent type
4. Score confidence and decide whether an external fallback is advisable
5. Compile the plan

Unparseable questions never raise; they produce a ``custom`` intent with
the lowest confidence and ``fallback_to_llm`` set on the plan.
"""

from __future__ import annotations

from dataclasses import dataclass

from csvsense.agents.base import (
    AgentExecutionContext,
    AgentOutput,
    AgentType,
    AgentValidationError,
    CancellationToken,
)
from csvsense.agents.contracts import (
    AggregationFunction,
    ChartType,
    ColumnType,
    DataProfile,
    FilterOperator,
    IntentType,
    QueryEntities,
    QueryIntent,
    QueryOperation,
    QueryPlannerResult,
    SortKey,
    TimeRange,
    VisualizationHint,
)
from csvsense.config import EngineConfig
from csvsense.logging_config import get_logger
from csvsense.planning.entities import EntityExtractor, Extraction
from csvsense.planning.intent import (
    UNKNOWN_CONFIDENCE,
    Classification,
    IntentClassifier,
    QueryType,
    RuleBasedIntentClassifier,
)
from csvsense.planning.plan import compile_plan, output_measures


logger = get_logger(__name__)

MISSING_STRUCTURE_PENALTY = 0.6
MAX_QUERY_LENGTH = 2000


@dataclass
class PlanningRequest:
    """Planner input: the question and the profile it is asked against."""

    query: str
    profile: DataProfile


def default_aggregation(query_type: QueryType, extraction: Extraction) -> AggregationFunction | None:
    """Aggregation implied by the question type when none was named."""
    if extraction.aggregation is not None:
        return extraction.aggregation
    has_measure = bool(extraction.measures)
    if query_type is QueryType.AGGREGATION:
        return AggregationFunction.SUM if has_measure else AggregationFunction.COUNT
    if query_type is QueryType.TREND:
        return AggregationFunction.AVG if has_measure else AggregationFunction.COUNT
    if query_type is QueryType.RANKING:
        return AggregationFunction.SUM if has_measure else AggregationFunction.COUNT
    if query_type is QueryType.COMPARISON:
        return AggregationFunction.AVG if has_measure else AggregationFunction.COUNT
    if query_type is QueryType.DISTRIBUTION:
        return AggregationFunction.COUNT
    return None


def score_confidence(
    classification: Classification,
    extraction: Extraction,
    aggregation: AggregationFunction | None,
    group_by: list[str],
) -> float:
    """Deterministic confidence for a planned intent.

    ``base * (0.5 + 0.5 * coverage)`` where coverage is the share of
    references that resolved against the schema, penalized when the intent
    class lacks what it structurally needs.
    """
    if classification.query_type is QueryType.UNKNOWN:
        return UNKNOWN_CONFIDENCE

    references = extraction.resolved + len(extraction.unresolved)
    coverage = extraction.resolved / references if references else 1.0
    confidence = classification.confidence * (0.5 + 0.5 * coverage)

    query_type = classification.query_type
    counting = aggregation is AggregationFunction.COUNT
    missing = False
    if query_type is QueryType.TREND:
        missing = extraction.time_column is None or not (extraction.measures or counting)
    elif query_type is QueryType.AGGREGATION:
        missing = not extraction.measures and not counting
    elif query_type is QueryType.COMPARISON:
        missing = not (group_by or extraction.dimensions)
    elif query_type is QueryType.RELATIONSHIP:
        missing = len(extraction.measures) < 2
    if missing:
        confidence *= MISSING_STRUCTURE_PENALTY

    return round(min(max(confidence, 0.0), 1.0), 3)


def choose_visualization(
    intent_type: IntentType,
    query_type: QueryType,
    measures: list[str],
    group_by: list[str],
    time_column: str | None,
) -> VisualizationHint:
    y = measures[0] if measures else None
    if intent_type is IntentType.TREND and time_column:
        color = group_by[0] if group_by and group_by[0] != time_column else None
        return VisualizationHint(type=ChartType.LINE, x_axis=time_column, y_axis=y, color=color)
    if query_type is QueryType.RELATIONSHIP and len(measures) >= 2:
        return VisualizationHint(type=ChartType.SCATTER, x_axis=measures[0], y_axis=measures[1])
    if query_type is QueryType.DISTRIBUTION:
        if len(group_by) >= 2:
            return VisualizationHint(type=ChartType.HEATMAP, x_axis=group_by[0], y_axis=group_by[1])
        return VisualizationHint(type=ChartType.BAR, x_axis=group_by[0] if group_by else y, y_axis="count")
    if group_by and query_type in (QueryType.COMPARISON, QueryType.RANKING, QueryType.AGGREGATION):
        return VisualizationHint(type=ChartType.BAR, x_axis=group_by[0], y_axis=y)
    return VisualizationHint(type=ChartType.TABLE)


class QueryPlannerAgent:
    """Question -> (QueryIntent, ExecutionPlan)."""

    agent_type = AgentType.QUERY_PLANNING
    name = "query_planner"
    version = "1.0.0"

    def __init__(self, classifier: IntentClassifier | None = None, config: EngineConfig | None = None):
        self.classifier = classifier or RuleBasedIntentClassifier()
        self.config = config or EngineConfig()

    def validate_input(self, input: object) -> bool:
        if not isinstance(input, PlanningRequest):
            raise AgentValidationError("expected a PlanningRequest")
        if not isinstance(input.query, str) or not input.query.strip():
            raise AgentValidationError("query must be a non-empty string")
        if len(input.query) > MAX_QUERY_LENGTH:
            raise AgentValidationError(f"query exceeds {MAX_QUERY_LENGTH} characters")
        if not isinstance(input.profile, DataProfile) or not input.profile.columns:
            raise AgentValidationError("profile must describe at least one column")
        return True

    async def execute_internal(
        self,
        input: PlanningRequest,
        context: AgentExecutionContext,
        cancel_token: CancellationToken,
    ) -> AgentOutput[QueryPlannerResult]:
        result = self.plan(input.query, input.profile, cancel_token)
        warnings = [f"Could not resolve {term!r} against the dataset" for term in result.query_intent.unresolved_terms]
        return AgentOutput(data=result, warnings=warnings)

    def plan(
        self,
        query: str,
        profile: DataProfile,
        cancel_token: CancellationToken | None = None,
    ) -> QueryPlannerResult:
        token = cancel_token or CancellationToken()
        classification = self.classifier.classify(query, profile)
        token.raise_if_cancelled()

        extraction = EntityExtractor(profile).extract(query)
        token.raise_if_cancelled()

        query_type = classification.query_type
        intent_type = classification.intent_type
        aggregation = default_aggregation(query_type, extraction)
        group_by = self._group_by(query_type, extraction, profile)

        timeframe = extraction.timeframe
        if query_type is QueryType.TREND and timeframe is None and extraction.time_column:
            timeframe = TimeRange(column=extraction.time_column)

        confidence = score_confidence(classification, extraction, aggregation, group_by)
        entities = QueryEntities(
            measures=extraction.measures,
            dimensions=list(dict.fromkeys(extraction.dimensions + group_by)),
            filters=extraction.filters,
            timeframe=timeframe,
        )
        operation = QueryOperation(
            group_by=group_by,
            aggregation=aggregation if intent_type is not IntentType.PROFILE else None,
            sort=extraction.sort,
            limit=extraction.limit,
        )
        draft = QueryIntent(
            type=intent_type,
            entities=entities,
            operation=operation,
            confidence=confidence,
            original_query=query,
            query_type=query_type.value,
            unresolved_terms=list(dict.fromkeys(extraction.unresolved)),
        )
        measures = output_measures(draft) if aggregation else extraction.measures
        time_column = timeframe.column if (timeframe and intent_type is IntentType.TREND) else None
        if not operation.sort and extraction.sort_direction is not None and measures and group_by and not time_column:
            # "sorted ascending" with no column named orders by the value column
            operation = operation.model_copy(update={
                "sort": [SortKey(column=measures[0], direction=extraction.sort_direction)],
            })
        intent = draft.model_copy(update={
            "operation": operation,
            "visualization": choose_visualization(intent_type, query_type, measures, group_by, time_column),
        })

        fallback = confidence < self.config.fallback_confidence_threshold or intent_type is IntentType.CUSTOM
        plan = compile_plan(intent, profile, query_type=query_type, fallback_to_llm=fallback)

        logger.info(
            "query_planned",
            profile_id=profile.id,
            intent=intent_type.value,
            query_type=query_type.value,
            confidence=confidence,
            steps=len(plan.steps),
            fallback_to_llm=fallback,
            unresolved=len(intent.unresolved_terms),
        )
        return QueryPlannerResult(query_intent=intent, execution_plan=plan)

    @staticmethod
    def _group_by(query_type: QueryType, extraction: Extraction, profile: DataProfile) -> list[str]:
        group_by = list(extraction.group_by)
        if group_by:
            return group_by
        categorical = [
            d for d in extraction.dimensions
            if (col := profile.column(d)) is not None and col.type in (ColumnType.CATEGORICAL, ColumnType.BOOLEAN)
        ]
        if query_type is QueryType.COMPARISON:
            # "north vs south" compares the values of one filtered column
            multi = [f.column for f in extraction.filters if f.operator is FilterOperator.IN]
            if multi:
                return multi[:1]
            return categorical[:1]
        if query_type in (QueryType.RANKING, QueryType.DISTRIBUTION):
            return categorical[:1]
        return []

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name})>"
