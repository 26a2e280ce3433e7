"""Tests for QueryPlannerAgent: intents, confidence and fallback."""

from __future__ import annotations

import pytest

from csvsense.agents.base import AgentValidationError, ManagedAgent, create_execution_context
from csvsense.agents.contracts import (
    AggregationFunction,
    ChartType,
    FilterOperator,
    IntentType,
    SortDirection,
)
from csvsense.agents.query_planner import PlanningRequest, QueryPlannerAgent
from csvsense.config import EngineConfig
from csvsense.planning.intent import Classification, QueryType


@pytest.fixture
def planner():
    return QueryPlannerAgent()


class TestIntents:
    def test_total_by_category(self, planner, sales_profile):
        intent = planner.plan("What is the total revenue by category?", sales_profile).query_intent
        assert intent.type is IntentType.AGGREGATION
        assert intent.confidence == pytest.approx(0.9)
        assert intent.entities.measures == ["revenue"]
        assert intent.operation.group_by == ["category"]
        assert intent.operation.aggregation is AggregationFunction.SUM
        assert intent.visualization.type is ChartType.BAR

    def test_trend_gets_time_column(self, planner, sales_profile):
        intent = planner.plan("Show the revenue trend over time", sales_profile).query_intent
        assert intent.type is IntentType.TREND
        assert intent.entities.timeframe.column == "date"
        assert intent.operation.aggregation is AggregationFunction.AVG
        assert intent.visualization.type is ChartType.LINE
        assert intent.visualization.x_axis == "date"

    def test_comparison_groups_by_compared_column(self, planner, sales_profile):
        intent = planner.plan("Compare revenue for North vs South", sales_profile).query_intent
        assert intent.type is IntentType.COMPARISON
        assert intent.operation.group_by == ["region"]
        assert intent.entities.filters[0].operator is FilterOperator.IN

    def test_ranking_is_custom_with_group(self, planner, sales_profile):
        result = planner.plan("Top 3 categories by revenue", sales_profile)
        intent = result.query_intent
        assert intent.type is IntentType.CUSTOM
        assert intent.query_type == "ranking"
        assert intent.operation.group_by == ["category"]
        assert intent.operation.limit == 3

    def test_direction_word_orders_the_value_column(self, planner, sales_profile):
        intent = planner.plan("total revenue for each region sorted ascending", sales_profile).query_intent
        assert intent.operation.group_by == ["region"]
        assert [(k.column, k.direction) for k in intent.operation.sort] == [("revenue", SortDirection.ASC)]

    def test_bottom_sorts_ascending(self, planner, sales_profile):
        intent = planner.plan("bottom 2 regions by revenue", sales_profile).query_intent
        assert [(k.column, k.direction) for k in intent.operation.sort] == [("revenue", SortDirection.ASC)]

    def test_at_least_filters_instead_of_ranking(self, planner, sales_profile):
        intent = planner.plan("show orders where revenue at least 980", sales_profile).query_intent
        assert intent.query_type == "filter"
        assert intent.entities.filters[0].operator is FilterOperator.GTE
        assert intent.operation.sort == []

    def test_count_without_measure(self, planner, sales_profile):
        intent = planner.plan("How many rows per region?", sales_profile).query_intent
        assert intent.operation.aggregation is AggregationFunction.COUNT
        assert intent.operation.group_by == ["region"]

    def test_profile_question_has_no_aggregation(self, planner, sales_profile):
        intent = planner.plan("Give me an overview of the data", sales_profile).query_intent
        assert intent.type is IntentType.PROFILE
        assert intent.operation.aggregation is None


class TestConfidence:
    def test_unknown_question_falls_back(self, planner, sales_profile):
        result = planner.plan("hello there", sales_profile)
        assert result.query_intent.type is IntentType.CUSTOM
        assert result.query_intent.confidence == pytest.approx(0.1)
        assert result.execution_plan.fallback_to_llm is True

    def test_unresolved_terms_lower_confidence(self, planner, sales_profile):
        result = planner.plan("total profit by category", sales_profile)
        intent = result.query_intent
        assert "profit" in intent.unresolved_terms
        assert intent.confidence < 0.6
        assert result.execution_plan.fallback_to_llm is True

    def test_confident_plan_does_not_fall_back(self, planner, sales_profile):
        result = planner.plan("What is the total revenue by category?", sales_profile)
        assert result.execution_plan.fallback_to_llm is False

    def test_threshold_is_configurable(self, sales_profile):
        planner = QueryPlannerAgent(config=EngineConfig(fallback_confidence_threshold=0.95))
        result = planner.plan("What is the total revenue by category?", sales_profile)
        assert result.execution_plan.fallback_to_llm is True

    def test_planning_is_deterministic(self, planner, sales_profile):
        a = planner.plan("Average quantity by region", sales_profile)
        b = planner.plan("Average quantity by region", sales_profile)
        assert a.query_intent == b.query_intent
        assert a.execution_plan.cache_key == b.execution_plan.cache_key


class TestPluggableClassifier:
    def test_custom_classifier_is_used(self, sales_profile):
        class AlwaysTrend:
            def classify(self, query, profile):
                return Classification(QueryType.TREND, 0.9, ["stub"])

        planner = QueryPlannerAgent(classifier=AlwaysTrend())
        intent = planner.plan("revenue", sales_profile).query_intent
        assert intent.type is IntentType.TREND


class TestAgent:
    def test_rejects_blank_query(self, planner, sales_profile):
        with pytest.raises(AgentValidationError):
            planner.validate_input(PlanningRequest("   ", sales_profile))

    def test_rejects_long_query(self, planner, sales_profile):
        with pytest.raises(AgentValidationError):
            planner.validate_input(PlanningRequest("x" * 2001, sales_profile))

    def test_rejects_wrong_type(self, planner):
        with pytest.raises(AgentValidationError):
            planner.validate_input("total revenue")

    @pytest.mark.asyncio
    async def test_unresolved_terms_become_warnings(self, sales_profile):
        agent = ManagedAgent(QueryPlannerAgent())
        result = await agent.execute(
            PlanningRequest("count orders by warehouse", sales_profile),
            create_execution_context(),
        )
        assert result.success
        assert any("warehouse" in w for w in result.warnings)
