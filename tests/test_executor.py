"""Tests for SemanticExecutorAgent plan execution."""

from __future__ import annotations

import pytest

from csvsense.agents.base import (
    AgentError,
    AgentValidationError,
    ManagedAgent,
    create_execution_context,
)
from csvsense.agents.contracts import ExecutionPlan, InsightType, PlanStep, StepType
from csvsense.agents.query_planner import QueryPlannerAgent
from csvsense.agents.semantic_executor import (
    ExecutionRequest,
    SemanticExecutorAgent,
    dependency_order,
)


@pytest.fixture
def request_for():
    planner = QueryPlannerAgent()

    def _request(query, profile, known_results=None):
        planned = planner.plan(query, profile)
        return ExecutionRequest(planned.query_intent, profile, planned.execution_plan, known_results)

    return _request


@pytest.fixture
def executor():
    return SemanticExecutorAgent()


def step(step_id, step_type=StepType.TRANSFORM, depends_on=None, **params):
    return PlanStep(id=step_id, type=step_type, operation=step_type.value, params=params, depends_on=depends_on or [])


class TestDependencyOrder:
    def test_declaration_order_is_kept(self):
        plan = ExecutionPlan(id="p", steps=[step("a"), step("b", depends_on=["a"]), step("c", depends_on=["b"])])
        assert [s.id for s in dependency_order(plan)] == ["a", "b", "c"]

    def test_cycle_is_rejected(self):
        plan = ExecutionPlan.model_construct(
            id="p",
            steps=[step("a", depends_on=["b"]), step("b", depends_on=["a"])],
        )
        with pytest.raises(AgentValidationError, match="cycle"):
            dependency_order(plan)

    def test_unknown_dependency_is_rejected(self):
        plan = ExecutionPlan.model_construct(id="p", steps=[step("a", depends_on=["ghost"])])
        with pytest.raises(AgentValidationError, match="unknown"):
            dependency_order(plan)


class TestRun:
    def test_total_revenue_by_category(self, executor, request_for, sales_profile):
        result = executor.run(request_for("What is the total revenue by category?", sales_profile)).data
        assert result.data == [
            {"category": "Electronics", "revenue": 3680.5},
            {"category": "Clothing", "revenue": 750.25},
        ]
        assert result.metadata.data_points == 5
        assert result.metadata.source == "sample"
        assert result.metadata.steps_executed == [s.id for s in result.execution_plan.steps]
        assert result.id.startswith("analysis_")

    def test_comparison_insight(self, executor, request_for, sales_profile):
        result = executor.run(request_for("What is the total revenue by category?", sales_profile)).data
        comparison = next(i for i in result.insights if i.type is InsightType.COMPARISON)
        assert comparison.data["top"] == "Electronics"
        assert comparison.data["bottom"] == "Clothing"

    def test_filtered_total(self, executor, request_for, sales_profile):
        result = executor.run(request_for("total revenue in North", sales_profile)).data
        assert result.data == [{"revenue": 1650.75}]
        assert result.insights[0].description == "The sum of revenue is 1,650.75"

    def test_whole_column_total_uses_precomputed_aggregates(self, executor, request_for, sales_profile):
        result = executor.run(request_for("What is the total revenue?", sales_profile)).data
        assert result.data == [{"revenue": 4430.75}]
        assert result.metadata.source == "aggregations"

    def test_ranking(self, executor, request_for, sales_profile):
        result = executor.run(request_for("Top 2 regions by revenue", sales_profile)).data
        assert [r["region"] for r in result.data] == ["South", "North"]
        assert [r["revenue_rank"] for r in result.data] == [1, 2]

    def test_requested_direction_orders_rows(self, executor, request_for, sales_profile):
        result = executor.run(request_for("total revenue for each region sorted ascending", sales_profile)).data
        assert [r["region"] for r in result.data] == ["East", "North", "South"]

    def test_at_least_returns_matching_rows(self, executor, request_for, sales_profile):
        result = executor.run(request_for("show orders where revenue at least 980", sales_profile)).data
        assert sorted(r["revenue"] for r in result.data) == [980.0, 1200.5, 1500.0]
        assert all("count" not in r for r in result.data)

    def test_trend(self, executor, request_for, monthly_profile):
        result = executor.run(request_for("Show the sales trend over time", monthly_profile)).data
        assert len(result.data) == 24
        assert result.data[0]["month"].startswith("2022-01-01")
        trend = next(i for i in result.insights if i.type is InsightType.TREND)
        assert trend.data["direction"] == "up"

    def test_profile_summary(self, executor, request_for, sales_profile):
        result = executor.run(request_for("Give me an overview of the data", sales_profile)).data
        assert {row["column"] for row in result.data} >= {"revenue", "category", "date"}

    def test_charts_and_follow_ups(self, executor, request_for, sales_profile):
        result = executor.run(request_for("What is the total revenue by category?", sales_profile)).data
        assert result.chart_suggestions[0].chart_type.value == "bar"
        assert 0 < len(result.suggestions) <= 4


class TestCache:
    def test_known_result_is_returned(self, executor, request_for, sales_profile):
        first = request_for("What is the total revenue by category?", sales_profile)
        rows = [{"category": "cached", "revenue": 1.0}]
        again = request_for(
            "what is the total revenue by category",
            sales_profile,
            known_results={first.execution_plan.cache_key: rows},
        )
        output = executor.run(again)
        assert output.cache_hit is True
        assert output.data.data == rows
        assert output.data.metadata.source == "cache"
        assert output.data.metadata.steps_executed == ["step_1_cache"]

    def test_other_keys_do_not_hit(self, executor, request_for, sales_profile):
        request = request_for("What is the total revenue by category?", sales_profile, known_results={"q_other": []})
        assert executor.run(request).cache_hit is False


class TestFailures:
    def test_step_error_names_the_step(self, executor, request_for, sales_profile):
        request = request_for("What is the total revenue by category?", sales_profile)
        steps = list(request.execution_plan.steps)
        steps[2] = steps[2].model_copy(update={"params": {**steps[2].params, "measures": ["region"]}})
        request.execution_plan = request.execution_plan.model_copy(update={"steps": steps})
        with pytest.raises(AgentError) as exc_info:
            executor.run(request)
        assert exc_info.value.code == "STEP_FAILED"
        assert "step_3_aggregate" in exc_info.value.message

    def test_validation(self, executor, request_for, sales_profile):
        request = request_for("total revenue", sales_profile)
        request.execution_plan = request.execution_plan.model_copy(update={"steps": []})
        with pytest.raises(AgentValidationError):
            executor.validate_input(request)

    @pytest.mark.asyncio
    async def test_managed_execution(self, request_for, sales_profile):
        agent = ManagedAgent(SemanticExecutorAgent())
        result = await agent.execute(
            request_for("How many rows per region?", sales_profile),
            create_execution_context(),
        )
        assert result.success
        counts = {row["region"]: row["count"] for row in result.data.data}
        assert counts == {"North": 2, "South": 2, "East": 1}
