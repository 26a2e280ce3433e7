"""Tests for AgentOrchestrator: registry, pipeline and lifecycle."""

from __future__ import annotations

import pytest
import pytest_asyncio

from csvsense.agents.base import AgentError, AgentOutput, AgentType, ManagedAgent
from csvsense.agents.profiling_agent import DataProfilingAgent
from csvsense.config import EngineConfig
from csvsense.orchestrator import AgentOrchestrator
from csvsense.profiling.profiler import UploadedFile


FAST_RETRY = EngineConfig(upload_retry_attempts=3, upload_retry_delay_ms=1)


class FlakyProfiler(DataProfilingAgent):
    """Fails the first ``failures`` calls, then profiles normally."""

    def __init__(self, failures: int):
        super().__init__(FAST_RETRY)
        self.failures = failures
        self.calls = 0

    async def execute_internal(self, input, context, cancel_token) -> AgentOutput:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("transient read failure")
        return await super().execute_internal(input, context, cancel_token)


@pytest_asyncio.fixture
async def orchestrator():
    orch = AgentOrchestrator(FAST_RETRY)
    yield orch
    await orch.shutdown()


class TestRegistry:
    @pytest.mark.asyncio
    async def test_defaults_are_registered_lazily(self, orchestrator, sales_upload):
        assert orchestrator.get_agent(AgentType.PROFILING) is None
        await orchestrator.process_data_upload(sales_upload)
        assert orchestrator.get_agent(AgentType.PROFILING) is not None

    @pytest.mark.asyncio
    async def test_replacement(self, orchestrator):
        first = orchestrator.register_agent(DataProfilingAgent())
        second = orchestrator.register_agent(DataProfilingAgent())
        assert first is not second
        assert orchestrator.get_agent(AgentType.PROFILING) is second
        assert first.disposed is True
        assert second.disposed is False

    @pytest.mark.asyncio
    async def test_re_registering_the_same_agent_keeps_it_live(self, orchestrator):
        managed = orchestrator.register_agent(DataProfilingAgent())
        assert orchestrator.register_agent(managed) is managed
        assert managed.disposed is False

    @pytest.mark.asyncio
    async def test_managed_agents_are_kept_as_is(self, orchestrator):
        managed = ManagedAgent(DataProfilingAgent())
        assert orchestrator.register_agent(managed) is managed


class TestPipeline:
    @pytest.mark.asyncio
    async def test_upload_then_analyze(self, orchestrator, sales_upload):
        profile = await orchestrator.process_data_upload(sales_upload)
        result = await orchestrator.analyze("What is the total revenue by category?", profile)
        assert result.intent.type.value == "aggregation"
        assert result.data[0] == {"category": "Electronics", "revenue": 3680.5}
        assert result.metadata.agent_path == ["query-planning", "semantic-executor"]

    @pytest.mark.asyncio
    async def test_plan_only(self, orchestrator, sales_profile):
        planned = await orchestrator.plan_query("Show the revenue trend over time", sales_profile)
        assert planned.query_intent.entities.timeframe.column == "date"
        assert planned.execution_plan.steps[0].id == "step_1_cache"

    @pytest.mark.asyncio
    async def test_known_results_short_circuit(self, orchestrator, sales_profile):
        planned = await orchestrator.plan_query("total revenue by region", sales_profile)
        rows = [{"region": "cached", "revenue": 0}]
        result = await orchestrator.analyze(
            "Total revenue by region?",
            sales_profile,
            known_results={planned.execution_plan.cache_key: rows},
        )
        assert result.metadata.cache_hit is True
        assert result.data == rows

    @pytest.mark.asyncio
    async def test_upload_is_retried(self, orchestrator, sales_upload):
        flaky = FlakyProfiler(failures=2)
        orchestrator.register_agent(flaky)
        profile = await orchestrator.process_data_upload(sales_upload)
        assert profile.metadata.row_count == 5
        assert flaky.calls == 3

    @pytest.mark.asyncio
    async def test_upload_errors_surface(self, orchestrator):
        with pytest.raises(AgentError) as exc_info:
            await orchestrator.process_data_upload(UploadedFile(buffer=b"a,b\n", name="empty.csv"))
        assert exc_info.value.code == "EMPTY_DATASET"

    @pytest.mark.asyncio
    async def test_blank_question_is_rejected(self, orchestrator, sales_profile):
        with pytest.raises(AgentError) as exc_info:
            await orchestrator.analyze("   ", sales_profile)
        assert exc_info.value.code == "INVALID_INPUT"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_health_reports_registered_agents(self, orchestrator, sales_upload):
        await orchestrator.process_data_upload(sales_upload)
        health = await orchestrator.health()
        assert set(health) == {AgentType.PROFILING}
        assert health[AgentType.PROFILING].healthy

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self, sales_upload):
        orch = AgentOrchestrator()
        await orch.process_data_upload(sales_upload)
        agent = orch.get_agent(AgentType.PROFILING)
        await orch.shutdown()
        await orch.shutdown()
        assert orch.get_agent(AgentType.PROFILING) is None
        assert agent.get_health().healthy is False

    @pytest.mark.asyncio
    async def test_context_manager(self, sales_upload):
        async with AgentOrchestrator() as orch:
            await orch.process_data_upload(sales_upload)
        assert await orch.health() == {}
