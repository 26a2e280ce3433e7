"""Orchestrator runtime for the semantic analysis engine.

Owns one managed agent per :class:`AgentType` and chains them:
Upload -> Profiling; Question -> Query planning -> Semantic execution.

Key features:
- Explicit construction, no module-level singleton
- Lazy registration of default agents on first use
- Upload retries through ``retry_execution``
- Failures re-raised as the agent's own ``AgentError``
"""

from __future__ import annotations

from typing import Any

from csvsense.agents.base import (
    Agent,
    AgentExecutionContext,
    AgentHealthStatus,
    AgentType,
    ManagedAgent,
    create_execution_context,
    retry_execution,
)
from csvsense.agents.contracts import AnalysisResult, DataProfile, QueryPlannerResult
from csvsense.agents.profiling_agent import DataProfilingAgent
from csvsense.agents.query_planner import PlanningRequest, QueryPlannerAgent
from csvsense.agents.semantic_executor import ExecutionRequest, SemanticExecutorAgent
from csvsense.config import EngineConfig
from csvsense.logging_config import bind_context, get_logger
from csvsense.profiling.profiler import UploadedFile


logger = get_logger(__name__)


class AgentOrchestrator:
    """Registry and driver for the engine's agents.

    Usage:
        orchestrator = AgentOrchestrator()
        profile = await orchestrator.process_data_upload(upload)
        result = await orchestrator.analyze("total revenue by region", profile)
        await orchestrator.shutdown()
    """

    def __init__(self, config: EngineConfig | None = None):
        self.config = config or EngineConfig()
        self._agents: dict[AgentType, ManagedAgent] = {}
        self._shut_down = False

    # -- registry ----------------------------------------------------------

    def register_agent(self, agent: Agent | ManagedAgent) -> ManagedAgent:
        """Register an agent, disposing any other one registered for the same type."""
        managed = agent if isinstance(agent, ManagedAgent) else ManagedAgent(agent, self.config)
        previous = self._agents.get(managed.agent_type)
        if previous is not None and previous is not managed:
            logger.warning(
                "agent_replaced",
                agent_type=managed.agent_type.value,
                previous=previous.name,
                replacement=managed.name,
            )
            previous.dispose()
        self._agents[managed.agent_type] = managed
        self._shut_down = False
        logger.info("agent_registered", agent_type=managed.agent_type.value, name=managed.name)
        return managed

    def get_agent(self, agent_type: AgentType) -> ManagedAgent | None:
        return self._agents.get(agent_type)

    def _ensure(self, agent_type: AgentType) -> ManagedAgent:
        agent = self._agents.get(agent_type)
        if agent is not None:
            return agent
        if agent_type is AgentType.PROFILING:
            return self.register_agent(DataProfilingAgent(self.config))
        if agent_type is AgentType.QUERY_PLANNING:
            return self.register_agent(QueryPlannerAgent(config=self.config))
        return self.register_agent(SemanticExecutorAgent())

    def _context(self, context: AgentExecutionContext | None, timeout_ms: int | None = None) -> AgentExecutionContext:
        if context is None:
            context = create_execution_context(timeout_ms=timeout_ms or self.config.default_timeout_ms)
        bind_context(request_id=context.request_id)
        return context

    # -- pipeline ----------------------------------------------------------

    async def process_data_upload(
        self,
        file: UploadedFile,
        context: AgentExecutionContext | None = None,
    ) -> DataProfile:
        """Profile an upload.

        Raises:
            AgentError: The profiling agent's error after retries are exhausted
        """
        agent = self._ensure(AgentType.PROFILING)
        context = self._context(context, self.config.upload_timeout_ms)
        result = await retry_execution(
            agent,
            file,
            context,
            max_attempts=self.config.upload_retry_attempts,
            delay_ms=self.config.upload_retry_delay_ms,
        )
        for warning in result.warnings:
            logger.warning("upload_warning", warning=warning)
        return result.unwrap()

    async def plan_query(
        self,
        query: str,
        profile: DataProfile,
        context: AgentExecutionContext | None = None,
    ) -> QueryPlannerResult:
        agent = self._ensure(AgentType.QUERY_PLANNING)
        result = await agent.execute(PlanningRequest(query=query, profile=profile), self._context(context))
        return result.unwrap()

    async def analyze(
        self,
        query: str,
        profile: DataProfile,
        known_results: dict[str, list[dict[str, Any]]] | None = None,
        context: AgentExecutionContext | None = None,
    ) -> AnalysisResult:
        """Plan and execute a question against a profile."""
        context = self._context(context)
        planned = await self.plan_query(query, profile, context)
        executor = self._ensure(AgentType.SEMANTIC_EXECUTOR)
        request = ExecutionRequest(
            query_intent=planned.query_intent,
            profile=profile,
            execution_plan=planned.execution_plan,
            known_results=known_results,
        )
        result = await executor.execute(request, context)
        analysis = result.unwrap()
        path = [AgentType.QUERY_PLANNING.value] + [
            p for p in analysis.metadata.agent_path if p != AgentType.QUERY_PLANNING.value
        ]
        metadata = analysis.metadata.model_copy(update={"agent_path": path})
        return analysis.model_copy(update={"metadata": metadata})

    # -- lifecycle ---------------------------------------------------------

    async def health(self) -> dict[AgentType, AgentHealthStatus]:
        return {agent_type: agent.get_health() for agent_type, agent in self._agents.items()}

    async def shutdown(self) -> None:
        """Dispose every registered agent. Idempotent."""
        if self._shut_down and not self._agents:
            return
        for agent in list(self._agents.values()):
            agent.dispose()
        self._agents.clear()
        self._shut_down = True
        logger.info("orchestrator_shutdown")

    async def __aenter__(self) -> "AgentOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()
