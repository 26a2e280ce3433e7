"""Agents of the semantic analysis engine.

Contracts and the execution framework are re-exported here. Implementations
live in their own modules:
- profiling_agent.DataProfilingAgent: CSV upload -> DataProfile
- query_planner.QueryPlannerAgent: question + profile -> intent + plan
- semantic_executor.SemanticExecutorAgent: plan -> AnalysisResult
"""

from csvsense.agents.contracts import (
    # Enums
    AggregationFunction,
    ColumnType,
    FilterOperator,
    IntentType,
    PIIType,
    RiskLevel,
    StepType,
    # Profile
    ColumnProfile,
    DataProfile,
    # Planning
    ExecutionPlan,
    PlanStep,
    QueryIntent,
    QueryPlannerResult,
    # Results
    AnalysisResult,
)
from csvsense.agents.base import (
    Agent,
    AgentError,
    AgentExecutionContext,
    AgentHealthStatus,
    AgentResult,
    AgentTimeoutError,
    AgentType,
    AgentValidationError,
    CancellationToken,
    InputValidationError,
    ManagedAgent,
    create_execution_context,
    is_retryable,
    retry_execution,
)

__all__ = [
    # Enums
    "AggregationFunction",
    "ColumnType",
    "FilterOperator",
    "IntentType",
    "PIIType",
    "RiskLevel",
    "StepType",
    # Profile
    "ColumnProfile",
    "DataProfile",
    # Planning
    "ExecutionPlan",
    "PlanStep",
    "QueryIntent",
    "QueryPlannerResult",
    # Results
    "AnalysisResult",
    # Framework
    "Agent",
    "AgentError",
    "AgentExecutionContext",
    "AgentHealthStatus",
    "AgentResult",
    "AgentTimeoutError",
    "AgentType",
    "AgentValidationError",
    "CancellationToken",
    "InputValidationError",
    "ManagedAgent",
    "create_execution_context",
    "is_retryable",
    "retry_execution",
]
