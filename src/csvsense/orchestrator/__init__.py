"""Orchestrator module for the semantic analysis engine.

Upload -> Profiling; Question -> Query planning -> Semantic execution
"""

from csvsense.orchestrator.runtime import AgentOrchestrator

__all__ = ["AgentOrchestrator"]
