"""Data profiling agent.

Turns an uploaded CSV into a :class:`DataProfile`. Parsing and statistics
are CPU-bound pandas work, so they run in a worker thread; the cancellation
token is shared with that thread and checked between columns.
"""

from __future__ import annotations

import asyncio

from csvsense.agents.base import (
    AgentExecutionContext,
    AgentOutput,
    AgentType,
    AgentValidationError,
    CancellationToken,
)
from csvsense.agents.contracts import DataProfile
from csvsense.config import EngineConfig
from csvsense.profiling.profiler import UploadedFile, profile_csv


ACCEPTED_EXTENSIONS = (".csv", ".tsv", ".txt")
ACCEPTED_MIME_TYPES = frozenset({
    "text/csv",
    "text/plain",
    "text/tab-separated-values",
    "application/csv",
    "application/vnd.ms-excel",
})


class DataProfilingAgent:
    """Profiles uploads: schema, statistics, quality, PII and precomputed aggregates."""

    agent_type = AgentType.PROFILING
    name = "data_profiler"
    version = "1.0.0"

    def __init__(self, config: EngineConfig | None = None):
        self.config = config or EngineConfig()

    def validate_input(self, input: object) -> bool:
        if not isinstance(input, UploadedFile):
            raise AgentValidationError("expected an UploadedFile")
        if not input.buffer:
            raise AgentValidationError("file is empty")
        if (input.size or len(input.buffer)) > self.config.max_file_size_bytes:
            limit_mb = self.config.max_file_size_bytes // (1024 * 1024)
            raise AgentValidationError(f"file exceeds the {limit_mb}MB limit")
        name_ok = input.name.lower().endswith(ACCEPTED_EXTENSIONS)
        mime_ok = (input.mime_type or "").split(";")[0].strip().lower() in ACCEPTED_MIME_TYPES
        if not (name_ok or mime_ok):
            raise AgentValidationError(f"{input.name!r} is not a CSV file")
        return True

    async def execute_internal(
        self,
        input: UploadedFile,
        context: AgentExecutionContext,
        cancel_token: CancellationToken,
    ) -> AgentOutput[DataProfile]:
        outcome = await asyncio.to_thread(profile_csv, input, self.config, cancel_token)
        return AgentOutput(
            data=outcome.profile,
            warnings=outcome.warnings,
            memory_used_bytes=outcome.memory_used_bytes,
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name})>"
