"""Agent execution framework.

Agents are plain objects satisfying the :class:`Agent` protocol: they declare
their type, validate input and do their work in ``execute_internal``. They
never inherit from the framework. :class:`ManagedAgent` wraps any conforming
implementation and gives it a uniform ``execute`` boundary:

1. Input validation (internal work never runs for invalid input)
2. Timeout racing with cooperative cancellation
3. Error capture into :class:`AgentResult` (nothing is raised past ``execute``)
4. Health counters, updated only by the wrapper

Retries are opt-in through :func:`retry_execution`.
"""

from __future__ import annotations

import asyncio
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Protocol, TypeVar, runtime_checkable

from csvsense.config import DEFAULT_TIMEOUT_MS, EngineConfig
from csvsense.logging_config import get_logger


logger = get_logger(__name__)

InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")


class AgentType(str, Enum):
    """Pipeline stages; the orchestrator keeps one agent per type."""

    PROFILING = "profiling"
    QUERY_PLANNING = "query-planning"
    SEMANTIC_EXECUTOR = "semantic-executor"


# =============================================================================
# Errors
# =============================================================================

class AgentError(Exception):
    """Exception raised when agent execution fails."""

    code = "AGENT_ERROR"

    def __init__(
        self,
        message: str,
        agent_type: AgentType | str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.agent_type = agent_type
        if code is not None:
            self.code = code
        self.details = details or {}

    @property
    def retryable(self) -> bool:
        return is_retryable(self)

    def to_dict(self) -> dict[str, Any]:
        agent_type = self.agent_type.value if isinstance(self.agent_type, AgentType) else self.agent_type
        return {
            "message": self.message,
            "code": self.code,
            "agent_type": agent_type,
            "retryable": self.retryable,
            "details": self.details,
        }


class InputValidationError(AgentError):
    """Input rejected by ``validate_input``."""

    code = "INVALID_INPUT"


class AgentValidationError(AgentError):
    """Semantically invalid request, intent or plan."""

    code = "VALIDATION"


class AgentTimeoutError(AgentError):
    code = "TIMEOUT"

    def __init__(self, agent_type: AgentType | str, timeout_ms: int):
        label = agent_type.value if isinstance(agent_type, AgentType) else agent_type
        super().__init__(
            f"Agent {label} timed out after {timeout_ms}ms",
            agent_type=agent_type,
            details={"timeout_ms": timeout_ms},
        )


class AgentCancelledError(AgentError):
    code = "CANCELLED"


_NON_RETRYABLE_CODES = frozenset({
    "INVALID_INPUT", "VALIDATION", "DISPOSED", "EMPTY_DATASET", "FILE_TOO_LARGE",
})


def is_retryable(error: BaseException | None) -> bool:
    """Whether a caller may reasonably retry after ``error``.

    Timeouts and cancellations are retryable, validation failures are not.
    """
    if error is None:
        return False
    if isinstance(error, (AgentTimeoutError, AgentCancelledError)):
        return True
    if isinstance(error, (InputValidationError, AgentValidationError)):
        return False
    if isinstance(error, AgentError):
        return error.code not in _NON_RETRYABLE_CODES
    return True


# =============================================================================
# Execution primitives
# =============================================================================

@dataclass(frozen=True)
class AgentExecutionContext:
    """Per-request context. Created once and passed down unchanged."""

    request_id: str
    user_id: str | None = None
    session_id: str | None = None
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    timeout_ms: int = DEFAULT_TIMEOUT_MS


def create_execution_context(
    request_id: str | None = None,
    *,
    user_id: str | None = None,
    session_id: str | None = None,
    timeout_ms: int | None = None,
) -> AgentExecutionContext:
    """Build a context; ``timeout_ms`` defaults to 30 seconds."""
    return AgentExecutionContext(
        request_id=request_id or f"req_{uuid.uuid4().hex[:12]}",
        user_id=user_id,
        session_id=session_id,
        timeout_ms=timeout_ms if timeout_ms is not None else DEFAULT_TIMEOUT_MS,
    )


@dataclass
class ExecutionMetrics:
    execution_time_ms: float = 0.0
    memory_used_bytes: int = 0
    cache_hit: bool = False

    def to_dict(self) -> dict[str, Any]:
        return self.__dict__.copy()


@dataclass
class AgentResult(Generic[OutputT]):
    """Terminal value of every agent invocation."""

    success: bool
    data: OutputT | None = None
    error: AgentError | None = None
    metrics: ExecutionMetrics = field(default_factory=ExecutionMetrics)
    warnings: list[str] = field(default_factory=list)

    def unwrap(self) -> OutputT:
        """Return ``data`` or re-raise the captured error."""
        if not self.success:
            raise self.error or AgentError("Agent failed without an error")
        return self.data  # type: ignore[return-value]

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error.to_dict() if self.error else None,
            "metrics": self.metrics.to_dict(),
            "warnings": list(self.warnings),
        }


@dataclass
class AgentOutput(Generic[OutputT]):
    """Optional richer return value for ``execute_internal``.

    Lets an implementation report warnings, cache hits or memory use without
    touching the wrapper's bookkeeping.
    """

    data: OutputT
    warnings: list[str] = field(default_factory=list)
    cache_hit: bool = False
    memory_used_bytes: int = 0


class CancellationToken:
    """Cooperative cancellation flag threaded into every internal execution.

    Backed by a :class:`threading.Event` so work offloaded to a thread can
    observe it too.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AgentCancelledError(f"Execution cancelled: {self.reason}")


# =============================================================================
# Agent protocol and managed wrapper
# =============================================================================

@runtime_checkable
class Agent(Protocol[InputT, OutputT]):
    """Capability interface every pipeline stage implements.

    Implementations may additionally define ``dispose()`` to release
    resources; the wrapper calls it at most once. An optional
    ``is_cache_hit(data) -> bool`` marks plain results as cache hits;
    implementations returning :class:`AgentOutput` set ``cache_hit`` there.
    """

    agent_type: AgentType
    name: str
    version: str

    def validate_input(self, input: Any) -> bool: ...

    async def execute_internal(
        self,
        input: InputT,
        context: AgentExecutionContext,
        cancel_token: CancellationToken,
    ) -> OutputT | AgentOutput[OutputT]: ...


@dataclass
class HealthMetrics:
    uptime_s: float
    total_executions: int
    successful_executions: int
    success_rate: float
    avg_execution_time_ms: float
    error_count: int

    def to_dict(self) -> dict[str, Any]:
        return self.__dict__.copy()


@dataclass
class AgentHealthStatus:
    agent_type: str
    healthy: bool
    last_check: datetime
    metrics: HealthMetrics
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_type": self.agent_type,
            "healthy": self.healthy,
            "last_check": self.last_check.isoformat(),
            "metrics": self.metrics.to_dict(),
            "errors": list(self.errors),
        }


@dataclass
class _Counters:
    total_executions: int = 0
    successful_executions: int = 0
    error_count: int = 0
    total_execution_time_ms: float = 0.0
    recent_errors: deque = field(default_factory=lambda: deque(maxlen=5))


class ManagedAgent(Generic[InputT, OutputT]):
    """Uniform execution boundary around an :class:`Agent` implementation.

    Usage:
        profiler = ManagedAgent(DataProfilingAgent())
        result = await profiler.execute(upload, create_execution_context())
    """

    def __init__(self, impl: Agent[InputT, OutputT], config: EngineConfig | None = None):
        self.impl = impl
        self.config = config or EngineConfig()
        self._lock = threading.Lock()
        self._counters = _Counters()
        self._started = time.monotonic()
        self._inflight: set[CancellationToken] = set()
        self._disposed = False

    @property
    def agent_type(self) -> AgentType:
        return self.impl.agent_type

    @property
    def name(self) -> str:
        return self.impl.name

    @property
    def version(self) -> str:
        return self.impl.version

    @property
    def disposed(self) -> bool:
        return self._disposed

    async def execute(self, input: InputT, context: AgentExecutionContext) -> AgentResult[OutputT]:
        """Validate, run under the context timeout, and capture the outcome."""
        start = time.perf_counter()
        log = logger.bind(agent_type=self.agent_type.value, request_id=context.request_id)

        if self._disposed:
            return self._finish(start, log, error=AgentError(
                f"Agent {self.agent_type.value} has been disposed",
                agent_type=self.agent_type,
                code="DISPOSED",
            ))

        rejection = self._check_input(input)
        if rejection is not None:
            return self._finish(start, log, error=rejection)

        token = CancellationToken()
        self._inflight.add(token)
        try:
            outcome = await asyncio.wait_for(
                self.impl.execute_internal(input, context, token),
                timeout=context.timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            token.cancel("timeout")
            return self._finish(start, log, error=AgentTimeoutError(self.agent_type, context.timeout_ms))
        except asyncio.CancelledError:
            token.cancel("caller cancelled")
            self._finish(start, log, error=AgentCancelledError(
                "Execution cancelled by caller", agent_type=self.agent_type,
            ))
            raise
        except AgentError as exc:
            if exc.agent_type is None:
                exc.agent_type = self.agent_type
            return self._finish(start, log, error=exc)
        except Exception as exc:
            error = AgentError(str(exc) or type(exc).__name__, agent_type=self.agent_type, code="INTERNAL_ERROR")
            error.__cause__ = exc
            log.exception("agent_internal_error")
            return self._finish(start, log, error=error)
        finally:
            self._inflight.discard(token)

        if isinstance(outcome, AgentOutput):
            return self._finish(
                start,
                log,
                data=outcome.data,
                warnings=outcome.warnings,
                cache_hit=outcome.cache_hit,
                memory_used=outcome.memory_used_bytes,
            )
        cache_check = getattr(self.impl, "is_cache_hit", None)
        cache_hit = bool(cache_check(outcome)) if callable(cache_check) else False
        return self._finish(start, log, data=outcome, cache_hit=cache_hit)

    def _check_input(self, input: Any) -> InputValidationError | None:
        try:
            valid = self.impl.validate_input(input)
            reason = None
        except AgentError as exc:
            valid, reason = False, exc.message
        except (TypeError, ValueError, AttributeError) as exc:
            valid, reason = False, str(exc)
        if valid:
            return None
        message = f"Invalid input for agent {self.agent_type.value}"
        if reason:
            message = f"{message}: {reason}"
        return InputValidationError(message, agent_type=self.agent_type, details={"reason": reason})

    def _finish(
        self,
        start: float,
        log: Any,
        *,
        data: Any = None,
        error: AgentError | None = None,
        warnings: list[str] | None = None,
        cache_hit: bool = False,
        memory_used: int = 0,
    ) -> AgentResult:
        elapsed_ms = max(0.0, (time.perf_counter() - start) * 1000)
        success = error is None
        with self._lock:
            c = self._counters
            c.total_executions += 1
            c.total_execution_time_ms += elapsed_ms
            if success:
                c.successful_executions += 1
            else:
                c.error_count += 1
                c.recent_errors.append(error.message)

        if success:
            log.info("agent_execution_succeeded", execution_time_ms=round(elapsed_ms, 2), cache_hit=cache_hit)
        else:
            log.warning(
                "agent_execution_failed",
                execution_time_ms=round(elapsed_ms, 2),
                error_code=error.code,
                error=error.message,
            )

        return AgentResult(
            success=success,
            data=data if success else None,
            error=error,
            metrics=ExecutionMetrics(
                execution_time_ms=elapsed_ms,
                memory_used_bytes=memory_used,
                cache_hit=cache_hit,
            ),
            warnings=list(warnings or []),
        )

    def get_health(self) -> AgentHealthStatus:
        """Snapshot of the running counters.

        Healthy while the success rate stays above
        ``health_min_success_rate`` and fewer than ``health_max_errors``
        failures have been seen.
        """
        with self._lock:
            c = self._counters
            total = c.total_executions
            success_rate = c.successful_executions / total if total else 1.0
            avg_ms = c.total_execution_time_ms / total if total else 0.0
            metrics = HealthMetrics(
                uptime_s=round(time.monotonic() - self._started, 3),
                total_executions=total,
                successful_executions=c.successful_executions,
                success_rate=success_rate,
                avg_execution_time_ms=avg_ms,
                error_count=c.error_count,
            )
            errors = list(c.recent_errors)

        healthy = (
            not self._disposed
            and success_rate > self.config.health_min_success_rate
            and metrics.error_count < self.config.health_max_errors
        )
        return AgentHealthStatus(
            agent_type=self.agent_type.value,
            healthy=healthy,
            last_check=datetime.now(timezone.utc),
            metrics=metrics,
            errors=errors,
        )

    def dispose(self) -> None:
        """Cancel in-flight work and release the implementation. Idempotent."""
        if self._disposed:
            return
        self._disposed = True
        for token in list(self._inflight):
            token.cancel("disposed")
        release = getattr(self.impl, "dispose", None)
        if callable(release):
            release()
        logger.info("agent_disposed", agent_type=self.agent_type.value)

    def __repr__(self) -> str:
        return f"<ManagedAgent(type={self.agent_type.value}, impl={self.impl.__class__.__name__})>"


async def retry_execution(
    agent: ManagedAgent[InputT, OutputT],
    input: InputT,
    context: AgentExecutionContext,
    max_attempts: int = 3,
    delay_ms: int = 1000,
    backoff: float = 2.0,
) -> AgentResult[OutputT]:
    """Run ``agent.execute`` until it succeeds or attempts run out.

    Returns the first successful result, otherwise the last failing result
    unmodified. Every error kind is retried alike; callers that want to
    skip non-retryable errors should check :func:`is_retryable` first.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 1
    while True:
        result = await agent.execute(input, context)
        if result.success or attempt >= max_attempts:
            return result
        wait_s = (delay_ms / 1000) * backoff ** (attempt - 1)
        logger.warning(
            "agent_retry_scheduled",
            agent_type=agent.agent_type.value,
            request_id=context.request_id,
            attempt=attempt,
            max_attempts=max_attempts,
            wait_s=round(wait_s, 3),
            error=result.error.message if result.error else None,
        )
        await asyncio.sleep(wait_s)
        attempt += 1
