"""Tests for the agent execution framework (ManagedAgent, retries, health)."""

from __future__ import annotations

import asyncio

import pytest

from csvsense.agents.base import (
    AgentCancelledError,
    AgentError,
    AgentExecutionContext,
    AgentOutput,
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
from csvsense.config import EngineConfig


class EchoAgent:
    """Returns its input; counts how often internals run."""

    agent_type = AgentType.PROFILING
    name = "echo"
    version = "0.0.1"

    def __init__(self, delay_s: float = 0.0, accept: bool = True):
        self.delay_s = delay_s
        self.accept = accept
        self.calls = 0
        self.disposed = 0
        self.seen_tokens: list[CancellationToken] = []

    def validate_input(self, input):
        return self.accept

    async def execute_internal(self, input, context, cancel_token):
        self.calls += 1
        self.seen_tokens.append(cancel_token)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        return input

    def dispose(self):
        self.disposed += 1


class MemoEchoAgent(EchoAgent):
    """Echo that recognises a memoized answer in its own output."""

    def is_cache_hit(self, data):
        return data == "memoized"


class FlakyAgent:
    """Fails ``failures`` times, then succeeds."""

    agent_type = AgentType.QUERY_PLANNING
    name = "flaky"
    version = "0.0.1"

    def __init__(self, failures: int, message: str = "boom"):
        self.failures = failures
        self.message = message
        self.calls = 0

    def validate_input(self, input):
        return True

    async def execute_internal(self, input, context, cancel_token):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(self.message)
        return AgentOutput(data="ok", warnings=["recovered"], cache_hit=True)


def ctx(timeout_ms: int = 1000) -> AgentExecutionContext:
    return create_execution_context(timeout_ms=timeout_ms)


# ---------------------------------------------------------------------------
# Context and errors
# ---------------------------------------------------------------------------

class TestExecutionContext:
    def test_default_timeout_is_thirty_seconds(self):
        context = create_execution_context()
        assert context.timeout_ms == 30000
        assert context.request_id.startswith("req_")

    def test_explicit_values_are_kept(self):
        context = create_execution_context("r1", user_id="u", session_id="s", timeout_ms=5)
        assert (context.request_id, context.user_id, context.session_id, context.timeout_ms) == ("r1", "u", "s", 5)


class TestRetryable:
    def test_timeouts_and_cancellations_are_retryable(self):
        assert is_retryable(AgentTimeoutError(AgentType.PROFILING, 10))
        assert is_retryable(AgentCancelledError("stop"))

    def test_validation_errors_are_not(self):
        assert not is_retryable(InputValidationError("bad"))
        assert not is_retryable(AgentValidationError("bad"))
        assert not is_retryable(AgentError("empty", code="EMPTY_DATASET"))

    def test_other_agent_errors_are(self):
        assert AgentError("flaky", code="INTERNAL_ERROR").retryable

    def test_error_to_dict(self):
        err = AgentError("nope", AgentType.SEMANTIC_EXECUTOR, code="STEP_FAILED", details={"step_id": "s1"})
        data = err.to_dict()
        assert data["agent_type"] == "semantic-executor"
        assert data["code"] == "STEP_FAILED"
        assert data["details"] == {"step_id": "s1"}


# ---------------------------------------------------------------------------
# ManagedAgent.execute
# ---------------------------------------------------------------------------

class TestManagedExecute:
    @pytest.mark.asyncio
    async def test_invalid_input_never_runs_internals(self):
        impl = EchoAgent(accept=False)
        agent = ManagedAgent(impl)

        result = await agent.execute("x", ctx())

        assert result.success is False
        assert isinstance(result.error, InputValidationError)
        assert "Invalid input" in result.error.message
        assert impl.calls == 0

    @pytest.mark.asyncio
    async def test_validation_exception_is_reported_as_invalid_input(self):
        class Strict(EchoAgent):
            def validate_input(self, input):
                raise AgentValidationError("expected bytes")

        agent = ManagedAgent(Strict())
        result = await agent.execute("x", ctx())
        assert result.error.code == "INVALID_INPUT"
        assert "expected bytes" in result.error.message

    @pytest.mark.asyncio
    async def test_success_returns_data_and_metrics(self):
        agent = ManagedAgent(EchoAgent())
        result = await agent.execute({"a": 1}, ctx())
        assert result.success is True
        assert result.data == {"a": 1}
        assert result.metrics.execution_time_ms >= 0

    @pytest.mark.asyncio
    async def test_agent_output_is_unwrapped(self):
        agent = ManagedAgent(FlakyAgent(failures=0))
        result = await agent.execute(None, ctx())
        assert result.data == "ok"
        assert result.warnings == ["recovered"]
        assert result.metrics.cache_hit is True

    @pytest.mark.asyncio
    async def test_is_cache_hit_marks_plain_results(self):
        agent = ManagedAgent(MemoEchoAgent())
        hit = await agent.execute("memoized", ctx())
        miss = await agent.execute("fresh", ctx())
        assert hit.metrics.cache_hit is True
        assert miss.metrics.cache_hit is False

    @pytest.mark.asyncio
    async def test_plain_results_without_cache_check_are_misses(self):
        result = await ManagedAgent(EchoAgent()).execute("memoized", ctx())
        assert result.metrics.cache_hit is False

    @pytest.mark.asyncio
    async def test_slow_work_times_out_and_cancels_token(self):
        impl = EchoAgent(delay_s=1.0)
        agent = ManagedAgent(impl)

        result = await agent.execute("x", ctx(timeout_ms=20))

        assert result.success is False
        assert isinstance(result.error, AgentTimeoutError)
        assert "timed out" in result.error.message
        assert impl.seen_tokens[0].cancelled

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_wrapped(self):
        agent = ManagedAgent(FlakyAgent(failures=1, message="disk on fire"))
        result = await agent.execute(None, ctx())
        assert result.error.code == "INTERNAL_ERROR"
        assert result.error.message == "disk on fire"
        assert isinstance(result.error.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_agent_error_passes_through_with_type(self):
        class Failing(EchoAgent):
            async def execute_internal(self, input, context, cancel_token):
                raise AgentError("bad step", code="STEP_FAILED")

        result = await ManagedAgent(Failing()).execute("x", ctx())
        assert result.error.code == "STEP_FAILED"
        assert result.error.agent_type is AgentType.PROFILING

    @pytest.mark.asyncio
    async def test_unwrap_reraises_error(self):
        result = await ManagedAgent(EchoAgent(accept=False)).execute("x", ctx())
        with pytest.raises(InputValidationError):
            result.unwrap()


# ---------------------------------------------------------------------------
# Health and lifecycle
# ---------------------------------------------------------------------------

class TestHealth:
    def test_no_executions_is_healthy(self):
        health = ManagedAgent(EchoAgent()).get_health()
        assert health.healthy is True
        assert health.metrics.success_rate == 1.0
        assert health.metrics.total_executions == 0

    @pytest.mark.asyncio
    async def test_successes_are_counted(self):
        agent = ManagedAgent(EchoAgent())
        for i in range(4):
            await agent.execute(i, ctx())
        health = agent.get_health()
        assert health.metrics.total_executions == 4
        assert health.metrics.successful_executions == 4
        assert health.metrics.success_rate == 1.0
        assert health.healthy

    @pytest.mark.asyncio
    async def test_one_failure_in_few_calls_is_unhealthy(self):
        agent = ManagedAgent(EchoAgent(accept=False))
        await agent.execute("x", ctx())
        health = agent.get_health()
        assert health.healthy is False
        assert health.metrics.error_count == 1
        assert health.errors and "Invalid input" in health.errors[0]

    @pytest.mark.asyncio
    async def test_thresholds_come_from_config(self):
        config = EngineConfig(health_min_success_rate=0.4, health_max_errors=5)
        impl = FlakyAgent(failures=1)
        agent = ManagedAgent(impl, config)
        await agent.execute(None, ctx())
        await agent.execute(None, ctx())
        assert agent.get_health().healthy is True

    @pytest.mark.asyncio
    async def test_timed_out_work_counts_once(self):
        agent = ManagedAgent(EchoAgent(delay_s=0.2))
        await agent.execute("x", ctx(timeout_ms=10))
        await asyncio.sleep(0.3)
        assert agent.get_health().metrics.total_executions == 1

    @pytest.mark.asyncio
    async def test_concurrent_executions_are_all_counted(self):
        agent = ManagedAgent(EchoAgent(delay_s=0.01))
        await asyncio.gather(*(agent.execute(i, ctx()) for i in range(20)))
        assert agent.get_health().metrics.total_executions == 20


class TestDispose:
    @pytest.mark.asyncio
    async def test_dispose_is_idempotent(self):
        impl = EchoAgent()
        agent = ManagedAgent(impl)
        agent.dispose()
        agent.dispose()
        assert impl.disposed == 1
        assert agent.get_health().healthy is False

    @pytest.mark.asyncio
    async def test_disposed_agent_rejects_work(self):
        agent = ManagedAgent(EchoAgent())
        agent.dispose()
        result = await agent.execute("x", ctx())
        assert result.error.code == "DISPOSED"


# ---------------------------------------------------------------------------
# retry_execution
# ---------------------------------------------------------------------------

class TestRetry:
    @pytest.mark.asyncio
    async def test_succeeds_on_third_attempt(self):
        impl = FlakyAgent(failures=2)
        result = await retry_execution(ManagedAgent(impl), None, ctx(), max_attempts=3, delay_ms=1)
        assert result.success is True
        assert impl.calls == 3

    @pytest.mark.asyncio
    async def test_returns_last_failure_unmodified(self):
        impl = FlakyAgent(failures=5, message="still broken")
        result = await retry_execution(ManagedAgent(impl), None, ctx(), max_attempts=2, delay_ms=1)
        assert result.success is False
        assert result.error.message == "still broken"
        assert impl.calls == 2

    @pytest.mark.asyncio
    async def test_single_attempt_returns_its_failure(self):
        impl = FlakyAgent(failures=1, message="once")
        result = await retry_execution(ManagedAgent(impl), None, ctx(), max_attempts=1, delay_ms=1)
        assert result.success is False
        assert result.error.message == "once"
        assert impl.calls == 1

    @pytest.mark.asyncio
    async def test_first_success_returns_immediately(self):
        impl = FlakyAgent(failures=0)
        await retry_execution(ManagedAgent(impl), None, ctx(), max_attempts=3, delay_ms=1)
        assert impl.calls == 1

    @pytest.mark.asyncio
    async def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            await retry_execution(ManagedAgent(EchoAgent()), None, ctx(), max_attempts=0)


class TestCancellationToken:
    def test_cancel_records_first_reason(self):
        token = CancellationToken()
        token.cancel("timeout")
        token.cancel("other")
        assert token.cancelled
        assert token.reason == "timeout"
        with pytest.raises(AgentCancelledError):
            token.raise_if_cancelled()
