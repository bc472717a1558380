"""Unit tests for retry with backoff and cooperative cancellation."""

import asyncio

import pytest

from schemaflow.client import CancelToken, RetryExecutor, execute_with_retry
from schemaflow.exceptions import OperationCancelledError, RetryExhaustedError


class FlakyOperation:
    """Fails ``failures`` times with ``error`` before returning ``result``."""

    def __init__(self, failures: int, error: Exception, result: str = "ok") -> None:
        self.failures = failures
        self.error = error
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def executor(sleeps) -> RetryExecutor:
    async def _record(delay: float) -> None:
        sleeps.append(delay)

    return RetryExecutor(sleep=_record)


class TestBackoff:
    """Exponential delays capped at a multiple of the base."""

    @pytest.mark.unit
    def test_doubles_each_attempt(self):
        executor = RetryExecutor()
        assert [executor.backoff(n, 1.0) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    @pytest.mark.unit
    def test_is_capped(self):
        assert RetryExecutor().backoff(20, 0.5) == 15.0

    @pytest.mark.unit
    def test_jitter_only_lengthens(self):
        executor = RetryExecutor(jitter=0.5)
        assert 2.0 <= executor.backoff(2, 1.0) <= 3.0


class TestExecute:
    """Retry decisions."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_retryable_failures_are_retried(self, executor, sleeps):
        op = FlakyOperation(2, RuntimeError("service unavailable"))

        result = await executor.execute(op, max_attempts=3, base_backoff=1.0)

        assert result == "ok"
        assert op.calls == 3
        assert sleeps == [1.0, 2.0]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_permanent_failure_is_raised_unchanged(self, executor, sleeps):
        error = ValueError("invalid input")
        op = FlakyOperation(5, error)

        with pytest.raises(ValueError) as exc_info:
            await executor.execute(op, max_attempts=3)

        assert exc_info.value is error
        assert op.calls == 1
        assert sleeps == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_exhaustion_wraps_last_error_with_context(self, executor):
        op = FlakyOperation(10, RuntimeError("rate limit exceeded"))

        with pytest.raises(RetryExhaustedError) as exc_info:
            await executor.execute(op, max_attempts=2, context="extract (request r1)")

        error = exc_info.value
        assert error.attempts == 2
        assert error.__cause__ is error.last_error
        assert "retry error: extract (request r1) failed after 2 attempts" in str(error)
        assert op.calls == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_attempt_callback_sees_every_attempt(self, executor):
        seen: list[int] = []
        op = FlakyOperation(1, ConnectionError("reset"))

        await executor.execute(op, max_attempts=3, on_attempt=seen.append)

        assert seen == [1, 2]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rejects_non_positive_attempts(self, executor):
        with pytest.raises(ValueError, match="max_attempts"):
            await executor.execute(FlakyOperation(0, RuntimeError()), max_attempts=0)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_convenience_wrapper(self):
        op = FlakyOperation(1, RuntimeError("timeout"))
        assert await execute_with_retry(op, max_attempts=2, base_backoff=0.0) == "ok"


class TestCancellation:
    """Cancellation ends the call immediately with a permanent error."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancelled_token_prevents_any_attempt(self, executor):
        token = CancelToken()
        token.cancel()
        op = FlakyOperation(0, RuntimeError())

        with pytest.raises(OperationCancelledError):
            await executor.execute(op, cancel=token)

        assert op.calls == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_deadline_interrupts_slow_attempt(self):
        async def slow() -> str:
            await asyncio.sleep(5)
            return "late"

        with pytest.raises(OperationCancelledError, match="deadline"):
            await RetryExecutor().execute(slow, cancel=CancelToken(timeout=0.05))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_during_backoff_stops_retrying(self):
        token = CancelToken()
        op = FlakyOperation(10, RuntimeError("503"))

        async def cancel_soon() -> None:
            await asyncio.sleep(0.05)
            token.cancel()

        canceller = asyncio.create_task(cancel_soon())
        with pytest.raises(OperationCancelledError):
            await RetryExecutor().execute(
                op, max_attempts=5, base_backoff=10.0, cancel=token
            )
        await canceller

        assert op.calls == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_injected_sleep_is_used_with_a_token(self, executor, sleeps):
        op = FlakyOperation(2, RuntimeError("503"))

        result = await executor.execute(
            op, base_backoff=0.5, cancel=CancelToken(timeout=100)
        )

        assert result == "ok"
        assert sleeps == [0.5, 1.0]
        assert op.calls == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_backoff_is_capped_by_the_deadline(self, executor, sleeps):
        op = FlakyOperation(1, RuntimeError("503"))

        await executor.execute(op, base_backoff=60.0, cancel=CancelToken(timeout=10))

        assert len(sleeps) == 1
        assert 0 < sleeps[0] <= 10

    @pytest.mark.unit
    def test_child_token_takes_earlier_deadline_and_shares_signal(self):
        parent = CancelToken(timeout=100)
        child = parent.with_timeout(1)

        assert child.deadline is not None
        assert parent.deadline is not None
        assert child.deadline < parent.deadline

        parent.cancel()
        assert child.cancelled
