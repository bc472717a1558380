"""Retry with exponential backoff for transient backend failures.

Only failures classified as retryable are retried. Cancellation, whether
signalled or through a passed deadline, ends the call immediately with a
permanent ``OperationCancelledError``.
"""

import asyncio
from collections.abc import Awaitable, Callable
import logging
from random import random
import time

from schemaflow.constants import (
    MAX_ATTEMPTS,
    RETRY_BASE_DELAY,
    RETRY_MAX_BACKOFF_MULTIPLE,
)
from schemaflow.exceptions import OperationCancelledError, RetryExhaustedError

from .error_handler import ErrorClassifier

log = logging.getLogger(__name__)


class CancelToken:
    """Cooperative cancellation signal with an optional deadline.

    ``cancel()`` must be called from the event loop's thread.
    """

    __slots__ = ("_event", "deadline")

    def __init__(self, timeout: float | None = None) -> None:
        self._event = asyncio.Event()
        self.deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.expired

    def remaining(self) -> float | None:
        """Seconds until the deadline, or None without one."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def with_timeout(self, timeout: float | None) -> "CancelToken":
        """A token sharing this signal whose deadline is the earlier of both."""
        child = CancelToken.__new__(CancelToken)
        child._event = self._event
        candidates = [self.deadline] if self.deadline is not None else []
        if timeout is not None:
            candidates.append(time.monotonic() + timeout)
        child.deadline = min(candidates) if candidates else None
        return child

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("operation cancelled")
        if self.expired:
            raise OperationCancelledError("operation cancelled: deadline exceeded")

    async def wait(self) -> None:
        await self._event.wait()


class RetryExecutor:
    """Runs an async operation, retrying retryable failures with backoff.

    Holds no per-call state, so one executor can serve concurrent calls.
    """

    def __init__(
        self,
        classifier: ErrorClassifier | None = None,
        *,
        max_backoff_multiple: float = RETRY_MAX_BACKOFF_MULTIPLE,
        jitter: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.classifier = classifier or ErrorClassifier()
        self.max_backoff_multiple = max_backoff_multiple
        self.jitter = jitter
        self._sleep = sleep

    def backoff(self, attempt: int, base_backoff: float) -> float:
        """Delay after the ``attempt``-th failure (1-based), doubling up to the cap."""
        delay = min(
            base_backoff * (2 ** (attempt - 1)),
            base_backoff * self.max_backoff_multiple,
        )
        if self.jitter:
            delay *= 1 + self.jitter * random()  # noqa: S311
        return delay

    async def execute[T](
        self,
        op: Callable[[], Awaitable[T]],
        *,
        max_attempts: int = MAX_ATTEMPTS,
        base_backoff: float = RETRY_BASE_DELAY,
        cancel: CancelToken | None = None,
        context: str = "",
        on_attempt: Callable[[int], None] | None = None,
    ) -> T:
        """Run ``op`` until it succeeds, fails permanently, or attempts run out.

        Raises:
            OperationCancelledError: the token was cancelled or its deadline passed.
            RetryExhaustedError: every attempt failed with a retryable error.
            Exception: the first non-retryable error, unchanged.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        last_error: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            if cancel is not None:
                cancel.raise_if_cancelled()
            if on_attempt is not None:
                on_attempt(attempt)
            try:
                return await self._attempt(op, cancel)
            except OperationCancelledError:
                raise
            except Exception as e:
                if not self.classifier.is_retryable(e):
                    raise
                last_error = e
                if attempt == max_attempts:
                    break
                delay = self.backoff(attempt, base_backoff)
                log.debug(
                    "Attempt %d/%d of %s failed with retryable error (%s); "
                    "retrying in %.2fs",
                    attempt,
                    max_attempts,
                    context or "operation",
                    e,
                    delay,
                )
                await self._wait(delay, cancel)

        assert last_error is not None  # noqa: S101
        raise RetryExhaustedError(max_attempts, context, last_error) from last_error

    async def _wait(self, delay: float, cancel: CancelToken | None) -> None:
        """Back off through the injected sleep, waking early when cancelled."""
        if cancel is None:
            await self._sleep(delay)
            return

        remaining = cancel.remaining()
        budget = delay if remaining is None else min(delay, remaining)
        sleeper = asyncio.ensure_future(self._sleep(budget))
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not sleeper.done():
                sleeper.cancel()
        cancel.raise_if_cancelled()
        if sleeper.done() and not sleeper.cancelled():
            sleeper.result()

    async def _attempt[T](
        self, op: Callable[[], Awaitable[T]], cancel: CancelToken | None
    ) -> T:
        if cancel is None:
            return await op()

        task = asyncio.ensure_future(op())
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=cancel.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
        if task in done:
            return task.result()
        cancel.raise_if_cancelled()
        raise OperationCancelledError("operation cancelled: deadline exceeded")


async def execute_with_retry[T](
    op: Callable[[], Awaitable[T]],
    max_attempts: int = MAX_ATTEMPTS,
    base_backoff: float = RETRY_BASE_DELAY,
    *,
    cancel: CancelToken | None = None,
    context: str = "",
) -> T:
    """Convenience wrapper around a default ``RetryExecutor``."""
    return await RetryExecutor().execute(
        op,
        max_attempts=max_attempts,
        base_backoff=base_backoff,
        cancel=cancel,
        context=context,
    )
