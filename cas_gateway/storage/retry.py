"""
Retry/backoff driver for backend calls.

Each attempt moves Pending -> Running -> Succeeded | Failed. A failed attempt
that may be retried waits ``base_backoff_ms * 2**(attempt - 1)`` and goes back
to Pending; a failure on the last attempt ends in RetryExhaustedError carrying
the underlying error. Every Running attempt is raced against the policy
timeout, and against the caller's cancel event when one is given.

An optional ``guard`` (for example a lock serializing calls that share a
signing identity) is entered before the timeout starts, so time spent queued
behind other callers never counts against an attempt.

Only transient BackendErrors are retried. Anything else (hashing or integrity
failures, a backend rejecting the request) is raised as soon as it happens.
"""
import asyncio
import logging
from contextlib import AsyncExitStack
from enum import Enum
from typing import AsyncContextManager, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
)

from cas_gateway.storage.errors import (
    AttemptTimeoutError,
    BackendError,
    OperationCancelledError,
    RetryExhaustedError,
)
from cas_gateway.storage.models import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


class AttemptState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def is_retryable(exc: BaseException) -> bool:
    """Transient backend failures (including attempt timeouts) are retryable."""
    return isinstance(exc, BackendError) and exc.transient


class RetryExecutor:
    """
    Runs an async operation under a RetryPolicy.

    The executor holds no per-call state, so one instance can serve any
    number of concurrent calls.
    """

    def __init__(self, policy: RetryPolicy, sleep: SleepFunc = asyncio.sleep):
        """
        Args:
            policy: Attempt ceiling, backoff base and per-attempt timeout
            sleep: Coroutine used for backoff waits (injectable for tests)
        """
        self.policy = policy
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str = "operation",
        cancel_event: Optional[asyncio.Event] = None,
        guard: Optional[AsyncContextManager] = None,
    ) -> T:
        """
        Execute ``operation`` until it succeeds, fails permanently or runs out of attempts.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt
            description: Human readable name used in logs and errors
            cancel_event: Setting this event abandons the call
            guard: Reusable async context held around each attempt; entering it
                is not subject to the attempt timeout

        Returns:
            Whatever the first successful attempt returned

        Raises:
            RetryExhaustedError: Every attempt failed with a retryable error
            OperationCancelledError: ``cancel_event`` was set mid-flight
            Exception: Any non-retryable error, unchanged
        """
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError(f"{description} was cancelled before it started")

        async def backoff(seconds: float) -> None:
            await self._wait_or_cancel(self._sleep(seconds), cancel_event, description)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=self._backoff_seconds,
            retry=retry_if_exception(is_retryable),
            sleep=backoff,
            before_sleep=self._log_backoff(description),
        )

        try:
            async for attempt in retrying:
                with attempt:
                    number = attempt.retry_state.attempt_number
                    logger.info(
                        f"{description}: attempt {number}/{self.policy.max_attempts} "
                        f"{AttemptState.PENDING.value} -> {AttemptState.RUNNING.value}"
                    )
                    try:
                        result = await self._run_attempt(operation, description, cancel_event, guard)
                    except BackendError as e:
                        e.attempt = number
                        logger.warning(
                            f"{description}: attempt {number} {AttemptState.FAILED.value}: {e}"
                        )
                        raise
                    logger.info(f"{description}: attempt {number} {AttemptState.SUCCEEDED.value}")
                    return result
        except RetryError as e:
            last_error = e.last_attempt.exception()
            attempts = e.last_attempt.attempt_number
            logger.error(f"{description} failed after {attempts} attempts: {last_error}")
            raise RetryExhaustedError(attempts=attempts, last_error=last_error) from last_error

    async def _run_attempt(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str,
        cancel_event: Optional[asyncio.Event],
        guard: Optional[AsyncContextManager] = None,
    ) -> T:
        timeout_s = self.policy.timeout_ms / 1000
        async with AsyncExitStack() as stack:
            if guard is not None:
                # Waiting here can be cancelled but never times out
                await self._wait_or_cancel(stack.enter_async_context(guard), cancel_event, description)
            try:
                return await self._wait_or_cancel(operation(), cancel_event, description, timeout_s)
            except asyncio.TimeoutError:
                raise AttemptTimeoutError(f"{description} timed out after {self.policy.timeout_ms}ms") from None

    def _backoff_seconds(self, retry_state: RetryCallState) -> float:
        return self.policy.backoff_ms(retry_state.attempt_number) / 1000

    @staticmethod
    async def _wait_or_cancel(
        awaitable: Awaitable[T],
        cancel_event: Optional[asyncio.Event],
        description: str,
        timeout: Optional[float] = None,
    ) -> T:
        """
        Await ``awaitable`` racing it against ``timeout`` and ``cancel_event``.

        Whatever loses the race is cancelled and not waited for.
        """
        work = asyncio.ensure_future(awaitable)
        waiters = {work}
        cancel_waiter = None
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in waiters:
                if not task.done():
                    task.cancel()

        if work in done:
            return work.result()
        if cancel_waiter is not None and cancel_waiter in done:
            logger.info(f"{description} cancelled by caller")
            raise OperationCancelledError(f"{description} was cancelled")
        raise asyncio.TimeoutError()

    def _log_backoff(self, description: str) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            delay_ms = int(retry_state.next_action.sleep * 1000)
            logger.info(
                f"{description}: waiting {delay_ms}ms before attempt "
                f"{retry_state.attempt_number + 1}/{self.policy.max_attempts}"
            )
        return before_sleep
