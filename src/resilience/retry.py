"""Policy-driven retry with exponential backoff."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from src.resilience.errors import (
    CircuitOpenError,
    ErrorKind,
    RunCancelledError,
    RunDeadlineExceededError,
    classify_error,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retry configuration. Delays are in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    retryable: frozenset[ErrorKind] = field(
        default_factory=lambda: frozenset(
            {ErrorKind.TIMEOUT, ErrorKind.NETWORK, ErrorKind.CONNECTION, ErrorKind.RATE_LIMIT}
        )
    )

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return min(self.base_delay * self.backoff_multiplier ** (attempt - 1), self.max_delay)


SEARCH_POLICY = RetryPolicy()
API_POLICY = RetryPolicy(
    max_attempts=2,
    base_delay=0.5,
    max_delay=5.0,
    backoff_multiplier=1.5,
    retryable=frozenset({ErrorKind.TIMEOUT, ErrorKind.NETWORK, ErrorKind.SERVICE_UNAVAILABLE}),
)

_NEVER_RETRY = (CircuitOpenError, RunCancelledError, RunDeadlineExceededError)


class RetryHandler:
    """Retry an async operation while its errors are classified as retryable."""

    def __init__(
        self,
        name: str,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.name = name
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    def is_retryable(self, error: BaseException) -> bool:
        if isinstance(error, _NEVER_RETRY):
            return False
        return classify_error(error) in self.policy.retryable

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "retrying_operation",
            handler=self.name,
            attempt=retry_state.attempt_number,
            delay=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
            error=str(error),
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=wait_exponential(
                multiplier=self.policy.base_delay,
                exp_base=self.policy.backoff_multiplier,
                max=self.policy.max_delay,
            ),
            retry=retry_if_exception(self.is_retryable),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run the operation, retrying per policy; the last error is re-raised."""
        async for attempt in self._retrying():
            with attempt:
                result = await operation()
        return result


def default_retry_handlers(settings) -> dict[str, RetryHandler]:
    """Retry handlers for search calls and generic API calls."""
    return {
        "search": RetryHandler(
            "search",
            RetryPolicy(
                max_attempts=settings.search_retry_attempts,
                base_delay=settings.search_retry_base_delay,
                max_delay=settings.search_retry_max_delay,
                backoff_multiplier=settings.search_retry_multiplier,
                retryable=SEARCH_POLICY.retryable,
            ),
        ),
        "api": RetryHandler(
            "api",
            RetryPolicy(
                max_attempts=settings.api_retry_attempts,
                base_delay=settings.api_retry_base_delay,
                max_delay=settings.api_retry_max_delay,
                backoff_multiplier=settings.api_retry_multiplier,
                retryable=API_POLICY.retryable,
            ),
        ),
    }
