"""Error taxonomy, classification and frequency tracking."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

import aiohttp
import structlog
from cachetools import TTLCache

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Coarse classes of upstream failure."""

    TIMEOUT = "TIMEOUT"
    NETWORK = "NETWORK"
    RATE_LIMIT = "RATE_LIMIT"
    QUOTA = "QUOTA"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    CONNECTION = "CONNECTION"
    UNKNOWN = "UNKNOWN"


class AnswerEngineError(Exception):
    """Base class for errors raised by the answer engine."""


class PlanningError(AnswerEngineError):
    """Planning produced no usable plan."""


class StepExecutionError(AnswerEngineError):
    """A plan step failed and the run was aborted."""

    def __init__(self, step_name: str, message: str):
        self.step_name = step_name
        super().__init__(f"Step '{step_name}' failed: {message}")


class RunCancelledError(AnswerEngineError):
    """The run's cancellation token fired."""


class RunDeadlineExceededError(AnswerEngineError):
    """The run exceeded its overall deadline."""


class CircuitOpenError(AnswerEngineError):
    """Raised when a circuit is open and the call is rejected."""

    def __init__(self, name: str, retry_after: float):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit '{name}' is OPEN. Retry after {retry_after:.1f}s")


class PoolTimeoutError(AnswerEngineError):
    """No connection slot became available in time."""


class SearchBackendError(AnswerEngineError):
    """The search backend answered with an unusable response."""

    def __init__(self, status: int, message: str):
        self.status = status
        super().__init__(f"Search backend error {status}: {message}")


_MESSAGE_RULES: list[tuple[str, ErrorKind]] = [
    ("timeout", ErrorKind.TIMEOUT),
    ("timed out", ErrorKind.TIMEOUT),
    ("network", ErrorKind.NETWORK),
    ("rate limit", ErrorKind.RATE_LIMIT),
    ("too many requests", ErrorKind.RATE_LIMIT),
    ("quota", ErrorKind.QUOTA),
    ("service unavailable", ErrorKind.SERVICE_UNAVAILABLE),
    ("connection", ErrorKind.CONNECTION),
]


def _status_kind(status: int | None) -> ErrorKind | None:
    if status == 429:
        return ErrorKind.RATE_LIMIT
    if status in {502, 503, 504}:
        return ErrorKind.SERVICE_UNAVAILABLE
    return None


def classify_error(error: BaseException) -> ErrorKind:
    """Map an exception onto the error taxonomy."""
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, RunDeadlineExceededError)):
        return ErrorKind.TIMEOUT
    if isinstance(error, (aiohttp.ClientConnectionError, ConnectionError)):
        return ErrorKind.CONNECTION
    if isinstance(error, aiohttp.ClientResponseError):
        return _status_kind(error.status) or ErrorKind.NETWORK
    if isinstance(error, SearchBackendError):
        kind = _status_kind(error.status)
        if kind:
            return kind
    if isinstance(error, CircuitOpenError):
        return ErrorKind.SERVICE_UNAVAILABLE

    status = getattr(error, "status_code", None) or getattr(error, "status", None)
    if isinstance(status, int):
        kind = _status_kind(status)
        if kind:
            return kind

    message = str(error).lower()
    for needle, kind in _MESSAGE_RULES:
        if needle in message:
            return kind

    if isinstance(error, aiohttp.ClientError):
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def user_message(error: BaseException) -> str:
    """Human-readable message for the terminal error event."""
    kind = classify_error(error)
    if isinstance(error, RunCancelledError):
        return "The search was cancelled."
    if isinstance(error, RunDeadlineExceededError):
        return "The search took too long and was stopped."
    if kind == ErrorKind.RATE_LIMIT:
        return "The service is receiving too many requests. Please try again shortly."
    if kind == ErrorKind.QUOTA:
        return "The model provider quota has been exhausted."
    if kind in {ErrorKind.SERVICE_UNAVAILABLE, ErrorKind.CONNECTION, ErrorKind.NETWORK}:
        return "A required service is currently unavailable. Please try again later."
    if kind == ErrorKind.TIMEOUT:
        return "A request timed out while processing your search."
    return str(error) or "An unexpected error occurred."


@dataclass
class ErrorRecord:
    """Rolling statistics for one (context, kind) pair."""

    count: int = 0
    last_occurrence: float = 0.0
    recent: list[str] = field(default_factory=list)


class ErrorTracker:
    """Rolling error-frequency tracker keyed by context and error kind."""

    def __init__(self, maxsize: int = 100, ttl: float = 3600.0, keep_recent: int = 5, timer=time.time):
        self._records: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        self._keep_recent = keep_recent
        self._timer = timer

    def track(self, error: BaseException, context: str) -> ErrorKind:
        kind = classify_error(error)
        key = f"{context}:{kind.value}"
        record = self._records.get(key) or ErrorRecord()
        record.count += 1
        record.last_occurrence = self._timer()
        record.recent.append(f"{type(error).__name__}: {error}")
        del record.recent[: -self._keep_recent]
        # re-set refreshes TTL
        self._records[key] = record
        logger.debug("error_tracked", context=context, kind=kind.value, count=record.count)
        return kind

    def stats(self) -> dict[str, dict[str, Any]]:
        return {
            key: {"count": record.count, "last_occurrence": record.last_occurrence}
            for key, record in list(self._records.items())
        }

    def clear(self) -> None:
        self._records.clear()


async def with_error_handling(
    operation: Callable[[], Awaitable[T]],
    context: str,
    tracker: ErrorTracker,
    breaker=None,
    retry=None,
    fallback: Callable[[], T] | None = None,
) -> T:
    """Run an operation through optional breaker and retry, tracking failures.

    When both are given the retry loop runs inside the breaker, so one logical
    call counts as a single breaker outcome.
    """
    call = operation
    if retry is not None:
        inner = call

        async def call() -> T:
            return await retry.execute(inner)

    try:
        if breaker is not None:
            return await breaker.execute(call)
        return await call()
    except (RunCancelledError, asyncio.CancelledError):
        raise
    except Exception as e:
        kind = tracker.track(e, context)
        if fallback is not None:
            logger.warning("using_fallback", context=context, kind=kind.value, error=str(e))
            return fallback()
        raise
