"""Circuit breaker for upstream dependencies.

Three states:
- CLOSED: normal operation, calls pass through and failures are counted
- OPEN: calls are rejected until the recovery timeout has elapsed
- HALF_OPEN: exactly one trial call is let through; its outcome decides
  whether the circuit closes again or re-opens
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, TypeVar

import structlog

from src.resilience.errors import CircuitOpenError, RunCancelledError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for a circuit breaker."""

    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    # Not counted as failures
    excluded_exceptions: tuple[type[BaseException], ...] = field(
        default_factory=lambda: (RunCancelledError, asyncio.CancelledError)
    )


@dataclass
class CircuitMetrics:
    """Metrics for a circuit breaker."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    state_changes: int = 0
    open_count: int = 0
    last_failure_time: float | None = None
    last_success_time: float | None = None


class CircuitBreaker:
    """Fail fast against a dependency that keeps failing."""

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = 0.0
        self._trial_in_flight = False
        self._metrics = CircuitMetrics()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def metrics(self) -> CircuitMetrics:
        return self._metrics

    def retry_after(self) -> float:
        """Seconds until an OPEN circuit admits its trial call."""
        if self._state != CircuitState.OPEN:
            return 0.0
        elapsed = self._clock() - self._last_failure_time
        return max(0.0, self.config.recovery_timeout - elapsed)

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        self._metrics.state_changes += 1
        if new_state == CircuitState.OPEN:
            self._metrics.open_count += 1
        logger.warning(
            "circuit_state_changed",
            circuit=self.name,
            old_state=old_state.value,
            new_state=new_state.value,
            failures=self._failure_count,
        )

    async def _admit(self) -> bool:
        """Decide whether a call may proceed; returns True for the HALF_OPEN trial."""
        async with self._lock:
            if self._state == CircuitState.CLOSED:
                return False

            if self._state == CircuitState.OPEN:
                if self._clock() - self._last_failure_time >= self.config.recovery_timeout:
                    self._transition_to(CircuitState.HALF_OPEN)
                    self._trial_in_flight = True
                    return True
                self._metrics.rejected_calls += 1
                raise CircuitOpenError(self.name, self.retry_after())

            # HALF_OPEN: only the single trial call is admitted
            if self._trial_in_flight:
                self._metrics.rejected_calls += 1
                raise CircuitOpenError(self.name, self.config.recovery_timeout)
            self._trial_in_flight = True
            return True

    async def _on_success(self) -> None:
        async with self._lock:
            self._metrics.total_calls += 1
            self._metrics.successful_calls += 1
            self._metrics.last_success_time = self._clock()
            self._failure_count = 0
            self._trial_in_flight = False
            self._transition_to(CircuitState.CLOSED)

    async def _on_failure(self, trial: bool) -> None:
        async with self._lock:
            self._metrics.total_calls += 1
            self._metrics.failed_calls += 1
            self._failure_count += 1
            self._last_failure_time = self._clock()
            self._metrics.last_failure_time = self._last_failure_time
            self._trial_in_flight = False

            if trial or self._failure_count >= self.config.failure_threshold:
                self._transition_to(CircuitState.OPEN)

    async def _release_trial(self) -> None:
        async with self._lock:
            self._trial_in_flight = False

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run the operation under breaker protection."""
        trial = await self._admit()
        try:
            result = await operation()
        except self.config.excluded_exceptions:
            if trial:
                await self._release_trial()
            raise
        except Exception:
            await self._on_failure(trial)
            raise
        await self._on_success()
        return result

    def reset(self) -> None:
        """Force the circuit back to CLOSED."""
        self._failure_count = 0
        self._trial_in_flight = False
        self._transition_to(CircuitState.CLOSED)

    def snapshot(self) -> dict:
        return {
            "state": self._state.value,
            "failures": self._failure_count,
            "retry_after": round(self.retry_after(), 2),
            "rejected_calls": self._metrics.rejected_calls,
            "open_count": self._metrics.open_count,
        }


def default_breakers(settings) -> dict[str, CircuitBreaker]:
    """Breakers for the search backend, the LLM and the embedding model."""
    return {
        "searxng": CircuitBreaker(
            "searxng",
            CircuitBreakerConfig(
                failure_threshold=settings.searxng_breaker_threshold,
                recovery_timeout=settings.searxng_breaker_recovery,
            ),
        ),
        "llm": CircuitBreaker(
            "llm",
            CircuitBreakerConfig(
                failure_threshold=settings.llm_breaker_threshold,
                recovery_timeout=settings.llm_breaker_recovery,
            ),
        ),
        "embedding": CircuitBreaker(
            "embedding",
            CircuitBreakerConfig(
                failure_threshold=settings.embedding_breaker_threshold,
                recovery_timeout=settings.embedding_breaker_recovery,
            ),
        ),
    }
