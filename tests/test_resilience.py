"""Tests for the circuit breaker, retry, cache, pool, prioritizer and error tracking."""

import asyncio
from datetime import datetime

import aiohttp
import pytest

from src.resilience.cache import CacheManager, CacheRegion, RegionConfig
from src.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from src.resilience.connection_pool import ConnectionPool
from src.resilience.errors import (
    CircuitOpenError,
    ErrorKind,
    ErrorTracker,
    RunCancelledError,
    RunDeadlineExceededError,
    SearchBackendError,
    classify_error,
    user_message,
    with_error_handling,
)
from src.resilience.prioritizer import PriorityWorkQueue, QueryPrioritizer, analyze_query_complexity
from src.resilience.retry import RetryHandler, RetryPolicy
from tests.mocks import make_settings


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def _fail():
    raise ConnectionError("connection refused")


async def _ok():
    return "ok"


# Circuit breaker


@pytest.mark.asyncio
async def test_breaker_opens_after_threshold_and_rejects():
    clock = FakeClock()
    breaker = CircuitBreaker("searxng", CircuitBreakerConfig(failure_threshold=3, recovery_timeout=30), clock=clock)

    for _ in range(3):
        with pytest.raises(ConnectionError):
            await breaker.execute(_fail)

    assert breaker.state == CircuitState.OPEN

    calls = []

    async def tracked():
        calls.append(1)
        return "ok"

    with pytest.raises(CircuitOpenError) as exc_info:
        await breaker.execute(tracked)
    assert calls == []
    assert exc_info.value.retry_after == pytest.approx(30)
    assert breaker.metrics.rejected_calls == 1


@pytest.mark.asyncio
async def test_breaker_half_open_trial_closes_on_success():
    clock = FakeClock()
    breaker = CircuitBreaker("llm", CircuitBreakerConfig(failure_threshold=1, recovery_timeout=10), clock=clock)

    with pytest.raises(ConnectionError):
        await breaker.execute(_fail)
    assert breaker.state == CircuitState.OPEN

    clock.advance(10)
    assert await breaker.execute(_ok) == "ok"
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0


@pytest.mark.asyncio
async def test_breaker_half_open_trial_failure_reopens():
    clock = FakeClock()
    breaker = CircuitBreaker("llm", CircuitBreakerConfig(failure_threshold=2, recovery_timeout=5), clock=clock)

    for _ in range(2):
        with pytest.raises(ConnectionError):
            await breaker.execute(_fail)

    clock.advance(6)
    with pytest.raises(ConnectionError):
        await breaker.execute(_fail)
    assert breaker.state == CircuitState.OPEN
    assert breaker.metrics.open_count == 2


@pytest.mark.asyncio
async def test_breaker_admits_single_trial_call():
    clock = FakeClock()
    breaker = CircuitBreaker("embedding", CircuitBreakerConfig(failure_threshold=1, recovery_timeout=1), clock=clock)
    with pytest.raises(ConnectionError):
        await breaker.execute(_fail)
    clock.advance(2)

    release = asyncio.Event()

    async def slow():
        await release.wait()
        return "trial"

    trial = asyncio.create_task(breaker.execute(slow))
    await asyncio.sleep(0)
    assert breaker.state == CircuitState.HALF_OPEN

    with pytest.raises(CircuitOpenError):
        await breaker.execute(_ok)

    release.set()
    assert await trial == "trial"
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_breaker_ignores_cancellation():
    breaker = CircuitBreaker("searxng", CircuitBreakerConfig(failure_threshold=1))

    async def cancelled():
        raise RunCancelledError("stop")

    with pytest.raises(RunCancelledError):
        await breaker.execute(cancelled)
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0


# Retry


@pytest.mark.asyncio
async def test_retry_recovers_from_transient_errors():
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    handler = RetryHandler("search", RetryPolicy(max_attempts=3, base_delay=1.0, backoff_multiplier=2.0), sleep=fake_sleep)
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise asyncio.TimeoutError()
        return "done"

    assert await handler.execute(flaky) == "done"
    assert len(attempts) == 3
    assert len(sleeps) == 2
    assert sleeps[1] > sleeps[0]


@pytest.mark.asyncio
async def test_retry_gives_up_after_max_attempts():
    handler = RetryHandler("search", RetryPolicy(max_attempts=2, base_delay=0.0))
    attempts = []

    async def always_timeout():
        attempts.append(1)
        raise asyncio.TimeoutError()

    with pytest.raises(asyncio.TimeoutError):
        await handler.execute(always_timeout)
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_retry_does_not_retry_non_retryable():
    handler = RetryHandler("api", RetryPolicy(max_attempts=5, base_delay=0.0))
    attempts = []

    async def bad_input():
        attempts.append(1)
        raise ValueError("invalid request payload")

    with pytest.raises(ValueError):
        await handler.execute(bad_input)
    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_retry_never_retries_open_circuit():
    handler = RetryHandler("search", RetryPolicy(max_attempts=3, base_delay=0.0))
    attempts = []

    async def rejected():
        attempts.append(1)
        raise CircuitOpenError("searxng", 10)

    with pytest.raises(CircuitOpenError):
        await handler.execute(rejected)
    assert len(attempts) == 1


def test_retry_delay_is_capped():
    policy = RetryPolicy(base_delay=1.0, max_delay=5.0, backoff_multiplier=2.0)
    assert policy.delay_for(1) == 1.0
    assert policy.delay_for(2) == 2.0
    assert policy.delay_for(10) == 5.0


# Errors


def test_classify_error():
    assert classify_error(asyncio.TimeoutError()) == ErrorKind.TIMEOUT
    assert classify_error(ConnectionError("reset")) == ErrorKind.CONNECTION
    assert classify_error(SearchBackendError(429, "slow down")) == ErrorKind.RATE_LIMIT
    assert classify_error(SearchBackendError(503, "down")) == ErrorKind.SERVICE_UNAVAILABLE
    assert classify_error(Exception("You exceeded your current quota")) == ErrorKind.QUOTA
    assert classify_error(aiohttp.ClientPayloadError("bad payload")) == ErrorKind.NETWORK
    assert classify_error(RuntimeError("boom")) == ErrorKind.UNKNOWN


def test_user_message():
    assert "cancelled" in user_message(RunCancelledError("stop"))
    assert "too long" in user_message(RunDeadlineExceededError("late"))
    assert "unavailable" in user_message(SearchBackendError(503, "down"))
    assert user_message(RuntimeError("boom")) == "boom"


def test_error_tracker_counts_by_context_and_kind():
    clock = FakeClock()
    tracker = ErrorTracker(timer=clock)
    tracker.track(asyncio.TimeoutError(), "search")
    tracker.track(asyncio.TimeoutError(), "search")
    tracker.track(ConnectionError("refused"), "llm")

    stats = tracker.stats()
    assert stats["search:TIMEOUT"]["count"] == 2
    assert stats["llm:CONNECTION"]["count"] == 1

    clock.advance(3601)
    assert tracker.stats() == {}


@pytest.mark.asyncio
async def test_with_error_handling_uses_fallback_and_tracks():
    tracker = ErrorTracker()
    result = await with_error_handling(_fail, "search", tracker, fallback=lambda: [])
    assert result == []
    assert tracker.stats()["search:CONNECTION"]["count"] == 1


@pytest.mark.asyncio
async def test_with_error_handling_counts_one_breaker_outcome_per_call():
    tracker = ErrorTracker()
    breaker = CircuitBreaker("searxng", CircuitBreakerConfig(failure_threshold=2))
    retry = RetryHandler("search", RetryPolicy(max_attempts=3, base_delay=0.0))

    with pytest.raises(ConnectionError):
        await with_error_handling(_fail, "search", tracker, breaker=breaker, retry=retry)

    assert breaker.failure_count == 1
    assert breaker.state == CircuitState.CLOSED


# Cache


def test_cache_region_ttl_expiry():
    clock = FakeClock()
    region = CacheRegion("search", RegionConfig(max_entries=10, max_size=10_000, ttl=60), timer=clock)
    region.set("a", {"results": [1, 2]})
    assert region.get("a") == {"results": [1, 2]}

    clock.advance(61)
    assert region.get("a") is None
    assert region.stats()["misses"] == 1


def test_cache_region_per_entry_ttl():
    clock = FakeClock()
    region = CacheRegion("api", RegionConfig(max_entries=10, max_size=10_000, ttl=600), timer=clock)
    region.set("short", "x", ttl=5)
    region.set("long", "y")
    clock.advance(10)
    assert not region.has("short")
    assert region.has("long")


def test_cache_region_entry_bound_evicts_lru():
    region = CacheRegion("global", RegionConfig(max_entries=2, max_size=10_000, ttl=60))
    region.set("a", 1)
    region.set("b", 2)
    region.get("a")
    region.set("c", 3)

    assert len(region) == 2
    assert region.has("a")
    assert not region.has("b")


def test_cache_region_size_bound():
    region = CacheRegion("global", RegionConfig(max_entries=100, max_size=20, ttl=60))
    assert region.set("a", "x" * 8)
    assert region.set("b", "y" * 8)
    assert region.size <= 20
    assert not region.set("huge", "z" * 100)
    assert not region.has("huge")


@pytest.mark.asyncio
async def test_cache_manager_get_or_set_and_stats():
    cache = CacheManager.from_settings(make_settings())
    calls = []

    async def factory():
        calls.append(1)
        return [0.1, 0.2]

    assert await cache.get_or_set("embedding", "k", factory) == [0.1, 0.2]
    assert await cache.get_or_set("embedding", "k", factory) == [0.1, 0.2]
    assert len(calls) == 1

    stats = cache.stats()
    assert set(stats["regions"]) == {"global", "search", "embedding", "api"}
    assert stats["regions"]["embedding"]["hits"] == 1
    assert stats["total_entries"] == 1


def test_cache_manager_unknown_region():
    cache = CacheManager()
    with pytest.raises(KeyError):
        cache.get("missing", "k")


# Connection pool


@pytest.mark.asyncio
async def test_pool_bounds_connections_and_unblocks_waiters():
    pool = ConnectionPool(max_connections=2)
    first = await pool.acquire()
    second = await pool.acquire()
    assert pool.stats()["in_use"] == 2

    waiter = asyncio.create_task(pool.acquire())
    await asyncio.sleep(0)
    assert not waiter.done()
    assert pool.stats()["waiting"] == 1

    await pool.release(first)
    third = await asyncio.wait_for(waiter, timeout=1)
    assert third.id == first.id
    assert pool.stats()["total"] == 2

    await pool.release(second)
    await pool.release(third)
    assert pool.stats()["in_use"] == 0


@pytest.mark.asyncio
async def test_pool_acquire_timeout():
    from src.resilience.errors import PoolTimeoutError

    pool = ConnectionPool(max_connections=1)
    async with pool.connection():
        with pytest.raises(PoolTimeoutError):
            await pool.acquire(timeout=0.01)


@pytest.mark.asyncio
async def test_pool_prunes_idle_connections():
    clock = FakeClock()
    pool = ConnectionPool(max_connections=3, idle_timeout=30, clock=clock)
    conns = [await pool.acquire() for _ in range(3)]
    for conn in conns[:2]:
        await pool.release(conn)

    clock.advance(31)
    assert await pool.prune_idle() == 2
    assert pool.stats() == {"total": 1, "in_use": 1, "idle": 0, "waiting": 0, "max": 3}


@pytest.mark.asyncio
async def test_pool_drops_idle_slots_on_acquire_and_release():
    clock = FakeClock()
    pool = ConnectionPool(max_connections=3, idle_timeout=30, clock=clock)
    conns = [await pool.acquire() for _ in range(3)]
    await pool.release(conns[0])
    await pool.release(conns[1])

    clock.advance(31)
    await pool.release(conns[2])
    assert pool.stats() == {"total": 1, "in_use": 0, "idle": 1, "waiting": 0, "max": 3}

    clock.advance(31)
    fresh = await pool.acquire()
    assert fresh.id not in {conn.id for conn in conns}
    assert pool.stats() == {"total": 1, "in_use": 1, "idle": 0, "waiting": 0, "max": 3}


def test_pool_rejects_invalid_size():
    with pytest.raises(ValueError):
        ConnectionPool(max_connections=0)


# Prioritizer


def test_query_complexity():
    assert analyze_query_complexity("capital of France") == "simple"
    assert analyze_query_complexity("compare rust vs go") == "moderate"
    assert analyze_query_complexity("compare the api design of rust vs go") == "complex"


def test_prioritizer_weights_tier_and_peak_hours():
    prioritizer = QueryPrioritizer()
    peak = datetime(2024, 1, 1, 10)
    off_peak = datetime(2024, 1, 1, 3)

    base = prioritizer.score("weather", now=off_peak)
    assert base == pytest.approx(0.3 * 0.5 + 0.2 * 0.5 + 0.1 * 0.5 + 0.4 * 0.5)
    assert prioritizer.score("weather", user_tier="premium", now=off_peak) > base
    assert prioritizer.score("weather", now=peak) > base
    assert prioritizer.score("api algorithm comparison vs framework", now=off_peak) > base


def test_priority_queue_orders_by_score_then_fifo():
    queue = PriorityWorkQueue(QueryPrioritizer())
    now = datetime(2024, 1, 1, 3)
    queue.put_query("weather", "plain-1", now=now)
    queue.put_query("api architecture vs protocol", "technical", now=now)
    queue.put_query("weather", "plain-2", now=now)

    order = [queue.get_nowait() for _ in range(3)]
    assert order == ["technical", "plain-1", "plain-2"]
    assert queue.empty()
