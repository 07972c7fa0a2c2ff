"""SearXNG retrieval client."""

from __future__ import annotations

import asyncio
import json
import math
import time
from typing import Any, Callable
from urllib.parse import urlparse

import aiohttp
import structlog

from src.resilience.cache import SEARCH_REGION, CacheManager, RegionConfig, search_key
from src.resilience.circuit_breaker import CircuitBreaker
from src.resilience.connection_pool import ConnectionPool
from src.resilience.errors import RunCancelledError, SearchBackendError
from src.resilience.retry import RetryHandler
from src.search.base import SearchProvider
from src.search.models import SearchOptions, SearchResponse, SearchResult, TimeRange, WeightedQuery

logger = structlog.get_logger(__name__)


def result_domain(url: str) -> str:
    """Lowercase host without a leading ``www.``."""
    try:
        host = urlparse(url).netloc.lower()
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host


def diversify_by_domain(results: list[SearchResult]) -> list[SearchResult]:
    """One result per domain first, then the remainder in original order."""
    seen: set[str] = set()
    first: list[SearchResult] = []
    rest: list[SearchResult] = []
    for item in results:
        domain = result_domain(item.url)
        if domain and domain not in seen:
            seen.add(domain)
            first.append(item)
        else:
            rest.append(item)
    return first + rest


class SearXNGClient(SearchProvider):
    """SearXNG metasearch client with caching, request sharing and retries."""

    def __init__(
        self,
        instance_url: str,
        language: str = "en",
        safesearch: int = 0,
        timeouts: list[float] | tuple[float, ...] = (5.0, 8.0, 12.0),
        cache_ttl: float = 300.0,
        fallback_engines: list[str] | None = None,
        fallback_max_results: int = 20,
        health_timeout: float = 5.0,
        retry: RetryHandler | None = None,
        breaker: CircuitBreaker | None = None,
        pool: ConnectionPool | None = None,
        pool_timeout: float | None = 30.0,
        cache: CacheManager | None = None,
        session: aiohttp.ClientSession | None = None,
        timer: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize SearXNG client.

        Args:
            instance_url: SearXNG instance URL (e.g., http://localhost:8080)
            timeouts: Request timeout per attempt; the last value repeats
            cache_ttl: Lifetime of cached responses in seconds
            cache: Shared cache manager; responses go to its search region
            retry: Retry handler for transient failures
            breaker: Circuit breaker guarding the backend
            pool: Connection pool bounding concurrent upstream calls
        """
        self.instance_url = instance_url.rstrip("/")
        self.language = language
        self.safesearch = safesearch
        self.timeouts = list(timeouts) or [10.0]
        self.fallback_engines = fallback_engines or ["google", "bing"]
        self.fallback_max_results = fallback_max_results
        self.health_timeout = health_timeout
        self.retry = retry
        self.breaker = breaker
        self.pool = pool
        self.pool_timeout = pool_timeout
        self._session = session
        self._owns_session = session is None
        self.cache_ttl = cache_ttl
        self.cache = cache or CacheManager(
            {SEARCH_REGION: RegionConfig(max_entries=500, max_size=20 * 1024 * 1024, ttl=cache_ttl)}, timer=timer
        )
        self._inflight: dict[str, asyncio.Task] = {}
        logger.info("SearXNGClient initialized", instance_url=self.instance_url)

    # ------------------------------------------------------------------ HTTP

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _request_json(self, path: str, params: dict[str, Any], timeout: float) -> tuple[int, Any]:
        """GET ``path`` and return (status, parsed JSON or text)."""
        session = self._get_session()
        async with session.get(
            f"{self.instance_url}{path}",
            params=params,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as response:
            text = await response.text()
            if response.status != 200:
                return response.status, text
            try:
                return response.status, json.loads(text)
            except ValueError:
                return response.status, text

    def _build_params(self, query: str, options: SearchOptions) -> dict[str, str | int]:
        params: dict[str, str | int] = {
            "q": query,
            "format": "json",
            "language": options.language or self.language,
            "safesearch": self.safesearch if options.safesearch is None else options.safesearch,
            "pageno": options.page,
        }
        if options.categories:
            params["categories"] = ",".join(options.categories)
        if options.engines:
            params["engines"] = ",".join(options.engines)
        if options.time_range:
            params["time_range"] = options.time_range
        return params

    def _parse(self, query: str, data: Any, options: SearchOptions) -> SearchResponse:
        if not isinstance(data, dict):
            raise SearchBackendError(200, "unexpected response body")

        results: list[SearchResult] = []
        for item in data.get("results", []):
            if not isinstance(item, dict) or not item.get("url"):
                continue
            results.append(
                SearchResult(
                    title=item.get("title") or item["url"][:100],
                    url=item["url"],
                    content=item.get("content") or item.get("snippet") or "",
                    score=float(item.get("score") or 0.0),
                    engine=item.get("engine"),
                    engines=list(item.get("engines") or []),
                    category=item.get("category"),
                    img_src=item.get("img_src"),
                    thumbnail=item.get("thumbnail") or item.get("thumbnail_src"),
                    published_date=item.get("publishedDate"),
                    author=item.get("author"),
                )
            )

        diversified = diversify_by_domain(results)[: options.max_results]
        suggestions = [s for s in data.get("suggestions", []) if isinstance(s, str)]
        total = int(data.get("number_of_results") or 0) or len(diversified)
        return SearchResponse(query=query, results=diversified, suggestions=suggestions, total_results=total)

    async def _fetch(self, query: str, options: SearchOptions, timeout: float) -> SearchResponse:
        params = self._build_params(query, options)
        logger.debug("SearXNG search request", query=query, timeout=timeout, engines=options.engines or None)

        if self.pool is not None:
            async with self.pool.connection(self.pool_timeout):
                status, data = await self._request_json("/search", params, timeout)
        else:
            status, data = await self._request_json("/search", params, timeout)

        if status != 200:
            raise SearchBackendError(status, str(data)[:200])
        return self._parse(query, data, options)

    async def _search_uncached(self, query: str, options: SearchOptions) -> SearchResponse:
        attempt = 0

        async def attempt_fetch() -> SearchResponse:
            nonlocal attempt
            timeout = self.timeouts[min(attempt, len(self.timeouts) - 1)]
            attempt += 1
            try:
                return await asyncio.wait_for(self._fetch(query, options, timeout), timeout=timeout)
            except asyncio.TimeoutError:
                raise asyncio.TimeoutError(f"SearXNG request timeout after {timeout}s") from None

        call = attempt_fetch
        if self.retry is not None:

            async def call() -> SearchResponse:
                return await self.retry.execute(attempt_fetch)

        if self.breaker is not None:
            return await self.breaker.execute(call)
        return await call()

    # ------------------------------------------------------------ public API

    async def search(self, query: str, options: SearchOptions | None = None) -> SearchResponse:
        """
        Search using SearXNG.

        Concurrent identical requests share one upstream call and successful
        responses are kept in the search cache region for a short time.
        """
        options = options or SearchOptions()
        key = search_key(query, f"searxng|{options.cache_fingerprint()}")

        cached = self.cache.get(SEARCH_REGION, key)
        if cached is not None:
            logger.debug("SearXNG cache hit", query=query)
            return cached

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._search_and_store(key, query, options))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._finish_shared(k, t))
        else:
            logger.debug("SearXNG request shared", query=query)

        response = await asyncio.shield(task)
        logger.info("SearXNG search completed", query=query, results_count=len(response.results))
        return response

    async def _search_and_store(self, key: str, query: str, options: SearchOptions) -> SearchResponse:
        response = await self._search_uncached(query, options)
        self.cache.set(SEARCH_REGION, key, response, ttl=self.cache_ttl)
        return response

    def _finish_shared(self, key: str, task: asyncio.Task) -> None:
        self._inflight.pop(key, None)
        # Every waiter may have been cancelled; mark the failure as retrieved
        if not task.cancelled():
            task.exception()

    async def multi_query_search(
        self, queries: list[WeightedQuery], options: SearchOptions | None = None
    ) -> list[SearchResult]:
        """Run weighted queries concurrently and merge by URL, best score first."""
        if not queries:
            return []
        options = options or SearchOptions()
        per_query = options.model_copy(update={"max_results": math.ceil(options.max_results / len(queries))})

        responses = await asyncio.gather(
            *(self.search(item.query, per_query) for item in queries), return_exceptions=True
        )

        merged: dict[str, SearchResult] = {}
        for weighted, response in zip(queries, responses):
            if isinstance(response, BaseException):
                if isinstance(response, (asyncio.CancelledError, RunCancelledError)):
                    raise response
                logger.warning("multi_query_search_failed", query=weighted.query, error=str(response))
                continue
            for result in response.results:
                scored = result.model_copy(update={"score": result.score * weighted.weight})
                existing = merged.get(result.url)
                if existing is None or existing.score < scored.score:
                    merged[result.url] = scored

        ranked = sorted(merged.values(), key=lambda item: item.score, reverse=True)
        return ranked[: options.max_results]

    async def search_with_fallback(self, query: str, options: SearchOptions | None = None) -> SearchResponse:
        """Search; on failure retry once with reliable engines and a smaller cap.

        Never raises for backend failures: a failed fallback yields an empty,
        degraded response.
        """
        options = options or SearchOptions()
        try:
            return await self.search(query, options)
        except (asyncio.CancelledError, RunCancelledError):
            raise
        except Exception as e:
            logger.warning("SearXNG primary search failed, using fallback", query=query, error=str(e))

        fallback_options = options.model_copy(
            update={
                "engines": list(self.fallback_engines),
                "max_results": min(options.max_results, self.fallback_max_results),
            }
        )
        try:
            response = await self._search_uncached(query, fallback_options)
        except (asyncio.CancelledError, RunCancelledError):
            raise
        except Exception as e:
            logger.error("SearXNG fallback search failed", query=query, error=str(e))
            return SearchResponse(query=query, results=[], total_results=0, fallback_used=True)
        return response.model_copy(update={"fallback_used": True})

    async def search_by_category(self, query: str, category: str, max_results: int = 20) -> SearchResponse:
        return await self.search(query, SearchOptions(categories=[category], max_results=max_results))

    async def search_with_time_range(
        self, query: str, time_range: TimeRange, max_results: int = 20
    ) -> SearchResponse:
        return await self.search(query, SearchOptions(time_range=time_range, max_results=max_results))

    async def get_suggestions(self, query: str) -> list[str]:
        try:
            response = await self.search(query, SearchOptions(max_results=1))
        except (asyncio.CancelledError, RunCancelledError):
            raise
        except Exception as e:
            logger.warning("SearXNG suggestions failed", query=query, error=str(e))
            return []
        return response.suggestions

    async def health_check(self) -> bool:
        """Probe ``/healthz``; returns False on any failure."""
        try:
            status, _ = await asyncio.wait_for(
                self._request_json("/healthz", {}, self.health_timeout), timeout=self.health_timeout
            )
            return status == 200
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("SearXNG health check failed", error=str(e))
            return False

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
