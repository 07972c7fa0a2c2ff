"""Search provider factory."""

import structlog

from src.config.settings import Settings
from src.resilience.cache import CacheManager
from src.resilience.circuit_breaker import CircuitBreaker
from src.resilience.connection_pool import ConnectionPool
from src.resilience.retry import RetryHandler
from src.search.base import SearchProvider
from src.search.mock_provider import MockSearchProvider
from src.search.searxng_provider import SearXNGClient

logger = structlog.get_logger(__name__)


def create_search_provider(
    settings: Settings,
    retry: RetryHandler | None = None,
    breaker: CircuitBreaker | None = None,
    pool: ConnectionPool | None = None,
    cache: CacheManager | None = None,
) -> SearchProvider:
    """
    Create search provider based on configuration.

    Args:
        settings: Application settings
        retry: Retry handler for transient backend failures
        breaker: Circuit breaker guarding the backend
        pool: Connection pool bounding concurrent calls
        cache: Shared cache manager for search responses

    Returns:
        Configured SearchProvider instance

    Raises:
        ValueError: If search provider configuration is invalid
    """
    if settings.search_provider == "mock":
        logger.info("Creating MockSearchProvider")
        return MockSearchProvider()

    if settings.search_provider == "searxng":
        if not settings.searxng_instance_url:
            raise ValueError("SearXNG instance URL is required when using SearXNG search provider")

        logger.info("Creating SearXNGClient", instance_url=settings.searxng_instance_url)
        return SearXNGClient(
            instance_url=settings.searxng_instance_url,
            language=settings.searxng_language,
            safesearch=settings.searxng_safesearch,
            timeouts=settings.searxng_timeouts,
            cache_ttl=settings.searxng_cache_ttl,
            fallback_engines=settings.fallback_engines,
            fallback_max_results=settings.searxng_fallback_max_results,
            health_timeout=settings.searxng_health_timeout,
            retry=retry,
            breaker=breaker,
            pool=pool,
            pool_timeout=settings.pool_acquire_timeout,
            cache=cache,
        )

    raise ValueError(
        f"Unknown search provider: {settings.search_provider}. Supported providers: searxng, mock"
    )
