"""Composition root: process-wide services shared by all orchestration runs."""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from src.config.settings import Settings
from src.embeddings.base import EmbeddingProvider
from src.embeddings.cached import CachedEmbeddingProvider
from src.embeddings.factory import create_embedding_provider
from src.files.store import FileStore, LocalFileStore
from src.llm.factory import create_chat_model
from src.llm.resilient import ResilientChatModel
from src.resilience.cache import CacheManager
from src.resilience.circuit_breaker import CircuitBreaker, default_breakers
from src.resilience.connection_pool import ConnectionPool
from src.resilience.errors import ErrorTracker
from src.resilience.prioritizer import QueryPrioritizer
from src.resilience.retry import RetryHandler, default_retry_handlers
from src.search.base import SearchProvider
from src.search.factory import create_search_provider
from src.search.scraper import WebScraper

logger = structlog.get_logger(__name__)


@dataclass
class ServiceContainer:
    """Explicitly constructed services handed to orchestrators; no module-level singletons."""

    settings: Settings
    cache: CacheManager
    breakers: dict[str, CircuitBreaker]
    retries: dict[str, RetryHandler]
    pool: ConnectionPool
    prioritizer: QueryPrioritizer
    tracker: ErrorTracker
    search: SearchProvider
    embeddings: EmbeddingProvider
    chat_llm: ResilientChatModel
    planning_llm: ResilientChatModel
    files: FileStore
    scraper: WebScraper = field(default_factory=WebScraper)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceContainer":
        cache = CacheManager.from_settings(settings)
        breakers = default_breakers(settings)
        retries = default_retry_handlers(settings)
        pool = ConnectionPool(
            max_connections=settings.max_concurrent_searches * 2,
            idle_timeout=settings.pool_idle_timeout,
        )
        tracker = ErrorTracker()

        search = create_search_provider(
            settings, retry=retries["search"], breaker=breakers["searxng"], pool=pool, cache=cache
        )
        embeddings = CachedEmbeddingProvider(
            create_embedding_provider(settings), cache, breaker=breakers["embedding"]
        )
        chat_llm = ResilientChatModel(
            create_chat_model(settings.chat_model, settings, settings.chat_model_max_tokens),
            tracker,
            breaker=breakers["llm"],
            retry=retries["api"],
            context="llm.chat",
        )
        planning_llm = ResilientChatModel(
            create_chat_model(
                settings.planning_model, settings, settings.planning_model_max_tokens, temperature=0.2
            ),
            tracker,
            breaker=breakers["llm"],
            retry=retries["api"],
            context="llm.planning",
        )

        logger.info(
            "services_initialized",
            search_provider=settings.search_provider,
            embedding_provider=settings.embedding_provider,
            llm_mode=settings.llm_mode,
        )
        return cls(
            settings=settings,
            cache=cache,
            breakers=breakers,
            retries=retries,
            pool=pool,
            prioritizer=QueryPrioritizer(),
            tracker=tracker,
            search=search,
            embeddings=embeddings,
            chat_llm=chat_llm,
            planning_llm=planning_llm,
            files=LocalFileStore(settings.uploads_dir),
            scraper=WebScraper(timeout=settings.scraper_timeout),
        )

    async def aclose(self) -> None:
        """Release HTTP sessions held by the search client and scraper."""
        await self.search.aclose()
        await self.scraper.aclose()
        logger.info("services_closed")
