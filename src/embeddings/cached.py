"""Embedding provider wrapper adding caching and circuit breaking."""

from __future__ import annotations

import structlog

from src.embeddings.base import EmbeddingProvider
from src.resilience.cache import EMBEDDING_REGION, CacheManager, embedding_key
from src.resilience.circuit_breaker import CircuitBreaker
from src.resilience.errors import AnswerEngineError

logger = structlog.get_logger(__name__)


class CachedEmbeddingProvider(EmbeddingProvider):
    """Serve embeddings from the embedding cache region, computing only misses."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        cache: CacheManager,
        breaker: CircuitBreaker | None = None,
        region: str = EMBEDDING_REGION,
    ):
        self.provider = provider
        self.cache = cache
        self.breaker = breaker
        self.region = region

    async def _guarded(self, operation):
        if self.breaker is None:
            return await operation()
        return await self.breaker.execute(operation)

    async def embed_text(self, text: str) -> list[float]:
        key = embedding_key(text)
        cached = self.cache.get(self.region, key)
        if cached is not None:
            return cached
        vector = await self._guarded(lambda: self.provider.embed_text(text))
        self.cache.set(self.region, key, vector)
        return vector

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        vectors: list[list[float] | None] = [self.cache.get(self.region, embedding_key(t)) for t in texts]
        missing = [i for i, vector in enumerate(vectors) if vector is None]
        if missing:
            # Same text may appear more than once
            unique = list(dict.fromkeys(texts[i] for i in missing))
            computed = await self._guarded(lambda: self.provider.embed_batch(unique))
            if len(computed) != len(unique):
                raise AnswerEngineError(
                    f"Embedding provider returned {len(computed)} vectors for {len(unique)} texts"
                )
            by_text = dict(zip(unique, computed))
            for text, vector in by_text.items():
                self.cache.set(self.region, embedding_key(text), vector)
            for i in missing:
                vectors[i] = by_text[texts[i]]
            logger.debug("embedding_cache", hits=len(texts) - len(missing), misses=len(missing))

        return vectors

    def get_dimension(self) -> int:
        return self.provider.get_dimension()
