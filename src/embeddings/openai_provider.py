"""OpenAI embedding provider."""

import structlog
from openai import AsyncOpenAI

from src.embeddings.base import EmbeddingProvider

logger = structlog.get_logger(__name__)


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Embeddings from the OpenAI API or any OpenAI-compatible endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimension: int = 1536,
        base_url: str | None = None,
        batch_size: int = 100,
    ):
        """
        Initialize OpenAI embedding provider.

        Args:
            api_key: OpenAI API key
            model: Model name
            dimension: Embedding dimension (only sent for v3 models)
            base_url: Alternative OpenAI-compatible endpoint
            batch_size: Texts per embeddings request
        """
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        self.model = model
        self.dimension = dimension
        self.batch_size = batch_size

    def _request_kwargs(self) -> dict:
        kwargs = {"model": self.model}
        if "3" in self.model:
            kwargs["dimensions"] = self.dimension
        return kwargs

    async def embed_text(self, text: str) -> list[float]:
        response = await self.client.embeddings.create(input=text, **self._request_kwargs())
        return response.data[0].embedding

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        embeddings: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start : start + self.batch_size]
            response = await self.client.embeddings.create(input=batch, **self._request_kwargs())
            embeddings.extend(item.embedding for item in sorted(response.data, key=lambda d: d.index))

        logger.debug("embedded_batch", model=self.model, count=len(texts))
        return embeddings

    def get_dimension(self) -> int:
        return self.dimension
