"""Factory for creating embedding providers."""

import structlog

from src.config.settings import Settings
from src.embeddings.base import EmbeddingProvider
from src.embeddings.mock_provider import MockEmbeddingProvider
from src.embeddings.openai_provider import OpenAIEmbeddingProvider

logger = structlog.get_logger(__name__)


def create_embedding_provider(settings: Settings) -> EmbeddingProvider:
    """
    Create embedding provider based on settings.

    Args:
        settings: Application settings

    Returns:
        Embedding provider instance

    Raises:
        ValueError: If provider is not supported or required API key is missing
    """
    provider = settings.embedding_provider.lower()

    if provider == "mock":
        logger.info("Creating mock embedding provider")
        return MockEmbeddingProvider()

    if provider == "openai":
        if not settings.openai_api_key:
            if settings.llm_mode == "mock":
                logger.warning("OpenAI API key missing in mock mode, using mock embeddings")
                return MockEmbeddingProvider()
            raise ValueError("OpenAI API key is required for OpenAI embedding provider")

        logger.info(
            "Creating OpenAI embedding provider",
            model=settings.openai_embedding_model,
            dimension=settings.embedding_dimension,
        )
        return OpenAIEmbeddingProvider(
            api_key=settings.openai_api_key,
            model=settings.openai_embedding_model,
            dimension=settings.embedding_dimension,
            base_url=settings.openai_base_url,
        )

    raise ValueError(f"Unsupported embedding provider: {provider}")
