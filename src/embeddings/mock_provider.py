"""Mock embedding provider for offline runs and tests."""

from __future__ import annotations

import hashlib
import re

from src.embeddings.base import EmbeddingProvider

_TOKEN = re.compile(r"\w+")


class MockEmbeddingProvider(EmbeddingProvider):
    """Deterministic hashed bag-of-words vectors.

    Texts that share words get positive cosine similarity, so rankings behave
    sensibly without a real model.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension
        self.calls = 0

    def _vector(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for token in _TOKEN.findall(text.lower()):
            if len(token) <= 2:
                continue
            digest = hashlib.md5(token.encode("utf-8")).digest()
            vector[int.from_bytes(digest[:4], "big") % self.dimension] += 1.0
        return vector

    async def embed_text(self, text: str) -> list[float]:
        self.calls += 1
        return self._vector(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        return [self._vector(text) for text in texts]

    def get_dimension(self) -> int:
        return self.dimension
