"""Hybrid (semantic + keyword) reranking of retrieved documents."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

import structlog

from src.config.modes import ModeConfig
from src.embeddings.base import EmbeddingProvider, cosine_similarity
from src.search.models import FILE_SOURCE, Document, RerankedDocument
from src.search.searxng_provider import result_domain

logger = structlog.get_logger(__name__)

_WORD = re.compile(r"\w+")


@dataclass
class RerankConfig:
    """Reranker knobs."""

    semantic_weight: float = 0.7
    keyword_weight: float = 0.3
    threshold: float = 0.3
    diversity_boost: bool = False
    max_documents: int = 20

    @classmethod
    def from_mode(cls, mode_config: ModeConfig) -> "RerankConfig":
        return cls(
            semantic_weight=mode_config.semantic_weight,
            keyword_weight=mode_config.keyword_weight,
            threshold=mode_config.rerank_threshold,
            diversity_boost=mode_config.diversity_boost,
            max_documents=mode_config.max_documents,
        )


def query_terms(query: str) -> list[str]:
    """Distinct lowercase query words longer than two characters."""
    return list(dict.fromkeys(word for word in _WORD.findall(query.lower()) if len(word) > 2))


def keyword_score(terms: list[str], content: str, title: str = "") -> float:
    """0.1 per term occurrence in the content plus 0.1 per term found in the title, capped at 1."""
    if not terms:
        return 0.0
    content_words = _WORD.findall(content.lower())
    title_words = set(_WORD.findall(title.lower()))
    score = 0.0
    for term in terms:
        score += 0.1 * content_words.count(term)
        if term in title_words:
            score += 0.1
    return min(score, 1.0)


def document_domain(document: Document) -> str:
    if document.is_file:
        return FILE_SOURCE
    return result_domain(document.url) or document.url


def positional_ranking(documents: list[Document]) -> list[RerankedDocument]:
    """Keep the given order, scoring by position (1.0 down towards 0)."""
    total = len(documents)
    return [
        RerankedDocument(document=doc, relevance_score=1.0 - idx / total, original_rank=idx)
        for idx, doc in enumerate(documents)
    ]


class HybridReranker:
    """Rerank documents by a weighted blend of semantic similarity and keyword overlap."""

    def __init__(self, embedding_provider: EmbeddingProvider):
        """
        Initialize hybrid reranker.

        Args:
            embedding_provider: Embedding provider for similarity computation
        """
        self.embedding_provider = embedding_provider

    async def rerank(
        self,
        query: str,
        documents: list[Document],
        config: RerankConfig | None = None,
        embeddings: list[list[float]] | None = None,
    ) -> list[RerankedDocument]:
        """
        Score, filter, diversify and truncate documents.

        Args:
            query: User query
            documents: Retrieved documents in retrieval order
            config: Weights, threshold, diversity and output cap
            embeddings: Precomputed document embeddings (file attachments), aligned with documents

        Returns:
            Reranked documents; falls back to retrieval order on embedding failure
        """
        config = config or RerankConfig()
        indexed = [(idx, doc) for idx, doc in enumerate(documents) if doc.page_content.strip()]
        if not indexed:
            return []

        try:
            query_embedding = await self.embedding_provider.embed_text(query)
            if embeddings is not None:
                doc_embeddings = [embeddings[idx] for idx, _ in indexed]
            else:
                doc_embeddings = await self.embedding_provider.embed_batch([doc.page_content for _, doc in indexed])
        except Exception as e:
            logger.error("Reranking failed, returning original order", error=str(e))
            return positional_ranking([doc for _, doc in indexed])[: config.max_documents]

        terms = query_terms(query)
        scored: list[RerankedDocument] = []
        for (idx, doc), doc_embedding in zip(indexed, doc_embeddings):
            semantic = min(max(cosine_similarity(query_embedding, doc_embedding), 0.0), 1.0)
            keyword = keyword_score(terms, doc.page_content, doc.title)
            combined = config.semantic_weight * semantic + config.keyword_weight * keyword
            if math.isnan(combined):
                combined = 0.0
            scored.append(
                RerankedDocument(document=doc, relevance_score=min(max(combined, 0.0), 1.0), original_rank=idx)
            )

        scored.sort(key=lambda item: (-item.relevance_score, item.original_rank))
        kept = [item for item in scored if item.relevance_score >= config.threshold]

        if config.diversity_boost:
            kept = self._diversify(kept)

        result = kept[: config.max_documents]
        logger.info(
            "Documents reranked",
            query=query[:80],
            original_count=len(documents),
            above_threshold=len(kept),
            returned=len(result),
        )
        return result

    def _diversify(self, ranked: list[RerankedDocument]) -> list[RerankedDocument]:
        """Best document of every domain first (by score), then the rest by score."""
        seen: set[str] = set()
        first: list[RerankedDocument] = []
        rest: list[RerankedDocument] = []
        for item in ranked:
            domain = document_domain(item.document)
            if domain not in seen:
                seen.add(domain)
                first.append(item)
            else:
                rest.append(item)
        return first + rest

    async def select_sources(
        self,
        query: str,
        web_documents: list[Document],
        mode_config: ModeConfig,
        file_documents: list[Document] | None = None,
        file_embeddings: list[list[float]] | None = None,
    ) -> list[RerankedDocument]:
        """
        Pick the sources handed to the answer step.

        Attachments get ``file_share`` of the slots and web results the rest;
        unused capacity on either side is filled from the other.
        """
        file_documents = file_documents or []
        max_sources = mode_config.max_sources

        if query.strip().lower() == "summarize":
            combined = [doc for doc in file_documents + web_documents if doc.page_content.strip()]
            return positional_ranking(combined[:max_sources])

        config = RerankConfig.from_mode(mode_config)
        web_ranked = await self.rerank(query, web_documents, config)
        if not file_documents:
            return web_ranked[:max_sources]

        file_ranked = await self.rerank(
            query,
            file_documents,
            RerankConfig(
                semantic_weight=config.semantic_weight,
                keyword_weight=config.keyword_weight,
                threshold=config.threshold,
                diversity_boost=False,
                max_documents=max_sources,
            ),
            embeddings=file_embeddings,
        )

        file_quota = math.floor(max_sources * mode_config.file_share)
        web_quota = max_sources - file_quota
        chosen_files = file_ranked[:file_quota]
        chosen_web = web_ranked[:web_quota]

        spare = max_sources - len(chosen_files) - len(chosen_web)
        if spare > 0:
            extra_files = file_ranked[len(chosen_files) : len(chosen_files) + spare]
            chosen_files += extra_files
            spare -= len(extra_files)
        if spare > 0:
            chosen_web += web_ranked[len(chosen_web) : len(chosen_web) + spare]

        combined = chosen_files + chosen_web
        combined.sort(key=lambda item: -item.relevance_score)
        return combined
