"""Contextual fusion: chunk, group and deduplicate ranked documents into bounded context."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

import structlog
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from src.config.modes import ModeConfig
from src.search.models import RerankedDocument
from src.search.reranker import document_domain

logger = structlog.get_logger(__name__)

CHUNK_SEPARATOR = "\n\n---\n\n"

MERGE_SYSTEM_PROMPT = """You merge excerpts from several sources into one coherent briefing.
Keep every concrete fact, number and date. Remove repetition. When sources disagree, say so.
Each excerpt starts with its source number in brackets. Keep those markers, such as [1], next to the facts they support.
Do not add information that is not in the excerpts."""


class ContextChunk(BaseModel):
    """A window of fused text with its provenance."""

    id: str
    content: str
    sources: list[str] = Field(default_factory=list)
    relevance_score: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)


@dataclass
class FusionConfig:
    """Chunking limits. Sizes are in words."""

    max_chunk_size: int = 2000
    overlap_size: int = 200
    max_chunks: int = 10
    enable_grouping: bool = True
    min_chunk_length: int = 100
    max_context_chars: int = 20000

    @classmethod
    def from_mode(cls, mode_config: ModeConfig) -> "FusionConfig":
        return cls(
            max_chunk_size=mode_config.chunk_size,
            overlap_size=mode_config.chunk_overlap,
            max_chunks=mode_config.max_chunks,
            enable_grouping=mode_config.enable_grouping,
            max_context_chars=mode_config.context_max_chars,
        )


def normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip().lower()


def group_key(item: RerankedDocument) -> str:
    title_words = item.document.title.lower().split()[:3]
    return f"{document_domain(item.document)}-{' '.join(title_words)}"


def format_context(sources: list[RerankedDocument], max_chars: int | None = None) -> str:
    """Number sources as ``[n]`` blocks for the answer prompt."""
    blocks = []
    for idx, item in enumerate(sources, start=1):
        title = item.document.title or "Untitled"
        blocks.append(f"[{idx}] {title} ({item.document.url})\n{item.document.page_content.strip()}")
    context = "\n\n".join(blocks)
    if max_chars is not None and len(context) > max_chars:
        context = context[:max_chars]
    return context


def excerpt_label(chunk: ContextChunk, position: int) -> str:
    """``[n] title (url)`` with n the chunk's source number."""
    number = chunk.metadata.get("source_number", position)
    title = chunk.metadata.get("title") or "Untitled"
    url = chunk.metadata.get("url") or ", ".join(chunk.sources)
    return f"[{number}] {title} ({url})"


class ContextualFusion:
    """Split ranked documents into overlapping word windows and merge them into one context."""

    def __init__(self, config: FusionConfig | None = None):
        self.config = config or FusionConfig()

    def group_documents(self, documents: list[RerankedDocument]) -> list[RerankedDocument]:
        """Keep the best-scoring document per domain+title group, preserving rank order."""
        best: dict[str, RerankedDocument] = {}
        for item in documents:
            key = group_key(item)
            current = best.get(key)
            if current is None or item.relevance_score > current.relevance_score:
                best[key] = item
        keep = {id(item) for item in best.values()}
        return [item for item in documents if id(item) in keep]

    def split_words(self, text: str) -> list[str]:
        """Word windows of at most ``max_chunk_size`` words overlapping by ``overlap_size``."""
        words = text.split()
        if not words:
            return []
        size = max(1, self.config.max_chunk_size)
        step = max(1, size - max(0, self.config.overlap_size))
        windows = []
        for start in range(0, len(words), step):
            windows.append(" ".join(words[start : start + size]))
            if start + size >= len(words):
                break
        return windows

    def create_chunks(self, query: str, documents: list[RerankedDocument]) -> list[ContextChunk]:
        """
        Turn ranked documents into deduplicated context chunks.

        Args:
            query: User query (for logging)
            documents: Reranked documents, best first

        Returns:
            At most ``max_chunks`` chunks
        """
        top_docs = documents[: self.config.max_chunks * 3]
        if self.config.enable_grouping and len(top_docs) > 5:
            top_docs = self.group_documents(top_docs)

        # Citation numbers are positions in ``documents``, before grouping
        numbers = {id(item): idx for idx, item in enumerate(documents, start=1)}
        chunks: list[ContextChunk] = []
        seen: set[str] = set()
        for doc_index, item in enumerate(top_docs):
            for chunk_index, window in enumerate(self.split_words(item.document.page_content)):
                if len(window.strip()) < self.config.min_chunk_length:
                    continue
                normalized = normalize_text(window)
                if normalized in seen:
                    continue
                seen.add(normalized)
                chunks.append(
                    ContextChunk(
                        id=f"chunk_{len(chunks)}",
                        content=window,
                        sources=[item.document.url],
                        relevance_score=item.relevance_score,
                        metadata={
                            "document_index": doc_index,
                            "chunk_index": chunk_index,
                            "title": item.document.title,
                            "url": item.document.url,
                            "source_number": numbers[id(item)],
                        },
                    )
                )

        result = chunks[: self.config.max_chunks]
        logger.info(
            "Context chunks created",
            query=query[:80],
            documents=len(documents),
            considered=len(top_docs),
            chunks=len(result),
        )
        return result

    def concatenate(self, chunks: list[ContextChunk]) -> str:
        return CHUNK_SEPARATOR.join(chunk.content for chunk in chunks)[: self.config.max_context_chars]

    async def merge_into_unified_context(self, query: str, chunks: list[ContextChunk], llm: Any) -> str:
        """Ask the model to reconcile chunks into one narrative; falls back to concatenation.

        Never raises.
        """
        if not chunks:
            return ""
        if len(chunks) == 1 or llm is None:
            return self.concatenate(chunks)

        excerpts = "\n\n".join(
            f"{excerpt_label(chunk, idx)}\n{chunk.content}" for idx, chunk in enumerate(chunks, start=1)
        )
        try:
            response = await llm.ainvoke(
                [
                    SystemMessage(content=MERGE_SYSTEM_PROMPT),
                    HumanMessage(content=f"Question: {query}\n\n{excerpts}\n\nWrite the merged briefing."),
                ]
            )
            merged = str(getattr(response, "content", response) or "").strip()
        except Exception as e:
            logger.warning("Context merge failed, concatenating chunks", error=str(e))
            return self.concatenate(chunks)

        if not merged:
            return self.concatenate(chunks)
        return merged[: self.config.max_context_chars]
