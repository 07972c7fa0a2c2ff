"""Search mode configurations."""

from enum import Enum

from pydantic import BaseModel, Field


class SearchMode(str, Enum):
    """Search effort levels."""

    QUICK = "quick"
    PRO = "pro"
    ULTRA = "ultra"

    @classmethod
    def from_string(cls, mode_str: str | None) -> "SearchMode":
        """Convert string to SearchMode, accepting legacy aliases."""
        mode_lower = (mode_str or "").strip().lower().replace("-", "_")

        if mode_lower in {"quick", "speed", "search", "web", "fast"}:
            return cls.QUICK
        elif mode_lower in {"pro", "balanced", "deep_search"}:
            return cls.PRO
        elif mode_lower in {"ultra", "quality", "deep", "deep_research", "research"}:
            return cls.ULTRA

        # Default to quick
        return cls.QUICK


class ModeConfig(BaseModel):
    """Retrieval, ranking and fusion knobs for one search mode."""

    mode: SearchMode
    max_sources: int = Field(description="Sources surfaced to the answer step")
    rerank_threshold: float = Field(description="Minimum combined relevance score to keep a document")
    max_documents: int = Field(description="Reranker output cap")
    diversity_boost: bool = Field(description="Favor one result per domain before filling by score")
    semantic_weight: float = Field(default=0.7)
    keyword_weight: float = Field(default=0.3)
    chunk_size: int = Field(description="Fusion window in words")
    chunk_overlap: int = Field(description="Fusion overlap in words")
    max_chunks: int = Field(description="Fusion output cap")
    enable_grouping: bool = Field(description="Group near-duplicate documents by domain and title")
    file_share: float = Field(default=0.4, description="Share of sources reserved for attachments")
    context_max_chars: int = Field(description="Answer context character budget")
    results_per_query: int = Field(default=10, description="Results requested per generated query")


MODE_CONFIGS: dict[SearchMode, ModeConfig] = {
    SearchMode.QUICK: ModeConfig(
        mode=SearchMode.QUICK,
        max_sources=8,
        rerank_threshold=0.5,
        max_documents=12,
        diversity_boost=False,
        semantic_weight=0.8,
        keyword_weight=0.2,
        chunk_size=800,
        chunk_overlap=80,
        max_chunks=3,
        enable_grouping=False,
        context_max_chars=6000,
        results_per_query=10,
    ),
    SearchMode.PRO: ModeConfig(
        mode=SearchMode.PRO,
        max_sources=15,
        rerank_threshold=0.25,
        max_documents=30,
        diversity_boost=True,
        semantic_weight=0.6,
        keyword_weight=0.4,
        chunk_size=1200,
        chunk_overlap=120,
        max_chunks=6,
        enable_grouping=True,
        context_max_chars=10000,
        results_per_query=8,
    ),
    SearchMode.ULTRA: ModeConfig(
        mode=SearchMode.ULTRA,
        max_sources=50,
        rerank_threshold=0.15,
        max_documents=50,
        diversity_boost=True,
        semantic_weight=0.7,
        keyword_weight=0.3,
        chunk_size=1800,
        chunk_overlap=180,
        max_chunks=10,
        enable_grouping=True,
        context_max_chars=20000,
        results_per_query=10,
    ),
}


def get_mode_config(mode: SearchMode | str, **overrides) -> ModeConfig:
    """Return the config for a mode, optionally with field overrides."""
    if not isinstance(mode, SearchMode):
        mode = SearchMode.from_string(mode)
    config = MODE_CONFIGS[mode]
    if overrides:
        return config.model_copy(update=overrides)
    return config
