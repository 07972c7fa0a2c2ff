"""Search result models."""

from typing import Any, Literal

from pydantic import BaseModel, Field

TimeRange = Literal["day", "week", "month", "year"]

FILE_SOURCE = "File"


class SearchResult(BaseModel):
    """Single search result."""

    title: str = Field(..., description="Page title")
    url: str = Field(..., description="Page URL")
    content: str = Field(default="", description="Page snippet/description")
    score: float = Field(default=0.0, description="Relevance score")
    engine: str | None = Field(default=None, description="Engine that produced the result")
    engines: list[str] = Field(default_factory=list, description="All engines that returned the result")
    category: str | None = Field(default=None, description="SearXNG category")
    img_src: str | None = Field(default=None, description="Image URL")
    thumbnail: str | None = Field(default=None, description="Thumbnail URL")
    published_date: str | None = Field(default=None, description="Publication date if available")
    author: str | None = Field(default=None, description="Author if available")


class SearchOptions(BaseModel):
    """Per-request search filters."""

    categories: list[str] = Field(default_factory=list)
    engines: list[str] = Field(default_factory=list)
    language: str | None = None
    page: int = 1
    time_range: TimeRange | None = None
    max_results: int = 20
    safesearch: int | None = None

    def cache_fingerprint(self) -> str:
        return "|".join(
            [
                ",".join(sorted(self.categories)),
                ",".join(sorted(self.engines)),
                self.language or "",
                str(self.page),
                self.time_range or "",
                str(self.max_results),
                "" if self.safesearch is None else str(self.safesearch),
            ]
        )


class SearchResponse(BaseModel):
    """Complete search response."""

    query: str = Field(..., description="Original search query")
    results: list[SearchResult] = Field(default_factory=list, description="Search results")
    suggestions: list[str] = Field(default_factory=list, description="Query suggestions")
    total_results: int = Field(default=0, description="Total number of results found")
    fallback_used: bool = Field(default=False, description="Degraded fallback produced this response")


class WeightedQuery(BaseModel):
    """Query with a weight applied to its result scores."""

    query: str
    weight: float = 1.0


class Document(BaseModel):
    """Retrieved text with its provenance."""

    model_config = {"frozen": True}

    page_content: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def title(self) -> str:
        return str(self.metadata.get("title") or "")

    @property
    def url(self) -> str:
        return str(self.metadata.get("url") or "")

    @property
    def is_file(self) -> bool:
        return self.url == FILE_SOURCE


class RerankedDocument(BaseModel):
    """Document plus its relevance score and original retrieval rank."""

    document: Document
    relevance_score: float = Field(ge=0.0, le=1.0)
    original_rank: int

    def as_source(self) -> dict[str, Any]:
        metadata = dict(self.document.metadata)
        metadata["relevance_score"] = round(self.relevance_score, 4)
        metadata["original_rank"] = self.original_rank
        return {"page_content": self.document.page_content, "metadata": metadata}


class ScrapedContent(BaseModel):
    """Scraped web page content."""

    url: str = Field(..., description="Page URL")
    title: str = Field(..., description="Page title")
    content: str = Field(..., description="Cleaned text content")
    markdown: str | None = Field(default=None, description="Content in markdown format")
