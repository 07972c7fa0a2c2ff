"""Base search provider interface."""

from abc import ABC, abstractmethod

from src.search.models import Document, SearchOptions, SearchResponse, SearchResult, WeightedQuery


class SearchProvider(ABC):
    """Abstract base class for web-search backends."""

    @abstractmethod
    async def search(self, query: str, options: SearchOptions | None = None) -> SearchResponse:
        """
        Search the web for a query.

        Args:
            query: Search query string
            options: Filters (categories, engines, time range, result cap)

        Returns:
            SearchResponse with results and suggestions
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Liveness probe. Must never raise."""
        pass

    async def multi_query_search(
        self, queries: list[WeightedQuery], options: SearchOptions | None = None
    ) -> list[SearchResult]:
        """Run weighted queries and merge them; providers may override."""
        options = options or SearchOptions()
        merged: dict[str, SearchResult] = {}
        for weighted in queries:
            response = await self.search(weighted.query, options)
            for result in response.results:
                scored = result.model_copy(update={"score": result.score * weighted.weight})
                if result.url not in merged or merged[result.url].score < scored.score:
                    merged[result.url] = scored
        ranked = sorted(merged.values(), key=lambda item: item.score, reverse=True)
        return ranked[: options.max_results]

    async def search_with_fallback(self, query: str, options: SearchOptions | None = None) -> SearchResponse:
        return await self.search(query, options)

    async def aclose(self) -> None:
        """Release network resources."""
        return None

    @staticmethod
    def to_documents(results: list[SearchResult]) -> list[Document]:
        """Convert results into documents, skipping results without a URL."""
        documents = []
        for result in results:
            if not result.url:
                continue
            documents.append(
                Document(
                    page_content=result.content or result.title,
                    metadata={
                        "title": result.title,
                        "url": result.url,
                        "source": result.url,
                        "score": result.score,
                        "category": result.category,
                        "engine": result.engine,
                        "img_src": result.img_src or result.thumbnail,
                        "published_date": result.published_date,
                        "author": result.author,
                    },
                )
            )
        return documents
