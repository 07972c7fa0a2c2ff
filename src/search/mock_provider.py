"""Mock search provider for offline runs."""

from __future__ import annotations

from urllib.parse import quote_plus

from src.search.base import SearchProvider
from src.search.models import SearchOptions, SearchResponse, SearchResult

_DOMAINS = ["example.com", "example.org", "docs.example.net", "news.example.io", "wiki.example.edu"]


class MockSearchProvider(SearchProvider):
    """Return deterministic mock search results spread over a few domains."""

    async def search(self, query: str, options: SearchOptions | None = None) -> SearchResponse:
        options = options or SearchOptions()
        safe_query = quote_plus(query.strip() or "query")
        results = []

        for idx in range(options.max_results):
            domain = _DOMAINS[idx % len(_DOMAINS)]
            results.append(
                SearchResult(
                    title=f"Mock Result {idx + 1} for {query}",
                    url=f"https://{domain}/{safe_query}/{idx + 1}",
                    content=(
                        f"Mock snippet {idx + 1} about {query}. "
                        f"It covers background, recent developments and practical details of {query}."
                    ),
                    score=1.0 - (idx * 0.05),
                    engine="mock",
                    published_date=None,
                )
            )

        return SearchResponse(
            query=query,
            results=results,
            suggestions=[f"{query} explained", f"{query} latest"],
            total_results=len(results),
        )

    async def health_check(self) -> bool:
        return True
