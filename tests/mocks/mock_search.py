"""Mock search provider for testing."""

import asyncio
from typing import List

from src.resilience.errors import SearchBackendError
from src.search.base import SearchProvider
from src.search.models import SearchOptions, SearchResponse, SearchResult

DEFAULT_RESULTS = [
    {
        "title": "Python Official Documentation",
        "url": "https://docs.python.org",
        "content": "Python is a high-level, interpreted programming language with dynamic semantics. "
        "Its high-level built-in data structures, combined with dynamic typing and binding, "
        "make it very attractive for Rapid Application Development.",
    },
    {
        "title": "Python Wikipedia",
        "url": "https://en.wikipedia.org/wiki/Python_(programming_language)",
        "content": "Python is an interpreted, high-level and general-purpose programming language. "
        "Python's design philosophy emphasizes code readability with its notable use of "
        "significant indentation.",
    },
    {
        "title": "Learn Python - Beginner's Guide",
        "url": "https://www.learnpython.org",
        "content": "Python is a popular programming language. It was created by Guido van Rossum, "
        "and released in 1991. It is used for web development, software development, "
        "mathematics, system scripting.",
    },
]


class MockSearchProvider(SearchProvider):
    """In-memory search provider that records calls and concurrency."""

    def __init__(
        self,
        fixed_results: List[dict] | None = None,
        failing_queries: List[str] | None = None,
        delay: float = 0.0,
        healthy: bool = True,
    ):
        """
        Args:
            fixed_results: List of dicts with {title, url, content} to return
            failing_queries: Substrings of queries that raise a backend error
            delay: Seconds each search takes
        """
        self.fixed_results = DEFAULT_RESULTS if fixed_results is None else fixed_results
        self.failing_queries = failing_queries or []
        self.delay = delay
        self.healthy = healthy
        self.search_count = 0
        self.queries: List[str] = []
        self.options: List[SearchOptions] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def search(self, query: str, options: SearchOptions | None = None) -> SearchResponse:
        """Mock search operation."""
        options = options or SearchOptions()
        self.search_count += 1
        self.queries.append(query)
        self.options.append(options)

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

        if any(needle in query for needle in self.failing_queries):
            raise SearchBackendError(503, "service unavailable")

        results = [
            SearchResult(title=r["title"], url=r["url"], content=r["content"], score=1.0 - idx * 0.1)
            for idx, r in enumerate(self.fixed_results[: options.max_results])
        ]
        return SearchResponse(query=query, results=results, total_results=len(results))

    async def health_check(self) -> bool:
        return self.healthy

    async def aclose(self) -> None:
        self.closed = True
