"""Query priority scoring and a priority-ordered work queue."""

from __future__ import annotations

import asyncio
import itertools
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, Literal, TypeVar

T = TypeVar("T")

_TECHNICAL = re.compile(r"\b(api|algorithm|architecture|protocol|framework)\b", re.IGNORECASE)
_COMPARISON = re.compile(r"\b(vs|versus|compare|difference|similar)\b", re.IGNORECASE)
_PEAK_HOURS = {9, 10, 11, 14, 15, 16}

Complexity = Literal["simple", "moderate", "complex"]


@dataclass(frozen=True)
class PriorityWeights:
    complexity: float = 0.3
    user_type: float = 0.2
    time_of_day: float = 0.1
    resource_usage: float = 0.4


USER_TIER_SCORES = {"premium": 0.9, "power": 0.7}


def analyze_query_complexity(query: str) -> Complexity:
    """Rough complexity bucket used for duration estimates."""
    words = len(query.split())
    technical = bool(_TECHNICAL.search(query))
    comparison = bool(_COMPARISON.search(query))
    if words > 20 or (technical and comparison):
        return "complex"
    if words > 8 or technical or comparison:
        return "moderate"
    return "simple"


class QueryPrioritizer:
    """Blend complexity, caller tier, time of day and resource pressure into one score."""

    def __init__(self, weights: PriorityWeights | None = None):
        self.weights = weights or PriorityWeights()

    def complexity_score(self, query: str) -> float:
        score = 0.5
        if len(query.split()) > 10:
            score += 0.2
        if _TECHNICAL.search(query):
            score += 0.2
        if _COMPARISON.search(query):
            score += 0.1
        return min(score, 1.0)

    def user_score(self, user_tier: str | None) -> float:
        return USER_TIER_SCORES.get((user_tier or "").lower(), 0.5)

    def time_score(self, now: datetime | None = None) -> float:
        hour = (now or datetime.now()).hour
        return 0.8 if hour in _PEAK_HOURS else 0.5

    def score(
        self,
        query: str,
        user_tier: str | None = None,
        now: datetime | None = None,
        resource_usage: float = 0.5,
    ) -> float:
        w = self.weights
        return (
            w.complexity * self.complexity_score(query)
            + w.user_type * self.user_score(user_tier)
            + w.time_of_day * self.time_score(now)
            + w.resource_usage * max(0.0, min(resource_usage, 1.0))
        )


@dataclass(order=True)
class _QueueItem(Generic[T]):
    sort_key: tuple[float, int]
    item: Any = field(compare=False)


class PriorityWorkQueue(Generic[T]):
    """Async queue that hands out the highest-priority item first (FIFO on ties)."""

    def __init__(self, prioritizer: QueryPrioritizer | None = None):
        self.prioritizer = prioritizer or QueryPrioritizer()
        self._queue: asyncio.PriorityQueue = asyncio.PriorityQueue()
        self._counter = itertools.count()

    def put(self, item: T, priority: float) -> None:
        self._queue.put_nowait(_QueueItem((-priority, next(self._counter)), item))

    def put_query(self, query: str, item: T, user_tier: str | None = None, now: datetime | None = None) -> float:
        priority = self.prioritizer.score(query, user_tier=user_tier, now=now)
        self.put(item, priority)
        return priority

    async def get(self) -> T:
        entry = await self._queue.get()
        self._queue.task_done()
        return entry.item

    def get_nowait(self) -> T:
        entry = self._queue.get_nowait()
        self._queue.task_done()
        return entry.item

    def empty(self) -> bool:
        return self._queue.empty()

    def __len__(self) -> int:
        return self._queue.qsize()
