"""Named, size- and TTL-bounded cache regions."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import structlog
from cachetools import TLRUCache

logger = structlog.get_logger(__name__)

GLOBAL_REGION = "global"
SEARCH_REGION = "search"
EMBEDDING_REGION = "embedding"
API_REGION = "api"

_MISSING = object()


def json_size(value: Any) -> int:
    """Approximate size of a value as the length of its JSON encoding."""
    if hasattr(value, "model_dump_json"):
        return len(value.model_dump_json())
    try:
        return len(json.dumps(value, default=str))
    except (TypeError, ValueError):
        return len(str(value))


def vector_size(value: Any) -> int:
    """Size of an embedding vector, 8 bytes per component."""
    try:
        return len(value) * 8
    except TypeError:
        return json_size(value)


def search_key(query: str, mode: str) -> str:
    return f"search:{mode}:{query}"


def embedding_key(text: str) -> str:
    return f"embedding:{text}"


@dataclass
class _Entry:
    value: Any
    ttl: float
    size: int
    last_access: float


@dataclass
class RegionConfig:
    """Limits for one cache region."""

    max_entries: int
    max_size: int
    ttl: float
    size_of: Callable[[Any], int] = json_size


class CacheRegion:
    """LRU cache with per-entry TTL, total-size bound and entry-count bound."""

    def __init__(self, name: str, config: RegionConfig, timer: Callable[[], float] = time.monotonic):
        self.name = name
        self.config = config
        self._timer = timer
        self._cache: TLRUCache = TLRUCache(
            maxsize=config.max_size,
            ttu=lambda _key, entry, now: now + entry.ttl,
            timer=timer,
            getsizeof=lambda entry: entry.size,
        )
        self.hits = 0
        self.misses = 0

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._cache.get(key, _MISSING)
        if entry is _MISSING:
            self.misses += 1
            return default
        entry.last_access = self._timer()
        self.hits += 1
        return entry.value

    def has(self, key: str) -> bool:
        return key in self._cache

    def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """Store a value; returns False when it is larger than the whole region."""
        size = max(1, self.config.size_of(value))
        if size > self.config.max_size:
            logger.warning("cache_value_too_large", region=self.name, key=key[:80], size=size)
            return False
        entry = _Entry(value=value, ttl=ttl if ttl is not None else self.config.ttl, size=size, last_access=self._timer())
        self._cache[key] = entry
        while len(self._cache) > self.config.max_entries:
            self._cache.popitem()
        return True

    def delete(self, key: str) -> bool:
        return self._cache.pop(key, _MISSING) is not _MISSING

    def clear(self) -> None:
        self._cache.clear()

    def expire(self) -> None:
        """Drop expired entries eagerly."""
        self._cache.expire()

    def __len__(self) -> int:
        self._cache.expire()
        return len(self._cache)

    @property
    def size(self) -> int:
        self._cache.expire()
        return int(self._cache.currsize)

    def stats(self) -> dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "entries": len(self),
            "size": self.size,
            "max_entries": self.config.max_entries,
            "max_size": self.config.max_size,
            "ttl": self.config.ttl,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
        }


class CacheManager:
    """Registry of named cache regions."""

    def __init__(self, regions: dict[str, RegionConfig] | None = None, timer: Callable[[], float] = time.monotonic):
        self._regions: dict[str, CacheRegion] = {}
        for name, config in (regions or {}).items():
            self.add_region(name, config, timer=timer)
        self._timer = timer

    @classmethod
    def from_settings(cls, settings, timer: Callable[[], float] = time.monotonic) -> "CacheManager":
        return cls(
            {
                GLOBAL_REGION: RegionConfig(
                    settings.cache_global_max_entries, settings.cache_global_max_size, settings.cache_global_ttl
                ),
                SEARCH_REGION: RegionConfig(
                    settings.cache_search_max_entries, settings.cache_search_max_size, settings.cache_search_ttl
                ),
                EMBEDDING_REGION: RegionConfig(
                    settings.cache_embedding_max_entries,
                    settings.cache_embedding_max_size,
                    settings.cache_embedding_ttl,
                    size_of=vector_size,
                ),
                API_REGION: RegionConfig(
                    settings.cache_api_max_entries, settings.cache_api_max_size, settings.cache_api_ttl
                ),
            },
            timer=timer,
        )

    def add_region(self, name: str, config: RegionConfig, timer: Callable[[], float] = time.monotonic) -> CacheRegion:
        region = CacheRegion(name, config, timer=timer)
        self._regions[name] = region
        return region

    def region(self, name: str) -> CacheRegion:
        try:
            return self._regions[name]
        except KeyError:
            raise KeyError(f"Unknown cache region: {name}") from None

    def get(self, region: str, key: str, default: Any = None) -> Any:
        return self.region(region).get(key, default)

    def set(self, region: str, key: str, value: Any, ttl: float | None = None) -> bool:
        return self.region(region).set(key, value, ttl)

    def has(self, region: str, key: str) -> bool:
        return self.region(region).has(key)

    def delete(self, region: str, key: str) -> bool:
        return self.region(region).delete(key)

    def clear(self, region: str) -> None:
        self.region(region).clear()

    def clear_all(self) -> None:
        for region in self._regions.values():
            region.clear()

    async def get_or_set(
        self,
        region: str,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl: float | None = None,
    ) -> Any:
        """Return the cached value or compute, store and return it."""
        cached = self.region(region).get(key, _MISSING)
        if cached is not _MISSING:
            return cached
        value = await factory()
        self.region(region).set(key, value, ttl)
        return value

    def stats(self) -> dict[str, Any]:
        regions = {name: region.stats() for name, region in self._regions.items()}
        return {
            "regions": regions,
            "total_entries": sum(item["entries"] for item in regions.values()),
            "total_size": sum(item["size"] for item in regions.values()),
        }
