"""Recommendation cache.

A TTL cache keyed by ``(strategy, user_id, limit)`` in front of the scorer and
blender. Values are JSON-serialized lists of ``RecommendationScore``. Two
backends are provided: an in-process TTL/LRU store and Redis. The cache client
is constructed explicitly and handed to the engine, which owns its lifecycle.
"""

import fnmatch
import logging
import threading
import time
from collections import OrderedDict
from typing import Iterable, List, Optional, Protocol, Tuple

import redis
from pydantic import TypeAdapter, ValidationError

from cfrec.config import CacheBackend, EngineSettings
from cfrec.exceptions import CacheError
from cfrec.recommender.models import RecommendationScore, RecommendationType

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
DEFAULT_MAX_ENTRIES = 10000
KEY_PREFIX = "cfrec:rec"

CACHED_STRATEGIES: Tuple[RecommendationType, ...] = (
    RecommendationType.USER_BASED,
    RecommendationType.ITEM_BASED,
    RecommendationType.HYBRID,
)

_scores_adapter = TypeAdapter(List[RecommendationScore])


class CacheBackendClient(Protocol):
    """Minimal key/value operations a cache backend must provide."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl: int) -> None: ...

    def delete_pattern(self, pattern: str) -> int: ...

    def close(self) -> None: ...


class MemoryCacheBackend:
    """In-process TTL cache with LRU eviction.

    Expired entries are pruned lazily on read. The lock only guards the
    ``OrderedDict`` structure; each ``set`` replaces a whole value.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES, clock=time.monotonic):
        self._max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (expires_at, value)
        self._store: "OrderedDict[str, Tuple[float, str]]" = OrderedDict()

    def get(self, key: str) -> Optional[str]:
        now = self._clock()
        with self._lock:
            item = self._store.get(key)
            if item is None:
                return None
            expires_at, value = item
            if expires_at <= now:
                self._store.pop(key, None)
                return None
            # LRU touch: move to end
            self._store.move_to_end(key, last=True)
            return value

    def set(self, key: str, value: str, ttl: int) -> None:
        expires_at = self._clock() + ttl
        with self._lock:
            self._store[key] = (expires_at, value)
            self._store.move_to_end(key, last=True)
            # enforce size
            while len(self._store) > self._max_entries:
                self._store.popitem(last=False)

    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            dead = [k for k in self._store if fnmatch.fnmatchcase(k, pattern)]
            for k in dead:
                self._store.pop(k, None)
        return len(dead)

    def __len__(self) -> int:
        return len(self._store)

    def close(self) -> None:
        with self._lock:
            self._store.clear()


class RedisCacheBackend:
    """Redis-backed cache; pattern deletes use ``SCAN`` rather than ``KEYS``."""

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheBackend":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def get(self, key: str) -> Optional[str]:
        return self._client.get(key)

    def set(self, key: str, value: str, ttl: int) -> None:
        self._client.setex(key, ttl, value)

    def delete_pattern(self, pattern: str) -> int:
        keys = list(self._client.scan_iter(match=pattern))
        if not keys:
            return 0
        return int(self._client.delete(*keys))

    def close(self) -> None:
        self._client.close()


def make_key(strategy: RecommendationType, user_id: int, limit: int) -> str:
    return f"{KEY_PREFIX}:{strategy.value}:{user_id}:{limit}"


class RecommendationCache:
    """Strategy-aware cache of recommendation lists.

    Backend failures are raised as ``CacheError`` so the caller decides
    whether they are fatal; the engine treats them as misses.
    """

    def __init__(self, backend: CacheBackendClient, ttl: int = DEFAULT_TTL_SECONDS):
        self.backend = backend
        self.ttl = ttl

    def get(
        self,
        strategy: RecommendationType,
        user_id: int,
        limit: int,
    ) -> Optional[List[RecommendationScore]]:
        key = make_key(strategy, user_id, limit)
        try:
            raw = self.backend.get(key)
        except Exception as e:
            raise CacheError("get", e) from e

        if raw is None:
            return None

        try:
            scores = _scores_adapter.validate_json(raw)
        except ValidationError as e:
            logger.warning(
                "Discarding unreadable cache entry",
                extra={"key": key, "error": str(e)},
            )
            return None

        return scores[:limit]

    def set(
        self,
        strategy: RecommendationType,
        user_id: int,
        limit: int,
        value: List[RecommendationScore],
        ttl: Optional[int] = None,
    ) -> None:
        key = make_key(strategy, user_id, limit)
        payload = _scores_adapter.dump_json(list(value[:limit])).decode("utf-8")
        try:
            self.backend.set(key, payload, ttl if ttl is not None else self.ttl)
        except Exception as e:
            raise CacheError("set", e) from e

    def invalidate(
        self,
        user_id: int,
        strategies: Iterable[RecommendationType] = CACHED_STRATEGIES,
    ) -> int:
        """Remove every cached list of ``user_id`` across strategies and limits."""
        removed = 0
        try:
            for strategy in strategies:
                removed += self.backend.delete_pattern(
                    f"{KEY_PREFIX}:{strategy.value}:{user_id}:*"
                )
        except Exception as e:
            raise CacheError("invalidate", e) from e

        logger.debug(
            "Invalidated cached recommendations",
            extra={"user_id": user_id, "removed": removed},
        )
        return removed

    def close(self) -> None:
        self.backend.close()


def create_cache(settings: EngineSettings) -> RecommendationCache:
    """Build the cache client selected by ``settings.cache_backend``."""
    if settings.cache_backend == CacheBackend.REDIS:
        logger.info("Using Redis recommendation cache", extra={"redis_url": settings.redis_url})
        backend = RedisCacheBackend.from_url(settings.redis_url)
    else:
        logger.info(
            "Using in-memory recommendation cache",
            extra={"max_entries": settings.cache_max_entries},
        )
        backend = MemoryCacheBackend(max_entries=settings.cache_max_entries)
    return RecommendationCache(backend, ttl=settings.cache_ttl_seconds)
