"""
Classification Cache - Memoized FODMAP results keyed by (name, category)

Cache Strategy:
1. First time seeing a (name, category) pair → AI call → cache result
2. Same pair again (any identity, any process) → cache hit → no AI call
3. UNKNOWN is never stored: it may be transient (rate limit, outage, bad parse)

Key: "fodmap_classification:" + sha1(lower(trim(name)) + "|" + lower(trim(category)))

This key is NOT the product identity hash. Two products with different
identities but the same normalized name/category share one entry.

Eviction is TTL-only (30 days by default); invalidate_all() drops everything
under the prefix.
"""
import hashlib
import time
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

import structlog
from pydantic import ValidationError

from packages.common.metrics import CACHE_HITS, CACHE_MISSES
from packages.domain.classification.schemas import ClassificationResult

logger = structlog.get_logger()

CACHE_KEY_PREFIX = "fodmap_classification:"
DEFAULT_TTL_SECONDS = 30 * 24 * 60 * 60


class CacheStore(Protocol):
    """Key-value store with per-key TTL"""

    async def get_many(self, keys: Sequence[str]) -> List[Optional[str]]:
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    async def delete_prefix(self, prefix: str) -> int:
        ...


class RedisCacheStore:
    """Cache store shared across processes through Redis"""

    def __init__(self, client):
        self._client = client

    async def get_many(self, keys: Sequence[str]) -> List[Optional[str]]:
        if not keys:
            return []
        return await self._client.mget(list(keys))

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._client.set(key, value, ex=ttl_seconds)

    async def delete_prefix(self, prefix: str) -> int:
        deleted = 0
        batch: List[str] = []
        async for key in self._client.scan_iter(match=f"{prefix}*", count=500):
            batch.append(key)
            if len(batch) >= 500:
                deleted += await self._client.delete(*batch)
                batch = []
        if batch:
            deleted += await self._client.delete(*batch)
        return deleted


class InMemoryCacheStore:
    """Single-process store with an injectable clock (development and tests)"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}

    def _get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def get_many(self, keys: Sequence[str]) -> List[Optional[str]]:
        return [self._get(key) for key in keys]

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._entries[key] = (value, self._clock() + ttl_seconds)

    async def delete_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def __len__(self) -> int:
        return len(self._entries)


class ClassificationCache:
    """
    Memoizes ClassificationResult values.

    Usage:
        cache = ClassificationCache(RedisCacheStore(redis), ttl_seconds=settings.cache_ttl_seconds)
        hit = await cache.get("Pirinač", "Žitarice")
        await cache.put("Pirinač", "Žitarice", result)
    """

    def __init__(self, store: CacheStore, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.hits = 0
        self.misses = 0

    @staticmethod
    def cache_key(name: str, category: Optional[str]) -> str:
        """Generate the cache key for a name/category pair"""
        normalized = f"{(name or '').strip().lower()}|{(category or '').strip().lower()}"
        return CACHE_KEY_PREFIX + hashlib.sha1(normalized.encode("utf-8")).hexdigest()

    def _decode(self, key: str, raw: Optional[str]) -> Optional[ClassificationResult]:
        if raw is None:
            return None
        try:
            result = ClassificationResult.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("cache_entry_invalid", key=key, error=str(e))
            return None
        # Entries written by older code may hold UNKNOWN; never serve them
        return result if result.is_cacheable else None

    def _record(self, hits: int, misses: int) -> None:
        self.hits += hits
        self.misses += misses
        CACHE_HITS.inc(hits)
        CACHE_MISSES.inc(misses)

    async def get(self, name: str, category: Optional[str]) -> Optional[ClassificationResult]:
        """
        Look up a cached classification.

        Returns:
            Cached result, or None on miss
        """
        key = self.cache_key(name, category)
        raw = (await self.store.get_many([key]))[0]
        result = self._decode(key, raw)

        if result is not None:
            self._record(1, 0)
            logger.debug("cache_hit", product_name=name, category=category, status=result.status.value)
        else:
            self._record(0, 1)
            logger.debug("cache_miss", product_name=name, category=category)

        return result

    async def get_many(
        self,
        pairs: Sequence[Tuple[str, Optional[str]]],
    ) -> List[Optional[ClassificationResult]]:
        """Batch lookup, one entry per pair in input order"""
        keys = [self.cache_key(name, category) for name, category in pairs]
        raw_values = await self.store.get_many(keys)
        results = [self._decode(key, raw) for key, raw in zip(keys, raw_values)]

        hits = sum(1 for r in results if r is not None)
        self._record(hits, len(results) - hits)

        return results

    async def put(
        self,
        name: str,
        category: Optional[str],
        result: ClassificationResult,
        ttl_seconds: Optional[int] = None,
    ) -> bool:
        """
        Store a classification.

        Returns:
            True if stored, False if the result is not cacheable (UNKNOWN)
        """
        if not result.is_cacheable:
            logger.debug("cache_skip_uncacheable", product_name=name, status=result.status.value)
            return False

        await self.store.set(
            self.cache_key(name, category),
            result.model_dump_json(),
            ttl_seconds or self.ttl_seconds,
        )
        return True

    async def invalidate_all(self) -> int:
        """Drop every cached classification; returns the number of keys removed"""
        removed = await self.store.delete_prefix(CACHE_KEY_PREFIX)
        logger.info("classification_cache_cleared", keys_removed=removed)
        return removed

    def stats(self) -> Dict[str, float]:
        """In-process hit/miss counters"""
        total = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / total, 4) if total else 0.0,
        }
