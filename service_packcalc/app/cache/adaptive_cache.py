"""
Adaptive TTL caching for Pack Calculator Service.
"""

import hashlib
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import redis.asyncio as redis

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.config import BaseConfig
from shared.errors import CacheError
from shared.logging import get_logger
from ..algorithm import Decomposition

# Bytes of the SHA-256 digest kept in a fingerprint (32 hex chars)
FINGERPRINT_BYTES = 16


def canonical_pack_sizes(pack_sizes: Iterable[int]) -> List[int]:
    """Sorted, de-duplicated pack sizes."""
    return sorted(set(pack_sizes))


def fingerprint(order_quantity: int, pack_sizes: Iterable[int]) -> str:
    """Deterministic cache key digest for (order quantity, pack size set).

    Input order and duplicate sizes do not change the result.
    """
    sizes = ",".join(str(size) for size in canonical_pack_sizes(pack_sizes))
    data = f"{order_quantity}:[{sizes}]"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()[:FINGERPRINT_BYTES * 2]


def grow_ttl(current_ttl: int, max_ttl: int) -> int:
    """TTL after one more hit: doubled, capped at ``max_ttl``."""
    return min(current_ttl * 2, max_ttl)


@dataclass
class CacheEntry:
    """A cached decomposition with its adaptive TTL bookkeeping."""
    order_quantity: int
    pack_sizes: List[int]
    decomposition: Decomposition
    current_ttl: int
    hit_count: int = 0
    calculation_time_ms: float = 0.0
    cached_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        return json.dumps({
            "order_quantity": self.order_quantity,
            "pack_sizes": self.pack_sizes,
            "decomposition": self.decomposition.to_dict(),
            "current_ttl": self.current_ttl,
            "hit_count": self.hit_count,
            "calculation_time_ms": self.calculation_time_ms,
            "cached_at": self.cached_at.isoformat(),
        })

    @classmethod
    def from_json(cls, raw: Any) -> "CacheEntry":
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
        if not isinstance(data, dict) or not isinstance(data.get("pack_sizes"), list):
            raise ValueError("Malformed cache entry")
        return cls(
            order_quantity=int(data["order_quantity"]),
            pack_sizes=[int(size) for size in data["pack_sizes"]],
            decomposition=Decomposition.from_dict(data["decomposition"]),
            current_ttl=int(data["current_ttl"]),
            hit_count=int(data["hit_count"]),
            calculation_time_ms=float(data.get("calculation_time_ms", 0.0)),
            cached_at=datetime.fromisoformat(data["cached_at"]),
        )


@dataclass
class CacheStats:
    """Cumulative cache counters since the last clear."""
    hits: int = 0
    misses: int = 0
    total_keys: int = 0
    enabled: bool = False
    memory_used: Optional[str] = None
    uptime_seconds: Optional[int] = None

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "total_keys": self.total_keys,
            "memory_used": self.memory_used,
            "uptime_seconds": self.uptime_seconds,
        }


class AdaptiveCache(ABC):
    """Cache contract shared by the active and pass-through variants."""

    enabled: bool = False

    @abstractmethod
    async def get(self, order_quantity: int, pack_sizes: Iterable[int]) -> Optional[CacheEntry]:
        """Return the entry and extend its TTL, or None on a miss.

        Never raises: store failures are reported as misses.
        """

    @abstractmethod
    async def put(self, order_quantity: int, pack_sizes: Iterable[int],
                  decomposition: Decomposition, calculation_time_ms: float = 0.0) -> CacheEntry:
        """Store a fresh entry at the initial TTL, replacing any prior one.

        Raises:
            CacheError: The store rejected the write. Advisory only.
        """

    @abstractmethod
    async def clear(self) -> int:
        """Remove every entry this cache owns and reset its counters."""

    @abstractmethod
    async def stats(self) -> CacheStats:
        """Hit/miss counters and key count."""

    async def ping(self) -> bool:
        return False

    async def close(self) -> None:
        return None


class NullAdaptiveCache(AdaptiveCache):
    """Pass-through cache: every lookup misses, writes are dropped."""

    enabled = False

    async def get(self, order_quantity: int, pack_sizes: Iterable[int]) -> Optional[CacheEntry]:
        return None

    async def put(self, order_quantity: int, pack_sizes: Iterable[int],
                  decomposition: Decomposition, calculation_time_ms: float = 0.0) -> CacheEntry:
        # Built but never stored, so callers can treat both variants alike
        return CacheEntry(
            order_quantity=order_quantity,
            pack_sizes=canonical_pack_sizes(pack_sizes),
            decomposition=decomposition,
            current_ttl=0,
            calculation_time_ms=calculation_time_ms,
        )

    async def clear(self) -> int:
        return 0

    async def stats(self) -> CacheStats:
        return CacheStats(enabled=False)


class RedisAdaptiveCache(AdaptiveCache):
    """Redis-backed adaptive TTL cache.

    Entries live at ``<prefix>entry:<fingerprint>`` with the entry's current
    TTL as the key expiry; hit/miss counters live at ``<prefix>stats:*`` and
    are bumped with INCR. Concurrent hits on one key are last-writer-wins on
    ``hit_count``/``current_ttl``; the stored decomposition is always whole.

    Misses that happen while the store is unreachable are counted in
    process and added to the stored misses by ``stats``.
    """

    enabled = True

    def __init__(self,
                 client: redis.Redis,
                 initial_ttl: int = 300,
                 max_ttl: int = 86400,
                 key_prefix: str = "packcalc:",
                 breaker: Optional[CircuitBreaker] = None):
        if initial_ttl <= 0 or max_ttl < initial_ttl:
            raise ValueError("TTL bounds must satisfy 0 < initial_ttl <= max_ttl")

        self.client = client
        self.initial_ttl = initial_ttl
        self.max_ttl = max_ttl
        self.key_prefix = key_prefix
        self.breaker = breaker or CircuitBreaker(name="packcalc.cache.redis")
        self.logger = get_logger("packcalc.cache.redis")

        self.hits_key = f"{key_prefix}stats:hits"
        self.misses_key = f"{key_prefix}stats:misses"
        self._unstored_misses = 0

    @classmethod
    def from_config(cls, config: BaseConfig) -> "RedisAdaptiveCache":
        client = redis.from_url(
            config.redis_url,
            socket_connect_timeout=config.redis_connect_timeout,
            socket_timeout=config.redis_socket_timeout,
        )
        return cls(
            client,
            initial_ttl=config.cache_initial_ttl_seconds,
            max_ttl=config.cache_max_ttl_seconds,
            key_prefix=config.cache_key_prefix,
        )

    def entry_key(self, order_quantity: int, pack_sizes: Iterable[int]) -> str:
        """Store key for an (order, sizes) pair."""
        return f"{self.key_prefix}entry:{fingerprint(order_quantity, pack_sizes)}"

    async def get(self, order_quantity: int, pack_sizes: Iterable[int]) -> Optional[CacheEntry]:
        key = self.entry_key(order_quantity, pack_sizes)

        try:
            raw = await self.breaker.call(self.client.get, key)
        except CircuitBreakerOpenException:
            self._unstored_misses += 1
            return None
        except Exception as e:
            self.logger.warning("Cache get error", key=key, error=str(e))
            self._unstored_misses += 1
            return None

        if raw is None:
            await self._count(self.misses_key)
            return None

        try:
            entry = CacheEntry.from_json(raw)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            self.logger.warning("Discarding unreadable cache entry", key=key, error=str(e))
            await self._count(self.misses_key)
            return None

        entry.hit_count += 1
        entry.current_ttl = grow_ttl(entry.current_ttl, self.max_ttl)

        try:
            await self._store(key, entry)
        except CacheError as e:
            # The hit still stands; only the TTL extension is lost
            self.logger.warning("Failed to extend cache TTL", key=key, error=e.message)

        await self._count(self.hits_key)
        self.logger.debug("Cache hit", key=key, hit_count=entry.hit_count, ttl=entry.current_ttl)
        return entry

    async def put(self, order_quantity: int, pack_sizes: Iterable[int],
                  decomposition: Decomposition, calculation_time_ms: float = 0.0) -> CacheEntry:
        sizes = canonical_pack_sizes(pack_sizes)
        key = self.entry_key(order_quantity, sizes)
        entry = CacheEntry(
            order_quantity=order_quantity,
            pack_sizes=sizes,
            decomposition=decomposition,
            current_ttl=self.initial_ttl,
            calculation_time_ms=calculation_time_ms,
        )

        await self._store(key, entry)
        self.logger.debug("Cached decomposition", key=key, ttl=entry.current_ttl)
        return entry

    async def clear(self) -> int:
        try:
            keys = await self.breaker.call(self._owned_keys)
            if keys:
                await self.breaker.call(self.client.delete, *keys)
        except CircuitBreakerOpenException as e:
            raise CacheError(str(e))
        except Exception as e:
            raise CacheError("Failed to clear cache", details={"error": str(e)})

        self._unstored_misses = 0
        self.logger.info("Cache cleared", keys_count=len(keys))
        return len(keys)

    async def stats(self) -> CacheStats:
        try:
            hits, misses = await self.breaker.call(self.client.mget, self.hits_key, self.misses_key)
            keys = await self.breaker.call(self._owned_keys, f"{self.key_prefix}entry:*")
        except CircuitBreakerOpenException as e:
            raise CacheError(str(e))
        except Exception as e:
            raise CacheError("Failed to read cache stats", details={"error": str(e)})

        stats = CacheStats(
            hits=int(hits or 0),
            misses=int(misses or 0) + self._unstored_misses,
            total_keys=len(keys),
            enabled=True,
        )

        try:
            info = await self.client.info()
            stats.memory_used = info.get("used_memory_human")
            if info.get("uptime_in_seconds") is not None:
                stats.uptime_seconds = int(info["uptime_in_seconds"])
        except Exception as e:
            self.logger.debug("Cache store info unavailable", error=str(e))

        return stats

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except Exception:
            return False

    async def close(self) -> None:
        await self.client.aclose()

    async def _store(self, key: str, entry: CacheEntry) -> None:
        try:
            await self.breaker.call(self.client.set, key, entry.to_json(), ex=entry.current_ttl)
        except CircuitBreakerOpenException as e:
            raise CacheError(str(e))
        except Exception as e:
            raise CacheError("Failed to write cache entry", details={"key": key, "error": str(e)})

    async def _owned_keys(self, pattern: Optional[str] = None) -> List[Any]:
        keys = []
        async for key in self.client.scan_iter(match=pattern or f"{self.key_prefix}*", count=100):
            keys.append(key)
        return keys

    async def _count(self, counter_key: str) -> None:
        try:
            await self.breaker.call(self.client.incr, counter_key)
        except CircuitBreakerOpenException:
            pass
        except Exception as e:
            self.logger.debug("Cache counter update failed", key=counter_key, error=str(e))


async def build_adaptive_cache(config: BaseConfig) -> AdaptiveCache:
    """Pick the cache variant once, at startup.

    Falls back to the pass-through cache when Redis is disabled or does not
    answer a ping.
    """
    logger = get_logger("packcalc.cache")

    if not config.redis_enabled:
        logger.info("Redis cache is disabled")
        return NullAdaptiveCache()

    cache = RedisAdaptiveCache.from_config(config)
    if not await cache.ping():
        logger.warning("Failed to connect to Redis. Cache disabled.", redis_url=config.redis_url)
        await cache.close()
        return NullAdaptiveCache()

    logger.info(
        "Redis cache enabled",
        redis_url=config.redis_url,
        initial_ttl=cache.initial_ttl,
        max_ttl=cache.max_ttl
    )
    return cache
