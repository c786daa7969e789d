"""
Cache package for Pack Calculator Service.

Memoizes decompositions in Redis under a fingerprint of (order quantity,
pack sizes). Every reuse doubles an entry's TTL up to a ceiling, so hot
orders stay cached far longer than one-off ones. A pass-through variant
with the same interface is used when caching is off.
"""

from .adaptive_cache import (
    AdaptiveCache,
    CacheEntry,
    CacheStats,
    NullAdaptiveCache,
    RedisAdaptiveCache,
    build_adaptive_cache,
    canonical_pack_sizes,
    fingerprint,
    grow_ttl,
)

__all__ = [
    "AdaptiveCache",
    "CacheEntry",
    "CacheStats",
    "NullAdaptiveCache",
    "RedisAdaptiveCache",
    "build_adaptive_cache",
    "canonical_pack_sizes",
    "fingerprint",
    "grow_ttl",
]
