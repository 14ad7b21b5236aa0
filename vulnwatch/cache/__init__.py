"""Cache store and freshness policy."""

from vulnwatch.cache.freshness import FreshnessGate, FreshnessPolicy, cache_key
from vulnwatch.cache.store import (
    CacheEntryMetadata,
    CacheStats,
    CacheStore,
    SearchFilters,
    UpsertResult,
)

__all__ = [
    "CacheEntryMetadata",
    "CacheStats",
    "CacheStore",
    "FreshnessGate",
    "FreshnessPolicy",
    "SearchFilters",
    "UpsertResult",
    "cache_key",
]
