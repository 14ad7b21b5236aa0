"""Per-query-type freshness policy for cached answers.

Identifier lookups change rarely and keep the longest window; date-range
listings churn and keep the shortest.
"""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from loguru import logger

from vulnwatch.cache.store import CacheEntryMetadata, CacheStore
from vulnwatch.errors import CacheReadError
from vulnwatch.types import QueryType

DEFAULT_WINDOWS: dict[QueryType, timedelta] = {
    QueryType.DATE_RANGE: timedelta(minutes=15),
    QueryType.SEARCH: timedelta(minutes=30),
    QueryType.ID_LOOKUP: timedelta(minutes=60),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def cache_key(source: str, query_type: QueryType, params: dict[str, Any]) -> str:
    """Derive the cache key for one query shape.

    Parameter values are stripped and lowercased and keys sorted, so
    ``{"term": " Apache "}`` and ``{"term": "apache"}`` share a key.

    Example:
        >>> cache_key("NVD", QueryType.DATE_RANGE, {"days": 30})
        'nvd_date_range_days=30'
    """
    normalized = "&".join(
        f"{key}={str(value).strip().lower()}" for key, value in sorted(params.items())
    )
    return f"{source.lower()}_{query_type.value}_{normalized}"


class FreshnessPolicy:
    """Maps each query type to the maximum age of a cached answer.

    Args:
        windows: Override windows per query type; missing types use defaults.
        clock: Returns the current aware datetime.
    """

    def __init__(
        self,
        windows: dict[QueryType, timedelta] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.windows = {**DEFAULT_WINDOWS, **(windows or {})}
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Any, clock: Callable[[], datetime] = utcnow) -> "FreshnessPolicy":
        return cls(
            {
                QueryType.DATE_RANGE: timedelta(minutes=settings.date_range_fresh_minutes),
                QueryType.SEARCH: timedelta(minutes=settings.search_fresh_minutes),
                QueryType.ID_LOOKUP: timedelta(minutes=settings.id_lookup_fresh_minutes),
            },
            clock=clock,
        )

    def is_fresh(self, metadata: CacheEntryMetadata | None, query_type: QueryType) -> bool:
        """Pure check: fresh while ``now - last_fetched_at < window``."""
        if metadata is None:
            return False
        age = self.clock() - metadata.last_fetched_at
        return age < self.windows[query_type]


class FreshnessGate:
    """Answers "is the cached answer for this key still fresh?".

    Performs no upstream I/O. Without a store, or when the metadata read
    fails, every key is stale.
    """

    def __init__(self, store: CacheStore | None, policy: FreshnessPolicy | None = None) -> None:
        self.store = store
        self.policy = policy or FreshnessPolicy()

    async def is_fresh(self, cache_key: str, query_type: QueryType) -> bool:
        if self.store is None:
            return False
        try:
            metadata = await self.store.get_cache_metadata(cache_key)
        except CacheReadError as e:
            logger.warning("Cache metadata read failed for {}, treating as stale: {}", cache_key, e)
            return False
        return self.policy.is_fresh(metadata, query_type)
