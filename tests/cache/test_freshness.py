"""Tests for cache keys, the freshness policy and the freshness gate."""

from datetime import timedelta

import pytest

from vulnwatch.cache.freshness import FreshnessGate, FreshnessPolicy, cache_key
from vulnwatch.cache.store import CacheEntryMetadata, CacheStore
from vulnwatch.errors import CacheReadError
from vulnwatch.types import QueryType


def _metadata(fetched_at, query_type=QueryType.DATE_RANGE) -> CacheEntryMetadata:
    return CacheEntryMetadata(
        cache_key="k",
        source="NVD",
        query_type=query_type,
        query_params={},
        last_fetched_at=fetched_at,
        record_count=1,
    )


class TestCacheKey:
    """Tests for cache key derivation."""

    def test_date_range_key(self) -> None:
        assert cache_key("NVD", QueryType.DATE_RANGE, {"days": 30}) == "nvd_date_range_days=30"

    def test_values_normalized(self) -> None:
        a = cache_key("EUVD", QueryType.SEARCH, {"term": " Apache ", "days": 90})
        b = cache_key("euvd", QueryType.SEARCH, {"days": 90, "term": "apache"})
        assert a == b

    def test_different_params_differ(self) -> None:
        assert cache_key("NVD", QueryType.SEARCH, {"term": "a"}) != cache_key(
            "NVD", QueryType.SEARCH, {"term": "b"}
        )


class TestFreshnessPolicy:
    """Tests for the pure freshness rule."""

    def test_absent_metadata_is_stale(self, clock) -> None:
        policy = FreshnessPolicy(clock=clock)
        assert policy.is_fresh(None, QueryType.ID_LOOKUP) is False

    @pytest.mark.parametrize(
        "query_type, window_minutes",
        [
            (QueryType.DATE_RANGE, 15),
            (QueryType.SEARCH, 30),
            (QueryType.ID_LOOKUP, 60),
        ],
    )
    def test_default_windows(self, clock, query_type, window_minutes) -> None:
        policy = FreshnessPolicy(clock=clock)
        metadata = _metadata(clock.now, query_type)

        clock.advance(minutes=window_minutes - 1)
        assert policy.is_fresh(metadata, query_type) is True

        clock.advance(minutes=1)
        assert policy.is_fresh(metadata, query_type) is False

    def test_stale_stays_stale_as_time_passes(self, clock) -> None:
        policy = FreshnessPolicy(clock=clock)
        metadata = _metadata(clock.now - timedelta(minutes=20))

        for _ in range(5):
            assert policy.is_fresh(metadata, QueryType.DATE_RANGE) is False
            clock.advance(minutes=7)

    def test_custom_windows(self, clock) -> None:
        policy = FreshnessPolicy({QueryType.SEARCH: timedelta(minutes=5)}, clock=clock)
        metadata = _metadata(clock.now - timedelta(minutes=6), QueryType.SEARCH)
        assert policy.is_fresh(metadata, QueryType.SEARCH) is False
        assert policy.windows[QueryType.ID_LOOKUP] == timedelta(minutes=60)

    def test_from_settings(self, clock) -> None:
        class _Settings:
            date_range_fresh_minutes = 1
            search_fresh_minutes = 2
            id_lookup_fresh_minutes = 3

        policy = FreshnessPolicy.from_settings(_Settings(), clock=clock)
        assert policy.windows[QueryType.DATE_RANGE] == timedelta(minutes=1)
        assert policy.windows[QueryType.SEARCH] == timedelta(minutes=2)
        assert policy.windows[QueryType.ID_LOOKUP] == timedelta(minutes=3)


@pytest.mark.store
class TestFreshnessGate:
    """Tests for the store-backed gate."""

    @pytest.mark.asyncio
    async def test_without_store_everything_is_stale(self, clock) -> None:
        gate = FreshnessGate(None, FreshnessPolicy(clock=clock))
        assert await gate.is_fresh("nvd_date_range_days=30", QueryType.DATE_RANGE) is False

    @pytest.mark.asyncio
    async def test_fresh_then_stale(self, store: CacheStore, clock) -> None:
        gate = FreshnessGate(store, FreshnessPolicy(clock=clock))
        key = "nvd_date_range_days=30"

        assert await gate.is_fresh(key, QueryType.DATE_RANGE) is False

        await store.set_cache_metadata(key, "NVD", QueryType.DATE_RANGE, {"days": 30}, 3)
        assert await gate.is_fresh(key, QueryType.DATE_RANGE) is True

        clock.advance(minutes=16)
        assert await gate.is_fresh(key, QueryType.DATE_RANGE) is False

    @pytest.mark.asyncio
    async def test_read_failure_is_stale(self, store: CacheStore, clock, monkeypatch) -> None:
        async def broken(cache_key):
            raise CacheReadError("no such table: cache_metadata")

        monkeypatch.setattr(store, "get_cache_metadata", broken)
        gate = FreshnessGate(store, FreshnessPolicy(clock=clock))
        assert await gate.is_fresh("k", QueryType.SEARCH) is False
