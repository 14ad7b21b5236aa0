"""Query router: the single entry point for reads.

Classifies each query (identifier lookup, keyword search, date-range
listing), consults the freshness gate, and on a miss runs
fetch -> normalize -> dedupe -> upsert before answering.

Failure policy:
    - Upstream failures propagate unless the same cache key has been
      fetched before and still has cached records; those are then served
      with ``stale=True`` (when ``serve_stale_on_error`` is enabled).
    - Cache write failures are logged and swallowed.
    - Cache read failures count as a miss.
"""

import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, TypeVar

from loguru import logger

from vulnwatch.cache.freshness import FreshnessGate, FreshnessPolicy, cache_key, utcnow
from vulnwatch.cache.store import CacheStats, CacheStore, SearchFilters
from vulnwatch.errors import (
    CacheReadError,
    CacheWriteError,
    StoreUnconfigured,
    UpstreamError,
)
from vulnwatch.ingestion import VulnerabilityRecord, dedupe, normalize_payload
from vulnwatch.sources.base import BaseUpstreamClient, UpstreamBatch
from vulnwatch.types import QueryType, Source

T = TypeVar("T")

ID_PATTERNS: dict[Source, re.Pattern[str]] = {
    Source.NVD: re.compile(r"^CVE-\d{4}-\d{4,}$", re.IGNORECASE),
    Source.EUVD: re.compile(r"^EUVD-\d{4}-\d+$", re.IGNORECASE),
}

DEFAULT_PAGE_SIZE = 100


def classify_identifier(token: str) -> Source | None:
    """Return the source whose public-id pattern the token matches."""
    token = token.strip()
    for source, pattern in ID_PATTERNS.items():
        if pattern.match(token):
            return source
    return None


def classify(query: str) -> QueryType:
    """Identifier-shaped queries are lookups, everything else a keyword search."""
    if classify_identifier(query) is not None:
        return QueryType.ID_LOOKUP
    return QueryType.SEARCH


def rank_by_score(records: list[VulnerabilityRecord]) -> list[VulnerabilityRecord]:
    return sorted(records, key=lambda r: (r.score, r.published_at), reverse=True)


def rank_by_date(records: list[VulnerabilityRecord]) -> list[VulnerabilityRecord]:
    return sorted(records, key=lambda r: r.published_at, reverse=True)


def apply_filters(
    records: list[VulnerabilityRecord], filters: SearchFilters
) -> list[VulnerabilityRecord]:
    """In-memory equivalent of the store's search filters (term excluded)."""
    out = []
    for r in records:
        if filters.source is not None and r.source != filters.source:
            continue
        if filters.severity is not None and r.severity != filters.severity:
            continue
        if filters.start is not None and r.published_at < filters.start:
            continue
        if filters.end is not None and r.published_at > filters.end:
            continue
        if filters.exploit_known is not None and r.exploit_known != filters.exploit_known:
            continue
        out.append(r)
    return out


@dataclass
class QueryResult:
    """Answer to one query.

    Attributes:
        records: Canonical records, already ordered and capped.
        from_cache: True when no upstream fetch contributed to the answer.
        stale: True when an upstream refresh failed and cached data was served.
        query: Echo of the normalized query parameters.
    """

    records: list[VulnerabilityRecord]
    from_cache: bool
    stale: bool = False
    query: dict[str, Any] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.records)


class QueryRouter:
    """Routes queries between the cache store and the upstream clients.

    Args:
        clients: One upstream client per source.
        store: Cache store, or None to run without a cache.
        policy: Freshness windows per query type.
        serve_stale_on_error: Serve a key's cached records when its refresh fails.
        page_size: Cap for date-range listings.
        clock: Returns the current aware datetime.
    """

    def __init__(
        self,
        clients: dict[Source, BaseUpstreamClient],
        store: CacheStore | None = None,
        policy: FreshnessPolicy | None = None,
        serve_stale_on_error: bool = True,
        page_size: int = DEFAULT_PAGE_SIZE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.clients = clients
        self.store = store
        self.gate = FreshnessGate(store, policy)
        self.serve_stale_on_error = serve_stale_on_error
        self.page_size = page_size
        self.clock = clock

        if store is None:
            logger.warning(
                "No cache store configured: running in degraded mode, "
                "every query is fetched from upstream"
            )

    def _sources(self, source: Source | None) -> list[Source]:
        if source is not None:
            return [source] if source in self.clients else []
        return list(self.clients)

    async def _safe_read(self, read: Callable[[], Awaitable[T]]) -> T | None:
        """Run a store read; None when there is no store or the read fails."""
        if self.store is None:
            return None
        try:
            return await read()
        except CacheReadError as e:
            logger.warning("Cache read failed, treating as miss: {}", e)
            return None

    async def _persist(
        self,
        records: list[VulnerabilityRecord],
        key: str,
        source: Source,
        query_type: QueryType,
        params: dict[str, Any],
        record_count: int,
    ) -> None:
        """Best-effort write of fetched records and the key's metadata."""
        if self.store is None:
            return
        try:
            await self.store.upsert(records)
            await self.store.set_cache_metadata(
                key, source.value, query_type, params, record_count, fetched_at=self.clock()
            )
        except CacheWriteError as e:
            logger.error("Caching {} failed, returning fresh data anyway: {}", key, e)

    async def _fetch_and_store(
        self,
        source: Source,
        key: str,
        query_type: QueryType,
        params: dict[str, Any],
        fetch: Callable[[], Awaitable[list[UpstreamBatch]]],
        term: str | None = None,
    ) -> list[VulnerabilityRecord]:
        """Fetch from upstream, normalize, dedupe, persist.

        Every fetched record is cached, but only records that answer the
        query are returned: batches from fixed-set endpoints are filtered
        by ``term``.
        """
        batches = await fetch()

        fetched: list[VulnerabilityRecord] = []
        answer: list[VulnerabilityRecord] = []
        exploited_ids: set[str] = set()
        skipped = 0
        for batch in batches:
            records, dropped = normalize_payload(batch.payload, source)
            skipped += dropped
            for record in records:
                if batch.exploited:
                    exploited_ids.add(record.id)
                fetched.append(record)
                if term is None or batch.matches_query or record.matches_term(term):
                    answer.append(record)

        fetched = dedupe(fetched)
        answer = dedupe(answer)
        for record in (*fetched, *answer):
            if record.id in exploited_ids:
                record.exploit_known = True
        logger.info(
            "{}: fetched {} record(s), {} answer the query, {} skipped",
            key,
            len(fetched),
            len(answer),
            skipped,
        )

        await self._persist(fetched, key, source, query_type, params, len(answer))
        return answer

    async def _stale_fallback(
        self,
        error: UpstreamError,
        key: str,
        read: Callable[[], Awaitable[list[VulnerabilityRecord]]],
    ) -> list[VulnerabilityRecord]:
        """Serve this key's cached records after a failed refresh, or re-raise."""
        if not self.serve_stale_on_error or self.store is None:
            raise error
        metadata = await self._safe_read(lambda: self.store.get_cache_metadata(key))
        if metadata is None:
            raise error
        cached = await self._safe_read(read)
        if not cached:
            raise error
        logger.warning(
            "Refresh of {} failed ({}); serving {} stale record(s)", key, error, len(cached)
        )
        return cached

    # -- identifier lookup --------------------------------------------------

    async def lookup(self, identifier: str) -> QueryResult:
        """Look up a single vulnerability by CVE or EUVD id."""
        token = identifier.strip()
        query = {"identifier": token, "type": "id"}
        source = classify_identifier(token)

        cached = await self._safe_read(lambda: self.store.read_by_id(token))
        if cached is not None and (source is None or cached.source == source):
            logger.debug("Cache hit for {}", token)
            return QueryResult([cached], from_cache=True, query=query)

        fallback = [cached] if cached is not None else []
        if source is None or source not in self.clients:
            return QueryResult(fallback, from_cache=True, query=query)

        params = {"id": token.upper()}
        key = cache_key(source.value, QueryType.ID_LOOKUP, params)
        if await self.gate.is_fresh(key, QueryType.ID_LOOKUP):
            # Looked up recently and upstream had nothing under this id
            return QueryResult(fallback, from_cache=True, query=query)

        client = self.clients[source]
        try:
            records = await self._fetch_and_store(
                source, key, QueryType.ID_LOOKUP, params, lambda: client.fetch_by_id(token)
            )
        except UpstreamError as e:
            if e.status_code == 404:
                logger.info("{} has no record for {}", source.value, token)
                await self._persist([], key, source, QueryType.ID_LOOKUP, params, 0)
                return QueryResult(fallback, from_cache=False, query=query)
            if cached is not None and self.serve_stale_on_error:
                logger.warning("Lookup of {} failed ({}); serving cached record", token, e)
                return QueryResult([cached], from_cache=True, stale=True, query=query)
            raise

        upper = token.upper()
        match = next(
            (r for r in records if r.id.upper() == upper or r.public_id.upper() == upper),
            records[0] if records else None,
        )
        if match is not None:
            stored = await self._safe_read(lambda: self.store.read_by_id(match.id))
            if stored is not None:
                match = stored
        return QueryResult([match] if match else fallback, from_cache=False, query=query)

    # -- keyword search -----------------------------------------------------

    async def search(
        self,
        term: str,
        filters: SearchFilters | None = None,
        days: int = 90,
    ) -> QueryResult:
        """Keyword search across one or all sources, freshness gated per source."""
        term = term.strip()
        filters = filters or SearchFilters()
        params = {"term": term.lower(), "days": days}
        query = {"term": term, "days": days, "type": "keyword"}

        results: list[VulnerabilityRecord] = []
        from_cache = True
        stale = False

        for source in self._sources(filters.source):
            source_filters = replace(filters, source=source)
            key = cache_key(source.value, QueryType.SEARCH, params)

            if await self.gate.is_fresh(key, QueryType.SEARCH):
                cached = await self._safe_read(lambda: self.store.search(term, source_filters))
                if cached:
                    results.extend(cached)
                    continue

            client = self.clients[source]
            try:
                fetched = await self._fetch_and_store(
                    source,
                    key,
                    QueryType.SEARCH,
                    params,
                    lambda: client.fetch_keyword(term, days),
                    term=term,
                )
                results.extend(apply_filters(fetched, source_filters))
                from_cache = False
            except UpstreamError as e:
                results.extend(
                    await self._stale_fallback(
                        e, key, lambda: self.store.search(term, source_filters)
                    )
                )
                stale = True

        ranked = rank_by_score(dedupe(results))[: filters.limit]
        return QueryResult(ranked, from_cache=from_cache, stale=stale, query=query)

    # -- date-range listing -------------------------------------------------

    async def list_recent(self, days: int, source: Source | None = None) -> QueryResult:
        """Records published in the last ``days`` days, newest first."""
        end = self.clock()
        start = end - timedelta(days=days)
        window = SearchFilters(start=start, end=end)
        params = {"days": days}
        query = {
            "days": days,
            "start": start.isoformat(),
            "end": end.isoformat(),
            "source": source.value if source else "ALL",
        }

        results: list[VulnerabilityRecord] = []
        from_cache = True
        stale = False

        for src in self._sources(source):
            key = cache_key(src.value, QueryType.DATE_RANGE, params)

            if await self.gate.is_fresh(key, QueryType.DATE_RANGE):
                cached = await self._safe_read(
                    lambda: self.store.read_by_date_range(start, end, src, self.page_size)
                )
                if cached:
                    results.extend(cached)
                    continue

            client = self.clients[src]
            try:
                fetched = await self._fetch_and_store(
                    src,
                    key,
                    QueryType.DATE_RANGE,
                    params,
                    lambda: client.fetch_date_range(days),
                )
                results.extend(apply_filters(fetched, window))
                from_cache = False
            except UpstreamError as e:
                results.extend(
                    await self._stale_fallback(
                        e,
                        key,
                        lambda: self.store.read_by_date_range(start, end, src, self.page_size),
                    )
                )
                stale = True

        ranked = rank_by_date(dedupe(results))[: self.page_size]
        return QueryResult(ranked, from_cache=from_cache, stale=stale, query=query)

    # -- vendor / exploited -------------------------------------------------

    async def search_vendor(
        self, vendor: str, source: Source | None = None, limit: int = 50
    ) -> QueryResult:
        """Cached records whose products mention the vendor.

        Without a usable store this degrades to an upstream keyword search.
        """
        vendor = vendor.strip()
        query = {"term": vendor, "type": "vendor"}

        cached = await self._safe_read(lambda: self.store.read_by_vendor(vendor, limit))
        if cached is None:
            result = await self.search(vendor, SearchFilters(source=source, limit=limit))
            result.query = query
            return result

        records = [r for r in cached if source is None or r.source == source]
        return QueryResult(records, from_cache=True, query=query)

    async def list_exploited(self, source: Source | None = None, limit: int = 50) -> QueryResult:
        """Known-exploited records, refreshing feeds that publish such a list."""
        query = {"term": "exploited", "type": "exploited"}
        params = {"list": "exploited"}
        fetched: list[VulnerabilityRecord] = []
        from_cache = True
        stale = False

        for src in self._sources(source):
            client = self.clients[src]
            if not client.supports_exploited:
                continue
            key = cache_key(src.value, QueryType.SEARCH, params)
            if await self.gate.is_fresh(key, QueryType.SEARCH):
                continue
            try:
                fetched.extend(
                    await self._fetch_and_store(
                        src, key, QueryType.SEARCH, params, client.fetch_exploited
                    )
                )
                from_cache = False
            except UpstreamError as e:
                fetched.extend(
                    await self._stale_fallback(e, key, lambda: self.store.read_exploited(limit))
                )
                stale = True

        cached = await self._safe_read(lambda: self.store.read_exploited(limit))
        records = cached if cached is not None else fetched
        records = [
            r for r in records if r.exploit_known and (source is None or r.source == source)
        ]
        ranked = rank_by_date(dedupe(records))[:limit]
        return QueryResult(ranked, from_cache=from_cache, stale=stale, query=query)

    # -- store-only ---------------------------------------------------------

    async def stats(
        self, days: int | None = None, source: Source | None = None
    ) -> tuple[CacheStats, int]:
        """Aggregate counts over cached records, plus the total cache size.

        Raises:
            StoreUnconfigured: When running without a cache store.
        """
        if self.store is None:
            raise StoreUnconfigured("Database not configured")
        start = end = None
        if days is not None:
            end = self.clock()
            start = end - timedelta(days=days)
        stats = await self.store.stats(start, end, source)
        total_cached = await self.store.total_count()
        return stats, total_cached

    async def health(self) -> dict[str, Any]:
        """Store connectivity and cached record count."""
        if self.store is None:
            return {"configured": False, "connected": False, "total_cached": 0}
        connected = await self.store.check_connection()
        total = 0
        if connected:
            total = await self._safe_read(self.store.total_count) or 0
        return {"configured": True, "connected": connected, "total_cached": total}
