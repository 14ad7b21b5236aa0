"""Search and statistics endpoints."""

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger

from vulnwatch.api.dependencies import get_query_router, parse_severity, parse_source
from vulnwatch.api.models.cve import (
    STORE_ERROR_RESPONSES,
    UPSTREAM_ERROR_RESPONSES,
    DateRange,
    SearchResponse,
    StatsResponse,
    VulnerabilityResponse,
)
from vulnwatch.cache.store import SearchFilters
from vulnwatch.config import settings
from vulnwatch.query.router import QueryResult, QueryRouter, classify
from vulnwatch.types import QueryType

router = APIRouter(tags=["Search"])


def _search_response(
    result: QueryResult,
    query: str,
    source: str,
    search_type: str,
    severity: str = "all",
    date_range: DateRange | None = None,
) -> SearchResponse:
    return SearchResponse(
        results=[VulnerabilityResponse.from_record(r) for r in result.records],
        total=result.total,
        query=query,
        source=source,
        severity=severity,
        date_range=date_range or DateRange(),
        type=search_type,
        from_cache=result.from_cache,
        stale=result.stale,
    )


@router.get("/search", response_model=SearchResponse, responses=UPSTREAM_ERROR_RESPONSES)
async def search(
    q: str | None = None,
    source: str = "ALL",
    severity: str | None = None,
    days: int = Query(default=settings.search_default_days, ge=1, le=3650),
    exploit: bool = False,
    vendor: str | None = None,
    limit: int = Query(default=50, ge=1),
    query_router: QueryRouter = Depends(get_query_router),
) -> SearchResponse:
    """Search vulnerabilities.

    Precedence: ``exploit=true`` lists known-exploited records, then
    ``vendor`` searches affected products, then ``q`` is treated as an
    identifier lookup when it looks like a CVE/EUVD id and as a keyword
    search otherwise.
    """
    selected = parse_source(source)
    source_label = selected.value if selected else "ALL"
    limit = min(limit, settings.max_search_limit)

    if exploit:
        result = await query_router.list_exploited(selected, limit)
        return _search_response(result, "exploited", source_label, "exploited")

    if vendor:
        result = await query_router.search_vendor(vendor, selected, limit)
        return _search_response(result, vendor, source_label, "vendor")

    if not q or not q.strip():
        raise HTTPException(
            status_code=400,
            detail="Provide a 'q' parameter, or use 'vendor' or 'exploit=true'",
        )

    if classify(q) == QueryType.ID_LOOKUP:
        result = await query_router.lookup(q)
        return _search_response(result, q, source_label, "id")

    sev = parse_severity(severity)
    end = datetime.now(timezone.utc)
    start = end - timedelta(days=days)
    filters = SearchFilters(source=selected, severity=sev, start=start, end=end, limit=limit)
    logger.info("Keyword search: q='{}', source={}, severity={}", q, source_label, severity)

    result = await query_router.search(q, filters, days=days)
    return _search_response(
        result,
        q,
        source_label,
        "keyword",
        severity=sev.value if sev else "all",
        date_range=DateRange(start=start, end=end),
    )


@router.get("/stats", response_model=StatsResponse, responses=STORE_ERROR_RESPONSES)
async def stats(
    days: int | None = Query(default=None, ge=1),
    source: str = "ALL",
    query_router: QueryRouter = Depends(get_query_router),
) -> StatsResponse:
    """Counts by severity and by source over cached records.

    Requires a configured database; answers 503 otherwise.
    """
    selected = parse_source(source)
    counts, total_cached = await query_router.stats(days, selected)
    return StatsResponse(
        total=counts.total,
        critical=counts.critical,
        high=counts.high,
        medium=counts.medium,
        low=counts.low,
        none=counts.none,
        by_source=counts.by_source,
        total_cached=total_cached,
        filters={"days": days, "source": selected.value if selected else "ALL"},
    )
