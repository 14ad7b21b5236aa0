"""Vulnerability listing and lookup endpoints."""

from fastapi import APIRouter, Depends, Query
from loguru import logger

from vulnwatch.api.dependencies import get_query_router, parse_source
from vulnwatch.api.models.cve import (
    UPSTREAM_ERROR_RESPONSES,
    DateRange,
    ListResponse,
    LookupResponse,
    VulnerabilityResponse,
)
from vulnwatch.config import settings
from vulnwatch.query.router import QueryRouter

router = APIRouter(prefix="/cves", tags=["CVEs"])


@router.get("", response_model=ListResponse, responses=UPSTREAM_ERROR_RESPONSES)
async def list_cves(
    days: int = Query(default=settings.default_days, ge=1, le=365),
    source: str = "ALL",
    query_router: QueryRouter = Depends(get_query_router),
) -> ListResponse:
    """List vulnerabilities published in the last ``days`` days, newest first.

    Served from cache while the date-range window is fresh, otherwise
    refreshed from the selected feeds.
    """
    selected = parse_source(source)
    logger.info("Listing CVEs: days={}, source={}", days, source)

    result = await query_router.list_recent(days, selected)
    return ListResponse(
        results=[VulnerabilityResponse.from_record(r) for r in result.records],
        total=result.total,
        date_range=DateRange(start=result.query["start"], end=result.query["end"]),
        source=selected.value if selected else "ALL",
        from_cache=result.from_cache,
        stale=result.stale,
    )


@router.get(
    "/{identifier}", response_model=LookupResponse, responses=UPSTREAM_ERROR_RESPONSES
)
async def get_cve(
    identifier: str,
    query_router: QueryRouter = Depends(get_query_router),
) -> LookupResponse:
    """Look up one vulnerability by CVE or EUVD id.

    An unknown id is not an error: ``results`` is empty and ``total`` is 0.
    """
    result = await query_router.lookup(identifier)
    return LookupResponse(
        results=[VulnerabilityResponse.from_record(r) for r in result.records],
        total=result.total,
        query=identifier,
        from_cache=result.from_cache,
        stale=result.stale,
    )
