"""Shared FastAPI dependencies (cache store, query router).

Both are built once per process from settings. Tests replace them through
``app.dependency_overrides``.
"""

from functools import lru_cache

from fastapi import HTTPException

from vulnwatch.cache.freshness import FreshnessPolicy
from vulnwatch.cache.store import CacheStore
from vulnwatch.config import settings
from vulnwatch.db.session import async_session
from vulnwatch.query.router import QueryRouter
from vulnwatch.sources import EUVDClient, NVDClient
from vulnwatch.types import Severity, Source


@lru_cache
def get_cache_store() -> CacheStore | None:
    """Return the process-wide cache store, or None without a database."""
    if async_session is None:
        return None
    return CacheStore(async_session, chunk_size=settings.upsert_chunk_size)


def build_clients() -> dict:
    """One client per source, so each owns its own rate limiter."""
    return {
        Source.NVD: NVDClient(
            api_key=settings.nvd_api_key or None,
            base_url=settings.nvd_api_url,
            interval=settings.nvd_interval,
        ),
        Source.EUVD: EUVDClient(base_url=settings.euvd_api_url),
    }


@lru_cache
def get_query_router() -> QueryRouter:
    return QueryRouter(
        clients=build_clients(),
        store=get_cache_store(),
        policy=FreshnessPolicy.from_settings(settings),
        serve_stale_on_error=settings.serve_stale_on_error,
        page_size=settings.page_size,
    )


def parse_source(value: str | None) -> Source | None:
    """Map the ``source`` query parameter to a Source; ``ALL`` means both."""
    if value is None or value.strip().upper() in ("", "ALL"):
        return None
    try:
        return Source(value.strip().upper())
    except ValueError as e:
        raise HTTPException(
            status_code=422,
            detail=f"Unknown source '{value}'. Expected one of: ALL, NVD, EUVD",
        ) from e


def parse_severity(value: str | None) -> Severity | None:
    if value is None or value.strip().lower() in ("", "all"):
        return None
    try:
        return Severity(value.strip().upper())
    except ValueError as e:
        raise HTTPException(
            status_code=422,
            detail=f"Unknown severity '{value}'. Expected one of: "
            + ", ".join(s.value for s in Severity),
        ) from e


__all__ = ["build_clients", "get_cache_store", "get_query_router", "parse_severity", "parse_source"]
