"""ENISA EU Vulnerability Database (EUVD) client.

EUVD has no single keyword endpoint that covers everything of interest, so
a keyword fetch fans out to the fixed "latest", "critical" and "exploited"
lists plus a dated text search, all in parallel.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from loguru import logger

from vulnwatch.config import settings
from vulnwatch.errors import UpstreamError
from vulnwatch.sources.base import BaseUpstreamClient, RateLimiter, UpstreamBatch
from vulnwatch.types import Source

EUVD_API_URL = "https://euvdservices.enisa.europa.eu/api"
SEARCH_PAGE_SIZE = 100

LATEST_ENDPOINT = "lastvulnerabilities"
CRITICAL_ENDPOINT = "criticalvulnerabilities"
EXPLOITED_ENDPOINT = "exploitedvulnerabilities"


class EUVDClient(BaseUpstreamClient):
    """Client for the public EUVD REST API."""

    source = Source.EUVD
    supports_exploited = True

    def __init__(
        self,
        base_url: str = EUVD_API_URL,
        interval: float | None = None,
        timeout: float | None = None,
        user_agent: str | None = None,
        rate_limiter: RateLimiter | None = None,
        **kwargs,
    ) -> None:
        super().__init__(
            base_url,
            interval=settings.euvd_interval_seconds if interval is None else interval,
            timeout=timeout or settings.http_timeout_seconds,
            headers={
                "Accept": "application/json",
                "User-Agent": user_agent or settings.user_agent,
            },
            rate_limiter=rate_limiter,
            **kwargs,
        )

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint}"

    async def _search(self, days: int, text: str | None = None) -> dict | list:
        end = datetime.now(timezone.utc)
        start = end - timedelta(days=days)
        params = {
            "fromDate": start.strftime("%Y-%m-%d"),
            "toDate": end.strftime("%Y-%m-%d"),
            "fromScore": "0",
            "toScore": "10",
            "size": str(SEARCH_PAGE_SIZE),
        }
        if text:
            params["text"] = text
        return await self._get(self._url("search"), params)

    async def fetch_by_id(self, identifier: str) -> list[UpstreamBatch]:
        data = await self._get(self._url("enisaid"), {"id": identifier.strip().upper()})
        return [UpstreamBatch("enisaid", data)]

    async def fetch_keyword(self, term: str, days: int) -> list[UpstreamBatch]:
        """Query latest, critical, exploited and a dated text search in parallel.

        Endpoints that fail are logged and left out; the fetch only fails
        when every endpoint does.
        """
        names = [LATEST_ENDPOINT, CRITICAL_ENDPOINT, EXPLOITED_ENDPOINT, "search"]
        results = await asyncio.gather(
            self._get(self._url(LATEST_ENDPOINT)),
            self._get(self._url(CRITICAL_ENDPOINT)),
            self._get(self._url(EXPLOITED_ENDPOINT)),
            self._search(days, text=term),
            return_exceptions=True,
        )

        batches: list[UpstreamBatch] = []
        errors: list[UpstreamError] = []
        for name, result in zip(names, results):
            if isinstance(result, UpstreamError):
                logger.warning("EUVD {} endpoint failed: {}", name, result)
                errors.append(result)
            elif isinstance(result, BaseException):
                raise result
            else:
                batches.append(
                    UpstreamBatch(
                        name,
                        result,
                        matches_query=name == "search",
                        exploited=name == EXPLOITED_ENDPOINT,
                    )
                )

        if not batches and errors:
            raise errors[0]

        logger.info(
            "EUVD keyword fetch '{}': {}/{} endpoint(s) succeeded",
            term,
            len(batches),
            len(names),
        )
        return batches

    async def fetch_date_range(self, days: int) -> list[UpstreamBatch]:
        data = await self._search(days)
        return [UpstreamBatch("search", data)]

    async def fetch_exploited(self) -> list[UpstreamBatch]:
        data = await self._get(self._url(EXPLOITED_ENDPOINT))
        return [UpstreamBatch(EXPLOITED_ENDPOINT, data, exploited=True)]
