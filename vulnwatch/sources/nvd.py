"""NVD (National Vulnerability Database) CVE 2.0 client.

NVD publishes a limit of 5 requests per 30 seconds without an API key and
50 per 30 seconds with one, hence the two request intervals.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from loguru import logger

from vulnwatch.config import settings
from vulnwatch.sources.base import BaseUpstreamClient, RateLimiter, UpstreamBatch
from vulnwatch.types import Source

NVD_API_URL = "https://services.nvd.nist.gov/rest/json/cves/2.0"
KEYWORD_RESULTS_PER_PAGE = 100
RESULTS_PER_PAGE = 2000  # NVD max
MAX_RANGE_DAYS = 120  # NVD rejects wider publication windows

_NVD_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S.000"


def _total(data: Any) -> int:
    return data.get("totalResults", 0) if isinstance(data, dict) else 0


class NVDClient(BaseUpstreamClient):
    """Client for the NVD CVE 2.0 REST API."""

    source = Source.NVD

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = NVD_API_URL,
        interval: float | None = None,
        timeout: float | None = None,
        rate_limiter: RateLimiter | None = None,
        **kwargs,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["apiKey"] = api_key
        if interval is None:
            interval = (
                settings.nvd_interval_with_key_seconds if api_key else settings.nvd_interval_seconds
            )
        super().__init__(
            base_url,
            interval=interval,
            timeout=timeout or settings.http_timeout_seconds,
            headers=headers,
            rate_limiter=rate_limiter,
            **kwargs,
        )
        self.using_api_key = bool(api_key)

    async def fetch_by_id(self, identifier: str) -> list[UpstreamBatch]:
        data = await self._get(self.base_url, {"cveId": identifier.strip().upper()})
        return [UpstreamBatch("cveId", data)]

    async def fetch_keyword(self, term: str, days: int) -> list[UpstreamBatch]:
        # NVD keyword search is not date-bounded; callers filter by date
        data = await self._get(
            self.base_url,
            {"keywordSearch": term, "resultsPerPage": KEYWORD_RESULTS_PER_PAGE},
        )
        logger.info(
            "NVD keyword search '{}': {} total result(s)", term, _total(data)
        )
        return [UpstreamBatch("keywordSearch", data)]

    async def fetch_date_range(self, days: int) -> list[UpstreamBatch]:
        if days > MAX_RANGE_DAYS:
            logger.warning("NVD date window of {} days clamped to {}", days, MAX_RANGE_DAYS)
            days = MAX_RANGE_DAYS

        end = datetime.now(timezone.utc)
        start = end - timedelta(days=days)
        data = await self._get(
            self.base_url,
            {
                "pubStartDate": start.strftime(_NVD_DATE_FORMAT),
                "pubEndDate": end.strftime(_NVD_DATE_FORMAT),
                "resultsPerPage": RESULTS_PER_PAGE,
            },
        )
        logger.info(
            "NVD reports {} CVE(s) published in the last {} day(s)",
            _total(data),
            days,
        )
        return [UpstreamBatch("pubDateRange", data)]
