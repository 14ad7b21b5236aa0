"""Base upstream client interface and the per-source request throttle.

Every feed integration implements BaseUpstreamClient, which funnels all
HTTP traffic for that source through one RateLimiter and translates httpx
failures into UpstreamError.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from vulnwatch.errors import UpstreamCause, UpstreamError
from vulnwatch.types import Source

DEFAULT_TIMEOUT = 15.0


class RateLimiter:
    """Enforces a minimum interval between request starts for one source.

    All callers share the same instance, so concurrent requests against a
    source serialize through ``acquire``. Clock and sleep are injectable
    for tests.

    Args:
        interval: Minimum seconds between two acquisitions.
        clock: Monotonic time source in seconds.
        sleep: Coroutine used to wait.
    """

    def __init__(
        self,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._last: float | None = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Block until the interval since the previous request has elapsed."""
        async with self._lock:
            if self._last is not None:
                wait = self._last + self.interval - self._clock()
                if wait > 0:
                    logger.debug("Rate limit: waiting {:.2f}s", wait)
                    await self._sleep(wait)
            self._last = self._clock()


@dataclass
class UpstreamBatch:
    """One raw response body from an upstream endpoint.

    Attributes:
        endpoint: Which endpoint produced the payload (for logging).
        payload: Decoded JSON body, untouched.
        matches_query: False for fixed-set endpoints (latest, critical, ...)
            whose results were not filtered by the query term upstream.
        exploited: True when every record in the payload is a known-exploited
            vulnerability by virtue of the endpoint it came from.
    """

    endpoint: str
    payload: Any
    matches_query: bool = True
    exploited: bool = False


class BaseUpstreamClient(ABC):
    """Abstract base class for the upstream vulnerability feeds.

    Subclasses declare their source and implement the query operations in
    terms of ``_get``.
    """

    source: Source
    supports_exploited: bool = False

    def __init__(
        self,
        base_url: str,
        interval: float,
        timeout: float = DEFAULT_TIMEOUT,
        headers: dict[str, str] | None = None,
        rate_limiter: RateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = headers or {}
        self.rate_limiter = rate_limiter or RateLimiter(interval)
        self._transport = transport

    async def _get(self, url: str, params: dict[str, Any] | None = None) -> Any:
        """Issue one throttled GET and return the decoded JSON body.

        Raises:
            UpstreamError: On timeout, non-2xx status, network failure or an
                undecodable body. Never retried here.
        """
        await self.rate_limiter.acquire()
        name = self.source.value
        logger.debug("{} GET {} params={}", name, url, params)

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.get(url, params=params, headers=self.headers)
                resp.raise_for_status()
                return resp.json()
        except httpx.TimeoutException as e:
            logger.error("{} request timed out after {}s: {}", name, self.timeout, url)
            raise UpstreamError(
                f"request timed out after {self.timeout}s", name, UpstreamCause.TIMEOUT
            ) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("{} returned HTTP {} for {}", name, status, url)
            raise UpstreamError(
                f"HTTP {status}", name, UpstreamCause.HTTP_STATUS, status_code=status
            ) from e
        except httpx.HTTPError as e:
            logger.error("{} request failed: {}", name, e)
            raise UpstreamError(str(e) or "network error", name, UpstreamCause.NETWORK) from e
        except ValueError as e:
            logger.error("{} returned a malformed body for {}: {}", name, url, e)
            raise UpstreamError("malformed response body", name, UpstreamCause.NETWORK) from e

    @abstractmethod
    async def fetch_by_id(self, identifier: str) -> list[UpstreamBatch]:
        """Fetch a single vulnerability by its identifier."""
        ...

    @abstractmethod
    async def fetch_keyword(self, term: str, days: int) -> list[UpstreamBatch]:
        """Fetch vulnerabilities matching a keyword."""
        ...

    @abstractmethod
    async def fetch_date_range(self, days: int) -> list[UpstreamBatch]:
        """Fetch vulnerabilities published in the last ``days`` days."""
        ...

    async def fetch_exploited(self) -> list[UpstreamBatch]:
        """Fetch known-exploited vulnerabilities, if the feed has such a list."""
        return []
