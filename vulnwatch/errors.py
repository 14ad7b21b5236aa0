"""Exception types shared across the ingestion and query layers."""

import enum
from typing import Any


class UpstreamCause(str, enum.Enum):
    """Why an upstream fetch failed."""

    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    NETWORK = "network"


class UpstreamError(Exception):
    """Raised when an upstream feed request fails.

    Attributes:
        source: Name of the feed that failed (e.g. "NVD").
        cause: Timeout, non-2xx status or network failure.
        status_code: Upstream HTTP status, when one was received.
    """

    def __init__(
        self,
        message: str,
        source: str,
        cause: UpstreamCause,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.source = source
        self.cause = cause
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": f"{self.source}: {self.message}",
            "cause": self.cause.value,
            "status_code": self.status_code,
        }


class StoreUnconfigured(Exception):
    """Raised by store-only operations when no database URL is configured."""


class CacheStoreError(Exception):
    """Base class for cache store failures."""


class CacheReadError(CacheStoreError):
    """A cache read failed. Callers treat this as a cache miss."""


class CacheWriteError(CacheStoreError):
    """A cache write failed. Callers log and swallow this."""
