"""Rate-limited clients for the upstream vulnerability feeds."""

from vulnwatch.sources.base import BaseUpstreamClient, RateLimiter, UpstreamBatch
from vulnwatch.sources.euvd import EUVDClient
from vulnwatch.sources.nvd import NVDClient

__all__ = [
    "BaseUpstreamClient",
    "EUVDClient",
    "NVDClient",
    "RateLimiter",
    "UpstreamBatch",
]
