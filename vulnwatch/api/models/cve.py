"""Pydantic models for vulnerability API responses."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from vulnwatch.ingestion.records import VulnerabilityRecord
from vulnwatch.types import Severity, Source


class VulnerabilityResponse(BaseModel):
    """Response model for a single canonical vulnerability record."""

    id: str
    public_id: str
    description: str
    severity: Severity
    score: float
    published_at: datetime
    modified_at: datetime
    references: list[str]
    affected_products: list[str]
    weaknesses: list[str]
    exploit_known: bool
    vector: str | None
    source: Source

    model_config = {"from_attributes": True}

    @classmethod
    def from_record(cls, record: VulnerabilityRecord) -> "VulnerabilityResponse":
        return cls.model_validate(record)


class DateRange(BaseModel):
    start: datetime | None = None
    end: datetime | None = None


class ListResponse(BaseModel):
    """Date-range listing."""

    success: bool = True
    results: list[VulnerabilityResponse]
    total: int
    date_range: DateRange
    source: str
    from_cache: bool
    stale: bool = False


class LookupResponse(BaseModel):
    """Single identifier lookup; ``results`` holds zero or one record."""

    success: bool = True
    results: list[VulnerabilityResponse]
    total: int
    query: str
    from_cache: bool
    stale: bool = False


class SearchResponse(BaseModel):
    """Keyword, vendor, exploited or identifier search."""

    success: bool = True
    results: list[VulnerabilityResponse]
    total: int
    query: str
    source: str
    severity: str
    date_range: DateRange
    type: str
    from_cache: bool
    stale: bool = False


class StatsResponse(BaseModel):
    """Aggregate counts over cached records."""

    success: bool = True
    total: int
    critical: int
    high: int
    medium: int
    low: int
    none: int
    by_source: dict[str, int]
    total_cached: int
    filters: dict[str, Any]


class ErrorResponse(BaseModel):
    """Body returned when an upstream feed or the store cannot answer."""

    success: bool = False
    error: str
    cause: str | None = None
    status_code: int | None = None


UPSTREAM_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    500: {"model": ErrorResponse, "description": "Upstream feed failed and no cached answer exists"},
}

STORE_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    503: {"model": ErrorResponse, "description": "Cache store not configured or unreachable"},
}
