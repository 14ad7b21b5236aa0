"""Shared type definitions for vulnwatch.

This module contains types that are used across multiple modules
to avoid duplication and ensure consistency.
"""

import enum
import math


class Source(str, enum.Enum):
    """Upstream vulnerability feeds."""

    NVD = "NVD"
    EUVD = "EUVD"


class Severity(str, enum.Enum):
    """Ordinal severity classification derived from a CVSS score."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    NONE = "NONE"


class QueryType(str, enum.Enum):
    """Query shapes tracked by the cache metadata table."""

    DATE_RANGE = "date_range"
    SEARCH = "search"
    ID_LOOKUP = "id_lookup"


def clamp_score(score: float) -> float:
    """Clamp a score into [0, 10]; NaN becomes 0."""
    if math.isnan(score):
        return 0.0
    return min(max(score, 0.0), 10.0)


def severity_from_score(score: float) -> Severity:
    """Map a numeric CVSS score to its severity band.

    This is the only place severity is derived, for every source.
    """
    score = clamp_score(score)
    if score >= 9.0:
        return Severity.CRITICAL
    if score >= 7.0:
        return Severity.HIGH
    if score >= 4.0:
        return Severity.MEDIUM
    if score > 0:
        return Severity.LOW
    return Severity.NONE
