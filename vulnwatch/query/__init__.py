"""Query routing between the cache store and the upstream feeds."""

from vulnwatch.query.router import (
    QueryResult,
    QueryRouter,
    apply_filters,
    classify,
    classify_identifier,
)

__all__ = [
    "QueryResult",
    "QueryRouter",
    "apply_filters",
    "classify",
    "classify_identifier",
]
