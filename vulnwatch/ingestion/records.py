"""Canonical vulnerability record and the parsing helpers the adapters share.

Every field pulled from an upstream payload goes through one of the
coercion helpers below so that a missing or oddly-typed value degrades to
a documented default instead of failing the whole batch.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from vulnwatch.types import Severity, Source, clamp_score, severity_from_score

DEFAULT_DESCRIPTION = "No description available"

# EUVD renders dates like "Apr 15, 2025, 2:30:45 PM"
_DATE_FORMATS = (
    "%b %d, %Y, %I:%M:%S %p",
    "%b %d, %Y, %H:%M:%S",
    "%b %d, %Y",
    "%Y-%m-%d",
)


@dataclass
class VulnerabilityRecord:
    """A vulnerability normalized from any upstream source.

    ``severity`` is derived from ``score`` and cannot be passed in, so the
    two can never disagree.
    """

    id: str
    public_id: str
    description: str
    score: float
    published_at: datetime
    modified_at: datetime
    source: Source
    references: list[str] = field(default_factory=list)
    affected_products: list[str] = field(default_factory=list)
    weaknesses: list[str] = field(default_factory=list)
    exploit_known: bool = False
    vector: str | None = None
    severity: Severity = field(init=False)

    def __post_init__(self) -> None:
        self.score = clamp_score(float(self.score))
        self.severity = severity_from_score(self.score)
        self.published_at = ensure_utc(self.published_at)
        self.modified_at = ensure_utc(self.modified_at)

    @property
    def search_text(self) -> str:
        """Lowercased text that keyword and vendor searches match against."""
        parts = [
            self.id,
            self.public_id,
            self.description,
            *self.affected_products,
            *self.weaknesses,
            self.vector or "",
        ]
        return " ".join(p for p in parts if p).lower()

    def matches_term(self, term: str) -> bool:
        """Case-insensitive substring match, same semantics as the store search."""
        needle = term.strip().lower()
        return (
            needle in self.search_text
            or needle in self.description.lower()
            or needle in self.public_id.lower()
        )


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def as_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)):
        return str(value)
    return default


def as_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool) or value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1", "known")
    return bool(value)


def as_list(value: Any) -> list:
    """Return value if it is a list, otherwise an empty list."""
    return value if isinstance(value, list) else []


def as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def split_lines(value: Any) -> list[str]:
    """Split a newline separated string, or clean a list of strings."""
    if isinstance(value, str):
        items = value.splitlines()
    elif isinstance(value, list):
        items = [as_str(v) for v in value]
    else:
        return []
    return [item.strip() for item in items if item and item.strip()]


def unique(items: list[str]) -> list[str]:
    """Drop empty strings and duplicates, keeping first-seen order."""
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out


def parse_timestamp(value: Any, default: datetime) -> datetime:
    """Parse an ISO 8601 or EUVD-style timestamp, falling back to default."""
    text = as_str(value)
    if not text:
        return default

    iso = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        return ensure_utc(datetime.fromisoformat(iso))
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return default
