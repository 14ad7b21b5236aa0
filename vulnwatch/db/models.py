"""SQLAlchemy ORM models for the vulnwatch cache schema.

Tables:
    - vulnerabilities: Canonical vulnerability records from every source
    - cache_metadata: One row per cached query shape, with its fetch time

Uses JSON instead of PostgreSQL-specific JSONB/ARRAY so the schema works
with both PostgreSQL (production) and SQLite (testing).
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Vulnerability(Base):
    """A cached vulnerability record (CVE id for NVD, EUVD id for EUVD)."""

    __tablename__ = "vulnerabilities"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    public_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[str] = mapped_column(String(10), nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    published_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    modified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    references: Mapped[list] = mapped_column(JSON, default=list)
    affected_products: Mapped[list] = mapped_column(JSON, default=list)
    weaknesses: Mapped[list] = mapped_column(JSON, default=list)
    exploit_known: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    vector: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String(10), nullable=False)
    search_text: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Bookkeeping
    cached_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("ix_vulnerabilities_public_id", "public_id"),
        Index("ix_vulnerabilities_severity", "severity"),
        Index("ix_vulnerabilities_published_at", "published_at"),
        Index("ix_vulnerabilities_source", "source"),
        Index("ix_vulnerabilities_score", "score"),
        Index("ix_vulnerabilities_exploit_known", "exploit_known"),
    )


class CacheMetadata(Base):
    """Fetch bookkeeping for one query shape (e.g. ``nvd_date_range_days=30``)."""

    __tablename__ = "cache_metadata"

    cache_key: Mapped[str] = mapped_column(String(255), primary_key=True)
    source: Mapped[str] = mapped_column(String(10), nullable=False)
    query_type: Mapped[str] = mapped_column(String(20), nullable=False)
    query_params: Mapped[dict] = mapped_column(JSON, default=dict)
    last_fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
