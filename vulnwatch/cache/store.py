"""Durable cache of canonical vulnerability records and query metadata.

All reads and writes go through CacheStore. Upserts use the dialect's
native ``INSERT ... ON CONFLICT DO UPDATE`` so that concurrent writers of
overlapping records are last-write-wins without extra locking.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from loguru import logger
from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vulnwatch.db.models import Base, CacheMetadata, Vulnerability
from vulnwatch.errors import CacheReadError, CacheWriteError
from vulnwatch.ingestion.records import VulnerabilityRecord, ensure_utc
from vulnwatch.types import QueryType, Severity, Source

DEFAULT_CHUNK_SIZE = 100

# Columns overwritten on conflict (everything except the primary key and cached_at)
_MUTABLE_COLUMNS = (
    "public_id",
    "description",
    "severity",
    "score",
    "published_at",
    "modified_at",
    "references",
    "affected_products",
    "weaknesses",
    "exploit_known",
    "vector",
    "source",
    "search_text",
    "updated_at",
)

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

_SEVERITY_FIELDS = {severity.value.lower() for severity in Severity}


@dataclass
class SearchFilters:
    """Optional filters applied on top of a keyword match."""

    source: Source | None = None
    severity: Severity | None = None
    start: datetime | None = None
    end: datetime | None = None
    exploit_known: bool | None = None
    limit: int = 50


@dataclass
class CacheEntryMetadata:
    """Bookkeeping for one cached query shape."""

    cache_key: str
    source: str
    query_type: QueryType
    query_params: dict[str, Any]
    last_fetched_at: datetime
    record_count: int


@dataclass
class UpsertResult:
    """Outcome of a chunked upsert. Earlier chunks stay committed on failure."""

    written: int = 0
    failed_chunks: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed_chunks == 0


@dataclass
class CacheStats:
    """Aggregate counts over a filtered set of cached records."""

    total: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    none: int = 0
    by_source: dict[str, int] = field(
        default_factory=lambda: {source.value: 0 for source in Source}
    )


def _like_pattern(term: str) -> str:
    escaped = term.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def record_to_row(record: VulnerabilityRecord) -> dict[str, Any]:
    """Flatten a record into column values, materializing its search text."""
    return {
        "id": record.id,
        "public_id": record.public_id,
        "description": record.description,
        "severity": record.severity.value,
        "score": record.score,
        "published_at": ensure_utc(record.published_at),
        "modified_at": ensure_utc(record.modified_at),
        "references": list(record.references),
        "affected_products": list(record.affected_products),
        "weaknesses": list(record.weaknesses),
        "exploit_known": record.exploit_known,
        "vector": record.vector,
        "source": record.source.value,
        "search_text": record.search_text,
        "updated_at": datetime.now(timezone.utc),
    }


def row_to_record(row: Vulnerability) -> VulnerabilityRecord:
    return VulnerabilityRecord(
        id=row.id,
        public_id=row.public_id or "",
        description=row.description,
        score=row.score or 0.0,
        published_at=ensure_utc(row.published_at),
        modified_at=ensure_utc(row.modified_at),
        source=Source(row.source),
        references=list(row.references or []),
        affected_products=list(row.affected_products or []),
        weaknesses=list(row.weaknesses or []),
        exploit_known=bool(row.exploit_known),
        vector=row.vector,
    )


class CacheStore:
    """Cache Store backed by an async SQLAlchemy session factory.

    Args:
        session_factory: Factory producing AsyncSessions bound to the cache DB.
        chunk_size: Maximum records per upsert statement.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._session_factory = session_factory
        self.chunk_size = max(1, chunk_size)

    async def create_schema(self) -> None:
        async with self._session_factory() as session:
            conn = await session.connection()
            await conn.run_sync(Base.metadata.create_all)
            await session.commit()

    # -- writes -------------------------------------------------------------

    async def _insert_for(self, session: AsyncSession):
        conn = await session.connection()
        name = conn.dialect.name
        insert = _INSERTS.get(name)
        if insert is None:
            raise CacheWriteError(f"Upsert is not supported on the {name} dialect")
        return insert

    async def _write_chunk(self, rows: list[dict[str, Any]]) -> None:
        async with self._session_factory() as session:
            insert = await self._insert_for(session)
            stmt = insert(Vulnerability).values(rows)
            stmt = stmt.on_conflict_do_update(
                index_elements=[Vulnerability.id],
                set_={name: stmt.excluded[name] for name in _MUTABLE_COLUMNS},
            )
            await session.execute(stmt)
            await session.commit()

    async def upsert(self, records: list[VulnerabilityRecord]) -> UpsertResult:
        """Insert or overwrite records by id, in chunks.

        Each chunk commits independently: a failing chunk is reported in the
        result and later chunks are still attempted.

        Raises:
            CacheWriteError: When every chunk failed.
        """
        result = UpsertResult()
        if not records:
            return result

        rows = [record_to_row(r) for r in records]
        chunks = [rows[i : i + self.chunk_size] for i in range(0, len(rows), self.chunk_size)]

        for index, chunk in enumerate(chunks):
            try:
                await self._write_chunk(chunk)
                result.written += len(chunk)
            except (SQLAlchemyError, OSError, CacheWriteError) as e:
                logger.error("Upsert chunk {}/{} failed: {}", index + 1, len(chunks), e)
                result.failed_chunks += 1
                result.errors.append(str(e))

        if result.written == 0:
            raise CacheWriteError(
                f"All {len(chunks)} upsert chunk(s) failed: {result.errors[0]}"
            )

        logger.info(
            "Stored {} record(s) ({} chunk(s) failed)", result.written, result.failed_chunks
        )
        return result

    async def set_cache_metadata(
        self,
        cache_key: str,
        source: str,
        query_type: QueryType,
        query_params: dict[str, Any],
        record_count: int,
        fetched_at: datetime | None = None,
    ) -> None:
        """Create or refresh the metadata row for a query shape.

        ``fetched_at`` defaults to the current UTC time.
        """
        fetched_at = ensure_utc(fetched_at) if fetched_at else datetime.now(timezone.utc)
        values = {
            "cache_key": cache_key,
            "source": source,
            "query_type": query_type.value,
            "query_params": query_params,
            "last_fetched_at": fetched_at,
            "record_count": record_count,
        }
        try:
            async with self._session_factory() as session:
                insert = await self._insert_for(session)
                stmt = insert(CacheMetadata).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[CacheMetadata.cache_key],
                    set_={
                        "source": stmt.excluded.source,
                        "query_type": stmt.excluded.query_type,
                        "query_params": stmt.excluded.query_params,
                        "last_fetched_at": stmt.excluded.last_fetched_at,
                        "record_count": stmt.excluded.record_count,
                    },
                )
                await session.execute(stmt)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise CacheWriteError(f"Failed to update cache metadata {cache_key}: {e}") from e

    # -- reads --------------------------------------------------------------

    async def _fetch_records(self, stmt) -> list[VulnerabilityRecord]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [row_to_record(row) for row in result.scalars().all()]
        except (SQLAlchemyError, OSError) as e:
            raise CacheReadError(str(e)) from e

    async def get_cache_metadata(self, cache_key: str) -> CacheEntryMetadata | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(CacheMetadata, cache_key)
        except (SQLAlchemyError, OSError) as e:
            raise CacheReadError(str(e)) from e

        if row is None:
            return None
        return CacheEntryMetadata(
            cache_key=row.cache_key,
            source=row.source,
            query_type=QueryType(row.query_type),
            query_params=dict(row.query_params or {}),
            last_fetched_at=ensure_utc(row.last_fetched_at),
            record_count=row.record_count,
        )

    async def read_by_date_range(
        self,
        start: datetime,
        end: datetime,
        source: Source | None = None,
        limit: int = 100,
    ) -> list[VulnerabilityRecord]:
        """Records published in [start, end], newest first."""
        conditions = [
            Vulnerability.published_at >= ensure_utc(start),
            Vulnerability.published_at <= ensure_utc(end),
        ]
        if source is not None:
            conditions.append(Vulnerability.source == source.value)

        stmt = (
            select(Vulnerability)
            .where(and_(*conditions))
            .order_by(Vulnerability.published_at.desc())
            .limit(limit)
        )
        return await self._fetch_records(stmt)

    async def read_by_id(self, identifier: str) -> VulnerabilityRecord | None:
        """Match the canonical id, or the public id case-insensitively.

        An exact canonical id match wins over a public-id match.
        """
        ident = identifier.strip()
        upper = ident.upper()
        stmt = (
            select(Vulnerability)
            .where(
                or_(
                    Vulnerability.id == ident,
                    Vulnerability.id == upper,
                    func.upper(Vulnerability.public_id) == upper,
                )
            )
            .order_by(case((Vulnerability.id.in_([ident, upper]), 0), else_=1))
            .limit(1)
        )
        records = await self._fetch_records(stmt)
        return records[0] if records else None

    async def search(
        self, term: str, filters: SearchFilters | None = None
    ) -> list[VulnerabilityRecord]:
        """Case-insensitive substring search, highest score first."""
        filters = filters or SearchFilters()
        pattern = _like_pattern(term)

        conditions = [
            or_(
                Vulnerability.public_id.ilike(pattern, escape="\\"),
                Vulnerability.search_text.ilike(pattern, escape="\\"),
                Vulnerability.description.ilike(pattern, escape="\\"),
            )
        ]
        if filters.source is not None:
            conditions.append(Vulnerability.source == filters.source.value)
        if filters.severity is not None:
            conditions.append(Vulnerability.severity == filters.severity.value)
        if filters.start is not None:
            conditions.append(Vulnerability.published_at >= ensure_utc(filters.start))
        if filters.end is not None:
            conditions.append(Vulnerability.published_at <= ensure_utc(filters.end))
        if filters.exploit_known is not None:
            conditions.append(Vulnerability.exploit_known == filters.exploit_known)

        stmt = (
            select(Vulnerability)
            .where(and_(*conditions))
            .order_by(Vulnerability.score.desc(), Vulnerability.published_at.desc())
            .limit(filters.limit)
        )
        return await self._fetch_records(stmt)

    async def read_by_vendor(self, vendor: str, limit: int = 50) -> list[VulnerabilityRecord]:
        stmt = (
            select(Vulnerability)
            .where(Vulnerability.search_text.ilike(_like_pattern(vendor), escape="\\"))
            .order_by(Vulnerability.score.desc(), Vulnerability.published_at.desc())
            .limit(limit)
        )
        return await self._fetch_records(stmt)

    async def read_exploited(self, limit: int = 50) -> list[VulnerabilityRecord]:
        stmt = (
            select(Vulnerability)
            .where(Vulnerability.exploit_known.is_(True))
            .order_by(Vulnerability.published_at.desc())
            .limit(limit)
        )
        return await self._fetch_records(stmt)

    async def stats(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        source: Source | None = None,
    ) -> CacheStats:
        """Counts by severity and by source over the filtered set."""
        conditions = []
        if start is not None:
            conditions.append(Vulnerability.published_at >= ensure_utc(start))
        if end is not None:
            conditions.append(Vulnerability.published_at <= ensure_utc(end))
        if source is not None:
            conditions.append(Vulnerability.source == source.value)
        where = and_(*conditions) if conditions else None

        by_severity = select(Vulnerability.severity, func.count()).group_by(Vulnerability.severity)
        by_source = select(Vulnerability.source, func.count()).group_by(Vulnerability.source)
        if where is not None:
            by_severity = by_severity.where(where)
            by_source = by_source.where(where)

        try:
            async with self._session_factory() as session:
                severity_rows = (await session.execute(by_severity)).all()
                source_rows = (await session.execute(by_source)).all()
        except (SQLAlchemyError, OSError) as e:
            raise CacheReadError(str(e)) from e

        stats = CacheStats()
        for severity, count in severity_rows:
            stats.total += count
            attr = str(severity).lower()
            if attr in _SEVERITY_FIELDS:
                setattr(stats, attr, count)
        for source_name, count in source_rows:
            stats.by_source[source_name] = count
        return stats

    async def total_count(self) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(func.count()).select_from(Vulnerability))
                return int(result.scalar() or 0)
        except (SQLAlchemyError, OSError) as e:
            raise CacheReadError(str(e)) from e

    async def check_connection(self) -> bool:
        """Return True if the cache tables are reachable."""
        try:
            async with self._session_factory() as session:
                await session.execute(select(Vulnerability.id).limit(1))
            return True
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Database connection check failed: {}", e)
            return False
