"""Normalization pipeline for upstream vulnerability feeds.

Each source has a dedicated adapter that maps its raw payload shape into
the single VulnerabilityRecord type; everything downstream of
``normalize_payload`` is source-agnostic.

Sources:
    - NVD: National Vulnerability Database CVE 2.0 API
    - EUVD: ENISA EU Vulnerability Database
"""

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from loguru import logger

from vulnwatch.ingestion.dedupe import dedupe
from vulnwatch.ingestion.euvd import extract_euvd_items, normalize_euvd
from vulnwatch.ingestion.nvd import extract_nvd_items, normalize_nvd
from vulnwatch.ingestion.records import DEFAULT_DESCRIPTION, VulnerabilityRecord
from vulnwatch.types import Source

_ADAPTERS: dict[Source, Callable[..., VulnerabilityRecord | None]] = {
    Source.NVD: normalize_nvd,
    Source.EUVD: normalize_euvd,
}

_EXTRACTORS: dict[Source, Callable[[Any], list[dict]]] = {
    Source.NVD: extract_nvd_items,
    Source.EUVD: extract_euvd_items,
}


def normalize(
    raw: Any, source: Source, now: datetime | None = None
) -> VulnerabilityRecord | None:
    """Normalize one raw record from the given source.

    Returns None when no identifier can be derived or the record is too
    malformed to map.
    """
    try:
        return _ADAPTERS[source](raw, now=now)
    except (TypeError, ValueError, AttributeError) as e:
        logger.warning("Dropping malformed {} record: {}", source.value, e)
        return None


def normalize_payload(
    payload: Any, source: Source
) -> tuple[list[VulnerabilityRecord], int]:
    """Extract and normalize every record in an upstream response body.

    Args:
        payload: Decoded JSON body from the source's client.
        source: Which feed produced the payload.

    Returns:
        Tuple of (records, skipped count).
    """
    now = datetime.now(timezone.utc)
    records: list[VulnerabilityRecord] = []
    skipped = 0

    for item in _EXTRACTORS[source](payload):
        record = normalize(item, source, now=now)
        if record is None:
            skipped += 1
        else:
            records.append(record)

    if skipped:
        logger.info("Skipped {} unidentifiable {} record(s)", skipped, source.value)
    return records, skipped


__all__ = [
    "DEFAULT_DESCRIPTION",
    "VulnerabilityRecord",
    "dedupe",
    "normalize",
    "normalize_payload",
    "normalize_nvd",
    "normalize_euvd",
    "extract_nvd_items",
    "extract_euvd_items",
]
