"""Within-batch deduplication of normalized records.

Cross-batch duplicates are handled by the cache store's upsert; this only
collapses repeats inside one ingestion batch (e.g. the same EUVD record
returned by both the "latest" and "critical" endpoints).
"""

from loguru import logger

from vulnwatch.ingestion.records import VulnerabilityRecord


def _dedupe_key(record: VulnerabilityRecord) -> str:
    return (record.id or record.public_id).upper()


def dedupe(records: list[VulnerabilityRecord]) -> list[VulnerabilityRecord]:
    """Collapse records by canonical id, first occurrence wins.

    Args:
        records: Normalized records in arrival order.

    Returns:
        Records with repeats removed, in order of first appearance.
    """
    kept: dict[str, VulnerabilityRecord] = {}
    for record in records:
        key = _dedupe_key(record)
        first = kept.get(key)
        if first is None:
            kept[key] = record
        elif first.source != record.source:
            logger.warning(
                "Id {} returned by both {} and {}; keeping the {} record",
                key,
                first.source.value,
                record.source.value,
                first.source.value,
            )

    if len(kept) < len(records):
        logger.debug("Deduplicated {} record(s) down to {}", len(records), len(kept))
    return list(kept.values())
