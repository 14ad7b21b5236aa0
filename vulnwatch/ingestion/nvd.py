"""NVD CVE 2.0 adapter.

Maps one item of the NVD ``vulnerabilities`` array into a
VulnerabilityRecord. Nested configuration and weakness structures are
flattened into plain string lists.
"""

from datetime import datetime, timezone
from typing import Any

from vulnwatch.ingestion.records import (
    DEFAULT_DESCRIPTION,
    VulnerabilityRecord,
    as_dict,
    as_float,
    as_list,
    as_str,
    parse_timestamp,
    unique,
)
from vulnwatch.types import Source

# Highest CVSS version first
METRIC_KEYS = ("cvssMetricV31", "cvssMetricV30", "cvssMetricV2")


def extract_nvd_items(payload: Any) -> list[dict]:
    """Return the vulnerability items from an NVD response body."""
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    items = as_list(as_dict(payload).get("vulnerabilities"))
    return [item for item in items if isinstance(item, dict)]


def _extract_cvss(cve_data: dict) -> tuple[float, str | None]:
    """Extract the base score and vector from the highest CVSS version present.

    Within one version, the "Primary" (NVD-assigned) metric wins over
    secondary CNA metrics.

    Returns:
        Tuple of (score, vector). Score is 0.0 when no metric is present.
    """
    metrics = as_dict(cve_data.get("metrics"))

    for key in METRIC_KEYS:
        entries = [m for m in as_list(metrics.get(key)) if isinstance(m, dict)]
        if not entries:
            continue
        primary = next((m for m in entries if m.get("type") == "Primary"), entries[0])
        cvss_data = as_dict(primary.get("cvssData"))
        vector = as_str(cvss_data.get("vectorString")) or None
        return as_float(cvss_data.get("baseScore")), vector

    return 0.0, None


def _extract_description(cve_data: dict) -> str:
    descriptions = [d for d in as_list(cve_data.get("descriptions")) if isinstance(d, dict)]
    english = next((d for d in descriptions if d.get("lang") == "en"), None)
    chosen = english or (descriptions[0] if descriptions else {})
    return as_str(chosen.get("value")) or DEFAULT_DESCRIPTION


def _extract_affected_products(cve_data: dict) -> list[str]:
    """Flatten configurations -> nodes -> cpeMatch -> criteria."""
    criteria: list[str] = []
    for config in as_list(cve_data.get("configurations")):
        for node in as_list(as_dict(config).get("nodes")):
            for match in as_list(as_dict(node).get("cpeMatch")):
                criteria.append(as_str(as_dict(match).get("criteria")))
    return unique(criteria)


def _extract_weaknesses(cve_data: dict) -> list[str]:
    values: list[str] = []
    for weakness in as_list(cve_data.get("weaknesses")):
        for desc in as_list(as_dict(weakness).get("description")):
            values.append(as_str(as_dict(desc).get("value")))
    return unique(values)


def normalize_nvd(item: Any, now: datetime | None = None) -> VulnerabilityRecord | None:
    """Normalize a single NVD vulnerability item.

    Args:
        item: An element of the NVD ``vulnerabilities`` array
            (``{"cve": {...}}``) or a bare cve object.
        now: Ingestion time used for missing timestamps.

    Returns:
        VulnerabilityRecord, or None when the item has no CVE id.
    """
    item = as_dict(item)
    cve_data = as_dict(item.get("cve")) or item
    cve_id = as_str(cve_data.get("id")).upper()
    if not cve_id:
        return None

    now = now or datetime.now(timezone.utc)
    score, vector = _extract_cvss(cve_data)
    references = [as_str(as_dict(ref).get("url")) for ref in as_list(cve_data.get("references"))]

    return VulnerabilityRecord(
        id=cve_id,
        public_id=cve_id,
        description=_extract_description(cve_data),
        score=score,
        published_at=parse_timestamp(cve_data.get("published"), now),
        modified_at=parse_timestamp(cve_data.get("lastModified"), now),
        source=Source.NVD,
        references=[url for url in references if url],
        affected_products=_extract_affected_products(cve_data),
        weaknesses=_extract_weaknesses(cve_data),
        exploit_known=bool(as_str(cve_data.get("cisaExploitAdd"))),
        vector=vector,
    )
