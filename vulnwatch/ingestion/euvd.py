"""ENISA EU Vulnerability Database (EUVD) adapter.

EUVD responses come in several envelope shapes and carry the CVE id, when
there is one, inside a newline-separated ``aliases`` string rather than as
the primary id.
"""

import re
from datetime import datetime, timezone
from typing import Any

from vulnwatch.ingestion.records import (
    DEFAULT_DESCRIPTION,
    VulnerabilityRecord,
    as_bool,
    as_dict,
    as_float,
    as_list,
    as_str,
    parse_timestamp,
    split_lines,
    unique,
)
from vulnwatch.types import Source

CVE_ALIAS_PATTERN = re.compile(r"^CVE-\d{4}-\d{4,}$", re.IGNORECASE)
EUVD_PREFIX = "EUVD-"

ENVELOPE_KEYS = ("items", "content", "vulnerabilities", "results")


def extract_euvd_items(payload: Any) -> list[dict]:
    """Pull the record list out of any EUVD response envelope.

    Accepts a bare array, an object wrapping the array under one of
    ``items``/``content``/``vulnerabilities``/``results``, or a single
    record object (which must carry an ``id`` or a CVE alias).
    """
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if not isinstance(payload, dict):
        return []

    for key in ENVELOPE_KEYS:
        items = payload.get(key)
        if isinstance(items, list):
            return [item for item in items if isinstance(item, dict)]

    if payload.get("id") or _find_cve_alias(payload):
        return [payload]
    return []


def _find_cve_alias(record: dict) -> str:
    aliases: list[str] = []
    for line in split_lines(record.get("aliases")):
        aliases.extend(part.strip() for part in line.split(","))
    return next((a.upper() for a in aliases if CVE_ALIAS_PATTERN.match(a)), "")


def _canonical_id(native_id: str, cve_alias: str) -> str:
    if native_id:
        return native_id if native_id.upper().startswith(EUVD_PREFIX) else EUVD_PREFIX + native_id
    return EUVD_PREFIX + cve_alias


def _nested_name(entry: Any, key: str) -> str:
    return as_str(as_dict(as_dict(entry).get(key)).get("name"))


def _extract_affected_products(record: dict) -> list[str]:
    """Render products as ``vendor:product:version`` strings."""
    vendors = unique([_nested_name(v, "vendor") for v in as_list(record.get("enisaIdVendor"))])
    vendor = vendors[0] if vendors else "*"

    products: list[str] = []
    for entry in as_list(record.get("enisaIdProduct")):
        name = _nested_name(entry, "product")
        if not name:
            continue
        version = as_str(as_dict(entry).get("product_version")) or "*"
        products.append(f"{vendor}:{name}:{version}")

    if not products:
        products = [f"{v}:*:*" for v in vendors]
    return unique(products)


def normalize_euvd(item: Any, now: datetime | None = None) -> VulnerabilityRecord | None:
    """Normalize a single EUVD record.

    Args:
        item: One record from an EUVD response.
        now: Ingestion time used for missing timestamps.

    Returns:
        VulnerabilityRecord, or None when neither a native id nor a CVE
        alias is present.
    """
    record = as_dict(item)
    native_id = as_str(record.get("id")).upper()
    cve_alias = _find_cve_alias(record)
    if not native_id and not cve_alias:
        return None

    now = now or datetime.now(timezone.utc)

    return VulnerabilityRecord(
        id=_canonical_id(native_id, cve_alias),
        public_id=cve_alias or native_id,
        description=as_str(record.get("description")) or DEFAULT_DESCRIPTION,
        score=as_float(record.get("baseScore")),
        published_at=parse_timestamp(record.get("datePublished"), now),
        modified_at=parse_timestamp(record.get("dateUpdated"), now),
        source=Source.EUVD,
        references=unique(split_lines(record.get("references"))),
        affected_products=_extract_affected_products(record),
        weaknesses=[],
        exploit_known=bool(as_str(record.get("exploitedSince"))) or as_bool(record.get("exploited")),
        vector=as_str(record.get("baseScoreVector")) or None,
    )
