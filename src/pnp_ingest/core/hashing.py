"""
Deterministic identifiers and content digests.

Record IDs make delivery idempotent: the same ``(source, source_id)`` always
lands on the same row, however many times the bus redelivers it. Maintenance
record hashes make replays cheap: a bulk refresh that carries nothing new is
detected before any write.

Examples:
    >>> record_id("servicenow", "INC0001234") == record_id("servicenow", "INC0001234")
    True
    >>> len(record_id("servicenow", "INC0001234"))
    64

Tags:
    hashing, idempotency, record-id, deduplication, pnp-ingest
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pnp_ingest.domain.models import Maintenance


def record_id(source: str, source_id: str) -> str:
    """Hex SHA-256 of ``"{source}+{source_id}"``."""
    return hashlib.sha256(f"{source}+{source_id}".encode()).hexdigest()


def _text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def maintenance_record_hash(maintenance: Maintenance) -> str:
    """Digest of the content-bearing fields of a maintenance record.

    Source creation/update times are bookkeeping, not content, and are left
    out so a newer replay of identical content hashes the same. CRNs are
    sorted so ordering in the payload does not matter.
    """
    crns = sorted(maintenance.crns or ())
    parts = [
        maintenance.start_time,
        maintenance.end_time,
        maintenance.short_description,
        maintenance.long_description,
        "[" + " ".join(crns) + "]",
        maintenance.state,
        maintenance.disruptive,
        maintenance.source_id,
        maintenance.source,
        maintenance.regulatory_domain,
        maintenance.maintenance_duration,
        maintenance.disruption_type,
        maintenance.disruption_description,
        maintenance.disruption_duration,
        maintenance.completion_code,
        maintenance.pnp_removed,
    ]
    return hashlib.sha256("".join(_text(p) for p in parts).encode()).hexdigest()
