"""
Deterministic hashing and JSON-safe conversion.

Everything written to a JSON column (audit payloads, movement details, parts
snapshots) passes through ``to_json_safe`` so that the stored document and
its hash are computed from the same representation.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def to_json_safe(obj: Any) -> Any:
    """Recursively convert UUID, Decimal, datetime and enums to plain JSON types."""
    if isinstance(obj, dict):
        return {str(k): to_json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [to_json_safe(v) for v in obj]
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    return obj


def canonicalize_json(data: Any) -> str:
    """Sorted keys, no whitespace."""
    return json.dumps(to_json_safe(data), sort_keys=True, separators=(",", ":"))


def hash_payload(payload: dict) -> str:
    """Hex-encoded SHA-256 of the canonical payload."""
    return hashlib.sha256(canonicalize_json(payload).encode("utf-8")).hexdigest()


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """Chain hash linking an audit event to its predecessor."""
    components = [
        entity_type,
        str(entity_id),
        action,
        payload_hash,
        prev_hash or "GENESIS",
    ]
    return hashlib.sha256("|".join(components).encode("utf-8")).hexdigest()
