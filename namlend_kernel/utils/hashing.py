"""
Deterministic hashing for audit payloads and the audit hash chain.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return format(obj.normalize(), "f")
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    """Sorted keys, no whitespace, stable encoding of Decimal/UUID/datetime."""
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: Any) -> str:
    return hashlib.sha256(canonicalize_json(payload).encode("utf-8")).hexdigest()


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """H(entity_type | entity_id | action | payload_hash | prev_hash)."""
    parts = [entity_type, entity_id, action, payload_hash, prev_hash or ""]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def to_json_safe(payload: dict[str, Any]) -> dict[str, Any]:
    """Round-trip through the canonical encoder so the dict fits a JSON column."""
    return json.loads(canonicalize_json(payload))
