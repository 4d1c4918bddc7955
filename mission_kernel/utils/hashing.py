"""
Deterministic hashing utilities.

All hashing in the mission kernel must be deterministic and reproducible:
idempotency keys, request fingerprints and the workflow log hash chain are
all computed here.
"""

import hashlib
import json
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys are sorted, there is no whitespace, and Enum/datetime/UUID values
    always serialize the same way, so logically equal payloads produce
    identical strings regardless of dict insertion order.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
        ensure_ascii=False,
    )


def hash_payload(payload: Any) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_log_entry(
    mission_id: str,
    operation: str,
    from_status: str | None,
    to_status: str | None,
    success: bool,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Compute the chain hash of a workflow log entry.

    The hash covers the entry's identifying fields plus the previous entry's
    hash, creating a tamper-evident chain.
    """
    components = [
        str(mission_id),
        operation,
        from_status or "-",
        to_status or "-",
        "ok" if success else "failed",
        payload_hash,
        prev_hash or "GENESIS",
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
