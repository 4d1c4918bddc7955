"""
Idempotency key derivation.

A derived key identifies one logical request: the same mission, operation
and parameters always give the same key, so a retried call finds the
response cached by the first one.

Format: ``operation:entity_id:request_hash`` where ``request_hash`` is the
SHA-256 of the canonical JSON of the parameters.
"""

from typing import Any
from uuid import UUID

from mission_kernel.utils.hashing import hash_payload


def request_hash(params: dict[str, Any] | None) -> str:
    """Fingerprint of a request's parameters (order-insensitive)."""
    return hash_payload(params or {})


def derive_idempotency_key(
    entity_id: UUID | str,
    operation_name: str,
    params: dict[str, Any] | None = None,
) -> str:
    """
    Derive the idempotency key for an operation on an entity.

    Example:
        >>> derive_idempotency_key(mission_id, "apply_transition", {"target": "PUBLIEE"})
        "apply_transition:550e8400-e29b-41d4-a716-446655440000:3f1c...e9"
    """
    return f"{operation_name}:{entity_id}:{request_hash(params)}"


def parse_idempotency_key(key: str) -> tuple[str, str, str]:
    """
    Split a derived key into (operation_name, entity_id, request_hash).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":", 2)
    if len(parts) != 3:
        raise ValueError(f"Invalid idempotency key format: {key}")
    return parts[0], parts[1], parts[2]
