"""
Typed exception hierarchy for the mission kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from WorkflowKernelError:

    WorkflowKernelError (base)
    |
    +-- TransitionError
    |   +-- InvalidTransitionError
    |   +-- ForbiddenTransitionError
    |   +-- OutsideBusinessHoursError
    |   +-- MissingTransitionParameterError
    |
    +-- MissionError
    |   +-- MissionNotFoundError
    |   +-- StatusWriteViolationError
    |
    +-- EffectError
    |   +-- InvalidEffectError
    |
    +-- IdempotencyError
    |   +-- IdempotencyKeyCollisionError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- WorkflowConfigError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                       | When Raised
--------------|----------------------------|-------------------------------------------
Transition    | INVALID_TRANSITION         | No rule for (current status, target)
              | FORBIDDEN                  | Actor role not allowed for the rule
              | OUTSIDE_BUSINESS_HOURS     | Gated rule evaluated outside the window
              | MISSING_PARAMETER          | Effect needs a parameter that was not sent
--------------|----------------------------|-------------------------------------------
Mission       | MISSION_NOT_FOUND          | Mission ID doesn't exist (or soft-deleted)
              | STATUS_WRITE_VIOLATION     | status written outside the engine
--------------|----------------------------|-------------------------------------------
Effect        | INVALID_EFFECT             | Unknown field / type mismatch in an effect
--------------|----------------------------|-------------------------------------------
Idempotency   | IDEMPOTENCY_KEY_COLLISION  | Same key reused with a different request
--------------|----------------------------|-------------------------------------------
Concurrency   | CONCURRENCY_CONFLICT       | Mission row changed underneath the caller
--------------|----------------------------|-------------------------------------------
Immutability  | IMMUTABILITY_VIOLATION     | UPDATE/DELETE on an append-only record
--------------|----------------------------|-------------------------------------------
Audit         | AUDIT_CHAIN_BROKEN         | Workflow log hash chain validation failed
--------------|----------------------------|-------------------------------------------
Config        | WORKFLOW_CONFIG_ERROR      | Workflow configuration failed validation

Every class carries a ``code`` class attribute and stores its context as
attributes, so callers catch by type and serialize by field, never by
parsing the message.  ``to_dict()`` renders the structured error returned by
the procedure layer.
"""

from __future__ import annotations

from typing import Any


class WorkflowKernelError(Exception):
    """
    Base exception for all mission kernel errors.

    All subclasses must have a `code` class attribute
    for machine-readable error identification.
    """

    code: str = "WORKFLOW_KERNEL_ERROR"

    def to_dict(self) -> dict[str, Any]:
        """Structured form: code, message and every public attribute."""
        data: dict[str, Any] = {"code": self.code, "message": str(self)}
        for key, value in vars(self).items():
            if key.startswith("_"):
                continue
            if isinstance(value, (list, tuple, frozenset, set)):
                value = sorted(str(v) for v in value)
            elif value is not None and not isinstance(value, (str, int, float, bool)):
                value = str(value)
            data[key] = value
        return data


# Transition-related exceptions


class TransitionError(WorkflowKernelError):
    """Base exception for transition validation failures."""

    code: str = "TRANSITION_ERROR"


class InvalidTransitionError(TransitionError):
    """No rule exists for the requested (from, to) pair."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, mission_id: str, from_status: str, to_status: str):
        self.mission_id = mission_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Transition {from_status} -> {to_status} is not allowed "
            f"for mission {mission_id}"
        )


class ForbiddenTransitionError(TransitionError):
    """The rule exists but the actor's role is not in its allowed set."""

    code: str = "FORBIDDEN"

    def __init__(
        self,
        mission_id: str,
        from_status: str,
        to_status: str,
        actor_role: str,
        allowed_roles: frozenset[str],
    ):
        self.mission_id = mission_id
        self.from_status = from_status
        self.to_status = to_status
        self.actor_role = actor_role
        self.allowed_roles = allowed_roles
        super().__init__(
            f"Role {actor_role} may not move mission {mission_id} "
            f"from {from_status} to {to_status} "
            f"(allowed: {', '.join(sorted(allowed_roles))})"
        )


class OutsideBusinessHoursError(TransitionError):
    """A business-hours gated rule was evaluated outside the window."""

    code: str = "OUTSIDE_BUSINESS_HOURS"

    def __init__(
        self,
        mission_id: str,
        evaluated_at: str,
        window: str,
        timezone: str,
    ):
        self.mission_id = mission_id
        self.evaluated_at = evaluated_at
        self.window = window
        self.timezone = timezone
        super().__init__(
            f"{evaluated_at} is outside business hours ({window}, {timezone})"
        )


class MissingTransitionParameterError(TransitionError):
    """A declared effect reads a parameter the caller did not provide."""

    code: str = "MISSING_PARAMETER"

    def __init__(self, mission_id: str, action: str, parameter: str):
        self.mission_id = mission_id
        self.action = action
        self.parameter = parameter
        super().__init__(
            f"Action {action} on mission {mission_id} requires parameter '{parameter}'"
        )


# Mission-related exceptions


class MissionError(WorkflowKernelError):
    """Base exception for mission lookup and write errors."""

    code: str = "MISSION_ERROR"


class MissionNotFoundError(MissionError):
    """Mission with given ID was not found."""

    code: str = "MISSION_NOT_FOUND"

    def __init__(self, mission_id: str):
        self.mission_id = mission_id
        super().__init__(f"Mission not found: {mission_id}")


class StatusWriteViolationError(MissionError):
    """Mission.status was written outside the transition engine."""

    code: str = "STATUS_WRITE_VIOLATION"

    def __init__(self, mission_id: str, attempted_status: str):
        self.mission_id = mission_id
        self.attempted_status = attempted_status
        super().__init__(
            f"Direct status write to {attempted_status} on mission {mission_id}; "
            "status changes must go through the transition engine"
        )


# Effect-related exceptions


class EffectError(WorkflowKernelError):
    """Base exception for transition side-effect errors."""

    code: str = "EFFECT_ERROR"


class InvalidEffectError(EffectError):
    """An effect references an unknown field or mismatches its type."""

    code: str = "INVALID_EFFECT"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid effect on field '{field}': {reason}")


# Idempotency-related exceptions


class IdempotencyError(WorkflowKernelError):
    """Base exception for idempotency errors."""

    code: str = "IDEMPOTENCY_ERROR"


class IdempotencyKeyCollisionError(IdempotencyError):
    """
    Key exists but was recorded for a different request.

    The cached response is never returned in this case.
    """

    code: str = "IDEMPOTENCY_KEY_COLLISION"

    def __init__(self, key: str, expected_hash: str, received_hash: str):
        self.key = key
        self.expected_hash = expected_hash
        self.received_hash = received_hash
        super().__init__(
            f"Idempotency key {key} was recorded for request {expected_hash}, "
            f"received {received_hash}"
        )


# Concurrency-related exceptions


class ConcurrencyError(WorkflowKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """The mission row was modified by another transaction."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, mission_id: str, expected_version: int | None = None):
        self.mission_id = mission_id
        self.expected_version = expected_version
        super().__init__(
            f"Concurrent modification of mission {mission_id}: "
            "the row was changed by another transaction"
        )


# Immutability-related exceptions


class ImmutabilityError(WorkflowKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"{entity_type} {entity_id} is immutable: {reason}"
        )


# Audit-related exceptions


class AuditError(WorkflowKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Workflow log hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, entry_id: str, expected_hash: str, actual_hash: str):
        self.entry_id = entry_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Workflow log chain broken at {entry_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


# Configuration


class WorkflowConfigError(WorkflowKernelError):
    """Workflow configuration is structurally invalid."""

    code: str = "WORKFLOW_CONFIG_ERROR"

    def __init__(self, reason: str, source: str | None = None):
        self.reason = reason
        self.source = source
        where = f" ({source})" if source else ""
        super().__init__(f"Invalid workflow configuration{where}: {reason}")
