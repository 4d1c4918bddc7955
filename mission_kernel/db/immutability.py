"""
ORM-Level Immutability Enforcement (Layer 1 of 2).

===============================================================================
HOW IT WORKS
===============================================================================

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications through Python/SQLAlchemy code
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/sql/<dialect>/*.sql (database triggers)
    - Catches raw SQL, bulk UPDATE statements, direct database access

    session.flush()
         |
         v
    [before_insert / before_update / before_delete]
         |
         +--> _check_*() --> ImmutabilityViolationError / StatusWriteViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | Rule
------------------|----------------------------------------------------------
WorkflowLogEntry  | ALWAYS immutable: no UPDATE, no DELETE
Mission           | Never physically deleted (soft delete via is_deleted)
Mission.status    | Written only inside status_write_scope(), which the
                  | transition engine opens around its own flushes

===============================================================================
USAGE
===============================================================================

    from mission_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

    # Tests only:
    unregister_immutability_listeners()
"""

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from mission_kernel.exceptions import (
    ImmutabilityViolationError,
    StatusWriteViolationError,
)
from mission_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_status_writes_allowed: ContextVar[bool] = ContextVar(
    "mission_status_writes_allowed", default=False
)


@contextmanager
def status_write_scope() -> Iterator[None]:
    """Allow Mission.status writes for flushes performed inside the block."""
    token = _status_writes_allowed.set(True)
    try:
        yield
    finally:
        _status_writes_allowed.reset(token)


def status_writes_allowed() -> bool:
    return _status_writes_allowed.get()


def _block(entity_type: str, entity_id, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "reason": reason,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_workflow_log_update(mapper, connection, target):
    """Workflow log entries are immutable from creation."""
    _block("WorkflowLogEntry", target.id, "UPDATE", "workflow log entries are append-only")


def _check_workflow_log_delete(mapper, connection, target):
    _block("WorkflowLogEntry", target.id, "DELETE", "workflow log entries are append-only")


def _check_mission_delete(mapper, connection, target):
    _block("Mission", target.id, "DELETE", "missions are soft-deleted via is_deleted")


def _check_mission_status_insert(mapper, connection, target):
    if not status_writes_allowed():
        logger.error(
            "status_write_blocked",
            extra={"mission_id": str(target.id), "attempted_status": str(target.status)},
        )
        raise StatusWriteViolationError(str(target.id), str(target.status))


def _check_mission_status_update(mapper, connection, target):
    """
    Block status changes flushed outside the transition engine.

    Only the status attribute is guarded; other mission fields stay editable
    through the ORM (they are not part of the workflow invariants).
    """
    history = get_history(target, "status")
    if history.added and not status_writes_allowed():
        logger.error(
            "status_write_blocked",
            extra={"mission_id": str(target.id), "attempted_status": str(history.added[0])},
        )
        raise StatusWriteViolationError(str(target.id), str(history.added[0]))


_LISTENERS = (
    ("WorkflowLogEntry", "before_update", _check_workflow_log_update),
    ("WorkflowLogEntry", "before_delete", _check_workflow_log_delete),
    ("Mission", "before_delete", _check_mission_delete),
    ("Mission", "before_insert", _check_mission_status_insert),
    ("Mission", "before_update", _check_mission_status_update),
)


def _models() -> dict:
    from mission_kernel.models.mission import Mission
    from mission_kernel.models.workflow_log import WorkflowLogEntry

    return {"Mission": Mission, "WorkflowLogEntry": WorkflowLogEntry}


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners.

    Call this after all models are imported but before any database
    operations begin.  Safe to call more than once.
    """
    models = _models()
    for model_name, event_name, fn in _LISTENERS:
        model = models[model_name]
        if not event.contains(model, event_name, fn):
            event.listen(model, event_name, fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests.
    """
    models = _models()
    for model_name, event_name, fn in _LISTENERS:
        model = models[model_name]
        if event.contains(model, event_name, fn):
            event.remove(model, event_name, fn)
