"""
Data transfer objects returned by kernel services.

Frozen dataclasses, decoupled from the ORM.  Each has a ``to_dict`` that
renders JSON-friendly values (ISO timestamps, string ids, enum codes); the
procedure layer and the idempotency cache store exactly that form.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID


def to_jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


@dataclass(frozen=True)
class MissionSnapshot:
    """Read-only view of a mission row."""

    id: UUID
    status: str
    version: int
    title: str
    status_changed_at: datetime | None
    fields: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": str(self.id),
            "status": self.status,
            "version": self.version,
            "title": self.title,
            "status_changed_at": to_jsonable(self.status_changed_at),
        }
        data.update(to_jsonable(self.fields))
        return data


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a successful transition (or its cached replay)."""

    mission: dict[str, Any]
    from_status: str
    to_status: str
    action: str
    log_seq: int | None
    cached: bool = False
    idempotency_key: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "mission": self.mission,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "action": self.action,
            "log_seq": self.log_seq,
            "cached": self.cached,
            "idempotency_key": self.idempotency_key,
        }

    @classmethod
    def from_cached(cls, response: dict[str, Any], key: str) -> "TransitionResult":
        return cls(
            mission=response["mission"],
            from_status=response["from_status"],
            to_status=response["to_status"],
            action=response["action"],
            log_seq=response.get("log_seq"),
            cached=True,
            idempotency_key=key,
        )


@dataclass(frozen=True)
class IdempotencyCheck:
    cached: bool
    response: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"cached": self.cached, "response": self.response}


@dataclass(frozen=True)
class CleanupResult:
    deleted_count: int
    cleaned_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"deleted_count": self.deleted_count, "cleaned_at": self.cleaned_at.isoformat()}


@dataclass(frozen=True)
class NotificationCleanupResult:
    deleted_count: int
    failed_count: int
    cleaned_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "deleted_count": self.deleted_count,
            "failed_count": self.failed_count,
            "cleaned_at": self.cleaned_at.isoformat(),
        }


class AnomalyType(str, Enum):
    STUCK_IN_STATUS = "STUCK_IN_STATUS"
    OVERDUE_SCHEDULE = "OVERDUE_SCHEDULE"
    REPEATED_FORBIDDEN_ATTEMPTS = "REPEATED_FORBIDDEN_ATTEMPTS"
    HIGH_RISK = "HIGH_RISK"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Anomaly:
    anomaly_type: AnomalyType
    severity: Severity
    mission_id: UUID
    description: str
    action_required: str
    detected_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "anomaly_type": self.anomaly_type.value,
            "severity": self.severity.value,
            "mission_id": str(self.mission_id),
            "description": self.description,
            "action_required": self.action_required,
            "detected_at": self.detected_at.isoformat(),
        }


@dataclass(frozen=True)
class DailyStats:
    day: date
    missions: dict[str, int]
    reports: dict[str, int]
    billing: dict[str, int]
    notifications: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "missions": dict(self.missions),
            "reports": dict(self.reports),
            "billing": dict(self.billing),
            "notifications": dict(self.notifications),
        }


@dataclass(frozen=True)
class MonitoringSnapshot:
    missions_active: int
    missions_paused: int
    notifications_pending: int
    notifications_failed: int
    idempotency_cache_size: int
    failed_transitions_24h: int
    missions_by_status: dict[str, int]
    generated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "missions_active": self.missions_active,
            "missions_paused": self.missions_paused,
            "notifications_pending": self.notifications_pending,
            "notifications_failed": self.notifications_failed,
            "idempotency_cache_size": self.idempotency_cache_size,
            "failed_transitions_24h": self.failed_transitions_24h,
            "missions_by_status": dict(self.missions_by_status),
            "generated_at": self.generated_at.isoformat(),
        }


@dataclass(frozen=True)
class TimelineEntry:
    seq: int
    from_status: str | None
    to_status: str | None
    operation: str
    via: str
    actor_id: UUID | None
    actor_role: str | None
    note: str | None
    success: bool
    error_code: str | None
    occurred_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "operation": self.operation,
            "via": self.via,
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "actor_role": self.actor_role,
            "note": self.note,
            "success": self.success,
            "error_code": self.error_code,
            "occurred_at": self.occurred_at.isoformat(),
        }
