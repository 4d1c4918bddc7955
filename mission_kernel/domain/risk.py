"""
Mission risk scoring and anomaly rules.

Responsibility:
    Pure, weighted risk score for a mission and the anomaly predicates used by
    the monitoring service.  Identical inputs always give identical output.

Architecture position:
    Kernel > Domain -- pure functions over a ``RiskInputs`` snapshot.

Score composition (each part capped, total clamped to [0, 100]):
    time in status    up to ``time_in_status_max``, linear in
                      elapsed / threshold for the current status
    failed attempts   ``failed_attempt_points`` per rejected transition,
                      up to ``failed_attempts_max``
    missing fields    ``missing_field_points`` per required field that is
                      empty for the current status, up to ``missing_fields_max``
    overdue schedule  ``overdue_points`` when scheduled_start has passed and
                      the technician has not set off
Missions in one of the policy's terminal statuses always score 0.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from mission_kernel.domain.statuses import MissionStatus

_AWAITING_DEPARTURE = frozenset({MissionStatus.ACCEPTEE, MissionStatus.PLANIFIEE})


@dataclass(frozen=True)
class RiskWeights:
    time_in_status_max: int = 40
    failed_attempt_points: int = 5
    failed_attempts_max: int = 25
    missing_field_points: int = 10
    missing_fields_max: int = 20
    overdue_points: int = 15


@dataclass(frozen=True)
class MonitoringPolicy:
    """Thresholds shared by risk scoring and anomaly detection."""

    status_thresholds_hours: Mapping[MissionStatus, float] = field(default_factory=dict)
    default_threshold_hours: float = 72.0
    required_fields: Mapping[MissionStatus, tuple[str, ...]] = field(default_factory=dict)
    weights: RiskWeights = field(default_factory=RiskWeights)
    forbidden_attempts_threshold: int = 3
    forbidden_attempts_window_hours: float = 24.0
    high_risk_threshold: int = 70
    terminal_statuses: frozenset[MissionStatus] = frozenset(
        {MissionStatus.CLOTUREE, MissionStatus.ANNULEE}
    )

    def threshold_hours(self, status: MissionStatus) -> float:
        return self.status_thresholds_hours.get(status, self.default_threshold_hours)


@dataclass(frozen=True)
class RiskInputs:
    status: MissionStatus
    status_changed_at: datetime
    now: datetime
    failed_attempts: int = 0
    scheduled_start: datetime | None = None
    fields: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RiskAssessment:
    score: int
    time_component: int
    failed_attempts_component: int
    missing_fields_component: int
    overdue_component: int
    missing_fields: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "time_in_status": self.time_component,
            "failed_attempts": self.failed_attempts_component,
            "missing_fields": self.missing_fields_component,
            "overdue_schedule": self.overdue_component,
            "missing_field_names": list(self.missing_fields),
        }


def hours_in_status(inputs: RiskInputs) -> float:
    return max(0.0, (inputs.now - inputs.status_changed_at).total_seconds() / 3600)


def is_overdue(inputs: RiskInputs) -> bool:
    return (
        inputs.status in _AWAITING_DEPARTURE
        and inputs.scheduled_start is not None
        and inputs.scheduled_start < inputs.now
    )


def missing_required_fields(inputs: RiskInputs, policy: MonitoringPolicy) -> tuple[str, ...]:
    required = policy.required_fields.get(inputs.status, ())
    return tuple(name for name in required if inputs.fields.get(name) in (None, ""))


def compute_risk_score(inputs: RiskInputs, policy: MonitoringPolicy) -> RiskAssessment:
    """Weighted risk score in [0, 100]."""
    if inputs.status in policy.terminal_statuses:
        return RiskAssessment(0, 0, 0, 0, 0)

    w = policy.weights
    threshold = policy.threshold_hours(inputs.status)
    ratio = min(1.0, hours_in_status(inputs) / threshold) if threshold > 0 else 1.0
    time_component = round(w.time_in_status_max * ratio)

    failed_component = min(w.failed_attempts_max, w.failed_attempt_points * max(0, inputs.failed_attempts))

    missing = missing_required_fields(inputs, policy)
    missing_component = min(w.missing_fields_max, w.missing_field_points * len(missing))

    overdue_component = w.overdue_points if is_overdue(inputs) else 0

    total = time_component + failed_component + missing_component + overdue_component
    return RiskAssessment(
        score=max(0, min(100, int(total))),
        time_component=time_component,
        failed_attempts_component=failed_component,
        missing_fields_component=missing_component,
        overdue_component=overdue_component,
        missing_fields=missing,
    )
