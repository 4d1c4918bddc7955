"""
Mission workflow configuration schema.

Defines the human-authored, reviewable source artifact for the mission
workflow.  YAML is parsed into these types by the loader and turned into
kernel objects (TransitionTable, BusinessHoursPolicy, MonitoringPolicy) by
the bridges.

Key distinction:
  WorkflowConfig    = source artifact (human-authored, versioned)
  TransitionTable   = runtime artifact (validated, immutable, kernel-side)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Workflow graph
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransitionDef:
    """One declared status edge, as written in YAML."""

    action: str
    from_status: str
    to_status: str
    allowed_roles: tuple[str, ...]
    description: str = ""
    effects: dict[str, Any] = field(default_factory=dict)
    requires_business_hours: bool = False
    business_hours_param: str | None = None
    notify: str | None = None


@dataclass(frozen=True)
class WorkflowGraphDef:
    initial_status: str
    terminal_statuses: tuple[str, ...]
    transitions: tuple[TransitionDef, ...]


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BusinessHoursDef:
    timezone: str = "Europe/Paris"
    start_hour: int = 7
    end_hour: int = 20
    work_days: tuple[int, ...] = (0, 1, 2, 3, 4)  # Monday = 0


@dataclass(frozen=True)
class IdempotencyDef:
    ttl_hours: float = 24.0


@dataclass(frozen=True)
class RiskWeightsDef:
    time_in_status_max: int = 40
    failed_attempt_points: int = 5
    failed_attempts_max: int = 25
    missing_field_points: int = 10
    missing_fields_max: int = 20
    overdue_points: int = 15


@dataclass(frozen=True)
class MonitoringDef:
    default_threshold_hours: float = 72.0
    status_thresholds_hours: dict[str, float] = field(default_factory=dict)
    required_fields: dict[str, tuple[str, ...]] = field(default_factory=dict)
    forbidden_attempts_threshold: int = 3
    forbidden_attempts_window_hours: float = 24.0
    high_risk_threshold: int = 70
    risk_weights: RiskWeightsDef = field(default_factory=RiskWeightsDef)


@dataclass(frozen=True)
class NotificationsDef:
    ttl_hours: float = 168.0
    retention_days: int = 30
    max_retries: int = 3
    channels: tuple[str, ...] = ("push",)


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowConfig:
    """Complete, validated mission workflow configuration."""

    config_id: str
    version: int
    workflow: WorkflowGraphDef
    business_hours: BusinessHoursDef = field(default_factory=BusinessHoursDef)
    idempotency: IdempotencyDef = field(default_factory=IdempotencyDef)
    monitoring: MonitoringDef = field(default_factory=MonitoringDef)
    notifications: NotificationsDef = field(default_factory=NotificationsDef)
    checksum: str = ""
    source: str | None = None
