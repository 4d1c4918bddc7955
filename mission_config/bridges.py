"""
Config -> Kernel Bridges.

Functions that convert a ``WorkflowConfig`` into kernel-compatible inputs.
These live in mission_config (the producer) because the kernel must NEVER
import mission_config.

Usage:
    from mission_config import get_active_config
    from mission_config.bridges import build_transition_table

    config = get_active_config()
    table = build_transition_table(config)
    engine = TransitionEngine(session, table, clock, build_business_hours_policy(config))
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any
from zoneinfo import ZoneInfoNotFoundError

from mission_config.schema import TransitionDef, WorkflowConfig
from mission_kernel.domain.business_hours import BusinessHoursPolicy
from mission_kernel.domain.effects import parse_effects
from mission_kernel.domain.risk import MonitoringPolicy, RiskWeights
from mission_kernel.domain.statuses import MissionStatus, Role
from mission_kernel.domain.workflow import TransitionRule, TransitionTable
from mission_kernel.exceptions import InvalidEffectError, WorkflowConfigError


def build_rule(definition: TransitionDef, source: str | None = None) -> TransitionRule:
    """Kernel TransitionRule for one transition definition."""
    try:
        effects = parse_effects(definition.effects)
    except InvalidEffectError as exc:
        raise WorkflowConfigError(f"transition '{definition.action}': {exc}", source) from exc
    return TransitionRule(
        action=definition.action,
        from_status=MissionStatus(definition.from_status),
        to_status=MissionStatus(definition.to_status),
        allowed_roles=frozenset(Role.parse(r) for r in definition.allowed_roles),
        description=definition.description,
        effects=effects,
        requires_business_hours=definition.requires_business_hours,
        business_hours_param=definition.business_hours_param,
        notify=definition.notify,
    )


def build_transition_table(config: WorkflowConfig) -> TransitionTable:
    """
    Build the kernel TransitionTable from configuration.

    Raises:
        WorkflowConfigError: any rule or table-level validation failure,
            with the configuration source attached.
    """
    graph = config.workflow
    rules = [build_rule(t, config.source) for t in graph.transitions]
    try:
        return TransitionTable(
            rules,
            initial_status=MissionStatus(graph.initial_status),
            terminal_statuses=tuple(MissionStatus(s) for s in graph.terminal_statuses),
        )
    except WorkflowConfigError as exc:
        if exc.source is None and config.source is not None:
            raise WorkflowConfigError(exc.reason, config.source) from exc
        raise


def build_business_hours_policy(config: WorkflowConfig) -> BusinessHoursPolicy:
    hours = config.business_hours
    try:
        return BusinessHoursPolicy(
            timezone=hours.timezone,
            start_hour=hours.start_hour,
            end_hour=hours.end_hour,
            work_days=frozenset(hours.work_days),
        )
    except (ValueError, ZoneInfoNotFoundError) as exc:
        raise WorkflowConfigError(f"business_hours: {exc}", config.source) from exc


def build_monitoring_policy(config: WorkflowConfig) -> MonitoringPolicy:
    monitoring = config.monitoring
    weights = monitoring.risk_weights
    return MonitoringPolicy(
        status_thresholds_hours={
            MissionStatus(k): v for k, v in monitoring.status_thresholds_hours.items()
        },
        default_threshold_hours=monitoring.default_threshold_hours,
        required_fields={
            MissionStatus(k): v for k, v in monitoring.required_fields.items()
        },
        weights=RiskWeights(
            time_in_status_max=weights.time_in_status_max,
            failed_attempt_points=weights.failed_attempt_points,
            failed_attempts_max=weights.failed_attempts_max,
            missing_field_points=weights.missing_field_points,
            missing_fields_max=weights.missing_fields_max,
            overdue_points=weights.overdue_points,
        ),
        forbidden_attempts_threshold=monitoring.forbidden_attempts_threshold,
        forbidden_attempts_window_hours=monitoring.forbidden_attempts_window_hours,
        high_risk_threshold=monitoring.high_risk_threshold,
        terminal_statuses=frozenset(MissionStatus(s) for s in config.workflow.terminal_statuses),
    )


def idempotency_ttl(config: WorkflowConfig) -> timedelta:
    return timedelta(hours=config.idempotency.ttl_hours)


def notification_settings(config: WorkflowConfig) -> dict[str, Any]:
    """Keyword arguments for ``NotificationQueue``."""
    notifications = config.notifications
    return {
        "ttl": timedelta(hours=notifications.ttl_hours),
        "retention": timedelta(days=notifications.retention_days),
        "max_retries": notifications.max_retries,
        "channels": notifications.channels,
    }
