"""
Configuration Loader (``mission_config.loader``).

Responsibility
--------------
Loads the workflow YAML file and parses it into typed
``mission_config.schema`` dataclass instances.  The single public entry
point for runtime config is ``mission_config.get_active_config()``.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Depends on the kernel only
for its status and role vocabularies.

Invariants enforced
-------------------
* Every parse error raises ``WorkflowConfigError`` naming the offending
  transition or section; no silent defaults for required fields.
* Status and role codes must belong to the kernel vocabularies.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Structural problems  -> ``WorkflowConfigError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from mission_config.schema import (
    BusinessHoursDef,
    IdempotencyDef,
    MonitoringDef,
    NotificationsDef,
    RiskWeightsDef,
    TransitionDef,
    WorkflowConfig,
    WorkflowGraphDef,
)
from mission_kernel.domain.statuses import MissionStatus, Role
from mission_kernel.exceptions import WorkflowConfigError

_STATUS_CODES = frozenset(status.value for status in MissionStatus)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _status(value: Any, where: str, source: str | None) -> str:
    code = str(value).strip().upper()
    if code not in _STATUS_CODES:
        raise WorkflowConfigError(f"{where}: unknown status '{value}'", source)
    return code


def _roles(values: Any, where: str, source: str | None) -> tuple[str, ...]:
    if not values:
        raise WorkflowConfigError(f"{where}: no roles declared", source)
    roles = []
    for value in values:
        try:
            roles.append(Role.parse(value).value)
        except ValueError as exc:
            raise WorkflowConfigError(f"{where}: unknown role '{value}'", source) from exc
    return tuple(roles)


def parse_transition(data: dict[str, Any], source: str | None = None) -> TransitionDef:
    """
    Parse a ``TransitionDef`` from one entry of ``workflow.transitions``.

    Required keys: ``action``, ``from``, ``to``, ``roles``.

    Raises:
        WorkflowConfigError: missing key, unknown status or role, or a
            malformed ``effects`` block.
    """
    action = data.get("action")
    if not action:
        raise WorkflowConfigError(f"transition without action: {data!r}", source)
    where = f"transition '{action}'"
    for key in ("from", "to", "roles"):
        if key not in data:
            raise WorkflowConfigError(f"{where}: missing '{key}'", source)

    effects = data.get("effects") or {}
    if not isinstance(effects, dict):
        raise WorkflowConfigError(f"{where}: effects must be a mapping", source)

    return TransitionDef(
        action=str(action),
        from_status=_status(data["from"], where, source),
        to_status=_status(data["to"], where, source),
        allowed_roles=_roles(data["roles"], where, source),
        description=str(data.get("description", "")),
        effects=effects,
        requires_business_hours=bool(data.get("requires_business_hours", False)),
        business_hours_param=data.get("business_hours_param"),
        notify=data.get("notify"),
    )


def parse_workflow(data: dict[str, Any], source: str | None = None) -> WorkflowGraphDef:
    if "transitions" not in data:
        raise WorkflowConfigError("workflow: missing 'transitions'", source)
    return WorkflowGraphDef(
        initial_status=_status(
            data.get("initial_status", MissionStatus.BROUILLON.value), "workflow", source
        ),
        terminal_statuses=tuple(
            _status(s, "workflow.terminal_statuses", source)
            for s in data.get("terminal_statuses", ())
        ),
        transitions=tuple(parse_transition(t, source) for t in data["transitions"] or ()),
    )


def parse_business_hours(data: dict[str, Any]) -> BusinessHoursDef:
    defaults = BusinessHoursDef()
    return BusinessHoursDef(
        timezone=str(data.get("timezone", defaults.timezone)),
        start_hour=int(data.get("start_hour", defaults.start_hour)),
        end_hour=int(data.get("end_hour", defaults.end_hour)),
        work_days=tuple(int(d) for d in data.get("work_days", defaults.work_days)),
    )


def parse_monitoring(data: dict[str, Any], source: str | None = None) -> MonitoringDef:
    defaults = MonitoringDef()
    weights = data.get("risk_weights") or {}
    unknown = set(weights) - set(RiskWeightsDef.__dataclass_fields__)
    if unknown:
        raise WorkflowConfigError(
            f"monitoring.risk_weights: unknown keys {sorted(unknown)}", source
        )
    return MonitoringDef(
        default_threshold_hours=float(
            data.get("default_threshold_hours", defaults.default_threshold_hours)
        ),
        status_thresholds_hours={
            _status(k, "monitoring.status_thresholds_hours", source): float(v)
            for k, v in (data.get("status_thresholds_hours") or {}).items()
        },
        required_fields={
            _status(k, "monitoring.required_fields", source): tuple(v or ())
            for k, v in (data.get("required_fields") or {}).items()
        },
        forbidden_attempts_threshold=int(
            data.get("forbidden_attempts_threshold", defaults.forbidden_attempts_threshold)
        ),
        forbidden_attempts_window_hours=float(
            data.get("forbidden_attempts_window_hours", defaults.forbidden_attempts_window_hours)
        ),
        high_risk_threshold=int(data.get("high_risk_threshold", defaults.high_risk_threshold)),
        risk_weights=RiskWeightsDef(**{k: int(v) for k, v in weights.items()}),
    )


def parse_notifications(data: dict[str, Any]) -> NotificationsDef:
    defaults = NotificationsDef()
    return NotificationsDef(
        ttl_hours=float(data.get("ttl_hours", defaults.ttl_hours)),
        retention_days=int(data.get("retention_days", defaults.retention_days)),
        max_retries=int(data.get("max_retries", defaults.max_retries)),
        channels=tuple(data.get("channels", defaults.channels)),
    )


def parse_workflow_config(data: dict[str, Any], source: str | None = None) -> WorkflowConfig:
    """
    Parse a complete ``WorkflowConfig`` from the root YAML mapping.

    Postconditions:
        - ``checksum`` is the SHA-256 of the canonical input mapping.

    Raises:
        WorkflowConfigError: structural problems anywhere in the document.
    """
    if "workflow" not in data:
        raise WorkflowConfigError("missing 'workflow' section", source)
    try:
        return WorkflowConfig(
            config_id=str(data.get("config_id", "mission-workflow")),
            version=int(data.get("version", 1)),
            workflow=parse_workflow(data["workflow"], source),
            business_hours=parse_business_hours(data.get("business_hours") or {}),
            idempotency=IdempotencyDef(
                ttl_hours=float((data.get("idempotency") or {}).get("ttl_hours", 24))
            ),
            monitoring=parse_monitoring(data.get("monitoring") or {}, source),
            notifications=parse_notifications(data.get("notifications") or {}),
            checksum=compute_checksum(data),
            source=source,
        )
    except (TypeError, ValueError) as exc:
        raise WorkflowConfigError(str(exc), source) from exc


def load_workflow_config(path: Path) -> WorkflowConfig:
    """Load and parse a workflow YAML file."""
    return parse_workflow_config(load_yaml_file(path), source=str(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Postconditions:
        - Identical ``data`` always produces identical checksums
          (deterministic, key-order independent).
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
