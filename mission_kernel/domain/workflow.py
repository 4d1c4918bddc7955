"""
Mission transition table (``mission_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the mission state machine: the immutable
``TransitionRule`` and the ``TransitionTable`` that indexes rules by
``(from, to)`` and ``(from, action)``.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  The table is
built from configuration by ``mission_config.bridges`` and handed to the
transition engine; the kernel never reads configuration itself.

Invariants enforced
-------------------
* At most one rule per ``(from_status, to_status)`` pair and per
  ``(from_status, action)`` pair.
* Self-transitions exist only when declared.
* Terminal statuses have no outgoing rules.
* Every rule allows at least one role.
* Effects are validated against the mission's writable fields at
  construction (``validate_effects``).
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from mission_kernel.domain.effects import Effect, effects_to_dict, validate_effects
from mission_kernel.domain.statuses import MissionStatus, Role
from mission_kernel.exceptions import InvalidEffectError, WorkflowConfigError


@dataclass(frozen=True)
class TransitionRule:
    """A legal status edge.

    Contract: frozen; immutable at runtime.
    ``requires_business_hours`` gates the rule on the business-hours window,
    evaluated on the ``business_hours_param`` timestamp when one is named
    (e.g. the requested ``scheduled_start``), otherwise on the clock.
    ``notify`` names the notification event enqueued on success.
    """

    action: str
    from_status: MissionStatus
    to_status: MissionStatus
    allowed_roles: frozenset[Role]
    description: str = ""
    effects: tuple[Effect, ...] = field(default=())
    requires_business_hours: bool = False
    business_hours_param: str | None = None
    notify: str | None = None

    @property
    def is_self_transition(self) -> bool:
        return self.from_status == self.to_status

    def allows(self, role: Role | str) -> bool:
        try:
            return Role.parse(role) in self.allowed_roles
        except ValueError:
            return False

    def to_dict(self) -> dict[str, Any]:
        """Documentation form used by list_workflow_transitions."""
        return {
            "action": self.action,
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "allowed_roles": sorted(role.value for role in self.allowed_roles),
            "description": self.description,
            "requires_business_hours": self.requires_business_hours,
            "effects": effects_to_dict(self.effects),
            "notify": self.notify,
        }


class TransitionTable:
    """
    Indexed, validated set of transition rules.

    Contract:
        Built once (from configuration) and shared read-only by every engine.

    Guarantees:
        - ``find_rule`` and ``find_by_action`` return at most one rule.
        - ``list_transitions`` returns every rule in declaration order.

    Raises:
        WorkflowConfigError: duplicate edges, terminal statuses with
            outgoing rules, role-less rules, or invalid effects.
    """

    def __init__(
        self,
        rules: Iterable[TransitionRule],
        *,
        initial_status: MissionStatus = MissionStatus.BROUILLON,
        terminal_statuses: Iterable[MissionStatus] = (
            MissionStatus.CLOTUREE,
            MissionStatus.ANNULEE,
        ),
    ):
        self._rules: tuple[TransitionRule, ...] = tuple(rules)
        self.initial_status = initial_status
        self.terminal_statuses: frozenset[MissionStatus] = frozenset(terminal_statuses)
        self._by_edge: dict[tuple[MissionStatus, MissionStatus], TransitionRule] = {}
        self._by_action: dict[tuple[MissionStatus, str], TransitionRule] = {}

        if initial_status in self.terminal_statuses:
            raise WorkflowConfigError(f"initial status {initial_status.value} is terminal")

        for rule in self._rules:
            self._register(rule)

    def _register(self, rule: TransitionRule) -> None:
        edge = (rule.from_status, rule.to_status)
        label = f"{rule.action} ({rule.from_status.value} -> {rule.to_status.value})"
        if edge in self._by_edge:
            raise WorkflowConfigError(
                f"duplicate rule for {rule.from_status.value} -> {rule.to_status.value}"
            )
        if (rule.from_status, rule.action) in self._by_action:
            raise WorkflowConfigError(
                f"duplicate action '{rule.action}' from {rule.from_status.value}"
            )
        if rule.from_status in self.terminal_statuses:
            raise WorkflowConfigError(f"terminal status has an outgoing rule: {label}")
        if not rule.allowed_roles:
            raise WorkflowConfigError(f"rule allows no role: {label}")
        if rule.business_hours_param and not rule.requires_business_hours:
            raise WorkflowConfigError(
                f"business_hours_param set without requires_business_hours: {label}"
            )
        try:
            validate_effects(rule.effects)
        except InvalidEffectError as exc:
            raise WorkflowConfigError(f"{label}: {exc}") from exc
        self._by_edge[edge] = rule
        self._by_action[(rule.from_status, rule.action)] = rule

    # -- queries -------------------------------------------------------------

    def list_transitions(self) -> list[TransitionRule]:
        return list(self._rules)

    def find_rule(
        self, from_status: MissionStatus | str, to_status: MissionStatus | str
    ) -> TransitionRule | None:
        return self._by_edge.get((MissionStatus(from_status), MissionStatus(to_status)))

    def find_by_action(self, from_status: MissionStatus | str, action: str) -> TransitionRule | None:
        return self._by_action.get((MissionStatus(from_status), action))

    def rules_from(self, status: MissionStatus | str) -> list[TransitionRule]:
        status = MissionStatus(status)
        return [rule for rule in self._rules if rule.from_status == status]

    def available_transitions(
        self, status: MissionStatus | str, role: Role | str
    ) -> list[TransitionRule]:
        """Rules the role may fire from ``status`` (next actions for the UI)."""
        return [rule for rule in self.rules_from(status) if rule.allows(role)]

    def is_terminal(self, status: MissionStatus | str) -> bool:
        return MissionStatus(status) in self.terminal_statuses

    def actions(self) -> frozenset[str]:
        return frozenset(rule.action for rule in self._rules)

    def describe(self) -> list[dict[str, Any]]:
        return [rule.to_dict() for rule in self._rules]

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self):
        return iter(self._rules)
