"""
Mission transition table.

Verifies the shipped workflow graph and the structural checks the table
applies when it is built:
- at most one rule per (from, to) and per (from, action)
- terminal statuses have no outgoing rules
- self-transitions exist only when declared
"""

import pytest

from mission_kernel.domain.effects import parse_effects
from mission_kernel.domain.statuses import MissionStatus, Role
from mission_kernel.domain.workflow import TransitionRule, TransitionTable
from mission_kernel.exceptions import WorkflowConfigError


def _rule(action, from_status, to_status, roles=(Role.ADMIN,), **kwargs):
    return TransitionRule(
        action=action,
        from_status=from_status,
        to_status=to_status,
        allowed_roles=frozenset(roles),
        **kwargs,
    )


class TestShippedGraph:
    def test_publish_edge(self, transition_table):
        rule = transition_table.find_rule(MissionStatus.BROUILLON, MissionStatus.PUBLIEE)
        assert rule.action == "publish"
        assert rule.allowed_roles == frozenset({Role.ADMIN, Role.DISPATCH})
        assert rule.notify == "mission_published"

    def test_undeclared_edge(self, transition_table):
        assert transition_table.find_rule("BROUILLON", "TERMINEE") is None

    def test_unknown_status_string(self, transition_table):
        with pytest.raises(ValueError):
            transition_table.find_rule("BROUILLON", "NOPE")

    def test_cancel_is_declared_per_status(self, transition_table):
        for status in ("BROUILLON", "PUBLIEE", "ACCEPTEE", "PLANIFIEE", "EN_ROUTE", "EN_PAUSE"):
            rule = transition_table.find_by_action(status, "cancel")
            assert rule is not None and rule.to_status is MissionStatus.ANNULEE
        assert transition_table.find_by_action("EN_INTERVENTION", "cancel") is None
        assert transition_table.find_by_action("FACTUREE", "cancel") is None

    def test_reschedule_is_the_only_self_transition(self, transition_table):
        self_rules = [rule for rule in transition_table if rule.is_self_transition]
        assert [rule.action for rule in self_rules] == ["reschedule"]

    def test_terminal_statuses_have_no_rules(self, transition_table):
        assert transition_table.rules_from(MissionStatus.CLOTUREE) == []
        assert transition_table.rules_from(MissionStatus.ANNULEE) == []
        assert transition_table.is_terminal("CLOTUREE")
        assert not transition_table.is_terminal("PAYEE")

    def test_scheduling_is_gated_on_business_hours(self, transition_table):
        for action in ("schedule", "reschedule"):
            rule = next(r for r in transition_table if r.action == action)
            assert rule.requires_business_hours
            assert rule.business_hours_param == "scheduled_start"

    def test_available_transitions_per_role(self, transition_table):
        tech = {rule.action for rule in transition_table.available_transitions("PUBLIEE", "tech")}
        admin = {rule.action for rule in transition_table.available_transitions("PUBLIEE", "ADMIN")}
        assert tech == {"accept"}
        assert admin == {"accept", "unpublish", "cancel"}

    def test_unknown_role_gets_nothing(self, transition_table):
        assert transition_table.available_transitions("BROUILLON", "PLUMBER") == []
        assert transition_table.available_transitions("BROUILLON", Role.CLIENT) == []

    def test_describe_lists_every_rule(self, transition_table):
        described = transition_table.describe()
        assert len(described) == len(transition_table)
        publish = next(d for d in described if d["action"] == "publish")
        assert publish == {
            "action": "publish",
            "from_status": "BROUILLON",
            "to_status": "PUBLIEE",
            "allowed_roles": ["ADMIN", "DISPATCH"],
            "description": "Publish the mission to technicians and subcontractors",
            "requires_business_hours": False,
            "effects": {},
            "notify": "mission_published",
        }


class TestStructuralChecks:
    def test_duplicate_edge(self):
        with pytest.raises(WorkflowConfigError, match="duplicate rule"):
            TransitionTable(
                [
                    _rule("publish", MissionStatus.BROUILLON, MissionStatus.PUBLIEE),
                    _rule("push", MissionStatus.BROUILLON, MissionStatus.PUBLIEE),
                ]
            )

    def test_duplicate_action_from_same_status(self):
        with pytest.raises(WorkflowConfigError, match="duplicate action"):
            TransitionTable(
                [
                    _rule("go", MissionStatus.BROUILLON, MissionStatus.PUBLIEE),
                    _rule("go", MissionStatus.BROUILLON, MissionStatus.ANNULEE),
                ]
            )

    def test_terminal_status_with_outgoing_rule(self):
        with pytest.raises(WorkflowConfigError, match="terminal"):
            TransitionTable([_rule("reopen", MissionStatus.CLOTUREE, MissionStatus.BROUILLON)])

    def test_rule_without_roles(self):
        with pytest.raises(WorkflowConfigError, match="no role"):
            TransitionTable([_rule("publish", MissionStatus.BROUILLON, MissionStatus.PUBLIEE, roles=())])

    def test_invalid_effect(self):
        with pytest.raises(WorkflowConfigError):
            TransitionTable(
                [
                    _rule(
                        "publish",
                        MissionStatus.BROUILLON,
                        MissionStatus.PUBLIEE,
                        effects=parse_effects({"set": {"status": "PAYEE"}}),
                    )
                ]
            )

    def test_business_hours_param_requires_gate(self):
        with pytest.raises(WorkflowConfigError):
            TransitionTable(
                [
                    _rule(
                        "schedule",
                        MissionStatus.ACCEPTEE,
                        MissionStatus.PLANIFIEE,
                        business_hours_param="scheduled_start",
                    )
                ]
            )

    def test_initial_status_cannot_be_terminal(self):
        with pytest.raises(WorkflowConfigError):
            TransitionTable([], initial_status=MissionStatus.ANNULEE)

    def test_actions_index(self):
        table = TransitionTable(
            [
                _rule("publish", MissionStatus.BROUILLON, MissionStatus.PUBLIEE),
                _rule("cancel", MissionStatus.BROUILLON, MissionStatus.ANNULEE),
                _rule("cancel", MissionStatus.PUBLIEE, MissionStatus.ANNULEE),
            ]
        )
        assert table.actions() == frozenset({"publish", "cancel"})
        assert len(table) == 3
