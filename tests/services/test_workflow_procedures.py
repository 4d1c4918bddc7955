"""
WorkflowProcedures: the client-facing procedure surface.

Each call is its own unit of work.  Transition failures come back as
structured results and their workflow log entries are committed.
"""

import pytest

from mission_kernel.exceptions import IdempotencyKeyCollisionError
from tests.helpers import ADMIN_ID, DISPATCH_ID, SCHEDULED_START, TECH_ID


@pytest.fixture
def mission_id(procedures):
    created = procedures.create_mission(
        "Entretien PAC",
        actor_role="DISPATCH",
        actor_id=DISPATCH_ID,
        client_name="SCI Les Tilleuls",
    )
    return created["mission"]["id"]


class TestTransitions:
    def test_create_mission(self, procedures):
        created = procedures.create_mission("Mise en service", actor_role="ADMIN", actor_id=ADMIN_ID)
        assert created["ok"] is True
        assert created["mission"]["status"] == "BROUILLON"
        assert created["mission"]["version"] == 1

    def test_create_with_unknown_role(self, procedures):
        created = procedures.create_mission("Mise en service", actor_role="foo")
        assert created["ok"] is False
        assert created["error"]["code"] == "FORBIDDEN"
        assert created["error"]["actor_role"] == "foo"

    def test_perform_action_commits(self, procedures, mission_id):
        result = procedures.perform_action(mission_id, "publish", "ADMIN", actor_id=ADMIN_ID)

        assert result["ok"] is True
        assert (result["from_status"], result["to_status"]) == ("BROUILLON", "PUBLIEE")
        assert [t["operation"] for t in procedures.mission_timeline(mission_id)] == ["publish", "create"]

    def test_apply_transition(self, procedures, mission_id):
        result = procedures.apply_transition(mission_id, "PUBLIEE", "DISPATCH", reason="ready")
        assert result["ok"] is True
        assert result["mission"]["status"] == "PUBLIEE"
        assert procedures.mission_timeline(mission_id)[0]["note"] == "ready"

    def test_forbidden_is_a_structured_result(self, procedures, mission_id):
        result = procedures.apply_transition(mission_id, "PUBLIEE", "TECH", actor_id=TECH_ID)

        assert result["ok"] is False
        assert result["error"]["code"] == "FORBIDDEN"
        assert result["error"]["actor_role"] == "TECH"

    def test_failure_entry_is_committed(self, procedures, mission_id):
        procedures.apply_transition(mission_id, "PUBLIEE", "TECH", actor_id=TECH_ID)

        [failure] = [t for t in procedures.mission_timeline(mission_id, include_failures=True) if not t["success"]]
        assert failure["error_code"] == "FORBIDDEN"
        assert failure["actor_id"] == str(TECH_ID)
        assert len(procedures.mission_timeline(mission_id)) == 1

    def test_outside_business_hours_result(self, procedures, mission_id):
        procedures.perform_action(mission_id, "publish", "ADMIN")
        procedures.perform_action(mission_id, "accept", "TECH", actor_id=TECH_ID)

        result = procedures.perform_action(
            mission_id, "schedule", "TECH",
            actor_id=TECH_ID, params={"scheduled_start": "2025-11-16T10:00:00"},
        )

        assert result["error"]["code"] == "OUTSIDE_BUSINESS_HOURS"
        assert result["error"]["timezone"] == "Europe/Paris"

    def test_malformed_mission_id(self, procedures):
        result = procedures.apply_transition("not-a-uuid", "PUBLIEE", "ADMIN")
        assert result["error"]["code"] == "MISSION_NOT_FOUND"

    def test_non_json_parameter_propagates(self, procedures, mission_id):
        with pytest.raises(TypeError):
            procedures.apply_transition(mission_id, "PUBLIEE", "ADMIN", params={"blob": object()})
        assert len(procedures.mission_timeline(mission_id, include_failures=True)) == 1

    def test_idempotent_retry(self, procedures, mission_id):
        key = procedures.generate_idempotency_key(mission_id, "apply_transition", {"target_status": "PUBLIEE"})

        first = procedures.apply_transition(mission_id, "PUBLIEE", "ADMIN", idempotency_key=key)
        retry = procedures.apply_transition(mission_id, "PUBLIEE", "ADMIN", idempotency_key=key)

        assert first["cached"] is False
        assert retry["cached"] is True
        assert retry["log_seq"] == first["log_seq"]

    def test_idempotency_collision_result(self, procedures, mission_id):
        procedures.apply_transition(mission_id, "PUBLIEE", "ADMIN", idempotency_key="k")
        result = procedures.apply_transition(mission_id, "ANNULEE", "ADMIN", idempotency_key="k")
        assert result["error"]["code"] == "IDEMPOTENCY_KEY_COLLISION"

    def test_apply_transition_effects(self, procedures, mission_id):
        result = procedures.apply_transition_effects(
            mission_id, {"set": {"description": "x"}}, "ADMIN"
        )
        assert result["error"]["code"] == "INVALID_EFFECT"

        result = procedures.apply_transition_effects(
            mission_id, {"set": {"pause_note": "digicode 4521"}}, "DISPATCH", actor_id=DISPATCH_ID
        )
        assert result["ok"] is True
        assert result["mission"]["pause_note"] == "digicode 4521"

    @pytest.mark.parametrize(
        "effects",
        [{"increment": {"pause_count": "x"}}, {"append_log": "cost {0} EUR"}, ["pause_note"]],
    )
    def test_malformed_effects_give_a_structured_error(self, procedures, mission_id, effects):
        result = procedures.apply_transition_effects(mission_id, effects, "ADMIN")

        assert result["ok"] is False
        assert result["error"]["code"] == "INVALID_EFFECT"
        timeline = procedures.mission_timeline(mission_id, include_failures=True)
        assert timeline[0]["operation"] == "apply_effects"
        assert timeline[0]["success"] is False

    def test_non_timestamp_schedule_gives_a_structured_error(self, procedures, mission_id):
        procedures.perform_action(mission_id, "publish", "ADMIN")
        procedures.perform_action(mission_id, "accept", "TECH", actor_id=TECH_ID)

        result = procedures.perform_action(
            mission_id, "schedule", "DISPATCH", params={"scheduled_start": 1762779600}
        )

        assert result["error"]["code"] == "INVALID_EFFECT"
        timeline = procedures.mission_timeline(mission_id, include_failures=True)
        assert [(e["operation"], e["success"]) for e in timeline[:3]] == [
            ("schedule", False), ("accept", True), ("publish", True),
        ]

    def test_available_transitions(self, procedures, mission_id):
        procedures.perform_action(mission_id, "publish", "ADMIN")
        available = procedures.available_transitions(mission_id, "TECH")
        assert [rule["action"] for rule in available] == ["accept"]
        assert available[0]["to_status"] == "ACCEPTEE"

    def test_list_workflow_transitions(self, procedures):
        transitions = procedures.list_workflow_transitions()
        assert len(transitions) == 22
        assert sum(1 for t in transitions if t["action"] == "cancel") == 6
        schedule = next(t for t in transitions if t["action"] == "schedule")
        assert schedule["requires_business_hours"] is True
        assert schedule["effects"]["set"]["scheduled_start"] == "$param:scheduled_start"


class TestIdempotencyProcedures:
    def test_generate_key_is_deterministic(self, procedures):
        first = procedures.generate_idempotency_key("m-1", "invoice", {"b": 2, "a": 1})
        second = procedures.generate_idempotency_key("m-1", "invoice", {"a": 1, "b": 2})
        assert first == second
        assert first.startswith("invoice:m-1:")

    def test_record_then_check(self, procedures, mission_id):
        recorded = procedures.record_idempotent_result(
            "sync-42", mission_id, "quote_sync", "h1", {"ok": True, "quote": "D-7"}
        )
        assert recorded["recorded"] is True
        assert recorded["expires_at"] == "2025-11-11T13:00:00+00:00"

        assert procedures.check_idempotency("sync-42", request_hash="h1") == {
            "cached": True,
            "response": {"ok": True, "quote": "D-7"},
        }
        assert procedures.check_idempotency("unknown") == {"cached": False, "response": None}

    def test_check_collision_raises(self, procedures):
        procedures.record_idempotent_result("sync-42", None, "quote_sync", "h1", {"ok": True})
        with pytest.raises(IdempotencyKeyCollisionError):
            procedures.check_idempotency("sync-42", request_hash="h2")

    def test_cleanup(self, procedures, deterministic_clock):
        procedures.record_idempotent_result("sync-42", None, "quote_sync", "h1", {"ok": True})
        deterministic_clock.advance(25 * 3600)

        result = procedures.cleanup_expired_idempotency()

        assert result["deleted_count"] == 1
        assert result["cleaned_at"] == deterministic_clock.now().isoformat()


class TestTimeProcedures:
    def test_business_hours(self, procedures):
        assert procedures.is_business_hours(SCHEDULED_START) is True
        assert procedures.is_business_hours("2025-11-15T10:00:00") is False

    def test_now_paris(self, procedures):
        assert procedures.now_paris() == "2025-11-10T14:00:00+01:00"

    def test_format_paris_datetime(self, procedures):
        assert procedures.format_paris_datetime("2025-11-10T13:00:00+00:00") == "10/11/2025 à 14:00"


class TestMonitoringProcedures:
    def test_risk_and_anomalies(self, procedures, mission_id, deterministic_clock):
        procedures.perform_action(mission_id, "publish", "ADMIN")
        assert procedures.calculate_mission_risk_score(mission_id) == 0
        assert procedures.detect_workflow_anomalies() == []

        deterministic_clock.advance(30 * 3600)

        [anomaly] = procedures.detect_workflow_anomalies()
        assert anomaly["anomaly_type"] == "STUCK_IN_STATUS"
        assert anomaly["severity"] == "medium"
        assert anomaly["mission_id"] == mission_id

    def test_daily_stats_accepts_iso_date(self, procedures, mission_id):
        procedures.perform_action(mission_id, "publish", "ADMIN")
        stats = procedures.generate_daily_stats("2025-11-10")
        assert stats["date"] == "2025-11-10"
        assert stats["missions"]["created"] == 1
        assert stats["missions"]["published"] == 1
        assert stats["notifications"]["created"] == 1

    def test_dashboard(self, procedures, mission_id):
        procedures.apply_transition(mission_id, "PUBLIEE", "TECH")
        dashboard = procedures.monitoring_dashboard()
        assert dashboard["missions_by_status"]["BROUILLON"] == 1
        assert dashboard["failed_transitions_24h"] == 1
        assert dashboard["missions_active"] == 0

    def test_cleanup_notifications(self, procedures, mission_id, deterministic_clock):
        procedures.perform_action(mission_id, "publish", "ADMIN")
        deterministic_clock.advance(8 * 24 * 3600)

        result = procedures.cleanup_expired_notifications()

        assert (result["failed_count"], result["deleted_count"]) == (1, 0)
