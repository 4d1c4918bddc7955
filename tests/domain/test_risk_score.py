"""
Weighted mission risk score.

Score = time in status + failed attempts + missing required fields +
overdue schedule, each part capped, total clamped to [0, 100].
"""

from datetime import datetime, timedelta, timezone

import pytest

from mission_kernel.domain.risk import (
    MonitoringPolicy,
    RiskInputs,
    compute_risk_score,
    is_overdue,
    missing_required_fields,
)
from mission_kernel.domain.statuses import MissionStatus

NOW = datetime(2025, 11, 10, 13, 0, tzinfo=timezone.utc)

POLICY = MonitoringPolicy(
    status_thresholds_hours={MissionStatus.PUBLIEE: 24, MissionStatus.PLANIFIEE: 48},
    required_fields={MissionStatus.PLANIFIEE: ("assigned_user_id", "scheduled_start")},
)


def _inputs(status, hours_ago=0.0, **kwargs):
    return RiskInputs(
        status=status,
        status_changed_at=NOW - timedelta(hours=hours_ago),
        now=NOW,
        **kwargs,
    )


class TestComponents:
    def test_fresh_mission_scores_zero(self):
        assert compute_risk_score(_inputs(MissionStatus.BROUILLON), POLICY).score == 0

    def test_time_in_status_is_linear_up_to_threshold(self):
        assessment = compute_risk_score(_inputs(MissionStatus.PUBLIEE, hours_ago=12), POLICY)
        assert assessment.time_component == 20
        assert assessment.score == 20

    def test_time_in_status_is_capped(self):
        assessment = compute_risk_score(_inputs(MissionStatus.PUBLIEE, hours_ago=240), POLICY)
        assert assessment.time_component == 40

    def test_default_threshold_applies_to_unlisted_status(self):
        # EN_PAUSE is not listed: default 72h
        assessment = compute_risk_score(_inputs(MissionStatus.EN_PAUSE, hours_ago=36), POLICY)
        assert assessment.time_component == 20

    def test_failed_attempts_are_capped(self):
        assert compute_risk_score(
            _inputs(MissionStatus.BROUILLON, failed_attempts=2), POLICY
        ).failed_attempts_component == 10
        assert compute_risk_score(
            _inputs(MissionStatus.BROUILLON, failed_attempts=50), POLICY
        ).failed_attempts_component == 25

    def test_missing_required_fields(self):
        inputs = _inputs(MissionStatus.PLANIFIEE, fields={"assigned_user_id": None, "scheduled_start": ""})
        assert missing_required_fields(inputs, POLICY) == ("assigned_user_id", "scheduled_start")
        assessment = compute_risk_score(inputs, POLICY)
        assert assessment.missing_fields_component == 20
        assert assessment.missing_fields == ("assigned_user_id", "scheduled_start")

    def test_overdue_only_before_departure(self):
        past = NOW - timedelta(hours=1)
        assert is_overdue(_inputs(MissionStatus.PLANIFIEE, scheduled_start=past))
        assert is_overdue(_inputs(MissionStatus.ACCEPTEE, scheduled_start=past))
        assert not is_overdue(_inputs(MissionStatus.EN_ROUTE, scheduled_start=past))
        assert not is_overdue(_inputs(MissionStatus.PLANIFIEE, scheduled_start=NOW + timedelta(hours=1)))

    def test_everything_at_once_is_clamped_to_100(self):
        inputs = _inputs(
            MissionStatus.PLANIFIEE,
            hours_ago=500,
            failed_attempts=10,
            scheduled_start=NOW - timedelta(days=1),
            fields={},
        )
        assessment = compute_risk_score(inputs, POLICY)
        assert assessment.score == 100
        assert assessment.to_dict() == {
            "score": 100,
            "time_in_status": 40,
            "failed_attempts": 25,
            "missing_fields": 20,
            "overdue_schedule": 15,
            "missing_field_names": ["assigned_user_id", "scheduled_start"],
        }

    @pytest.mark.parametrize("status", [MissionStatus.CLOTUREE, MissionStatus.ANNULEE])
    def test_terminal_missions_score_zero(self, status):
        inputs = _inputs(status, hours_ago=1000, failed_attempts=10)
        assert compute_risk_score(inputs, POLICY).score == 0

    def test_terminal_set_comes_from_the_policy(self):
        policy = MonitoringPolicy(terminal_statuses=frozenset({MissionStatus.PAYEE}))
        assert compute_risk_score(_inputs(MissionStatus.PAYEE, hours_ago=1000), policy).score == 0
        assert compute_risk_score(_inputs(MissionStatus.CLOTUREE, hours_ago=1000), policy).score == 40
