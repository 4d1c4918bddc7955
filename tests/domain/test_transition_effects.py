"""
Transition effects: parsing, registration-time validation and resolution.

Effects only touch MISSION_WRITABLE_FIELDS; status and version are never
writable.  Resolution is pure: the same inputs give the same plan.
"""

from datetime import datetime, timezone
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest

from mission_kernel.domain.effects import (
    MISSION_WRITABLE_FIELDS,
    AppendLog,
    ClearField,
    IncrementField,
    SetField,
    effects_to_dict,
    parse_effects,
    resolve_effects,
    validate_effects,
)
from mission_kernel.exceptions import InvalidEffectError, MissingTransitionParameterError

PARIS = ZoneInfo("Europe/Paris")
NOW = datetime(2025, 11, 10, 13, 0, tzinfo=timezone.utc)


def _resolve(effects, params=None, actor_id=None):
    return resolve_effects(
        parse_effects(effects),
        now=NOW,
        actor_id=actor_id,
        params=params or {},
        local_tz=PARIS,
        mission_id="m-1",
        action="test",
    )


class TestParsing:
    def test_map_form(self):
        effects = parse_effects(
            {
                "set": {
                    "accepted_at": "$now",
                    "pause_reason": "$param:pause_reason",
                    "pause_note": "$param?:pause_note",
                },
                "clear": ["rejection_reason"],
                "increment": {"pause_count": 1},
                "append_log": "paused: {pause_reason}",
            }
        )
        assert SetField(field="accepted_at", value="$now") in effects
        assert SetField(field="pause_reason", param="pause_reason") in effects
        assert SetField(field="pause_note", param="pause_note", optional=True) in effects
        assert ClearField(field="rejection_reason") in effects
        assert IncrementField(field="pause_count", delta=1) in effects
        assert AppendLog(message="paused: {pause_reason}") in effects

    def test_list_form(self):
        effects = parse_effects(
            [
                {"type": "set", "field": "invoice_number", "param": "number", "optional": True},
                {"type": "clear", "field": "pause_note"},
                {"type": "increment", "field": "reschedule_count"},
            ]
        )
        assert effects == (
            SetField(field="invoice_number", param="number", optional=True),
            ClearField(field="pause_note"),
            IncrementField(field="reschedule_count", delta=1),
        )

    def test_none_is_empty(self):
        assert parse_effects(None) == ()

    def test_unknown_type_rejected(self):
        with pytest.raises(InvalidEffectError):
            parse_effects({"delete": ["title"]})

    def test_list_item_missing_field_rejected(self):
        with pytest.raises(InvalidEffectError):
            parse_effects([{"type": "clear"}])

    def test_scalar_rejected(self):
        with pytest.raises(InvalidEffectError):
            parse_effects("set everything")

    def test_map_form_survives_documentation_rendering(self):
        raw = {
            "set": {"completed_at": "$now", "report_status": "A_VALIDER"},
            "clear": ["rejection_reason"],
        }
        assert effects_to_dict(parse_effects(raw)) == raw


class TestValidation:
    def test_status_is_not_writable(self):
        with pytest.raises(InvalidEffectError) as exc_info:
            validate_effects(parse_effects({"set": {"status": "CLOTUREE"}}))
        assert exc_info.value.field == "status"

    def test_version_is_not_writable(self):
        with pytest.raises(InvalidEffectError):
            validate_effects(parse_effects({"increment": {"version": 1}}))

    def test_increment_requires_integer_field(self):
        with pytest.raises(InvalidEffectError):
            validate_effects(parse_effects({"increment": {"pause_note": 1}}))

    def test_now_requires_datetime_field(self):
        with pytest.raises(InvalidEffectError):
            validate_effects(parse_effects({"set": {"invoice_number": "$now"}}))

    def test_literal_outside_vocabulary(self):
        with pytest.raises(InvalidEffectError):
            validate_effects(parse_effects({"set": {"report_status": "DONE"}}))

    def test_counter_cannot_be_cleared(self):
        with pytest.raises(InvalidEffectError):
            validate_effects(parse_effects({"clear": ["pause_count"]}))

    def test_valid_effects_pass(self):
        validate_effects(
            parse_effects(
                {
                    "set": {"billing_status": "FACTURABLE", "assigned_user_id": "$actor"},
                    "increment": {"pause_count": 1},
                }
            )
        )

    def test_writable_fields_exclude_workflow_columns(self):
        assert {"status", "version", "id", "status_changed_at"}.isdisjoint(MISSION_WRITABLE_FIELDS)


class TestResolution:
    def test_now_and_actor_tokens(self):
        actor = uuid4()
        plan = _resolve({"set": {"accepted_at": "$now", "assigned_user_id": "$actor"}}, actor_id=actor)
        assert plan.assignments == {"accepted_at": NOW, "assigned_user_id": actor}

    def test_actor_token_without_actor(self):
        with pytest.raises(MissingTransitionParameterError) as exc_info:
            _resolve({"set": {"assigned_user_id": "$actor"}})
        assert exc_info.value.parameter == "actor_id"

    def test_required_param_missing(self):
        with pytest.raises(MissingTransitionParameterError) as exc_info:
            _resolve({"set": {"pause_reason": "$param:pause_reason"}})
        assert exc_info.value.parameter == "pause_reason"
        assert exc_info.value.action == "test"

    def test_optional_param_missing_is_skipped(self):
        plan = _resolve({"set": {"pause_note": "$param?:pause_note"}})
        assert plan.assignments == {}
        assert plan.touched_fields == ()

    def test_naive_datetime_param_is_paris_time(self):
        plan = _resolve(
            {"set": {"scheduled_start": "$param:start"}},
            params={"start": "2025-11-12T09:00:00"},
        )
        assert plan.assignments["scheduled_start"] == datetime(2025, 11, 12, 8, 0, tzinfo=timezone.utc)

    def test_unreadable_datetime_param(self):
        with pytest.raises(InvalidEffectError):
            _resolve({"set": {"scheduled_start": "$param:start"}}, params={"start": "tomorrow"})

    def test_param_outside_vocabulary(self):
        with pytest.raises(InvalidEffectError):
            _resolve({"set": {"pause_reason": "$param:reason"}}, params={"reason": "lunch"})

    def test_clear_and_increment(self):
        plan = _resolve({"clear": ["pause_reason"], "increment": {"pause_count": 2}})
        assert plan.assignments == {"pause_reason": None}
        assert plan.increments == {"pause_count": 2}
        assert plan.touched_fields == ("pause_count", "pause_reason")

    def test_append_log_formats_params_and_keeps_unknown_placeholders(self):
        plan = _resolve(
            {"append_log": ["pause: {pause_reason}", "by {who}"]},
            params={"pause_reason": "securite"},
        )
        assert plan.notes == ("pause: securite", "by {who}")

    def test_resolution_is_deterministic(self):
        raw = {"set": {"completed_at": "$now", "report_status": "A_VALIDER"}}
        assert _resolve(raw) == _resolve(raw)
