"""
Transition side-effects (``mission_kernel.domain.effects``).

Responsibility
--------------
Typed effect variants declared on transition rules, their validation
against the mission's writable field set, and the pure resolution step that
turns declared effects plus call parameters into concrete field changes.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects and functions.  ZERO I/O.
The transition engine applies the resolved plan to the ORM row.

Invariants enforced
-------------------
* Effects only touch fields listed in ``MISSION_WRITABLE_FIELDS``.
  ``status``, ``version``, ``id`` and timestamps are never writable.
* ``IncrementField`` only targets integer fields.
* ``$now`` only targets datetime fields, ``$actor`` only id fields.
* Literal values for coded fields must belong to the field's vocabulary.

Validation happens when a rule is registered, so a bad effect is a
configuration error rather than a runtime surprise on some mission.

Value tokens
------------
``$now``             clock time of the transition
``$actor``           actor id of the caller
``$param:NAME``      call parameter NAME (required)
``$param?:NAME``     call parameter NAME (skipped when absent)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from enum import Enum
from string import Formatter
from typing import Any, Union
from uuid import UUID

from mission_kernel.domain.statuses import (
    BillingStatus,
    PauseReason,
    RejectionReason,
    ReportStatus,
)
from mission_kernel.exceptions import (
    InvalidEffectError,
    MissingTransitionParameterError,
)

NOW = "$now"
ACTOR = "$actor"
_PARAM_PREFIX = "$param:"
_OPTIONAL_PARAM_PREFIX = "$param?:"


class FieldKind(str, Enum):
    TEXT = "text"
    DATETIME = "datetime"
    INTEGER = "integer"
    ID = "id"
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class FieldSpec:
    kind: FieldKind
    choices: frozenset[str] | None = None
    nullable: bool = True


def _codes(enum_cls: type[Enum]) -> frozenset[str]:
    return frozenset(member.value for member in enum_cls)


# Mission columns a transition effect may write.  Must stay in step with
# mission_kernel.models.mission.Mission (checked by the model tests).
MISSION_WRITABLE_FIELDS: Mapping[str, FieldSpec] = {
    "assigned_user_id": FieldSpec(FieldKind.ID),
    "scheduled_start": FieldSpec(FieldKind.DATETIME),
    "scheduled_end": FieldSpec(FieldKind.DATETIME),
    "accepted_at": FieldSpec(FieldKind.DATETIME),
    "started_at": FieldSpec(FieldKind.DATETIME),
    "completed_at": FieldSpec(FieldKind.DATETIME),
    "invoiced_at": FieldSpec(FieldKind.DATETIME),
    "paid_at": FieldSpec(FieldKind.DATETIME),
    "cancelled_at": FieldSpec(FieldKind.DATETIME),
    "cancel_reason": FieldSpec(FieldKind.TEXT),
    "pause_reason": FieldSpec(FieldKind.TEXT, choices=_codes(PauseReason)),
    "pause_note": FieldSpec(FieldKind.TEXT),
    "pause_count": FieldSpec(FieldKind.INTEGER, nullable=False),
    "reschedule_count": FieldSpec(FieldKind.INTEGER, nullable=False),
    "report_status": FieldSpec(FieldKind.TEXT, choices=_codes(ReportStatus)),
    "rejection_reason": FieldSpec(FieldKind.TEXT, choices=_codes(RejectionReason)),
    "rejection_details": FieldSpec(FieldKind.TEXT),
    "billing_status": FieldSpec(FieldKind.TEXT, choices=_codes(BillingStatus)),
    "invoice_number": FieldSpec(FieldKind.TEXT),
}


# =============================================================================
# Effect variants
# =============================================================================


@dataclass(frozen=True)
class SetField:
    """Assign a literal, a token ($now/$actor) or a call parameter."""

    field: str
    value: Any = None
    param: str | None = None
    optional: bool = False


@dataclass(frozen=True)
class ClearField:
    field: str


@dataclass(frozen=True)
class IncrementField:
    field: str
    delta: int = 1


@dataclass(frozen=True)
class AppendLog:
    """Append a line to the workflow log note; ``{name}`` reads a parameter."""

    message: str


Effect = Union[SetField, ClearField, IncrementField, AppendLog]


# =============================================================================
# Parsing
# =============================================================================


def _set_from_value(field_name: str, raw: Any) -> SetField:
    if isinstance(raw, str) and raw.startswith(_OPTIONAL_PARAM_PREFIX):
        return SetField(field=field_name, param=raw[len(_OPTIONAL_PARAM_PREFIX):], optional=True)
    if isinstance(raw, str) and raw.startswith(_PARAM_PREFIX):
        return SetField(field=field_name, param=raw[len(_PARAM_PREFIX):])
    return SetField(field=field_name, value=raw)


def parse_effects(raw: Any) -> tuple[Effect, ...]:
    """
    Build effect variants from their declarative form.

    Two forms are accepted:

    * map form, as stored on rules and sent to ``apply_transition_effects``::

        {"set": {"accepted_at": "$now"}, "increment": {"pause_count": 1},
         "clear": ["pause_reason"], "append_log": "paused: {pause_reason}"}

    * list form, one mapping per effect with a ``type`` key::

        [{"type": "set", "field": "accepted_at", "value": "$now"}]

    Raises:
        InvalidEffectError: malformed declaration or unknown effect type.
    """
    if raw is None:
        return ()
    if isinstance(raw, Mapping):
        return _parse_effect_map(raw)
    if isinstance(raw, (list, tuple)):
        effects: list[Effect] = []
        for item in raw:
            effects.append(_parse_effect_item(item))
        return tuple(effects)
    raise InvalidEffectError("<effects>", f"expected a mapping or a list, got {type(raw).__name__}")


def _names(kind: str, body: Any) -> list[str]:
    names = [body] if isinstance(body, str) else body
    if not isinstance(names, (list, tuple)) or not all(isinstance(n, str) for n in names):
        raise InvalidEffectError("<effects>", f"'{kind}' expects a name or a list of names")
    return list(names)


def _field_map(kind: str, body: Any) -> Mapping[str, Any]:
    if not isinstance(body, Mapping):
        raise InvalidEffectError(
            "<effects>", f"'{kind}' expects a mapping of fields, got {type(body).__name__}"
        )
    return body


def _delta(field_name: str, raw: Any) -> int:
    if isinstance(raw, bool):
        raise InvalidEffectError(field_name, f"increment must be an integer, got {raw!r}")
    try:
        return int(raw)
    except (TypeError, ValueError, OverflowError) as exc:
        raise InvalidEffectError(field_name, f"increment must be an integer, got {raw!r}") from exc


def _parse_effect_map(raw: Mapping[str, Any]) -> tuple[Effect, ...]:
    effects: list[Effect] = []
    for kind, body in raw.items():
        if kind == "set":
            for field_name, value in _field_map(kind, body).items():
                effects.append(_set_from_value(field_name, value))
        elif kind == "clear":
            effects.extend(ClearField(field=name) for name in _names(kind, body))
        elif kind == "increment":
            for field_name, delta in _field_map(kind, body).items():
                effects.append(IncrementField(field=field_name, delta=_delta(field_name, delta)))
        elif kind == "append_log":
            effects.extend(AppendLog(message=m) for m in _names(kind, body))
        else:
            raise InvalidEffectError("<effects>", f"unknown effect type '{kind}'")
    return tuple(effects)


def _parse_effect_item(item: Any) -> Effect:
    if not isinstance(item, Mapping):
        raise InvalidEffectError(
            "<effects>", f"list items must be mappings with a 'type' key, got {item!r}"
        )
    kind = item.get("type")
    try:
        if kind == "set":
            if "param" in item:
                return SetField(
                    field=item["field"],
                    param=item["param"],
                    optional=bool(item.get("optional", False)),
                )
            return _set_from_value(item["field"], item.get("value"))
        if kind == "clear":
            return ClearField(field=item["field"])
        if kind == "increment":
            return IncrementField(field=item["field"], delta=_delta(item["field"], item.get("delta", 1)))
        if kind == "append_log":
            message = item["message"]
            if not isinstance(message, str):
                raise InvalidEffectError("<append_log>", f"message must be text, got {message!r}")
            return AppendLog(message=message)
    except KeyError as exc:
        raise InvalidEffectError("<effects>", f"'{kind}' effect is missing key {exc}") from exc
    raise InvalidEffectError("<effects>", f"unknown effect type '{kind}'")


def effects_to_dict(effects: Iterable[Effect]) -> dict[str, Any]:
    """Map form of a tuple of effects (inverse of parse_effects for documentation)."""
    out: dict[str, Any] = {}
    for effect in effects:
        if isinstance(effect, SetField):
            if effect.param is not None:
                prefix = _OPTIONAL_PARAM_PREFIX if effect.optional else _PARAM_PREFIX
                value = f"{prefix}{effect.param}"
            else:
                value = effect.value
            out.setdefault("set", {})[effect.field] = value
        elif isinstance(effect, ClearField):
            out.setdefault("clear", []).append(effect.field)
        elif isinstance(effect, IncrementField):
            out.setdefault("increment", {})[effect.field] = effect.delta
        elif isinstance(effect, AppendLog):
            out.setdefault("append_log", []).append(effect.message)
    return out


# =============================================================================
# Registration-time validation
# =============================================================================


def _spec_for(field_name: str) -> FieldSpec:
    spec = MISSION_WRITABLE_FIELDS.get(field_name)
    if spec is None:
        raise InvalidEffectError(field_name, "not a writable mission field")
    return spec


def _check_literal(field_name: str, spec: FieldSpec, value: Any) -> None:
    if value is None:
        if not spec.nullable:
            raise InvalidEffectError(field_name, "field is not nullable")
        return
    if value == NOW:
        if spec.kind is not FieldKind.DATETIME:
            raise InvalidEffectError(field_name, "$now only applies to datetime fields")
        return
    if value == ACTOR:
        if spec.kind not in (FieldKind.ID, FieldKind.TEXT):
            raise InvalidEffectError(field_name, "$actor only applies to id fields")
        return
    if spec.kind is FieldKind.INTEGER and (isinstance(value, bool) or not isinstance(value, int)):
        raise InvalidEffectError(field_name, f"expected an integer, got {value!r}")
    if spec.kind is FieldKind.BOOLEAN and not isinstance(value, bool):
        raise InvalidEffectError(field_name, f"expected a boolean, got {value!r}")
    if spec.kind is FieldKind.TEXT and not isinstance(value, str):
        raise InvalidEffectError(field_name, f"expected text, got {value!r}")
    if spec.choices is not None and value not in spec.choices:
        raise InvalidEffectError(
            field_name, f"{value!r} is not one of {', '.join(sorted(spec.choices))}"
        )


def _check_template(message: str) -> None:
    """Log templates may only use named ``{param}`` placeholders."""
    try:
        parsed = list(Formatter().parse(message))
    except ValueError as exc:
        raise InvalidEffectError("<append_log>", f"malformed template {message!r}: {exc}") from exc
    for _, name, _, _ in parsed:
        if name is None:
            continue
        if not name.isidentifier():
            raise InvalidEffectError(
                "<append_log>", f"placeholder {{{name}}} must name a parameter"
            )


def validate_effects(effects: Iterable[Effect]) -> None:
    """
    Check every effect against the mission's writable field set.

    Raises:
        InvalidEffectError: on the first invalid effect.
    """
    for effect in effects:
        if isinstance(effect, AppendLog):
            _check_template(effect.message)
            continue
        if not isinstance(effect.field, str):
            raise InvalidEffectError(str(effect.field), "field names must be strings")
        spec = _spec_for(effect.field)
        if isinstance(effect, IncrementField):
            if spec.kind is not FieldKind.INTEGER:
                raise InvalidEffectError(effect.field, "increment requires an integer field")
        elif isinstance(effect, ClearField):
            if not spec.nullable:
                raise InvalidEffectError(effect.field, "field is not nullable")
        elif isinstance(effect, SetField) and effect.param is None:
            _check_literal(effect.field, spec, effect.value)


# =============================================================================
# Resolution
# =============================================================================


@dataclass(frozen=True)
class EffectPlan:
    """Concrete changes produced by resolving effects for one transition."""

    assignments: dict[str, Any] = field(default_factory=dict)
    increments: dict[str, int] = field(default_factory=dict)
    notes: tuple[str, ...] = ()

    @property
    def touched_fields(self) -> tuple[str, ...]:
        return tuple(sorted(set(self.assignments) | set(self.increments)))


class _KeepMissing(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def _render_note(message: str, params: Mapping[str, Any]) -> str:
    _check_template(message)
    try:
        return message.format_map(_KeepMissing(params))
    except (TypeError, ValueError, AttributeError, IndexError, KeyError) as exc:
        raise InvalidEffectError("<append_log>", f"cannot render {message!r}: {exc}") from exc


def coerce_value(field_name: str, value: Any, local_tz: tzinfo) -> Any:
    """
    Coerce a caller-supplied parameter to the field's column type.

    Naive datetimes (and ISO strings without offset) are read as wall-clock
    time in ``local_tz``.

    Raises:
        InvalidEffectError: value cannot be coerced or is outside the vocabulary.
    """
    spec = _spec_for(field_name)
    if value is None:
        if not spec.nullable:
            raise InvalidEffectError(field_name, "field is not nullable")
        return None
    try:
        if spec.kind is FieldKind.DATETIME:
            if isinstance(value, str):
                value = datetime.fromisoformat(value)
            if not isinstance(value, datetime):
                raise TypeError(type(value).__name__)
            if value.tzinfo is None:
                value = value.replace(tzinfo=local_tz)
            return value
        if spec.kind is FieldKind.INTEGER:
            return int(value)
        if spec.kind is FieldKind.ID:
            return value if isinstance(value, UUID) else UUID(str(value))
        if spec.kind is FieldKind.BOOLEAN:
            return bool(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise InvalidEffectError(
            field_name, f"cannot read {value!r} as {spec.kind.value}"
        ) from exc
    text = value.value if isinstance(value, Enum) else str(value)
    if spec.choices is not None and text not in spec.choices:
        raise InvalidEffectError(
            field_name, f"{text!r} is not one of {', '.join(sorted(spec.choices))}"
        )
    return text


def resolve_effects(
    effects: Iterable[Effect],
    *,
    now: datetime,
    actor_id: UUID | None,
    params: Mapping[str, Any],
    local_tz: tzinfo,
    mission_id: str = "",
    action: str = "",
) -> EffectPlan:
    """
    Turn declared effects into concrete assignments.

    Raises:
        MissingTransitionParameterError: a required parameter is absent.
        InvalidEffectError: a parameter or token cannot be applied.
    """
    assignments: dict[str, Any] = {}
    increments: dict[str, int] = {}
    notes: list[str] = []
    for effect in effects:
        if isinstance(effect, AppendLog):
            notes.append(_render_note(effect.message, params))
        elif isinstance(effect, IncrementField):
            increments[effect.field] = increments.get(effect.field, 0) + effect.delta
        elif isinstance(effect, ClearField):
            assignments[effect.field] = None
        elif effect.param is not None:
            if params.get(effect.param) is None:
                if effect.optional:
                    continue
                raise MissingTransitionParameterError(mission_id, action, effect.param)
            assignments[effect.field] = coerce_value(effect.field, params[effect.param], local_tz)
        elif effect.value == NOW:
            assignments[effect.field] = now
        elif effect.value == ACTOR:
            if actor_id is None:
                raise MissingTransitionParameterError(mission_id, action, "actor_id")
            spec = _spec_for(effect.field)
            assignments[effect.field] = actor_id if spec.kind is FieldKind.ID else str(actor_id)
        else:
            assignments[effect.field] = coerce_value(effect.field, effect.value, local_tz)
    return EffectPlan(assignments=assignments, increments=increments, notes=tuple(notes))
