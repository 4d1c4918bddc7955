"""
TransitionEngine -- the only writer of Mission.status.

Responsibility:
    Validates and applies mission status transitions against the
    TransitionTable: role check, business-hours gate, declared effects,
    optimistic version check, workflow log entry, notification and
    idempotent response caching, all inside the caller's transaction.

Architecture position:
    Kernel > Services -- imperative shell.  Receives its TransitionTable
    and BusinessHoursPolicy by injection (built by mission_config.bridges);
    never reads configuration itself.

Invariants enforced:
    - Status writes happen only inside ``status_write_scope()``; any other
      flush of a status change is rejected by the ORM listener.
    - Per-mission linearization: the mission row is locked
      (``SELECT ... FOR UPDATE``) and every UPDATE compares ``version``.
    - All-or-nothing: effects, status and success log entry are written in
      one savepoint.  On failure the savepoint is rolled back and only the
      failure log entry is written.
    - Exactly one workflow log entry per attempt on an existing mission.
    - Only successful transitions are cached for idempotent replay.

Failure modes:
    - MissionNotFoundError: unknown or soft-deleted mission.
    - InvalidTransitionError: no rule for (current status, target).
    - ForbiddenTransitionError: actor role not allowed by the rule.
    - OutsideBusinessHoursError: gated rule outside the window.
    - MissingTransitionParameterError / InvalidEffectError: effect
      resolution failed.
    - ConcurrencyConflictError: the row moved underneath the caller.
    - IdempotencyKeyCollisionError: key reused for another request.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from mission_kernel.db.immutability import status_write_scope
from mission_kernel.domain.business_hours import (
    DEFAULT_POLICY,
    BusinessHoursPolicy,
    is_business_hours,
    parse_timestamp,
)
from mission_kernel.domain.clock import Clock, SystemClock
from mission_kernel.domain.dtos import MissionSnapshot, TransitionResult, to_jsonable
from mission_kernel.domain.effects import (
    MISSION_WRITABLE_FIELDS,
    EffectPlan,
    parse_effects,
    resolve_effects,
    validate_effects,
)
from mission_kernel.domain.statuses import MissionStatus, Role
from mission_kernel.domain.workflow import TransitionRule, TransitionTable
from mission_kernel.exceptions import (
    ConcurrencyConflictError,
    ForbiddenTransitionError,
    InvalidEffectError,
    InvalidTransitionError,
    MissingTransitionParameterError,
    MissionNotFoundError,
    OutsideBusinessHoursError,
    WorkflowKernelError,
)
from mission_kernel.logging_config import LogContext, get_logger
from mission_kernel.models.mission import Mission
from mission_kernel.services.idempotency_service import IdempotencyService
from mission_kernel.services.notification_service import NotificationQueue
from mission_kernel.services.workflow_log_service import WorkflowLogService
from mission_kernel.utils.idempotency import request_hash

logger = get_logger("services.transition_engine")

APPLY_TRANSITION = "apply_transition"
APPLY_EFFECTS = "apply_effects"
CREATE = "create"

# Roles allowed to apply effects outside of a declared transition
EFFECT_ROLES: frozenset[Role] = frozenset({Role.ADMIN, Role.DISPATCH})

_SNAPSHOT_FIELDS = ("client_name", "address", "description", *MISSION_WRITABLE_FIELDS)


def mission_snapshot(mission: Mission) -> MissionSnapshot:
    """Detached, JSON-friendly view of a mission row."""
    return MissionSnapshot(
        id=mission.id,
        status=mission.status,
        version=mission.version,
        title=mission.title,
        status_changed_at=mission.status_changed_at,
        fields={name: getattr(mission, name) for name in _SNAPSHOT_FIELDS},
    )


class TransitionEngine:
    """
    Applies transitions to missions.

    Contract:
        One engine per session.  Every public method flushes but never
        commits; the caller commits (including after a failure, so the
        failure log entry persists).

    Guarantees:
        - A returned TransitionResult describes a flushed, consistent state.
        - A raised WorkflowKernelError leaves the mission exactly as it was.

    Non-goals:
        - Does NOT manage transaction boundaries (caller's responsibility).
    """

    def __init__(
        self,
        session: Session,
        table: TransitionTable,
        clock: Clock | None = None,
        business_hours: BusinessHoursPolicy = DEFAULT_POLICY,
        idempotency: IdempotencyService | None = None,
        notifications: NotificationQueue | None = None,
        workflow_log: WorkflowLogService | None = None,
    ):
        self._session = session
        self._table = table
        self._clock = clock or SystemClock()
        self._business_hours = business_hours
        self._idempotency = idempotency or IdempotencyService(session, self._clock)
        self._notifications = notifications
        self._log = workflow_log or WorkflowLogService(session, self._clock)

    @property
    def table(self) -> TransitionTable:
        return self._table

    # -- loading -------------------------------------------------------------

    def _load_mission(self, mission_id: UUID) -> Mission:
        """Lock and load a live mission."""
        mission = self._session.execute(
            select(Mission)
            .where(Mission.id == mission_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if mission is None or mission.is_deleted:
            logger.warning("mission_not_found", extra={"mission_id": str(mission_id)})
            raise MissionNotFoundError(str(mission_id))
        return mission

    def get_mission(self, mission_id: UUID) -> Mission:
        """Load a live mission without locking."""
        mission = self._session.get(Mission, mission_id)
        if mission is None or mission.is_deleted:
            raise MissionNotFoundError(str(mission_id))
        return mission

    # -- creation ------------------------------------------------------------

    def create_mission(
        self,
        title: str,
        *,
        actor_id: UUID | None = None,
        actor_role: Role | str | None = None,
        client_name: str | None = None,
        address: str | None = None,
        description: str | None = None,
        via: str = "MANUAL",
    ) -> Mission:
        """
        Insert a mission in the table's initial status and log its creation.

        Postconditions:
            - ``status == table.initial_status`` and ``version == 1``.
            - One successful ``create`` workflow log entry exists.

        Raises:
            ForbiddenTransitionError: ``actor_role`` is not a known role.
        """
        now = self._clock.now()
        initial = self._table.initial_status.value
        role_value: str | None = None
        if actor_role is not None:
            try:
                role_value = Role.parse(actor_role).value
            except ValueError as exc:
                raise ForbiddenTransitionError(
                    "<new>", "<none>", initial, str(actor_role),
                    frozenset(r.value for r in Role),
                ) from exc
        mission = Mission(
            title=title,
            client_name=client_name,
            address=address,
            description=description,
            created_by_id=actor_id,
            status=initial,
            status_changed_at=now,
            pause_count=0,
            reschedule_count=0,
            is_deleted=False,
        )
        self._session.add(mission)
        with status_write_scope():
            self._session.flush()

        self._log.append(
            mission_id=mission.id,
            operation=CREATE,
            from_status=None,
            to_status=initial,
            success=True,
            actor_id=actor_id,
            actor_role=role_value,
            via=via,
            payload={"title": title},
        )
        logger.info(
            "mission_created",
            extra={"mission_id": str(mission.id), "status": initial},
        )
        return mission

    # -- queries -------------------------------------------------------------

    def available_transitions(self, mission_id: UUID, role: Role | str) -> list[TransitionRule]:
        """Rules ``role`` may fire from the mission's current status."""
        mission = self.get_mission(mission_id)
        return self._table.available_transitions(mission.status, role)

    # -- transitions ---------------------------------------------------------

    def apply_transition(
        self,
        mission_id: UUID,
        target_status: MissionStatus | str,
        actor_role: Role | str,
        *,
        actor_id: UUID | None = None,
        params: Mapping[str, Any] | None = None,
        reason: str | None = None,
        via: str = "MANUAL",
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        """
        Move a mission to ``target_status``.

        Preconditions:
            - ``mission_id`` refers to a live mission.

        Postconditions:
            - On success: status, effects and one success log entry are
              flushed; a notification is enqueued when the rule declares
              one; the response is cached under ``idempotency_key``.
            - On failure: the mission is unchanged and one failure log
              entry is flushed.

        Args:
            mission_id: Mission to move.
            target_status: Requested status.
            actor_role: Caller's role tag (case-insensitive).
            actor_id: Caller's user id, used by ``$actor`` effects.
            params: Values for ``$param:`` effects and the business-hours
                parameter.
            reason: Free-text note stored on the log entry.
            via: Channel (MANUAL, MOBILE, API, SYSTEM).
            idempotency_key: When given, a retry with the same key and the
                same request returns the cached result.

        Returns:
            TransitionResult (``cached=True`` on an idempotent replay).

        Raises:
            WorkflowKernelError subclasses listed in the module docstring.
        """
        target = target_status.value if isinstance(target_status, MissionStatus) else str(target_status)
        params = dict(params or {})
        role_text = actor_role.value if isinstance(actor_role, Role) else str(actor_role)

        with LogContext.bind(
            mission_id=str(mission_id),
            actor_id=str(actor_id) if actor_id else None,
            actor_role=role_text,
            operation=APPLY_TRANSITION,
            idempotency_key=idempotency_key,
        ):
            req_hash = request_hash({"target_status": target, "params": to_jsonable(params)})
            if idempotency_key:
                hit = self._idempotency.check(
                    idempotency_key,
                    mission_id=mission_id,
                    operation_name=APPLY_TRANSITION,
                    request_hash=req_hash,
                )
                if hit.cached and hit.response is not None:
                    logger.info(
                        "transition_replayed",
                        extra={"mission_id": str(mission_id), "to_status": target},
                    )
                    return TransitionResult.from_cached(hit.response, idempotency_key)

            mission = self._load_mission(mission_id)
            from_status = mission.status

            rule: TransitionRule | None = None
            try:
                rule = self._resolve_rule(mission, target)
                self._authorize(mission, rule, role_text)
                self._check_business_hours(mission, rule, params)
            except WorkflowKernelError as exc:
                operation = rule.action if rule is not None else rule_action(target)
                self._record_failure(
                    mission, operation, from_status, target, exc,
                    actor_id=actor_id, actor_role=role_text, via=via, reason=reason,
                    idempotency_key=idempotency_key, params=params,
                )
                raise

            result = self._execute(
                mission, rule,
                actor_id=actor_id, actor_role=role_text, params=params,
                reason=reason, via=via, idempotency_key=idempotency_key,
            )

            if idempotency_key:
                self._idempotency.record(
                    idempotency_key,
                    req_hash,
                    result.to_dict(),
                    mission_id=mission.id,
                    operation_name=APPLY_TRANSITION,
                )
            return result

    def perform(
        self,
        mission_id: UUID,
        action: str,
        actor_role: Role | str,
        **kwargs: Any,
    ) -> TransitionResult:
        """Fire the rule named ``action`` from the mission's current status."""
        mission = self.get_mission(mission_id)
        rule = self._table.find_by_action(mission.status, action)
        if rule is None:
            exc = InvalidTransitionError(str(mission_id), mission.status, action)
            self._record_failure(
                mission, action, mission.status, None, exc,
                actor_id=kwargs.get("actor_id"),
                actor_role=actor_role.value if isinstance(actor_role, Role) else str(actor_role),
                via=kwargs.get("via", "MANUAL"),
                reason=kwargs.get("reason"),
                idempotency_key=kwargs.get("idempotency_key"),
                params=kwargs.get("params") or {},
            )
            raise exc
        return self.apply_transition(mission_id, rule.to_status, actor_role, **kwargs)

    def apply_effects(
        self,
        mission_id: UUID,
        effects: Any,
        actor_role: Role | str,
        *,
        actor_id: UUID | None = None,
        params: Mapping[str, Any] | None = None,
        reason: str | None = None,
        via: str = "MANUAL",
    ) -> MissionSnapshot:
        """
        Apply effects given at call time, without a status change.

        Effects use the same declarative form as rule effects and are
        validated against the mission's writable fields before anything is
        written.

        Raises:
            InvalidEffectError: unknown field or type mismatch.
            ForbiddenTransitionError: role outside EFFECT_ROLES.
        """
        params = dict(params or {})
        role_text = actor_role.value if isinstance(actor_role, Role) else str(actor_role)
        mission = self._load_mission(mission_id)
        status = mission.status

        with LogContext.bind(
            mission_id=str(mission_id),
            actor_id=actor_id,
            actor_role=role_text,
            operation=APPLY_EFFECTS,
        ):
            try:
                try:
                    role = Role.parse(role_text)
                except ValueError:
                    role = None
                if role not in EFFECT_ROLES:
                    raise ForbiddenTransitionError(
                        str(mission_id), status, status, role_text,
                        frozenset(r.value for r in EFFECT_ROLES),
                    )
                parsed = parse_effects(effects)
                validate_effects(parsed)
            except WorkflowKernelError as exc:
                self._record_failure(
                    mission, APPLY_EFFECTS, status, status, exc,
                    actor_id=actor_id, actor_role=role_text, via=via, reason=reason,
                    idempotency_key=None, params=params,
                )
                raise

            savepoint = self._session.begin_nested()
            try:
                plan = resolve_effects(
                    parsed,
                    now=self._clock.now(),
                    actor_id=actor_id,
                    params=params,
                    local_tz=self._business_hours.tz,
                    mission_id=str(mission_id),
                    action=APPLY_EFFECTS,
                )
                self._apply_plan(mission, plan)
                self._session.flush()
                self._log.append(
                    mission_id=mission.id,
                    operation=APPLY_EFFECTS,
                    from_status=status,
                    to_status=status,
                    success=True,
                    actor_id=actor_id,
                    actor_role=role_text,
                    via=via,
                    note=_note(reason, plan),
                    payload={
                        "params": to_jsonable(params),
                        "changes": _changes(mission, plan),
                    },
                )
                savepoint.commit()
            except StaleDataError as exc:
                savepoint.rollback()
                conflict = ConcurrencyConflictError(str(mission_id))
                self._record_failure(
                    mission, APPLY_EFFECTS, status, status, conflict,
                    actor_id=actor_id, actor_role=role_text, via=via, reason=reason,
                    idempotency_key=None, params=params,
                )
                raise conflict from exc
            except WorkflowKernelError as exc:
                savepoint.rollback()
                self._record_failure(
                    mission, APPLY_EFFECTS, status, status, exc,
                    actor_id=actor_id, actor_role=role_text, via=via, reason=reason,
                    idempotency_key=None, params=params,
                )
                raise
            except Exception:
                savepoint.rollback()
                raise

            logger.info(
                "effects_applied",
                extra={"mission_id": str(mission_id), "fields": list(plan.touched_fields)},
            )
            return mission_snapshot(mission)

    # -- internals -----------------------------------------------------------

    def _resolve_rule(self, mission: Mission, target: str) -> TransitionRule:
        try:
            rule = self._table.find_rule(mission.status, target)
        except ValueError:
            rule = None
        if rule is None:
            raise InvalidTransitionError(str(mission.id), mission.status, target)
        return rule

    def _authorize(self, mission: Mission, rule: TransitionRule, role: str) -> None:
        if not rule.allows(role):
            raise ForbiddenTransitionError(
                str(mission.id),
                rule.from_status.value,
                rule.to_status.value,
                role,
                frozenset(r.value for r in rule.allowed_roles),
            )

    def _check_business_hours(
        self, mission: Mission, rule: TransitionRule, params: Mapping[str, Any]
    ) -> None:
        if not rule.requires_business_hours:
            return
        policy = self._business_hours
        if rule.business_hours_param:
            raw = params.get(rule.business_hours_param)
            if raw is None:
                raise MissingTransitionParameterError(
                    str(mission.id), rule.action, rule.business_hours_param
                )
            try:
                evaluated = parse_timestamp(raw, policy.timezone)
            except (TypeError, ValueError) as exc:
                raise InvalidEffectError(
                    rule.business_hours_param, f"cannot read {raw!r} as a timestamp"
                ) from exc
        else:
            evaluated = self._clock.now()
        if not is_business_hours(evaluated, policy):
            raise OutsideBusinessHoursError(
                str(mission.id),
                parse_timestamp(evaluated, policy.timezone).isoformat(timespec="minutes"),
                policy.describe_window(),
                policy.timezone,
            )

    @staticmethod
    def _apply_plan(mission: Mission, plan: EffectPlan) -> None:
        for name, value in plan.assignments.items():
            setattr(mission, name, value)
        for name, delta in plan.increments.items():
            setattr(mission, name, (getattr(mission, name) or 0) + delta)

    def _execute(
        self,
        mission: Mission,
        rule: TransitionRule,
        *,
        actor_id: UUID | None,
        actor_role: str,
        params: dict[str, Any],
        reason: str | None,
        via: str,
        idempotency_key: str | None,
    ) -> TransitionResult:
        from_status = mission.status
        expected_version = mission.version
        now = self._clock.now()

        savepoint = self._session.begin_nested()
        try:
            plan = resolve_effects(
                rule.effects,
                now=now,
                actor_id=actor_id,
                params=params,
                local_tz=self._business_hours.tz,
                mission_id=str(mission.id),
                action=rule.action,
            )
            self._apply_plan(mission, plan)
            mission.status = rule.to_status.value
            if not rule.is_self_transition:
                mission.status_changed_at = now
            with status_write_scope():
                self._session.flush()

            entry = self._log.append(
                mission_id=mission.id,
                operation=rule.action,
                from_status=from_status,
                to_status=rule.to_status.value,
                success=True,
                actor_id=actor_id,
                actor_role=actor_role,
                via=via,
                note=_note(reason, plan),
                idempotency_key=idempotency_key,
                payload={
                    "params": to_jsonable(params),
                    "changes": _changes(mission, plan),
                },
            )
            if rule.notify and self._notifications is not None:
                self._notifications.enqueue(
                    event_type=rule.notify,
                    mission_id=mission.id,
                    recipient_id=mission.assigned_user_id,
                    body=f"{mission.title}: {from_status} -> {rule.to_status.value}",
                    payload={
                        "mission_id": str(mission.id),
                        "from_status": from_status,
                        "to_status": rule.to_status.value,
                    },
                    dedupe_key=f"{mission.id}:{rule.notify}:{entry.seq}",
                )
            savepoint.commit()
        except StaleDataError as exc:
            savepoint.rollback()
            conflict = ConcurrencyConflictError(str(mission.id), expected_version)
            self._record_failure(
                mission, rule.action, from_status, rule.to_status.value, conflict,
                actor_id=actor_id, actor_role=actor_role, via=via, reason=reason,
                idempotency_key=idempotency_key, params=params,
            )
            raise conflict from exc
        except WorkflowKernelError as exc:
            savepoint.rollback()
            self._record_failure(
                mission, rule.action, from_status, rule.to_status.value, exc,
                actor_id=actor_id, actor_role=actor_role, via=via, reason=reason,
                idempotency_key=idempotency_key, params=params,
            )
            raise
        except Exception:
            savepoint.rollback()
            raise

        logger.info(
            "transition_applied",
            extra={
                "mission_id": str(mission.id),
                "action": rule.action,
                "from_status": from_status,
                "to_status": rule.to_status.value,
                "version": mission.version,
                "log_seq": entry.seq,
            },
        )
        return TransitionResult(
            mission=mission_snapshot(mission).to_dict(),
            from_status=from_status,
            to_status=rule.to_status.value,
            action=rule.action,
            log_seq=entry.seq,
            cached=False,
            idempotency_key=idempotency_key,
        )

    def _record_failure(
        self,
        mission: Mission,
        operation: str,
        from_status: str,
        to_status: str | None,
        exc: WorkflowKernelError,
        *,
        actor_id: UUID | None,
        actor_role: str | None,
        via: str,
        reason: str | None,
        idempotency_key: str | None,
        params: Mapping[str, Any],
    ) -> None:
        self._log.append(
            mission_id=mission.id,
            operation=operation,
            from_status=from_status,
            to_status=to_status,
            success=False,
            actor_id=actor_id,
            actor_role=actor_role,
            via=via,
            note=reason,
            error_code=exc.code,
            idempotency_key=idempotency_key,
            payload={"params": to_jsonable(dict(params)), "error": str(exc)},
        )
        logger.warning(
            "transition_rejected",
            extra={
                "mission_id": str(mission.id),
                "operation": operation,
                "from_status": from_status,
                "to_status": to_status,
                "error_code": exc.code,
            },
        )


def rule_action(target: str) -> str:
    """Operation name logged for an attempt that matched no rule."""
    return f"to_{target.lower()}"


def _note(reason: str | None, plan: EffectPlan) -> str | None:
    parts = [p for p in (reason, *plan.notes) if p]
    return "; ".join(parts) or None


def _changes(mission: Mission, plan: EffectPlan) -> dict[str, Any]:
    """New values of the fields an effect plan touched."""
    return {name: to_jsonable(getattr(mission, name)) for name in plan.touched_fields}
