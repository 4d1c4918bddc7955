"""
mission_services.procedures -- typed procedure interface for clients.

Responsibility:
    One method per named operation exposed to the dispatch and mobile
    clients.  Each call runs in its own unit of work (session + commit),
    builds the kernel services through WorkflowOrchestrator, and returns
    JSON-friendly values.  Kernel errors from transition operations come
    back as structured ``{"ok": False, "error": {...}}`` results.

Architecture position:
    Services -- the outermost layer.  Clients call these methods; nothing
    in mission_kernel or mission_config imports this module.

Invariants enforced:
    - A failed transition still commits its failure log entry.
    - Any non-kernel exception rolls the unit of work back and propagates.
    - No string dispatch: every operation is an explicit method.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from mission_config import get_active_config
from mission_config.bridges import build_business_hours_policy, build_transition_table
from mission_config.schema import WorkflowConfig
from mission_kernel.db.engine import get_session_factory
from mission_kernel.domain import business_hours as hours
from mission_kernel.domain.clock import Clock, SystemClock
from mission_kernel.domain.statuses import MissionStatus, Role
from mission_kernel.exceptions import MissionNotFoundError, WorkflowKernelError
from mission_kernel.logging_config import LogContext, get_logger, new_correlation_id
from mission_kernel.services.transition_engine import mission_snapshot
from mission_kernel.utils.idempotency import derive_idempotency_key
from mission_services.orchestrator import WorkflowOrchestrator

logger = get_logger("procedures")


def _mission_uuid(mission_id: UUID | str) -> UUID:
    if isinstance(mission_id, UUID):
        return mission_id
    try:
        return UUID(str(mission_id))
    except ValueError as exc:
        raise MissionNotFoundError(str(mission_id)) from exc


def _error(exc: WorkflowKernelError) -> dict[str, Any]:
    return {"ok": False, "error": exc.to_dict()}


class WorkflowProcedures:
    """
    Explicit, typed procedure surface.

    Contract:
        Stateless between calls apart from the configuration and the
        prebuilt TransitionTable.  Safe to share across threads when the
        session factory is.

    Non-goals:
        - Does NOT authenticate; ``actor_role`` and ``actor_id`` are trusted
          inputs from the identity layer.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        config: WorkflowConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory or get_session_factory()
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        self._table = build_transition_table(self._config)
        self._business_hours = build_business_hours_policy(self._config)

    # -- unit of work ----------------------------------------------------------

    @contextmanager
    def _unit_of_work(self) -> Iterator[WorkflowOrchestrator]:
        """Session plus commit for one call; reuses an already bound correlation id."""
        correlation_id = LogContext.current().get("correlation_id") or new_correlation_id()
        with LogContext.bind(correlation_id=correlation_id):
            session = self._session_factory()
            try:
                yield WorkflowOrchestrator(
                    session, self._config, table=self._table, clock=self._clock
                )
                session.commit()
            except WorkflowKernelError:
                # Keep failure log entries written before the error surfaced
                if session.is_active:
                    session.commit()
                else:
                    session.rollback()
                raise
            except Exception:
                session.rollback()
                logger.warning("procedure_rolled_back", exc_info=True)
                raise
            finally:
                session.close()

    # -- idempotency -----------------------------------------------------------

    def generate_idempotency_key(
        self,
        mission_id: UUID | str,
        operation_name: str,
        params: Mapping[str, Any] | None = None,
    ) -> str:
        return derive_idempotency_key(mission_id, operation_name, dict(params or {}))

    def check_idempotency(
        self,
        idempotency_key: str,
        mission_id: UUID | str | None = None,
        operation_name: str | None = None,
        request_hash: str | None = None,
    ) -> dict[str, Any]:
        """``{"cached": bool, "response": dict | None}``."""
        with self._unit_of_work() as orch:
            return orch.idempotency.check(
                idempotency_key,
                mission_id=_mission_uuid(mission_id) if mission_id else None,
                operation_name=operation_name,
                request_hash=request_hash,
            ).to_dict()

    def record_idempotent_result(
        self,
        idempotency_key: str,
        mission_id: UUID | str | None,
        operation_name: str,
        request_hash: str,
        response: dict[str, Any],
    ) -> dict[str, Any]:
        with self._unit_of_work() as orch:
            record = orch.idempotency.record(
                idempotency_key,
                request_hash,
                response,
                mission_id=_mission_uuid(mission_id) if mission_id else None,
                operation_name=operation_name,
            )
            return {
                "recorded": True,
                "idempotency_key": record.key,
                "expires_at": record.expires_at.isoformat(),
            }

    def cleanup_expired_idempotency(self) -> dict[str, Any]:
        with self._unit_of_work() as orch:
            return orch.idempotency.cleanup_expired().to_dict()

    # -- time ------------------------------------------------------------------

    def is_business_hours(self, timestamp: datetime | str) -> bool:
        return hours.is_business_hours(timestamp, self._business_hours)

    def now_paris(self) -> str:
        return hours.now_paris(self._clock.now())

    def format_paris_datetime(self, timestamp: datetime | str) -> str:
        return hours.format_paris_datetime(timestamp)

    # -- workflow --------------------------------------------------------------

    def list_workflow_transitions(self) -> list[dict[str, Any]]:
        return self._table.describe()

    def create_mission(
        self,
        title: str,
        *,
        actor_role: Role | str | None = None,
        actor_id: UUID | None = None,
        client_name: str | None = None,
        address: str | None = None,
        description: str | None = None,
        via: str = "MANUAL",
    ) -> dict[str, Any]:
        try:
            with self._unit_of_work() as orch:
                mission = orch.engine.create_mission(
                    title,
                    actor_id=actor_id,
                    actor_role=actor_role,
                    client_name=client_name,
                    address=address,
                    description=description,
                    via=via,
                )
                return {"ok": True, "mission": mission_snapshot(mission).to_dict()}
        except WorkflowKernelError as exc:
            return _error(exc)

    def apply_transition(
        self,
        mission_id: UUID | str,
        target_status: MissionStatus | str,
        actor_role: Role | str,
        *,
        actor_id: UUID | None = None,
        params: Mapping[str, Any] | None = None,
        reason: str | None = None,
        via: str = "MANUAL",
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """
        Move a mission to ``target_status``.

        Returns:
            ``{"ok": True, "mission": {...}, "cached": bool, ...}`` or
            ``{"ok": False, "error": {"code": ..., "message": ..., ...}}``.
        """
        try:
            with self._unit_of_work() as orch:
                result = orch.engine.apply_transition(
                    _mission_uuid(mission_id),
                    target_status,
                    actor_role,
                    actor_id=actor_id,
                    params=params,
                    reason=reason,
                    via=via,
                    idempotency_key=idempotency_key,
                )
                return result.to_dict()
        except WorkflowKernelError as exc:
            return _error(exc)

    def perform_action(
        self,
        mission_id: UUID | str,
        action: str,
        actor_role: Role | str,
        *,
        actor_id: UUID | None = None,
        params: Mapping[str, Any] | None = None,
        reason: str | None = None,
        via: str = "MANUAL",
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """Same as ``apply_transition`` but addressed by action name."""
        try:
            with self._unit_of_work() as orch:
                result = orch.engine.perform(
                    _mission_uuid(mission_id),
                    action,
                    actor_role,
                    actor_id=actor_id,
                    params=params,
                    reason=reason,
                    via=via,
                    idempotency_key=idempotency_key,
                )
                return result.to_dict()
        except WorkflowKernelError as exc:
            return _error(exc)

    def apply_transition_effects(
        self,
        mission_id: UUID | str,
        effects: Any,
        actor_role: Role | str,
        *,
        actor_id: UUID | None = None,
        params: Mapping[str, Any] | None = None,
        reason: str | None = None,
        via: str = "MANUAL",
    ) -> dict[str, Any]:
        """Apply ad-hoc effects; ``{"ok": True, "mission": {...}}`` or a structured error."""
        try:
            with self._unit_of_work() as orch:
                snapshot = orch.engine.apply_effects(
                    _mission_uuid(mission_id),
                    effects,
                    actor_role,
                    actor_id=actor_id,
                    params=params,
                    reason=reason,
                    via=via,
                )
                return {"ok": True, "mission": snapshot.to_dict()}
        except WorkflowKernelError as exc:
            return _error(exc)

    def available_transitions(
        self, mission_id: UUID | str, actor_role: Role | str
    ) -> list[dict[str, Any]]:
        with self._unit_of_work() as orch:
            rules = orch.engine.available_transitions(_mission_uuid(mission_id), actor_role)
            return [rule.to_dict() for rule in rules]

    def mission_timeline(
        self, mission_id: UUID | str, include_failures: bool = False
    ) -> list[dict[str, Any]]:
        """Status history, newest first."""
        with self._unit_of_work() as orch:
            entries = orch.workflow_log.timeline(
                _mission_uuid(mission_id), include_failures=include_failures
            )
            return [entry.to_dict() for entry in entries]

    # -- monitoring ------------------------------------------------------------

    def calculate_mission_risk_score(self, mission_id: UUID | str) -> int:
        with self._unit_of_work() as orch:
            return orch.monitoring.calculate_risk_score(_mission_uuid(mission_id))

    def detect_workflow_anomalies(self) -> list[dict[str, Any]]:
        with self._unit_of_work() as orch:
            return [anomaly.to_dict() for anomaly in orch.monitoring.detect_anomalies()]

    def generate_daily_stats(self, day: date | str) -> dict[str, Any]:
        if isinstance(day, str):
            day = date.fromisoformat(day)
        with self._unit_of_work() as orch:
            return orch.monitoring.daily_stats(day).to_dict()

    def monitoring_dashboard(self) -> dict[str, Any]:
        with self._unit_of_work() as orch:
            return orch.monitoring.monitoring_snapshot().to_dict()

    # -- notifications ---------------------------------------------------------

    def cleanup_expired_notifications(self) -> dict[str, Any]:
        with self._unit_of_work() as orch:
            return orch.notifications.cleanup_expired().to_dict()
