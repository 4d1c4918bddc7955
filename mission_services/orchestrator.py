"""
mission_services.orchestrator -- DI container for kernel services.

Responsibility:
    Creates every kernel service exactly once per session and wires them
    together from the active configuration.  No kernel service constructs
    another with configuration of its own; the orchestrator is the single
    point where configuration meets the kernel.

Architecture position:
    Services -- orchestration over mission_kernel, fed by mission_config
    bridges.

Invariants enforced:
    - Single-instance lifecycle: one IdempotencyService, NotificationQueue,
      WorkflowLogService per session, shared by the engine and monitoring.
    - All services share the same Session and Clock.

Usage:
    orchestrator = WorkflowOrchestrator(session, config, clock=clock)
    orchestrator.engine.apply_transition(...)
    orchestrator.monitoring.detect_anomalies()
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from mission_config.bridges import (
    build_business_hours_policy,
    build_monitoring_policy,
    build_transition_table,
    idempotency_ttl,
    notification_settings,
)
from mission_config.schema import WorkflowConfig
from mission_kernel.domain.clock import Clock, SystemClock
from mission_kernel.domain.workflow import TransitionTable
from mission_kernel.services.idempotency_service import IdempotencyService
from mission_kernel.services.monitoring_service import MonitoringService
from mission_kernel.services.notification_service import NotificationQueue
from mission_kernel.services.transition_engine import TransitionEngine
from mission_kernel.services.workflow_log_service import WorkflowLogService


class WorkflowOrchestrator:
    """Central factory for kernel services.

    Contract:
        Receives a Session and a WorkflowConfig (and optionally a prebuilt
        TransitionTable and a Clock).  Constructs every kernel service once,
        in dependency order, and exposes them as public attributes.

    Non-goals:
        - Does NOT manage transaction boundaries (caller's responsibility).
        - Does NOT own the Session lifecycle (no commit/rollback).
    """

    def __init__(
        self,
        session: Session,
        config: WorkflowConfig,
        *,
        table: TransitionTable | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self.config = config
        self.table = table or build_transition_table(config)
        self.business_hours = build_business_hours_policy(config)

        self.workflow_log = WorkflowLogService(session, self._clock)
        self.idempotency = IdempotencyService(
            session, self._clock, ttl=idempotency_ttl(config)
        )
        self.notifications = NotificationQueue(
            session, self._clock, **notification_settings(config)
        )
        self.engine = TransitionEngine(
            session,
            self.table,
            clock=self._clock,
            business_hours=self.business_hours,
            idempotency=self.idempotency,
            notifications=self.notifications,
            workflow_log=self.workflow_log,
        )
        self.monitoring = MonitoringService(
            session,
            self._clock,
            policy=build_monitoring_policy(config),
            timezone=self.business_hours.timezone,
            workflow_log=self.workflow_log,
            idempotency=self.idempotency,
        )

    @property
    def session(self) -> Session:
        return self._session

    @property
    def clock(self) -> Clock:
        return self._clock
