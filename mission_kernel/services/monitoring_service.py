"""
MonitoringService -- risk scoring, anomaly detection and operational stats.

Responsibility:
    Read-only queries over missions, the workflow log, the notification
    queue and the idempotency cache: per-mission risk score, anomaly list,
    daily statistics for one Paris calendar day, and the dashboard snapshot.

Architecture position:
    Kernel > Services -- imperative shell around the pure scoring functions
    in ``mission_kernel.domain.risk``.

Invariants enforced:
    - Risk score is an integer in [0, 100].
    - Never writes; safe to call from any transaction.
"""

from __future__ import annotations

from collections import Counter
from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from mission_kernel.domain.business_hours import PARIS_TZ_NAME, local_day_bounds
from mission_kernel.domain.clock import Clock, SystemClock
from mission_kernel.domain.dtos import (
    Anomaly,
    AnomalyType,
    DailyStats,
    MonitoringSnapshot,
    Severity,
)
from mission_kernel.domain.risk import (
    MonitoringPolicy,
    RiskAssessment,
    RiskInputs,
    compute_risk_score,
    hours_in_status,
    is_overdue,
)
from mission_kernel.domain.statuses import (
    ACTIVE_STATUSES,
    BillingStatus,
    MissionStatus,
    ReportStatus,
)
from mission_kernel.exceptions import ForbiddenTransitionError, MissionNotFoundError
from mission_kernel.logging_config import get_logger
from mission_kernel.models.mission import Mission
from mission_kernel.models.notification import NotificationQueueItem, NotificationStatus
from mission_kernel.services.idempotency_service import IdempotencyService
from mission_kernel.services.workflow_log_service import WorkflowLogService

logger = get_logger("services.monitoring")


class MonitoringService:
    """
    Monitoring queries.

    Non-goals:
        - Does NOT alert; callers decide what to do with anomalies.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: MonitoringPolicy | None = None,
        timezone: str = PARIS_TZ_NAME,
        workflow_log: WorkflowLogService | None = None,
        idempotency: IdempotencyService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or MonitoringPolicy()
        self._timezone = timezone
        self._log = workflow_log or WorkflowLogService(session, self._clock)
        self._idempotency = idempotency or IdempotencyService(session, self._clock)

    @property
    def policy(self) -> MonitoringPolicy:
        return self._policy

    # -- risk ----------------------------------------------------------------

    def _risk_inputs(self, mission: Mission, failed_attempts: int) -> RiskInputs:
        required = {
            name
            for names in self._policy.required_fields.values()
            for name in names
        }
        return RiskInputs(
            status=MissionStatus(mission.status),
            status_changed_at=mission.status_changed_at,
            now=self._clock.now(),
            failed_attempts=failed_attempts,
            scheduled_start=mission.scheduled_start,
            fields={name: getattr(mission, name, None) for name in required},
        )

    def _window_start(self):
        return self._clock.now() - timedelta(hours=self._policy.forbidden_attempts_window_hours)

    def assess_mission(self, mission_id: UUID) -> RiskAssessment:
        """Risk score with its components."""
        mission = self._session.get(Mission, mission_id)
        if mission is None or mission.is_deleted:
            raise MissionNotFoundError(str(mission_id))
        failed = self._log.failed_attempts(mission.id, since=self._window_start())
        return compute_risk_score(self._risk_inputs(mission, failed), self._policy)

    def calculate_risk_score(self, mission_id: UUID) -> int:
        """Risk score in [0, 100] for one mission."""
        assessment = self.assess_mission(mission_id)
        logger.debug(
            "risk_score_calculated",
            extra={"mission_id": str(mission_id), **assessment.to_dict()},
        )
        return assessment.score

    # -- anomalies -----------------------------------------------------------

    def _open_missions(self) -> list[Mission]:
        terminal = sorted(s.value for s in self._policy.terminal_statuses)
        return list(
            self._session.execute(
                select(Mission).where(
                    Mission.is_deleted.is_(False),
                    Mission.status.not_in(terminal),
                )
            ).scalars()
        )

    def detect_anomalies(self) -> list[Anomaly]:
        """
        Scan open missions for workflow anomalies.

        Detects, per mission:
            - STUCK_IN_STATUS: time in status beyond the status threshold.
            - OVERDUE_SCHEDULE: scheduled start passed, not yet on the way.
            - REPEATED_FORBIDDEN_ATTEMPTS: forbidden attempts within the
              window at or above the configured threshold.
            - HIGH_RISK: risk score at or above the configured threshold.
        """
        now = self._clock.now()
        policy = self._policy
        window = timedelta(hours=policy.forbidden_attempts_window_hours)
        forbidden = self._log.failed_attempts_by_mission(ForbiddenTransitionError.code, window)
        failures = self._log.failed_attempts_by_mission(None, window)

        anomalies: list[Anomaly] = []
        for mission in self._open_missions():
            inputs = self._risk_inputs(mission, failures.get(mission.id, 0))
            threshold = policy.threshold_hours(inputs.status)
            hours = hours_in_status(inputs)

            if threshold > 0 and hours > threshold:
                anomalies.append(
                    Anomaly(
                        anomaly_type=AnomalyType.STUCK_IN_STATUS,
                        severity=Severity.HIGH if hours > 2 * threshold else Severity.MEDIUM,
                        mission_id=mission.id,
                        description=(
                            f"Mission in {mission.status} for {hours:.1f}h "
                            f"(threshold {threshold:g}h)"
                        ),
                        action_required="Contact the assignee and move the mission forward",
                        detected_at=now,
                    )
                )

            if is_overdue(inputs):
                anomalies.append(
                    Anomaly(
                        anomaly_type=AnomalyType.OVERDUE_SCHEDULE,
                        severity=Severity.HIGH,
                        mission_id=mission.id,
                        description=(
                            f"Scheduled start {mission.scheduled_start.isoformat()} has passed "
                            f"and the mission is still {mission.status}"
                        ),
                        action_required="Reschedule the intervention or dispatch the technician",
                        detected_at=now,
                    )
                )

            score = compute_risk_score(inputs, policy).score
            if score >= policy.high_risk_threshold:
                anomalies.append(
                    Anomaly(
                        anomaly_type=AnomalyType.HIGH_RISK,
                        severity=Severity.CRITICAL if score >= 90 else Severity.HIGH,
                        mission_id=mission.id,
                        description=f"Risk score {score}",
                        action_required="Review the mission with dispatch",
                        detected_at=now,
                    )
                )

        for mission_id, count in sorted(forbidden.items(), key=lambda item: str(item[0])):
            if count < policy.forbidden_attempts_threshold:
                continue
            anomalies.append(
                Anomaly(
                    anomaly_type=AnomalyType.REPEATED_FORBIDDEN_ATTEMPTS,
                    severity=(
                        Severity.CRITICAL
                        if count >= 2 * policy.forbidden_attempts_threshold
                        else Severity.HIGH
                    ),
                    mission_id=mission_id,
                    description=(
                        f"{count} forbidden transition attempts in the last "
                        f"{policy.forbidden_attempts_window_hours:g}h"
                    ),
                    action_required="Check the roles of the users acting on this mission",
                    detected_at=now,
                )
            )

        logger.info(
            "anomaly_scan_completed",
            extra={
                "anomaly_count": len(anomalies),
                "by_type": dict(Counter(a.anomaly_type.value for a in anomalies)),
            },
        )
        return anomalies

    find_anomalies = detect_anomalies

    # -- statistics ----------------------------------------------------------

    def daily_stats(self, day: date) -> DailyStats:
        """
        Activity for one calendar day in the configured timezone.

        Counts come from the workflow log (transitions and the field values
        they wrote) and from the notification queue timestamps.
        """
        start, end = local_day_bounds(day, self._timezone)

        missions: Counter[str] = Counter(
            created=0, published=0, accepted=0, scheduled=0, completed=0,
            cancelled=0, closed=0, transitions=0, failed_transitions=0,
        )
        reports: Counter[str] = Counter(submitted=0, validated=0, rejected=0)
        billing: Counter[str] = Counter(billable=0, invoiced=0, paid=0)

        status_counters = {
            MissionStatus.PUBLIEE.value: "published",
            MissionStatus.ACCEPTEE.value: "accepted",
            MissionStatus.PLANIFIEE.value: "scheduled",
            MissionStatus.TERMINEE.value: "completed",
            MissionStatus.ANNULEE.value: "cancelled",
            MissionStatus.CLOTUREE.value: "closed",
        }
        report_counters = {
            ReportStatus.A_VALIDER.value: "submitted",
            ReportStatus.VALIDE.value: "validated",
            ReportStatus.REJETE.value: "rejected",
        }
        billing_counters = {
            BillingStatus.FACTURABLE.value: "billable",
            BillingStatus.FACTUREE.value: "invoiced",
            BillingStatus.PAYEE.value: "paid",
        }

        for entry in self._log.entries_between(start, end):
            if not entry.success:
                missions["failed_transitions"] += 1
                continue
            if entry.operation == "create":
                missions["created"] += 1
                continue
            missions["transitions"] += 1
            if entry.to_status != entry.from_status and entry.to_status in status_counters:
                missions[status_counters[entry.to_status]] += 1
            changes = (entry.payload or {}).get("changes") or {}
            if changes.get("report_status") in report_counters:
                reports[report_counters[changes["report_status"]]] += 1
            if changes.get("billing_status") in billing_counters:
                billing[billing_counters[changes["billing_status"]]] += 1

        notifications = self._notification_day_counts(start, end)

        stats = DailyStats(
            day=day,
            missions=dict(missions),
            reports=dict(reports),
            billing=dict(billing),
            notifications=notifications,
        )
        logger.info("daily_stats_generated", extra={"day": day.isoformat()})
        return stats

    def _notification_day_counts(self, start, end) -> dict[str, int]:
        def count(*criteria) -> int:
            return int(
                self._session.execute(
                    select(func.count(NotificationQueueItem.id)).where(*criteria)
                ).scalar_one()
            )

        return {
            "created": count(
                NotificationQueueItem.created_at >= start,
                NotificationQueueItem.created_at < end,
            ),
            "sent": count(
                NotificationQueueItem.sent_at >= start,
                NotificationQueueItem.sent_at < end,
            ),
            "failed": count(
                NotificationQueueItem.status == NotificationStatus.FAILED.value,
                NotificationQueueItem.created_at >= start,
                NotificationQueueItem.created_at < end,
            ),
        }

    # -- dashboard -----------------------------------------------------------

    def missions_by_status(self) -> dict[str, int]:
        rows = self._session.execute(
            select(Mission.status, func.count(Mission.id))
            .where(Mission.is_deleted.is_(False))
            .group_by(Mission.status)
        ).all()
        counts = {status.value: 0 for status in MissionStatus}
        counts.update({status: int(n) for status, n in rows})
        return counts

    def monitoring_snapshot(self) -> MonitoringSnapshot:
        """Current operational counters for the dashboard."""
        now = self._clock.now()
        by_status = self.missions_by_status()

        def notifications(status: NotificationStatus) -> int:
            return int(
                self._session.execute(
                    select(func.count(NotificationQueueItem.id)).where(
                        NotificationQueueItem.status == status.value
                    )
                ).scalar_one()
            )

        return MonitoringSnapshot(
            missions_active=sum(by_status[s.value] for s in ACTIVE_STATUSES),
            missions_paused=by_status[MissionStatus.EN_PAUSE.value],
            notifications_pending=notifications(NotificationStatus.PENDING),
            notifications_failed=notifications(NotificationStatus.FAILED),
            idempotency_cache_size=self._idempotency.cache_size(),
            failed_transitions_24h=self._log.failed_attempts(since=now - timedelta(hours=24)),
            missions_by_status=by_status,
            generated_at=now,
        )
