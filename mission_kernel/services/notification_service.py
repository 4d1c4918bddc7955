"""
NotificationQueue -- outbound notification queue for mission events.

Responsibility:
    Enqueues notifications produced by transitions, tracks delivery
    attempts reported by the external sender, and sweeps old rows.

Architecture position:
    Kernel > Services -- imperative shell, called by TransitionEngine (in
    the transition's transaction) and by the maintenance CLI.

Invariants enforced:
    - One row per ``dedupe_key``: re-enqueueing the same event is a no-op.
    - ``retry_count <= max_retries``; the item becomes ``failed`` when the
      limit is reached.
    - Sent items are deleted only after the retention period.

Failure modes:
    - LookupError from ``mark_sent`` / ``mark_failed`` for unknown ids.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from mission_kernel.domain.clock import Clock, SystemClock
from mission_kernel.domain.dtos import NotificationCleanupResult
from mission_kernel.logging_config import get_logger
from mission_kernel.models.notification import NotificationQueueItem, NotificationStatus

logger = get_logger("services.notifications")

DEFAULT_CHANNELS: tuple[str, ...] = ("push",)

# Titles for the events transition rules may declare in ``notify``
EVENT_TITLES: dict[str, str] = {
    "mission_published": "Nouvelle mission disponible",
    "mission_accepted": "Mission acceptée",
    "mission_scheduled": "Intervention planifiée",
    "mission_started": "Intervention démarrée",
    "mission_paused": "Intervention en pause",
    "mission_completed": "Intervention terminée",
    "report_validated": "Rapport validé",
    "report_rejected": "Rapport rejeté",
    "invoice_issued": "Facture émise",
    "payment_received": "Paiement reçu",
    "mission_cancelled": "Mission annulée",
}


class NotificationQueue:
    """
    Queue of pending notifications.

    Non-goals:
        - Does NOT deliver anything; an external worker reads ``pending()``.
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        ttl: timedelta = timedelta(days=7),
        retention: timedelta = timedelta(days=30),
        max_retries: int = 3,
        channels: Sequence[str] = DEFAULT_CHANNELS,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._ttl = ttl
        self._retention = retention
        self._max_retries = max_retries
        self._channels = tuple(channels)

    def enqueue(
        self,
        *,
        event_type: str,
        mission_id: UUID | None = None,
        recipient_id: UUID | None = None,
        title: str | None = None,
        body: str | None = None,
        payload: dict[str, Any] | None = None,
        channels: Sequence[str] | None = None,
        priority: int = 0,
        dedupe_key: str | None = None,
    ) -> NotificationQueueItem:
        """
        Add a notification, or return the existing one for ``dedupe_key``.

        Postconditions:
            - The item is flushed with status ``pending``.
        """
        if dedupe_key is not None:
            existing = self._session.execute(
                select(NotificationQueueItem).where(NotificationQueueItem.dedupe_key == dedupe_key)
            ).scalar_one_or_none()
            if existing is not None:
                logger.debug("notification_deduplicated", extra={"dedupe_key": dedupe_key})
                return existing

        now = self._clock.now()
        item = NotificationQueueItem(
            mission_id=mission_id,
            recipient_id=recipient_id,
            event_type=event_type,
            channels=list(channels or self._channels),
            title=title or EVENT_TITLES.get(event_type, event_type),
            body=body,
            payload=payload or {},
            status=NotificationStatus.PENDING.value,
            priority=priority,
            retry_count=0,
            max_retries=self._max_retries,
            dedupe_key=dedupe_key,
            created_at=now,
            scheduled_for=now,
            expires_at=now + self._ttl,
        )
        self._session.add(item)
        self._session.flush()
        logger.info(
            "notification_enqueued",
            extra={
                "notification_id": str(item.id),
                "event_type": event_type,
                "mission_id": str(mission_id) if mission_id else None,
            },
        )
        return item

    def _require(self, notification_id: UUID) -> NotificationQueueItem:
        item = self._session.get(NotificationQueueItem, notification_id)
        if item is None:
            raise LookupError(f"Notification not found: {notification_id}")
        return item

    def mark_sent(self, notification_id: UUID) -> NotificationQueueItem:
        item = self._require(notification_id)
        item.status = NotificationStatus.SENT.value
        item.sent_at = self._clock.now()
        item.last_error = None
        self._session.flush()
        logger.info("notification_sent", extra={"notification_id": str(notification_id)})
        return item

    def mark_failed(self, notification_id: UUID, error: str) -> NotificationQueueItem:
        """
        Record a delivery failure.

        The item goes back to ``pending`` (with a 2^n minute backoff on
        ``scheduled_for``) until ``max_retries`` attempts have failed, then
        becomes ``failed``.
        """
        item = self._require(notification_id)
        item.retry_count += 1
        item.last_error = error
        if item.retry_count >= item.max_retries:
            item.status = NotificationStatus.FAILED.value
            logger.warning(
                "notification_failed",
                extra={
                    "notification_id": str(notification_id),
                    "retry_count": item.retry_count,
                    "error": error,
                },
            )
        else:
            item.status = NotificationStatus.PENDING.value
            item.scheduled_for = self._clock.now() + timedelta(minutes=2 ** item.retry_count)
            logger.info(
                "notification_retry_scheduled",
                extra={
                    "notification_id": str(notification_id),
                    "retry_count": item.retry_count,
                },
            )
        self._session.flush()
        return item

    def pending(self, limit: int = 100) -> list[NotificationQueueItem]:
        """Due pending items, highest priority first, then oldest."""
        now = self._clock.now()
        return list(
            self._session.execute(
                select(NotificationQueueItem)
                .where(
                    NotificationQueueItem.status == NotificationStatus.PENDING.value,
                    NotificationQueueItem.scheduled_for <= now,
                )
                .order_by(
                    NotificationQueueItem.priority.desc(),
                    NotificationQueueItem.created_at,
                )
                .limit(limit)
            ).scalars()
        )

    def for_mission(self, mission_id: UUID) -> list[NotificationQueueItem]:
        return list(
            self._session.execute(
                select(NotificationQueueItem)
                .where(NotificationQueueItem.mission_id == mission_id)
                .order_by(NotificationQueueItem.created_at)
            ).scalars()
        )

    def count_by_status(self) -> dict[str, int]:
        rows = self._session.execute(
            select(NotificationQueueItem.status, func.count(NotificationQueueItem.id))
            .group_by(NotificationQueueItem.status)
        ).all()
        counts = {status.value: 0 for status in NotificationStatus}
        counts.update({status: int(count) for status, count in rows})
        return counts

    def cleanup_expired(self) -> NotificationCleanupResult:
        """
        Sweep the queue.  Re-runnable.

        - Pending items past ``expires_at`` become ``failed``.
        - Sent items older than the retention period are deleted.
        """
        now = self._clock.now()
        failed = self._session.execute(
            update(NotificationQueueItem)
            .where(
                NotificationQueueItem.status == NotificationStatus.PENDING.value,
                NotificationQueueItem.expires_at.is_not(None),
                NotificationQueueItem.expires_at <= now,
            )
            .values(status=NotificationStatus.FAILED.value, last_error="expired")
            .execution_options(synchronize_session=False)
        )
        deleted = self._session.execute(
            delete(NotificationQueueItem)
            .where(
                NotificationQueueItem.status == NotificationStatus.SENT.value,
                NotificationQueueItem.sent_at <= now - self._retention,
            )
            .execution_options(synchronize_session=False)
        )
        self._session.expire_all()
        result = NotificationCleanupResult(
            deleted_count=int(deleted.rowcount or 0),
            failed_count=int(failed.rowcount or 0),
            cleaned_at=now,
        )
        logger.info("notification_cleanup_completed", extra=result.to_dict())
        return result
