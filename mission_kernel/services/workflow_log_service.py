"""
WorkflowLogService -- append-only, hash-chained mission workflow log.

Responsibility:
    Creates one immutable ``WorkflowLogEntry`` per transition attempt and
    answers the read queries built on it: the status timeline, failed
    attempt counts, and chain verification.

Architecture position:
    Kernel > Services -- imperative shell, called by TransitionEngine and
    MonitoringService.

Invariants enforced:
    - Append-only: this service exposes no update or delete API, and the
      model is protected by ORM listeners and database triggers.
    - Sequence monotonicity via SequenceService.
    - Chain integrity: ``hash = H(mission_id | operation | from | to |
      outcome | payload_hash | prev_hash)``.

Failure modes:
    - AuditChainBrokenError from ``verify_chain()`` when a stored hash or a
      prev_hash link does not match.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from mission_kernel.domain.clock import Clock, SystemClock
from mission_kernel.domain.dtos import TimelineEntry
from mission_kernel.exceptions import AuditChainBrokenError
from mission_kernel.logging_config import get_logger
from mission_kernel.models.workflow_log import WorkflowLogEntry
from mission_kernel.services.sequence_service import SequenceService
from mission_kernel.utils.hashing import hash_log_entry, hash_payload

logger = get_logger("services.workflow_log")


class WorkflowLogService:
    """
    Service for writing and reading the mission workflow log.

    Contract:
        ``append`` is the only writer.  Reads never lock.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _last_hash(self) -> str | None:
        return self._session.execute(
            select(WorkflowLogEntry.hash).order_by(WorkflowLogEntry.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def append(
        self,
        *,
        mission_id: UUID,
        operation: str,
        from_status: str | None,
        to_status: str | None,
        success: bool,
        actor_id: UUID | None = None,
        actor_role: str | None = None,
        via: str = "MANUAL",
        note: str | None = None,
        error_code: str | None = None,
        idempotency_key: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> WorkflowLogEntry:
        """
        Append one entry with hash chain linkage.

        Postconditions:
            - The entry is flushed with a fresh ``seq`` and
              ``hash == H(..., prev_hash)`` where prev_hash is the hash of
              the entry with the highest seq before it.
        """
        seq = self._sequence_service.next_value(SequenceService.WORKFLOW_LOG)
        prev_hash = self._last_hash()
        payload_data = payload or {}
        payload_hash = hash_payload(payload_data)

        entry = WorkflowLogEntry(
            seq=seq,
            mission_id=mission_id,
            operation=operation,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            actor_role=actor_role,
            via=via,
            note=note,
            success=success,
            error_code=error_code,
            idempotency_key=idempotency_key,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=hash_log_entry(
                mission_id=str(mission_id),
                operation=operation,
                from_status=from_status,
                to_status=to_status,
                success=success,
                payload_hash=payload_hash,
                prev_hash=prev_hash,
            ),
        )
        self._session.add(entry)
        self._session.flush()

        logger.debug(
            "workflow_log_appended",
            extra={
                "seq": seq,
                "mission_id": str(mission_id),
                "operation": operation,
                "success": success,
                "error_code": error_code,
            },
        )
        return entry

    # -- reads ---------------------------------------------------------------

    def entries_for(self, mission_id: UUID) -> list[WorkflowLogEntry]:
        """All entries for a mission, oldest first."""
        return list(
            self._session.execute(
                select(WorkflowLogEntry)
                .where(WorkflowLogEntry.mission_id == mission_id)
                .order_by(WorkflowLogEntry.seq)
            ).scalars()
        )

    def timeline(self, mission_id: UUID, include_failures: bool = False) -> list[TimelineEntry]:
        """Status history for display, newest first."""
        stmt = select(WorkflowLogEntry).where(WorkflowLogEntry.mission_id == mission_id)
        if not include_failures:
            stmt = stmt.where(WorkflowLogEntry.success.is_(True))
        rows = self._session.execute(stmt.order_by(WorkflowLogEntry.seq.desc())).scalars()
        return [
            TimelineEntry(
                seq=row.seq,
                from_status=row.from_status,
                to_status=row.to_status,
                operation=row.operation,
                via=row.via,
                actor_id=row.actor_id,
                actor_role=row.actor_role,
                note=row.note,
                success=row.success,
                error_code=row.error_code,
                occurred_at=row.occurred_at,
            )
            for row in rows
        ]

    def failed_attempts(
        self,
        mission_id: UUID | None = None,
        *,
        error_code: str | None = None,
        since: datetime | None = None,
    ) -> int:
        """Count failed attempts, optionally per mission, code and time window."""
        stmt = select(func.count(WorkflowLogEntry.id)).where(WorkflowLogEntry.success.is_(False))
        if mission_id is not None:
            stmt = stmt.where(WorkflowLogEntry.mission_id == mission_id)
        if error_code is not None:
            stmt = stmt.where(WorkflowLogEntry.error_code == error_code)
        if since is not None:
            stmt = stmt.where(WorkflowLogEntry.occurred_at >= since)
        return int(self._session.execute(stmt).scalar_one())

    def failed_attempts_by_mission(
        self, error_code: str | None, window: timedelta
    ) -> dict[UUID, int]:
        """Failed attempt counts per mission within ``window``, optionally for one code."""
        stmt = select(WorkflowLogEntry.mission_id, func.count(WorkflowLogEntry.id)).where(
            WorkflowLogEntry.success.is_(False),
            WorkflowLogEntry.occurred_at >= self._clock.now() - window,
        )
        if error_code is not None:
            stmt = stmt.where(WorkflowLogEntry.error_code == error_code)
        rows = self._session.execute(stmt.group_by(WorkflowLogEntry.mission_id)).all()
        return {mission_id: int(count) for mission_id, count in rows}

    def entries_between(self, start: datetime, end: datetime) -> Sequence[WorkflowLogEntry]:
        return list(
            self._session.execute(
                select(WorkflowLogEntry)
                .where(WorkflowLogEntry.occurred_at >= start, WorkflowLogEntry.occurred_at < end)
                .order_by(WorkflowLogEntry.seq)
            ).scalars()
        )

    def verify_chain(self) -> bool:
        """
        Validate the entire workflow log hash chain.

        Raises:
            AuditChainBrokenError: on the first mismatching entry.
        """
        entries = self._session.execute(
            select(WorkflowLogEntry).order_by(WorkflowLogEntry.seq)
        ).scalars().all()

        previous: WorkflowLogEntry | None = None
        for entry in entries:
            expected_prev = previous.hash if previous else None
            if entry.prev_hash != expected_prev:
                logger.critical("workflow_log_chain_broken", extra={"seq": entry.seq})
                raise AuditChainBrokenError(
                    str(entry.id), expected_prev or "None", entry.prev_hash or "None"
                )
            expected_hash = hash_log_entry(
                mission_id=str(entry.mission_id),
                operation=entry.operation,
                from_status=entry.from_status,
                to_status=entry.to_status,
                success=entry.success,
                payload_hash=hash_payload(entry.payload or {}),
                prev_hash=entry.prev_hash,
            )
            if entry.hash != expected_hash or entry.payload_hash != hash_payload(entry.payload or {}):
                logger.critical("workflow_log_chain_broken", extra={"seq": entry.seq})
                raise AuditChainBrokenError(str(entry.id), expected_hash, entry.hash)
            previous = entry

        logger.info("workflow_log_chain_valid", extra={"entry_count": len(entries)})
        return True
