"""
Module: mission_kernel.models.workflow_log
Responsibility: ORM persistence for the append-only mission workflow log.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Rows are append-only; no UPDATE or DELETE (ORM listener + DB trigger,
      both reporting the row as "immutable").
    - seq is strictly monotonic, allocated by SequenceService.
    - hash = H(mission_id | operation | from | to | outcome | payload_hash |
      prev_hash), validated by WorkflowLogService.verify_chain().

Audit relevance:
    Every transition attempt, successful or not, produces exactly one row.
    The StatusTimeline view, the failed-attempt counters behind risk scoring
    and the repeated-forbidden anomaly all read from here.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mission_kernel.db.base import Base, UTCDateTime, UUIDString


class WorkflowLogEntry(Base):
    """
    One transition attempt on a mission.

    Guarantees:
        - success=True rows record a committed status change (or a declared
          self-transition / effect application).
        - success=False rows carry error_code and leave the mission untouched.

    Non-goals:
        - This model does NOT compute hashes; WorkflowLogService does.
    """

    __tablename__ = "mission_workflow_log"

    __table_args__ = (
        Index("idx_wflog_mission_seq", "mission_id", "seq"),
        Index("idx_wflog_occurred", "occurred_at"),
        Index("idx_wflog_outcome", "success", "error_code"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    mission_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("missions.id"), nullable=False
    )

    # Action name ("publish", "accept", ...), "create" or "apply_effects"
    operation: Mapped[str] = mapped_column(String(64), nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    to_status: Mapped[str | None] = mapped_column(String(32), nullable=True)

    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    actor_role: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # Channel the change came through: MANUAL, MOBILE, API, SYSTEM
    via: Mapped[str] = mapped_column(String(32), nullable=False, default="MANUAL")
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_code: Mapped[str | None] = mapped_column(String(64), nullable=True)

    idempotency_key: Mapped[str | None] = mapped_column(String(200), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        outcome = "ok" if self.success else self.error_code
        return (
            f"<WorkflowLogEntry #{self.seq} {self.operation} "
            f"{self.from_status}->{self.to_status} {outcome}>"
        )

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
