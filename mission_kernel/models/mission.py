"""
Module: mission_kernel.models.mission
Responsibility: ORM persistence for field-service missions.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - status is always a MissionStatus code and only changes through the
      transition engine (ORM listener in db/immutability.py).
    - version is the optimistic-concurrency counter (SQLAlchemy
      version_id_col): every UPDATE carries "WHERE version = :expected".
    - Missions are never physically deleted (ORM listener + DB trigger);
      is_deleted is the soft-delete flag.

Failure modes:
    - StaleDataError on flush when another transaction moved the row; the
      engine surfaces it as ConcurrencyConflictError.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mission_kernel.db.base import TimestampedBase, UTCDateTime, UUIDString


class Mission(TimestampedBase):
    """
    A field-service (HVAC) intervention.

    Contract:
        Workflow fields (timestamps, counters, report and billing codes) are
        written by transition effects; descriptive fields (title, client,
        address) may be edited freely.

    Non-goals:
        - Photos, reports and quotes live in their own stores.
    """

    __tablename__ = "missions"

    __table_args__ = (
        Index("idx_mission_status", "status"),
        Index("idx_mission_assigned", "assigned_user_id"),
        Index("idx_mission_scheduled", "scheduled_start"),
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    client_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    status_changed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # Assignment and scheduling
    assigned_user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    scheduled_start: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    scheduled_end: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    reschedule_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Lifecycle timestamps
    accepted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    invoiced_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Pause tracking
    pause_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    pause_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    pause_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Report validation and billing
    report_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rejection_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    billing_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Mission {self.id} {self.status} v{self.version}>"
