"""
Module: mission_kernel.models.notification
Responsibility: ORM persistence for the outbound notification queue.
Architecture position: Kernel > Models.  May import from db/ only.

Delivery (push, email, SMS) is done by an external worker that claims
pending rows; the kernel only enqueues, tracks retries and sweeps.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mission_kernel.db.base import Base, UTCDateTime, UUIDString


class NotificationStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


class NotificationQueueItem(Base):
    """A queued notification about a mission event."""

    __tablename__ = "notifications_queue"

    __table_args__ = (
        Index("idx_notif_status_scheduled", "status", "scheduled_for"),
        Index("idx_notif_mission", "mission_id"),
    )

    mission_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("missions.id"), nullable=True
    )
    recipient_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    channels: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=NotificationStatus.PENDING.value
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Unique per (mission, event, originating log entry) so retries enqueue once
    dedupe_key: Mapped[str | None] = mapped_column(String(200), nullable=True, unique=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    scheduled_for: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<NotificationQueueItem {self.event_type} {self.status}>"
