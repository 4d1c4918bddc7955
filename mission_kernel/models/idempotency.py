"""
Module: mission_kernel.models.idempotency
Responsibility: ORM persistence for cached responses of idempotent operations.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - key is unique: at most one cached response per key.
    - A record is only served while now < expires_at.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from mission_kernel.db.base import Base, UTCDateTime, UUIDString


class IdempotencyRecord(Base):
    """Response memo for one idempotent request."""

    __tablename__ = "idempotency_records"

    __table_args__ = (
        Index("idx_idem_expires", "expires_at"),
        Index("idx_idem_mission", "mission_id"),
    )

    key: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    mission_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    operation_name: Mapped[str] = mapped_column(String(64), nullable=False)
    request_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    response: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def __repr__(self) -> str:
        return f"<IdempotencyRecord {self.key}>"
