import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from admin_sync.db.base_class import Base, TimestampMixin, utcnow

# Статусы строки outbox: успешная доставка удаляет строку, отдельного FAILED нет
STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"

HEALTH_HEALTHY = "healthy"
HEALTH_DEGRADED = "degraded"

HEALTH_ROW_ID = 1


class OutboxEvent(Base, TimestampMixin):
    __tablename__ = "outbox_events"
    __table_args__ = (
        CheckConstraint("status in ('pending','processing')", name="ck_outbox_events_status"),
        Index("ix_outbox_events_claim", "status", "next_retry_at", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event_type: Mapped[str] = mapped_column(String(100), index=True, comment="studio.sync, client.sync, client.stats, studio.owner.sync")
    payload: Mapped[str] = mapped_column(Text, comment="JSON body sent to the admin system as is")
    status: Mapped[str] = mapped_column(String(20), default=STATUS_PENDING, comment="pending, processing")
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_retry_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<OutboxEvent {self.id} {self.event_type} {self.status} attempts={self.attempts}>"


class OutboxHealth(Base):
    """Single-row summary of the outbox backlog (id is always HEALTH_ROW_ID)."""
    __tablename__ = "outbox_health"
    __table_args__ = (
        CheckConstraint("status in ('healthy','degraded')", name="ck_outbox_health_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=HEALTH_ROW_ID)
    status: Mapped[str] = mapped_column(String(20), default=HEALTH_HEALTHY)
    pending_count: Mapped[int] = mapped_column(Integer, default=0)
    oldest_pending_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_degraded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_recovered_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
