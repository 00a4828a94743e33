import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from admin_sync.db.base_class import utcnow
from admin_sync.db.session import async_session_factory
from admin_sync.models.outbox import (
    HEALTH_DEGRADED,
    HEALTH_HEALTHY,
    HEALTH_ROW_ID,
    STATUS_PENDING,
    OutboxEvent,
    OutboxHealth,
)

logger = logging.getLogger(__name__)


def _upsert_insert(session: AsyncSession):
    # ON CONFLICT есть и в PostgreSQL, и в SQLite (тесты), но в разных модулях диалектов
    if session.bind.dialect.name == "sqlite":
        return sqlite.insert
    return postgresql.insert


class OutboxHealthService:
    """
    Maintains the single outbox_health row: backlog size, age of the oldest
    pending event, last error and the healthy/degraded transition times.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None,
                 clock: Callable[[], datetime] = utcnow):
        self._session_factory = session_factory or async_session_factory
        self._clock = clock

    async def refresh(self, override_status: str | None = None) -> OutboxHealth:
        """
        Recomputes the summary from outbox_events and upserts it.

        override_status forces the stored status (enqueue marks the outbox
        degraded immediately). last_degraded_at / last_recovered_at are only
        written on an actual transition; otherwise the stored values survive.
        """
        now = self._clock()
        async with self._session_factory() as session, session.begin():
            pending_count, oldest_pending_at = (await session.execute(
                select(func.count(OutboxEvent.id), func.min(OutboxEvent.created_at))
                .where(OutboxEvent.status == STATUS_PENDING)
            )).one()
            last_error = await session.scalar(
                select(OutboxEvent.last_error)
                .where(OutboxEvent.last_error.is_not(None))
                .order_by(OutboxEvent.updated_at.desc())
                .limit(1)
            )
            previous_status = await session.scalar(
                select(OutboxHealth.status).where(OutboxHealth.id == HEALTH_ROW_ID)
            ) or HEALTH_HEALTHY

            status = override_status or (HEALTH_DEGRADED if pending_count > 0 else HEALTH_HEALTHY)
            degraded_at = now if previous_status != HEALTH_DEGRADED and status == HEALTH_DEGRADED else None
            recovered_at = now if previous_status != HEALTH_HEALTHY and status == HEALTH_HEALTHY else None

            insert = _upsert_insert(session)
            stmt = insert(OutboxHealth).values(
                id=HEALTH_ROW_ID,
                status=status,
                pending_count=pending_count,
                oldest_pending_at=oldest_pending_at,
                last_error=last_error,
                last_degraded_at=degraded_at,
                last_recovered_at=recovered_at,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[OutboxHealth.id],
                set_={
                    "status": stmt.excluded.status,
                    "pending_count": stmt.excluded.pending_count,
                    "oldest_pending_at": stmt.excluded.oldest_pending_at,
                    "last_error": stmt.excluded.last_error,
                    "last_degraded_at": func.coalesce(stmt.excluded.last_degraded_at, OutboxHealth.last_degraded_at),
                    "last_recovered_at": func.coalesce(stmt.excluded.last_recovered_at, OutboxHealth.last_recovered_at),
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await session.execute(stmt)
            health = await session.get(OutboxHealth, HEALTH_ROW_ID, populate_existing=True)

        if status != previous_status:
            logger.warning("Outbox status %s -> %s", previous_status, status,
                           extra={"extra": {"pending_count": pending_count, "last_error": last_error}})
        return health

    async def get_status(self) -> OutboxHealth:
        """Stored summary; computed once if the row has never been written."""
        async with self._session_factory() as session:
            health = await session.get(OutboxHealth, HEALTH_ROW_ID)
        if health is None:
            health = await self.refresh()
        return health
