import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from admin_sync.db.base_class import utcnow
from admin_sync.db.session import async_session_factory
from admin_sync.models.outbox import HEALTH_DEGRADED, STATUS_PENDING, STATUS_PROCESSING, OutboxEvent
from admin_sync.schemas.outbox import ClaimedEvent
from .outbox_health_service import OutboxHealthService

logger = logging.getLogger(__name__)

# attempt -> delay in seconds: 1 -> 15s, 2 -> 1m, 3 -> 5m, 4 -> 15m, 5 -> 1h, 6+ -> 6h
BACKOFF_STEPS = (15, 60, 5 * 60, 15 * 60, 60 * 60)
MAX_BACKOFF_SECONDS = 6 * 60 * 60


def backoff_seconds(attempt: int) -> int:
    if attempt <= 1:
        return BACKOFF_STEPS[0]
    if attempt <= len(BACKOFF_STEPS):
        return BACKOFF_STEPS[attempt - 1]
    return MAX_BACKOFF_SECONDS


def serialize_payload(payload: Any) -> str:
    return json.dumps(payload if payload is not None else {}, ensure_ascii=False, default=str)


class OutboxStore:
    """
    Durable queue of deliveries to the admin system (table outbox_events).

    Every call runs in its own short transaction, independent of whatever
    transaction the caller has open. Successful delivery deletes the row;
    failure puts it back to pending with a later next_retry_at.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None,
                 health: OutboxHealthService | None = None,
                 clock: Callable[[], datetime] = utcnow):
        self._session_factory = session_factory or async_session_factory
        self._clock = clock
        self.health = health or OutboxHealthService(self._session_factory, clock)

    async def enqueue(self, event_type: str, payload: Any, last_error: str | None = None) -> uuid.UUID:
        """Ставит событие в очередь и сразу помечает outbox как degraded."""
        now = self._clock()
        event = OutboxEvent(
            id=uuid.uuid4(),
            event_type=event_type,
            payload=serialize_payload(payload),
            status=STATUS_PENDING,
            attempts=0,
            last_error=last_error,
            next_retry_at=now,
            created_at=now,
            updated_at=now,
        )
        async with self._session_factory() as session, session.begin():
            session.add(event)

        logger.warning("Outbox event queued: %s", event_type,
                       extra={"extra": {"event_id": str(event.id), "event_type": event_type,
                                        "last_error": last_error}})
        await self.health.refresh(HEALTH_DEGRADED)
        return event.id

    async def claim_batch(self, limit: int = 25) -> list[ClaimedEvent]:
        """
        Claims up to `limit` due events, oldest first, and marks them processing.

        Rows locked by a concurrent claimer are skipped (FOR UPDATE SKIP LOCKED);
        the status guard on the UPDATE keeps claims disjoint on engines that
        ignore row locks.
        """
        now = self._clock()
        async with self._session_factory() as session, session.begin():
            due_ids = (await session.scalars(
                select(OutboxEvent.id)
                .where(OutboxEvent.status == STATUS_PENDING, OutboxEvent.next_retry_at <= now)
                .order_by(OutboxEvent.created_at)
                .limit(limit)
                .with_for_update(skip_locked=True)
            )).all()
            if not due_ids:
                return []

            result = await session.execute(
                update(OutboxEvent)
                .where(OutboxEvent.id.in_(due_ids), OutboxEvent.status == STATUS_PENDING)
                .values(status=STATUS_PROCESSING, locked_at=now, updated_at=now)
                .returning(
                    OutboxEvent.id,
                    OutboxEvent.event_type,
                    OutboxEvent.payload,
                    OutboxEvent.attempts,
                    OutboxEvent.next_retry_at,
                    OutboxEvent.created_at,
                )
                .execution_options(synchronize_session=False)
            )
            claimed = [ClaimedEvent.model_validate(dict(row._mapping)) for row in result]

        # RETURNING does not keep the SELECT order
        claimed.sort(key=lambda e: e.created_at)
        return claimed

    async def ack(self, event_id: uuid.UUID) -> None:
        """Delivered: the row is removed. Unknown ids are ignored."""
        async with self._session_factory() as session, session.begin():
            await session.execute(
                delete(OutboxEvent)
                .where(OutboxEvent.id == event_id)
                .execution_options(synchronize_session=False)
            )

    async def nack(self, event_id: uuid.UUID, attempts: int, error: str) -> datetime:
        """Returns the event to pending and schedules the next attempt."""
        now = self._clock()
        next_retry_at = now + timedelta(seconds=backoff_seconds(attempts + 1))
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(OutboxEvent)
                .where(OutboxEvent.id == event_id)
                .values(
                    status=STATUS_PENDING,
                    attempts=OutboxEvent.attempts + 1,
                    last_error=error,
                    next_retry_at=next_retry_at,
                    locked_at=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
        return next_retry_at

    async def release(self, event_ids: list[uuid.UUID]) -> int:
        """
        Hands claimed rows back unprocessed: pending again, due now, attempts
        unchanged. Only rows still in processing are touched.
        """
        if not event_ids:
            return 0
        now = self._clock()
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(OutboxEvent)
                .where(OutboxEvent.id.in_(event_ids), OutboxEvent.status == STATUS_PROCESSING)
                .values(status=STATUS_PENDING, locked_at=None, next_retry_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount or 0

    async def reclaim_stale(self, older_than_seconds: int) -> int:
        """
        Releases claims whose worker died: processing rows locked longer than
        `older_than_seconds` become pending again (attempts are not touched).
        """
        now = self._clock()
        cutoff = now - timedelta(seconds=older_than_seconds)
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(OutboxEvent)
                .where(OutboxEvent.status == STATUS_PROCESSING, OutboxEvent.locked_at < cutoff)
                .values(status=STATUS_PENDING, locked_at=None, next_retry_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
        reclaimed = result.rowcount or 0
        if reclaimed:
            logger.warning("Reclaimed %d stale outbox claims", reclaimed,
                           extra={"extra": {"older_than_seconds": older_than_seconds}})
        return reclaimed

    async def list_events(self, limit: int = 100) -> list[OutboxEvent]:
        async with self._session_factory() as session:
            result = await session.scalars(
                select(OutboxEvent).order_by(OutboxEvent.created_at).limit(limit)
            )
            return list(result.all())
