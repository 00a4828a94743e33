import json
import logging
from typing import Any, Callable

from admin_sync.core.config import settings
from admin_sync.core.observability import log_step
from admin_sync.integrations.admin_sync_client import AdminSyncClient
from admin_sync.models.outbox import HEALTH_HEALTHY
from admin_sync.schemas.admin_sync import EVENT_PATHS
from admin_sync.schemas.outbox import BatchResult, ClaimedEvent, ProcessIfNeededResponse
from .outbox_health_service import OutboxHealthService
from .outbox_store import OutboxStore

logger = logging.getLogger(__name__)

DEFAULT_FLUSH_BATCH = 5
DEFAULT_DRAIN_BATCH = 25


def normalize_payload(payload: Any) -> Any:
    """Stored payload -> request body; unparsable text becomes an empty object."""
    if isinstance(payload, (str, bytes)):
        try:
            return json.loads(payload)
        except ValueError:
            return {}
    return payload


def error_message(exc: BaseException) -> str:
    return str(exc) or "Admin sync failed"


class OutboxProcessorService:
    PROCESS_NAME = "OutboxProcessor"

    def __init__(self, store: OutboxStore | None = None,
                 health: OutboxHealthService | None = None,
                 client_factory: Callable[[], AdminSyncClient] = AdminSyncClient,
                 lock_timeout_seconds: int | None = None):
        self.store = store or OutboxStore()
        self.health = health or self.store.health
        self.client_factory = client_factory
        self.lock_timeout_seconds = (lock_timeout_seconds if lock_timeout_seconds is not None
                                     else settings.OUTBOX_LOCK_TIMEOUT_SECONDS)

    @log_step("outbox.process_once")
    async def process_once(self, limit: int = DEFAULT_FLUSH_BATCH) -> BatchResult:
        """Обрабатывает одну пачку событий; статус outbox пересчитывается всегда."""
        batch = await self.store.claim_batch(limit)
        result = BatchResult()
        if batch:
            result = await self._handle_batch(batch)
        await self.health.refresh()
        return result

    @log_step("outbox.drain")
    async def drain_until_empty(self, limit: int = DEFAULT_DRAIN_BATCH) -> BatchResult:
        """
        Releases abandoned claims, then claims batches until none are due.
        Failed events are pushed into the future by nack, so one call always
        terminates.
        """
        await self.store.reclaim_stale(self.lock_timeout_seconds)

        total = BatchResult()
        while True:
            batch = await self.store.claim_batch(limit)
            if not batch:
                break
            total += await self._handle_batch(batch)

        await self.health.refresh()
        return total

    async def process_if_needed(self, limit: int = DEFAULT_DRAIN_BATCH) -> ProcessIfNeededResponse:
        health = await self.health.refresh()
        if not health.pending_count:
            return ProcessIfNeededResponse(skipped=True, processed=0, failed=0,
                                           pending_count=0, status=health.status or HEALTH_HEALTHY)

        result = await self.drain_until_empty(limit)
        health = await self.health.get_status()
        return ProcessIfNeededResponse(skipped=False, processed=result.processed, failed=result.failed,
                                       pending_count=health.pending_count, status=health.status)

    async def _handle_batch(self, batch: list[ClaimedEvent]) -> BatchResult:
        result = BatchResult()
        settled = 0
        try:
            async with self.client_factory() as client:
                for event in batch:
                    if await self._handle_event(client, event):
                        result.processed += 1
                    else:
                        result.failed += 1
                    settled += 1
        except Exception:
            # ack/nack или клиент упали: недоразобранные события возвращаем в очередь
            await self._release_unsettled(batch[settled:])
            raise

        if result.processed or result.failed:
            logger.info("Outbox batch done: delivered=%d failed=%d", result.processed, result.failed,
                        extra={"extra": {"processed": result.processed, "failed": result.failed}})
        return result

    async def _handle_event(self, client: AdminSyncClient, event: ClaimedEvent) -> bool:
        """True when delivered and acked, False when nacked."""
        path = EVENT_PATHS.get(event.event_type)
        if path is None:
            logger.warning("Unknown outbox event type: %s", event.event_type,
                           extra={"extra": {"event_id": str(event.id)}})
            await self.store.nack(event.id, event.attempts, f"Unknown event type: {event.event_type}")
            return False

        try:
            await client.send(path, normalize_payload(event.payload))
        except Exception as e:
            # Retry is decided by backoff only; no error class is terminal
            logger.error("Outbox delivery failed for %s: %s", event.id, e,
                         extra={"extra": {"event_id": str(event.id), "event_type": event.event_type,
                                          "attempts": event.attempts + 1}})
            await self.store.nack(event.id, event.attempts, error_message(e))
            return False

        await self.store.ack(event.id)
        return True

    async def _release_unsettled(self, events: list[ClaimedEvent]) -> None:
        ids = [event.id for event in events]
        try:
            released = await self.store.release(ids)
        except Exception:
            logger.exception("Could not release %d claimed outbox events", len(ids),
                             extra={"extra": {"event_ids": [str(i) for i in ids]}})
            return
        logger.warning("Released %d claimed outbox events after a batch error", released,
                       extra={"extra": {"event_ids": [str(i) for i in ids]}})
