import logging

from admin_sync.core.config import settings
from admin_sync.core.logging import set_job, set_request_id
from admin_sync.schemas.outbox import BatchResult
from admin_sync.services.outbox_processor_service import OutboxProcessorService

logger = logging.getLogger(__name__)


async def process_outbox_events_job() -> BatchResult:
    """
    Job-функция для APScheduler: освобождает зависшие захваты и
    разбирает очередь outbox до конца.
    """
    set_job("process_outbox_events_job")
    return await OutboxProcessorService().drain_until_empty(settings.OUTBOX_DRAIN_BATCH)


async def flush_outbox_batch(limit: int) -> BatchResult:
    """Runner for the request-triggered flush: one small batch only."""
    # задача создаётся из запроса и наследует его контекст; request_id ей не принадлежит
    set_request_id(None)
    set_job("outbox_flush")
    return await OutboxProcessorService().process_once(limit)
