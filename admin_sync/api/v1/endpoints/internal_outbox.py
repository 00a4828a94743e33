from fastapi import APIRouter, Depends, Query

from admin_sync.api.deps import (
    get_outbox_processor,
    get_outbox_store,
    require_admin_secret,
    require_admin_secret_or_cron,
)
from admin_sync.core.config import settings
from admin_sync.schemas.outbox import (
    OutboxStatusRead,
    PendingEventRead,
    ProcessIfNeededResponse,
    ProcessResponse,
)
from admin_sync.services.outbox_processor_service import OutboxProcessorService
from admin_sync.services.outbox_store import OutboxStore

router = APIRouter(prefix="/api/internal/outbox")


@router.api_route(
    "/process",
    methods=["POST", "GET"],
    response_model=ProcessResponse,
    summary="Разобрать очередь outbox до конца",
    dependencies=[Depends(require_admin_secret_or_cron)],
)
async def process_outbox(processor: OutboxProcessorService = Depends(get_outbox_processor)):
    """
    Синхронно доставляет все события, срок которых наступил.
    GET оставлен для платформенного cron, который умеет только GET.
    """
    result = await processor.drain_until_empty(settings.OUTBOX_DRAIN_BATCH)
    return ProcessResponse(processed=result.processed, failed=result.failed)


@router.api_route(
    "/process-if-needed",
    methods=["POST", "GET"],
    response_model=ProcessIfNeededResponse,
    summary="Разобрать очередь, только если есть ожидающие события",
    dependencies=[Depends(require_admin_secret_or_cron)],
)
async def process_outbox_if_needed(processor: OutboxProcessorService = Depends(get_outbox_processor)):
    return await processor.process_if_needed(settings.OUTBOX_DRAIN_BATCH)


@router.get(
    "/status",
    response_model=OutboxStatusRead,
    summary="Сводка состояния outbox",
    dependencies=[Depends(require_admin_secret)],
)
async def outbox_status(
    include_events: bool = Query(default=False, description="Добавить список событий в очереди"),
    limit: int = Query(default=100, ge=1, le=1000),
    store: OutboxStore = Depends(get_outbox_store),
):
    health = await store.health.get_status()
    status = OutboxStatusRead.model_validate(health)
    if include_events:
        status.events = [PendingEventRead.model_validate(e) for e in await store.list_events(limit)]
    return status
