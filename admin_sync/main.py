import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import Depends, FastAPI, HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from admin_sync.api.middleware.outbox_flush import OutboxFlushGate, OutboxFlushMiddleware
from admin_sync.api.middleware.request_id import RequestIdMiddleware
from admin_sync.api.v1.endpoints import internal_outbox
from admin_sync.background.jobs import flush_outbox_batch, process_outbox_events_job
from admin_sync.core.config import settings
from admin_sync.core.logging import configure_logging, set_run_id
from admin_sync.db.session import engine, get_session_factory
from admin_sync.schemas.outbox import HealthOutboxSummary
from admin_sync.services.outbox_health_service import OutboxHealthService

# Initialize logging before anything else
configure_logging()
set_run_id()  # Set unique run ID for this application instance

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if settings.OUTBOX_SCHEDULER_ENABLED:
        logger.info("Starting scheduler...")
        scheduler = AsyncIOScheduler(timezone=settings.SCHEDULER_TIMEZONE)
        scheduler.add_job(
            process_outbox_events_job,
            'interval',
            seconds=settings.OUTBOX_POLL_SECONDS,
            id='process_outbox',
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()

    # Состояние flush живёт ровно столько, сколько процесс
    gate = None
    if settings.OUTBOX_FLUSH_ENABLED:
        gate = OutboxFlushGate(
            flush_outbox_batch,
            interval_seconds=settings.OUTBOX_FLUSH_INTERVAL_MS / 1000,
            batch_size=settings.OUTBOX_FLUSH_BATCH,
        )
    app.state.outbox_flush_gate = gate

    yield

    if scheduler is not None:
        logger.info("Shutting down scheduler...")
        scheduler.shutdown(wait=False)
    if gate is not None:
        await gate.wait_idle()
    await engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    lifespan=lifespan,
)
app.add_middleware(OutboxFlushMiddleware)
app.add_middleware(RequestIdMiddleware)


@app.get("/health", tags=["Health Check"])
async def health(session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory)):
    """Liveness; заодно пересчитывает и отдаёт сводку outbox."""
    payload = {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
    try:
        summary = await OutboxHealthService(session_factory).refresh()
        payload["outbox"] = HealthOutboxSummary.model_validate(summary, from_attributes=True).model_dump(mode="json")
    except Exception:
        logger.exception("Health outbox status error")
        payload["outbox"] = {"status": "unknown"}
    return payload


@app.get("/health/db", tags=["Health Check"])
async def health_db(session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory)):
    """Проверка подключения к базе данных."""
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        return {"db": "ok"}
    except Exception as e:
        raise HTTPException(status_code=503, detail={"db": "error", "message": str(e)})


app.include_router(internal_outbox.router, tags=["Outbox"])
