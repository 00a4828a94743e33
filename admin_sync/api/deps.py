import hmac

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from admin_sync.core.config import settings
from admin_sync.db.session import get_session_factory
from admin_sync.integrations.admin_sync_client import SECRET_HEADER
from admin_sync.services.outbox_processor_service import OutboxProcessorService
from admin_sync.services.outbox_store import OutboxStore


def _has_valid_secret(request: Request) -> bool:
    expected = settings.ADMIN_SYNC_SECRET
    provided = request.headers.get(SECRET_HEADER)
    if not expected or provided is None:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def _is_scheduler_request(request: Request) -> bool:
    if request.headers.get("x-vercel-cron") == "1":
        return True
    return "vercel-cron" in request.headers.get("user-agent", "").lower()


async def require_admin_secret(request: Request) -> None:
    if not _has_valid_secret(request):
        raise HTTPException(status_code=401, detail="Unauthorized")


async def require_admin_secret_or_cron(request: Request) -> None:
    """Secret header, or a platform cron call when ALLOW_CRON is on."""
    if _has_valid_secret(request):
        return
    if settings.ALLOW_CRON and _is_scheduler_request(request):
        return
    raise HTTPException(status_code=401, detail="Unauthorized")


def get_outbox_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> OutboxStore:
    return OutboxStore(session_factory)


def get_outbox_processor(store: OutboxStore = Depends(get_outbox_store)) -> OutboxProcessorService:
    return OutboxProcessorService(store=store)
