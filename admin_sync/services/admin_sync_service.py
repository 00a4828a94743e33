"""
Sync facade: one coroutine per admin-system event kind.

Called by the studio/client/photo mutations after their own transaction.
Each call tries to deliver directly; if that fails the payload is queued in
the outbox and the caller carries on. These functions never raise.
"""
import logging
from typing import Any, Callable

from pydantic import BaseModel

from admin_sync.integrations.admin_sync_client import AdminSyncClient
from admin_sync.schemas.admin_sync import (
    CLIENT_STATS,
    CLIENT_SYNC,
    EVENT_PATHS,
    STUDIO_OWNER_SYNC,
    STUDIO_SYNC,
    ClientStatsPayload,
    ClientSyncPayload,
    StudioOwnerSyncPayload,
    StudioSyncPayload,
)
from .outbox_processor_service import error_message
from .outbox_store import OutboxStore

logger = logging.getLogger(__name__)


def _as_body(payload: BaseModel | dict[str, Any] | None) -> dict[str, Any]:
    if isinstance(payload, BaseModel):
        # only the fields the caller set; explicit None is sent as null
        return payload.model_dump(mode="json", exclude_unset=True)
    return dict(payload or {})


class AdminSyncService:
    def __init__(self, store: OutboxStore | None = None,
                 client_factory: Callable[[], AdminSyncClient] = AdminSyncClient):
        self.store = store or OutboxStore()
        self.client_factory = client_factory

    async def _safe_post(self, event_type: str, payload: BaseModel | dict[str, Any] | None) -> bool:
        """True when delivered directly, False when queued (or queueing failed)."""
        try:
            body = _as_body(payload)
        except (TypeError, ValueError):
            logger.exception("Admin sync payload is not serializable (%s)", event_type)
            return False

        try:
            async with self.client_factory() as client:
                await client.send(EVENT_PATHS[event_type], body)
            return True
        except Exception as e:
            logger.error("Admin sync error (%s): %s", event_type, e,
                         extra={"extra": {"event_type": event_type}})
            try:
                await self.store.enqueue(event_type, body, error_message(e))
            except Exception:
                logger.exception("Admin sync fallback enqueue failed (%s)", event_type,
                                 extra={"extra": {"event_type": event_type, "payload": body}})
            return False

    async def sync_studio(self, payload: StudioSyncPayload | dict[str, Any]) -> bool:
        return await self._safe_post(STUDIO_SYNC, payload)

    async def sync_client(self, payload: ClientSyncPayload | dict[str, Any]) -> bool:
        return await self._safe_post(CLIENT_SYNC, payload)

    async def sync_client_stats(self, payload: ClientStatsPayload | dict[str, Any]) -> bool:
        return await self._safe_post(CLIENT_STATS, payload)

    async def sync_studio_owner(self, payload: StudioOwnerSyncPayload | dict[str, Any]) -> bool:
        return await self._safe_post(STUDIO_OWNER_SYNC, payload)


_default_service: AdminSyncService | None = None


def _service() -> AdminSyncService:
    global _default_service
    if _default_service is None:
        _default_service = AdminSyncService()
    return _default_service


async def sync_studio_to_admin(payload: StudioSyncPayload | dict[str, Any]) -> None:
    await _service().sync_studio(payload)


async def sync_client_to_admin(payload: ClientSyncPayload | dict[str, Any]) -> None:
    await _service().sync_client(payload)


async def sync_client_stats_to_admin(payload: ClientStatsPayload | dict[str, Any]) -> None:
    await _service().sync_client_stats(payload)


async def sync_studio_owner_to_admin(payload: StudioOwnerSyncPayload | dict[str, Any]) -> None:
    await _service().sync_studio_owner(payload)
