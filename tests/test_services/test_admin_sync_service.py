import json
import logging

import pytest
from unittest.mock import AsyncMock

from admin_sync.integrations.admin_sync_client import AdminSyncConfigError, AdminSyncError
from admin_sync.models.outbox import HEALTH_DEGRADED, STATUS_PENDING
from admin_sync.schemas.admin_sync import (
    ClientStatsPayload,
    ClientSyncPayload,
    StudioOwnerSyncPayload,
    StudioSyncPayload,
)
from admin_sync.services import admin_sync_service
from admin_sync.services.admin_sync_service import AdminSyncService

STUDIO = StudioSyncPayload(id="S1", name="Light Room", slug="light-room", status="active", plan="pro")
CLIENT = ClientSyncPayload(studioId="S1", clientId="C1", name="Wedding", slug="wedding")
STATS = ClientStatsPayload(studioId="S1", clientId="C1", deltaCount=3, deltaBytes=1024)
OWNER = StudioOwnerSyncPayload(studioId="S1", ownerId="U1", email="owner@example.com", role="owner",
                               authProvider="password")


@pytest.mark.parametrize("method, payload, path", [
    ("sync_studio", STUDIO, "/studios/sync"),
    ("sync_client", CLIENT, "/clients/sync"),
    ("sync_client_stats", STATS, "/clients/stats"),
    ("sync_studio_owner", OWNER, "/studios/owners/sync"),
])
@pytest.mark.asyncio
async def test_direct_delivery_writes_nothing(method, payload, path, store, fetch_events, make_admin_client):
    client = make_admin_client()
    service = AdminSyncService(store=store, client_factory=lambda: client)

    delivered = await getattr(service, method)(payload)

    assert delivered is True
    assert client.sent == [(path, payload.model_dump(mode="json", exclude_unset=True))]
    assert await fetch_events() == []


@pytest.mark.parametrize("method, payload, event_type", [
    ("sync_studio", STUDIO, "studio.sync"),
    ("sync_client", CLIENT, "client.sync"),
    ("sync_client_stats", STATS, "client.stats"),
    ("sync_studio_owner", OWNER, "studio.owner.sync"),
])
@pytest.mark.asyncio
async def test_failed_delivery_is_queued_with_payload(method, payload, event_type, store, fetch_events, fetch_health,
                                                      make_admin_client):
    client = make_admin_client(error=AdminSyncError(500, "internal"))
    service = AdminSyncService(store=store, client_factory=lambda: client)

    delivered = await getattr(service, method)(payload)

    assert delivered is False
    [row] = await fetch_events()
    assert row.event_type == event_type
    assert row.status == STATUS_PENDING
    assert row.attempts == 0
    assert row.last_error == "Admin sync failed (500): internal"
    assert json.loads(row.payload) == payload.model_dump(mode="json", exclude_unset=True)
    assert (await fetch_health()).status == HEALTH_DEGRADED


@pytest.mark.asyncio
async def test_missing_config_is_queued_too(store, fetch_events, make_admin_client):
    client = make_admin_client(error=AdminSyncConfigError())
    service = AdminSyncService(store=store, client_factory=lambda: client)

    await service.sync_studio(STUDIO)

    [row] = await fetch_events()
    assert row.last_error == "Admin sync config missing"


@pytest.mark.asyncio
async def test_enqueue_failure_is_logged_not_raised(make_admin_client, caplog):
    store = AsyncMock()
    store.enqueue.side_effect = RuntimeError("db down")
    client = make_admin_client(error=AdminSyncError(502, "bad gateway"))
    service = AdminSyncService(store=store, client_factory=lambda: client)

    caplog.set_level(logging.ERROR)
    delivered = await service.sync_client(CLIENT)

    assert delivered is False
    store.enqueue.assert_awaited_once()
    assert any("fallback enqueue failed" in r.message for r in caplog.records)


@pytest.mark.asyncio
async def test_only_set_fields_are_sent(store, make_admin_client):
    client = make_admin_client()
    service = AdminSyncService(store=store, client_factory=lambda: client)

    await service.sync_client(ClientSyncPayload(studioId="S1", clientId="C1", deleted=True))
    await service.sync_client(ClientSyncPayload(studioId="S1", clientId="C2", subheading=None))

    assert client.sent[0][1] == {"studioId": "S1", "clientId": "C1", "deleted": True}
    # an explicit None is part of the body
    assert client.sent[1][1] == {"studioId": "S1", "clientId": "C2", "subheading": None}


@pytest.mark.asyncio
async def test_plain_dict_payload_is_accepted(store, fetch_events, make_admin_client):
    client = make_admin_client(error=AdminSyncError(503, "down"))
    service = AdminSyncService(store=store, client_factory=lambda: client)

    await service.sync_studio({"id": "S1", "extra": {"nested": [1, 2]}})

    [row] = await fetch_events()
    assert json.loads(row.payload) == {"id": "S1", "extra": {"nested": [1, 2]}}


@pytest.mark.asyncio
async def test_module_functions_use_default_service(store, fetch_events, make_admin_client, monkeypatch):
    client = make_admin_client(error=AdminSyncError(500, "x"))
    monkeypatch.setattr(admin_sync_service, "_default_service",
                        AdminSyncService(store=store, client_factory=lambda: client))

    result = await admin_sync_service.sync_studio_owner_to_admin(OWNER)

    assert result is None
    [row] = await fetch_events()
    assert row.event_type == "studio.owner.sync"
