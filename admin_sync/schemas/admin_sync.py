from pydantic import BaseModel

# Типы событий outbox и соответствующие пути в административной системе
STUDIO_SYNC = "studio.sync"
CLIENT_SYNC = "client.sync"
CLIENT_STATS = "client.stats"
STUDIO_OWNER_SYNC = "studio.owner.sync"

EVENT_PATHS: dict[str, str] = {
    STUDIO_SYNC: "/studios/sync",
    CLIENT_SYNC: "/clients/sync",
    CLIENT_STATS: "/clients/stats",
    STUDIO_OWNER_SYNC: "/studios/owners/sync",
}


class StudioSyncPayload(BaseModel):
    """Studio upsert, sent after registration, profile edits and status changes."""
    id: str
    name: str
    slug: str
    status: str
    plan: str
    created_at: str | None = None


class ClientSyncPayload(BaseModel):
    """
    Client upsert. A deletion is the same event with deleted=True:
    {"studioId": "...", "clientId": "...", "deleted": true}
    """
    studioId: str
    clientId: str
    name: str | None = None
    slug: str | None = None
    subheading: str | None = None
    event_date: str | None = None
    status: str | None = None
    created_at: str | None = None
    deleted: bool | None = None


class ClientStatsPayload(BaseModel):
    # delta* after uploads/deletes, absolute values after legacy imports
    studioId: str
    clientId: str
    deltaCount: int | None = None
    deltaBytes: int | None = None
    photoCount: int | None = None
    storageBytes: int | None = None


class StudioOwnerSyncPayload(BaseModel):
    studioId: str
    ownerId: str
    email: str
    role: str
    authProvider: str
    displayName: str | None = None
    avatarUrl: str | None = None
    createdAt: str | None = None
    deleted: bool | None = None
