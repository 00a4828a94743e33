import os

# Settings are read at import time: point them at SQLite and switch off background work
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ADMIN_SYNC_URL"] = "https://admin.example.com/api"
os.environ["ADMIN_SYNC_SECRET"] = "test-secret"
os.environ["OUTBOX_SCHEDULER_ENABLED"] = "false"
os.environ["OUTBOX_FLUSH_ENABLED"] = "false"
os.environ.setdefault("LOG_FORMAT", "text")

from datetime import datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool, StaticPool  # noqa: E402

from admin_sync.db.base_class import Base  # noqa: E402
from admin_sync.db.session import build_session_factory  # noqa: E402
from admin_sync.models.outbox import OutboxEvent, OutboxHealth  # noqa: E402
from admin_sync.services.outbox_health_service import OutboxHealthService  # noqa: E402
from admin_sync.services.outbox_store import OutboxStore  # noqa: E402


class FakeClock:
    """Manually advanced naive-UTC clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class FakeAdminClient:
    """Stands in for AdminSyncClient; `error` is raised from every send."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.sent: list[tuple[str, object]] = []

    async def send(self, path, payload):
        self.sent.append((path, payload))
        if self.error is not None:
            raise self.error

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 12, 0, 0))


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def file_db_engine(tmp_path):
    """One connection per session, so concurrent claimers really are separate."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'outbox.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def health(session_factory, clock):
    return OutboxHealthService(session_factory, clock=clock)


@pytest.fixture
def store(session_factory, health, clock):
    return OutboxStore(session_factory, health=health, clock=clock)


@pytest.fixture
def fetch_events(session_factory):
    async def _fetch() -> list[OutboxEvent]:
        async with session_factory() as session:
            result = await session.scalars(select(OutboxEvent).order_by(OutboxEvent.created_at))
            return list(result.all())
    return _fetch


@pytest.fixture
def fetch_health(session_factory):
    async def _fetch() -> OutboxHealth | None:
        async with session_factory() as session:
            return await session.get(OutboxHealth, 1)
    return _fetch


@pytest.fixture
def make_admin_client():
    return FakeAdminClient
