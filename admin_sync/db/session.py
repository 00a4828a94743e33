from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from admin_sync.core.config import settings


def build_engine(url: str | None = None, **kwargs) -> AsyncEngine:
    """Create the async engine; sqlite URLs are used by the test suite."""
    url = url or settings.database_url
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False, **kwargs)
    return create_async_engine(url, pool_pre_ping=True, echo=False, **kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        expire_on_commit=False,
        class_=AsyncSession,
    )


engine = build_engine()
async_session_factory = build_session_factory(engine)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session_factory() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency: outbox services open their own short transactions."""
    return async_session_factory
