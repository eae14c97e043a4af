"""Async engine and session factory shared by the repositories and the API."""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from studyrag.config import Settings, get_settings

# Plain URL prefix → async driver prefix
_ASYNC_DRIVERS = (
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
    ("sqlite:///", "sqlite+aiosqlite:///"),
)


def _get_async_url(url: str) -> str:
    """Point a plain database URL at its async driver; URLs with a driver pass unchanged."""
    for plain, async_prefix in _ASYNC_DRIVERS:
        if url.startswith(plain):
            return async_prefix + url[len(plain):]
    return url


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the engine; SQL echo is left to the ``sqlalchemy.engine`` log level."""
    url = _get_async_url(settings.database_url)
    options: dict = {"future": True}
    if url.startswith("postgresql"):
        # Pooled connections can go stale while a long generation runs
        options["pool_pre_ping"] = True
    return create_async_engine(url, **options)


engine = build_engine(get_settings())

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one unit of work per request, committed only on success."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
