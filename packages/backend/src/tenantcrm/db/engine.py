"""Async SQLAlchemy engine and session factory.

One engine with connection pooling; each request gets its own
AsyncSession through the get_db dependency.
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tenantcrm.config import settings

_engine_kwargs = {"echo": settings.debug}
# SQLite (tests, local dev) uses a single-connection pool without sizing knobs.
if not settings.database_url.startswith("sqlite"):
    _engine_kwargs.update(pool_size=5, max_overflow=15)

engine = create_async_engine(settings.database_url, **_engine_kwargs)

# Session factory: each request gets its own session.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncSession:
    """FastAPI dependency: yields a session per request, auto-closes."""
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
