"""Test fixtures: a fresh in-memory database per test.

Each test gets its own aiosqlite engine (StaticPool keeps the single
in-memory connection alive), the schema is created from the ORM
metadata, and the app's get_db dependency is overridden to hand out
that session. bcrypt runs at its minimum cost so tests stay fast.
"""

import os

# Must be set before tenantcrm.config is imported
os.environ["TENANTCRM_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["TENANTCRM_BCRYPT_ROUNDS"] = "4"
os.environ["TENANTCRM_ENVIRONMENT"] = "development"

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from tenantcrm.auth.identity import IdentityResolver, RegistrationData  # noqa: E402
from tenantcrm.db.engine import get_db  # noqa: E402
from tenantcrm.db.models import Base  # noqa: E402
from tenantcrm.main import app  # noqa: E402
from tenantcrm.services.identity_store import IdentityStore  # noqa: E402

TEST_DB_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture()
async def engine():
    engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()


@pytest_asyncio.fixture()
async def client(db_session):
    """HTTP client with get_db overridden; auth runs for real.

    The client keeps cookies, so after a register/login call the
    following requests carry the session cookie.
    """

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def identity(db_session):
    """A registered Acme admin, created through the resolver."""
    resolver = IdentityResolver(IdentityStore(db_session))
    return await resolver.register(
        RegistrationData(
            email="owner@acme.test",
            password="owner-password",
            username="owner",
            full_name="Acme Owner",
            organization_name="Acme",
            organization_subdomain="acme",
        )
    )
