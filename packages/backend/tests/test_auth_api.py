"""Auth HTTP contract: register, login, logout, me.

Tests cover:
1. Registration + duplicate prevention + required fields
2. Login → session cookie, generic 401 on any failure
3. Logout destroys the server-side session
4. /me requires a live session
"""

import pytest
from sqlalchemy import func, select

from tenantcrm.auth.sessions import SessionStore
from tenantcrm.config import settings
from tenantcrm.db.models import Organization, Role, User, UserSession
from tenantcrm.services.identity_store import StorageError

ACME = {
    "email": "a@x.com",
    "password": "pw123456",
    "username": "a",
    "organizationName": "Acme",
    "organizationSubdomain": "acme",
}


async def _count(db, model):
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


# ═══════════════════════════════════════════════════════════
# Registration
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_register_scenario(client, db_session):
    r = await client.post("/api/auth/register", json=ACME)
    assert r.status_code == 200
    user = r.json()["user"]
    assert user["email"] == "a@x.com"
    assert user["username"] == "a"
    assert user["organization"]["name"] == "Acme"
    assert user["organization"]["subdomain"] == "acme"
    assert not any("password" in k for k in user)

    role = (await db_session.execute(select(Role))).scalars().one()
    assert role.name == "admin" and role.permissions == ["*"]

    # Registration logs the new user in
    assert settings.session_cookie_name in client.cookies
    r = await client.get("/api/auth/me")
    assert r.status_code == 200
    assert r.json()["user"]["id"] == user["id"]


@pytest.mark.asyncio
async def test_register_accepts_full_name(client):
    r = await client.post("/api/auth/register", json={**ACME, "fullName": "Alice A."})
    assert r.status_code == 200
    assert r.json()["user"]["fullName"] == "Alice A."


@pytest.mark.asyncio
@pytest.mark.parametrize("missing", ["email", "password", "username"])
async def test_register_missing_credentials(client, missing):
    body = {k: v for k, v in ACME.items() if k != missing}
    r = await client.post("/api/auth/register", json=body)
    assert r.status_code == 400
    assert r.json()["detail"] == "Email, password, and username are required"


@pytest.mark.asyncio
@pytest.mark.parametrize("missing", ["organizationName", "organizationSubdomain"])
async def test_register_missing_organization(client, db_session, missing):
    body = {k: v for k, v in ACME.items() if k != missing}
    r = await client.post("/api/auth/register", json=body)
    assert r.status_code == 400
    assert await _count(db_session, Organization) == 0


@pytest.mark.asyncio
async def test_register_duplicate_email(client, db_session):
    r1 = await client.post("/api/auth/register", json=ACME)
    assert r1.status_code == 200

    r2 = await client.post(
        "/api/auth/register", json={**ACME, "organizationSubdomain": "acme-two"}
    )
    assert r2.status_code == 400
    assert r2.json()["detail"] == "User with this email already exists"

    assert await _count(db_session, Organization) == 1
    assert await _count(db_session, Role) == 1
    assert await _count(db_session, User) == 1


@pytest.mark.asyncio
async def test_register_storage_failure(client, monkeypatch):
    from tenantcrm.services.identity_store import IdentityStore

    async def boom(self, **kwargs):
        raise StorageError("insert failed")

    monkeypatch.setattr(IdentityStore, "create_user", boom)
    r = await client.post("/api/auth/register", json=ACME)
    assert r.status_code == 500
    assert r.json()["detail"] == "Registration failed"


@pytest.mark.asyncio
async def test_register_session_failure_keeps_account(client, db_session, monkeypatch):
    async def boom(self, user_id):
        raise StorageError("session insert failed")

    monkeypatch.setattr(SessionStore, "create", boom)
    r = await client.post("/api/auth/register", json=ACME)
    assert r.status_code == 500
    assert r.json()["detail"] == "Account created; please log in"
    assert await _count(db_session, User) == 1
    assert settings.session_cookie_name not in client.cookies

    # The account is usable once sessions work again
    monkeypatch.undo()
    r = await client.post(
        "/api/auth/login", json={"email": "a@x.com", "password": "pw123456"}
    )
    assert r.status_code == 200


# ═══════════════════════════════════════════════════════════
# Login
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_login_scenario(client):
    r = await client.post("/api/auth/register", json=ACME)
    registered = r.json()["user"]
    client.cookies.clear()

    r = await client.post(
        "/api/auth/login", json={"email": "a@x.com", "password": "pw123456"}
    )
    assert r.status_code == 200
    assert r.json()["user"] == registered

    set_cookie = r.headers["set-cookie"].lower()
    assert "httponly" in set_cookie
    assert "max-age=86400" in set_cookie
    assert "secure" not in set_cookie  # plain HTTP in development

    r = await client.get("/api/auth/me")
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_login_wrong_password(client):
    await client.post("/api/auth/register", json=ACME)
    client.cookies.clear()

    r = await client.post("/api/auth/login", json={"email": "a@x.com", "password": "wrong"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid credentials"
    assert settings.session_cookie_name not in client.cookies


@pytest.mark.asyncio
async def test_login_unknown_email_looks_the_same(client):
    r = await client.post(
        "/api/auth/login", json={"email": "nobody@x.com", "password": "whatever"}
    )
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid credentials"


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{"email": "a@x.com"}, {"password": "pw"}, {}])
async def test_login_missing_fields(client, body):
    r = await client.post("/api/auth/login", json=body)
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_login_replaces_previous_session(client, db_session):
    await client.post("/api/auth/register", json=ACME)
    assert await _count(db_session, UserSession) == 1

    r = await client.post(
        "/api/auth/login", json={"email": "a@x.com", "password": "pw123456"}
    )
    assert r.status_code == 200
    assert await _count(db_session, UserSession) == 1


# ═══════════════════════════════════════════════════════════
# Logout and /me
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_me_without_session(client):
    r = await client.get("/api/auth/me")
    assert r.status_code == 401
    assert r.json()["detail"] == "Authentication required"


@pytest.mark.asyncio
async def test_me_with_forged_cookie(client):
    r = await client.get(
        "/api/auth/me",
        headers={"Cookie": f"{settings.session_cookie_name}=forged-token"},
    )
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_me_returns_full_profile(client, db_session):
    await client.post("/api/auth/register", json={**ACME, "fullName": "Alice A."})
    client.cookies.clear()
    await client.post("/api/auth/login", json={"email": "a@x.com", "password": "pw123456"})

    r = await client.get("/api/auth/me")
    assert r.status_code == 200
    user = r.json()["user"]

    role = (await db_session.execute(select(Role))).scalars().one()
    assert user["roleId"] == str(role.id)
    assert user["fullName"] == "Alice A."
    assert user["isActive"] is True
    assert user["lastLogin"] is not None
    assert user["phone"] is None and user["avatar"] is None
    assert "createdAt" in user and "updatedAt" in user
    assert user["organization"]["isActive"] is True
    assert "createdAt" in user["organization"]
    assert not any("password" in k.lower() for k in user)


@pytest.mark.asyncio
async def test_logout(client, db_session):
    await client.post("/api/auth/register", json=ACME)
    token = client.cookies[settings.session_cookie_name]

    r = await client.post("/api/auth/logout")
    assert r.status_code == 200
    assert settings.session_cookie_name not in client.cookies
    assert await SessionStore(db_session).get_user_id(token) is None

    r = await client.get("/api/auth/me")
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_logout_without_session(client):
    r = await client.post("/api/auth/logout")
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_logout_store_failure(client, monkeypatch):
    await client.post("/api/auth/register", json=ACME)

    async def broken(self, token):
        raise StorageError("connection reset")

    monkeypatch.setattr(SessionStore, "destroy", broken)
    r = await client.post("/api/auth/logout")
    assert r.status_code == 500
    assert r.json()["detail"] == "Logout failed"
