"""Identity store: the persistence operations the auth core consumes.

Every method is a suspension point against the database. SQLAlchemy
errors are wrapped in StorageError so callers never depend on driver
exception types. Writes only flush; the caller owns the commit, which
lets registration put organization + role + user in one transaction.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager

from tenantcrm.db.models import Organization, Role, User


class StorageError(Exception):
    """Raised when the backing store fails (connection, constraint, ...)."""


class IdentityStore:
    """Async access to users, organizations, and roles."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Lookups ────────────────────────────────────────

    async def get_active_user_by_email(self, email: str) -> Optional[User]:
        """User joined with its organization, both required to be active."""
        q = (
            select(User)
            .join(User.organization)
            .options(contains_eager(User.organization))
            .where(
                User.email == email,
                User.is_active.is_(True),
                Organization.is_active.is_(True),
            )
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return await self._first(q)

    async def get_user_with_org(self, user_id: uuid.UUID) -> Optional[User]:
        """User joined with its organization, matched on id only.

        Active flags are left to the caller so a deactivated account can
        be told apart from a missing one.
        """
        q = (
            select(User)
            .join(User.organization)
            .options(contains_eager(User.organization))
            .where(User.id == user_id)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return await self._first(q)

    async def email_exists(self, email: str) -> bool:
        q = select(User.id).where(User.email == email).limit(1)
        return await self._first(q) is not None

    async def subdomain_exists(self, subdomain: str) -> bool:
        q = select(Organization.id).where(Organization.subdomain == subdomain).limit(1)
        return await self._first(q) is not None

    async def get_role(
        self, role_id: uuid.UUID, organization_id: uuid.UUID
    ) -> Optional[Role]:
        """Role by id, only if it belongs to the given organization."""
        q = (
            select(Role)
            .where(Role.id == role_id, Role.organization_id == organization_id)
            .execution_options(populate_existing=True)
        )
        return await self._first(q)

    async def list_roles(self, organization_id: uuid.UUID) -> list[Role]:
        q = (
            select(Role)
            .where(Role.organization_id == organization_id)
            .order_by(Role.name)
        )
        return await self._all(q)

    async def list_users(self, organization_id: uuid.UUID) -> list[User]:
        q = (
            select(User)
            .where(User.organization_id == organization_id)
            .order_by(User.username)
        )
        return await self._all(q)

    # ─── Writes (flush only) ────────────────────────────

    async def record_login(
        self,
        user_id: uuid.UUID,
        at: datetime,
        password_hash: Optional[str] = None,
    ) -> None:
        """Stamp last_login, optionally swapping in an upgraded hash."""
        values: dict = {"last_login": at}
        if password_hash is not None:
            values["password_hash"] = password_hash
        try:
            await self.db.execute(
                update(User).where(User.id == user_id).values(**values)
            )
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e

    async def create_organization(self, name: str, subdomain: str) -> Organization:
        org = Organization(name=name, subdomain=subdomain, settings={})
        return await self._add(org)

    async def create_role(
        self,
        organization_id: uuid.UUID,
        name: str,
        permissions: list[str],
        description: Optional[str] = None,
    ) -> Role:
        role = Role(
            organization_id=organization_id,
            name=name,
            description=description,
            permissions=permissions,
        )
        return await self._add(role)

    async def create_user(
        self,
        *,
        email: str,
        username: str,
        password_hash: str,
        organization_id: uuid.UUID,
        role_id: uuid.UUID,
        full_name: Optional[str] = None,
    ) -> User:
        user = User(
            email=email,
            username=username,
            password_hash=password_hash,
            full_name=full_name,
            organization_id=organization_id,
            role_id=role_id,
        )
        return await self._add(user)

    # ─── Transaction control ────────────────────────────

    async def commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError(str(e)) from e

    async def rollback(self) -> None:
        await self.db.rollback()

    # ─── Helpers ────────────────────────────────────────

    async def _first(self, q):
        try:
            result = await self.db.execute(q)
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e
        return result.scalars().first()

    async def _all(self, q) -> list:
        try:
            result = await self.db.execute(q)
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e
        return list(result.scalars().all())

    async def _add(self, obj):
        self.db.add(obj)
        try:
            await self.db.flush()
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e
        return obj
