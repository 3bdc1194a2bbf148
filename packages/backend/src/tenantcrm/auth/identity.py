"""Identity resolution: login and registration.

authenticate() turns an email/password pair into an AuthenticatedIdentity
and reports *why* it failed through AuthStatus, so logs can tell a
missing user from a wrong password or a database outage. Routes still
collapse every failure into one generic "Invalid credentials" answer.

register() creates organization, default admin role, and user inside a
single transaction: either all three rows exist afterwards or none do.
"""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import structlog
from starlette.concurrency import run_in_threadpool

from tenantcrm.auth.password import hash_password, needs_rehash, verify_password
from tenantcrm.auth.permissions import DEFAULT_ADMIN_PERMISSIONS, DEFAULT_ADMIN_ROLE
from tenantcrm.db.models import User
from tenantcrm.services.identity_store import IdentityStore, StorageError

logger = structlog.get_logger()


# ─── Identity ────────────────────────────────────────────


@dataclass(frozen=True)
class OrganizationSnapshot:
    id: uuid.UUID
    name: str
    subdomain: str
    settings: dict = field(default_factory=dict)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class AuthenticatedIdentity:
    """A user enriched with its organization, without secret material.

    Lives for one request or one authentication call; never persisted.
    """

    id: uuid.UUID
    username: str
    email: str
    organization: OrganizationSnapshot
    role_id: Optional[uuid.UUID] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    avatar: Optional[str] = None
    is_active: bool = True
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def organization_id(self) -> uuid.UUID:
        return self.organization.id

    @classmethod
    def from_user(cls, user: User) -> "AuthenticatedIdentity":
        """Build from a User row whose organization is already loaded."""
        org = user.organization
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            organization=OrganizationSnapshot(
                id=org.id,
                name=org.name,
                subdomain=org.subdomain,
                settings=dict(org.settings or {}),
                is_active=org.is_active,
                created_at=org.created_at,
                updated_at=org.updated_at,
            ),
            role_id=user.role_id,
            full_name=user.full_name,
            phone=user.phone,
            avatar=user.avatar,
            is_active=user.is_active,
            last_login=user.last_login,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


# ─── Results and errors ──────────────────────────────────


class AuthStatus(str, enum.Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    INVALID_CREDENTIALS = "invalid_credentials"
    STORAGE_ERROR = "storage_error"


@dataclass(frozen=True)
class AuthResult:
    status: AuthStatus
    identity: Optional[AuthenticatedIdentity] = None

    @property
    def ok(self) -> bool:
        return self.status is AuthStatus.SUCCESS


class RegistrationError(Exception):
    """Registration rejected for a domain reason (safe to show the client)."""


class MissingOrganizationError(RegistrationError):
    def __init__(self):
        super().__init__("Organization name and subdomain are required")


class DuplicateEmailError(RegistrationError):
    def __init__(self):
        super().__init__("User with this email already exists")


class DuplicateSubdomainError(RegistrationError):
    def __init__(self):
        super().__init__("Organization subdomain is already taken")


@dataclass
class RegistrationData:
    email: str
    password: str
    username: str
    organization_name: Optional[str] = None
    organization_subdomain: Optional[str] = None
    full_name: Optional[str] = None


# ─── Resolver ────────────────────────────────────────────


class IdentityResolver:
    """Login and registration against the identity store."""

    def __init__(self, store: IdentityStore):
        self.store = store

    async def authenticate(self, email: str, password: str) -> AuthResult:
        try:
            user = await self.store.get_active_user_by_email(email)
        except StorageError as e:
            logger.error("auth.lookup_failed", error=str(e))
            await self.store.rollback()
            return AuthResult(AuthStatus.STORAGE_ERROR)

        if user is None:
            return AuthResult(AuthStatus.NOT_FOUND)

        # bcrypt is CPU-bound; keep it off the event loop
        stored_hash = user.password_hash
        if not await run_in_threadpool(verify_password, password, stored_hash):
            return AuthResult(AuthStatus.INVALID_CREDENTIALS)

        identity = AuthenticatedIdentity.from_user(user)
        await self._record_login(user.id, password, stored_hash)
        return AuthResult(AuthStatus.SUCCESS, identity)

    async def _record_login(
        self, user_id: uuid.UUID, password: str, stored_hash: str
    ) -> None:
        """Best effort: a failed stamp never fails the login."""
        upgraded = None
        if needs_rehash(stored_hash):
            upgraded = await run_in_threadpool(hash_password, password)
        try:
            await self.store.record_login(
                user_id, datetime.now(timezone.utc), password_hash=upgraded
            )
            await self.store.commit()
        except StorageError as e:
            logger.warning("auth.last_login_not_recorded", user_id=str(user_id), error=str(e))
            await self.store.rollback()

    async def register(self, data: RegistrationData) -> AuthenticatedIdentity:
        """Create org + admin role + user and return the new identity.

        Raises RegistrationError for domain failures and StorageError
        when the database fails; in both cases nothing is persisted.
        """
        if not data.organization_name or not data.organization_subdomain:
            raise MissingOrganizationError()

        if await self.store.email_exists(data.email):
            raise DuplicateEmailError()
        if await self.store.subdomain_exists(data.organization_subdomain):
            raise DuplicateSubdomainError()

        password_hash = await run_in_threadpool(hash_password, data.password)

        try:
            org = await self.store.create_organization(
                name=data.organization_name,
                subdomain=data.organization_subdomain,
            )
            # The role must exist before the user that references it
            role = await self.store.create_role(
                organization_id=org.id,
                name=DEFAULT_ADMIN_ROLE,
                description="Organization Administrator",
                permissions=sorted(DEFAULT_ADMIN_PERMISSIONS),
            )
            user = await self.store.create_user(
                email=data.email,
                username=data.username,
                password_hash=password_hash,
                full_name=data.full_name,
                organization_id=org.id,
                role_id=role.id,
            )
            user_id = user.id
            await self.store.commit()
        except StorageError:
            await self.store.rollback()
            # A concurrent registration may have won the unique index race
            if await self.store.email_exists(data.email):
                raise DuplicateEmailError()
            if await self.store.subdomain_exists(data.organization_subdomain):
                raise DuplicateSubdomainError()
            raise

        logger.info(
            "auth.registered",
            user_id=str(user_id),
            organization_id=str(org.id),
        )

        fresh = await self.store.get_user_with_org(user_id)
        if fresh is None:
            raise StorageError("Registered user could not be re-read")
        return AuthenticatedIdentity.from_user(fresh)
