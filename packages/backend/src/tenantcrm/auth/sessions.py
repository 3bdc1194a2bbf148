"""Session binding: opaque cookie token <-> user id.

The client holds a random token in an http-only cookie; the server keeps
only its sha256 digest next to the user id and an expiry. Sessions are
created at login/registration, dropped at logout, and pruned once expired.
No in-process locking: concurrent writes to the same session are rare
(login/logout) and last write wins.
"""

import hashlib
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import Response

from tenantcrm.config import settings
from tenantcrm.db.models import UserSession
from tenantcrm.services.identity_store import StorageError

logger = structlog.get_logger()


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SessionStore:
    """Server-side session records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @property
    def max_age(self) -> timedelta:
        return timedelta(hours=settings.session_max_age_hours)

    async def create(self, user_id: uuid.UUID) -> str:
        """Bind a fresh token to user_id and return the raw token."""
        token = secrets.token_urlsafe(32)
        record = UserSession(
            token_hash=hash_token(token),
            user_id=user_id,
            expires_at=datetime.now(timezone.utc) + self.max_age,
        )
        self.db.add(record)
        await self._commit()
        return token

    async def get_user_id(self, token: str) -> Optional[uuid.UUID]:
        """User bound to token, or None if unknown or expired."""
        try:
            result = await self.db.execute(
                select(UserSession).where(UserSession.token_hash == hash_token(token))
            )
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e
        record = result.scalars().first()
        if record is None:
            return None
        if _as_utc(record.expires_at) <= datetime.now(timezone.utc):
            await self.clear(token)
            return None
        return record.user_id

    async def clear(self, token: str) -> None:
        """Forget a binding that no longer resolves to a valid user."""
        await self._delete(token)
        logger.info("session.cleared")

    async def destroy(self, token: str) -> None:
        """Logout. Failures propagate so the caller can report them."""
        await self._delete(token)

    async def purge_expired(self) -> int:
        """Delete every expired session; returns how many were removed."""
        try:
            result = await self.db.execute(
                delete(UserSession).where(
                    UserSession.expires_at <= datetime.now(timezone.utc)
                )
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError(str(e)) from e
        await self._commit()
        return result.rowcount or 0

    async def _delete(self, token: str) -> None:
        try:
            await self.db.execute(
                delete(UserSession).where(UserSession.token_hash == hash_token(token))
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError(str(e)) from e
        await self._commit()

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError(str(e)) from e


# ─── Cookie helpers ──────────────────────────────────────


def issue_session_cookie(response: Response, token: str, secure: bool) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_max_age_hours * 3600,
        httponly=True,
        secure=secure,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(key=settings.session_cookie_name, path="/")


def cookie_should_be_secure(request) -> bool:
    """Secure cookies over TLS, and always in production."""
    return request.url.scheme == "https" or settings.is_production
