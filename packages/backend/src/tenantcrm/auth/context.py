"""Request context loader.

Runs once per request (mounted on the API router; FastAPI caches the
dependency for the request) and turns the session cookie into a fresh
AuthenticatedIdentity. Nothing is cached across requests: a user or
organization deactivated a second ago is logged out on the next request.

The result is an explicit RequestContext value handed to route handlers,
never process-wide state. Storage failures degrade to an anonymous
request instead of failing it, and the session is dropped as if the
identity had gone stale.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from tenantcrm.auth.identity import AuthenticatedIdentity
from tenantcrm.auth.sessions import SessionStore, clear_session_cookie
from tenantcrm.config import settings
from tenantcrm.db.engine import get_db
from tenantcrm.services.identity_store import IdentityStore, StorageError

logger = structlog.get_logger()


@dataclass
class RequestContext:
    """Per-request auth state."""

    session_token: Optional[str] = None
    identity: Optional[AuthenticatedIdentity] = None

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None


async def load_request_context(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> RequestContext:
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        return RequestContext()

    sessions = SessionStore(db)
    try:
        user_id = await sessions.get_user_id(token)
        if user_id is None:
            clear_session_cookie(response)
            return RequestContext()

        user = await IdentityStore(db).get_user_with_org(user_id)
        if user is None or not user.is_active or not user.organization.is_active:
            logger.info(
                "session.stale_identity",
                user_id=str(user_id),
                found=user is not None,
            )
            await sessions.clear(token)
            clear_session_cookie(response)
            return RequestContext()

        identity = AuthenticatedIdentity.from_user(user)
    except StorageError as e:
        logger.warning("session.context_load_failed", error=str(e))
        await db.rollback()
        await _forget(sessions, token)
        clear_session_cookie(response)
        return RequestContext()

    structlog.contextvars.bind_contextvars(
        user_id=str(identity.id),
        organization_id=str(identity.organization_id),
    )
    return RequestContext(session_token=token, identity=identity)


async def _forget(sessions: SessionStore, token: str) -> None:
    """Best effort: the store may be the thing that is down."""
    try:
        await sessions.clear(token)
    except StorageError as e:
        logger.warning("session.clear_failed", error=str(e))
