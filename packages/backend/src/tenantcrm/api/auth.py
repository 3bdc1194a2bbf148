"""Auth API: registration, login, logout, current user.

- POST /auth/register → create org + admin role + user, start a session
- POST /auth/login → email/password → session cookie
- POST /auth/logout → destroy the session, clear the cookie
- GET /auth/me → current user with organization

Every login failure answers the same "Invalid credentials" so the
response never reveals whether the email exists.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from tenantcrm.auth.context import RequestContext, load_request_context
from tenantcrm.auth.dependencies import require_authenticated
from tenantcrm.auth.identity import (
    AuthenticatedIdentity,
    IdentityResolver,
    RegistrationData,
    RegistrationError,
)
from tenantcrm.auth.sessions import (
    SessionStore,
    clear_session_cookie,
    cookie_should_be_secure,
    issue_session_cookie,
)
from tenantcrm.db.engine import get_db
from tenantcrm.schemas.auth import LoginRequest, RegisterRequest, UserEnvelope, UserRead
from tenantcrm.services.identity_store import IdentityStore, StorageError

logger = structlog.get_logger()

router = APIRouter(prefix="/auth")


def _envelope(identity: AuthenticatedIdentity) -> UserEnvelope:
    return UserEnvelope(user=UserRead.model_validate(identity))


async def _start_session(
    request: Request,
    response: Response,
    ctx: RequestContext,
    sessions: SessionStore,
    identity: AuthenticatedIdentity,
) -> None:
    """Bind a new session to identity, dropping any previous one."""
    if ctx.session_token:
        try:
            await sessions.clear(ctx.session_token)
        except StorageError as e:
            logger.warning("session.rotate_failed", error=str(e))
    token = await sessions.create(identity.id)
    issue_session_cookie(response, token, secure=cookie_should_be_secure(request))


# ─── Register ────────────────────────────────────────────


@router.post("/register", response_model=UserEnvelope)
async def register(
    body: RegisterRequest,
    request: Request,
    response: Response,
    ctx: RequestContext = Depends(load_request_context),
    db: AsyncSession = Depends(get_db),
):
    """Create an organization with its first (admin) user."""
    if not body.email or not body.password or not body.username:
        raise HTTPException(
            status_code=400, detail="Email, password, and username are required"
        )
    if not body.organization_name or not body.organization_subdomain:
        raise HTTPException(
            status_code=400, detail="Organization name and subdomain are required"
        )

    resolver = IdentityResolver(IdentityStore(db))
    try:
        identity = await resolver.register(
            RegistrationData(
                email=body.email,
                password=body.password,
                username=body.username,
                full_name=body.full_name,
                organization_name=body.organization_name,
                organization_subdomain=body.organization_subdomain,
            )
        )
    except RegistrationError as e:
        logger.info("auth.register_rejected", reason=str(e))
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        logger.error("auth.register_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Registration failed")

    # The account is committed at this point; only the session is missing
    try:
        await _start_session(request, response, ctx, SessionStore(db), identity)
    except StorageError as e:
        logger.error(
            "auth.session_create_failed", user_id=str(identity.id), error=str(e)
        )
        raise HTTPException(status_code=500, detail="Account created; please log in")

    return _envelope(identity)


# ─── Login ───────────────────────────────────────────────


@router.post("/login", response_model=UserEnvelope)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    ctx: RequestContext = Depends(load_request_context),
    db: AsyncSession = Depends(get_db),
):
    """Login with email and password → session cookie."""
    if not body.email or not body.password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    result = await IdentityResolver(IdentityStore(db)).authenticate(
        body.email, body.password
    )
    if not result.ok:
        logger.info("auth.login_failed", reason=result.status.value)
        raise HTTPException(status_code=401, detail="Invalid credentials")

    try:
        await _start_session(request, response, ctx, SessionStore(db), result.identity)
    except StorageError as e:
        logger.error("auth.session_create_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Login failed")

    logger.info("auth.login", user_id=str(result.identity.id))
    return _envelope(result.identity)


# ─── Logout ──────────────────────────────────────────────


@router.post("/logout")
async def logout(
    response: Response,
    ctx: RequestContext = Depends(load_request_context),
    db: AsyncSession = Depends(get_db),
):
    """Destroy the server-side session and clear the cookie."""
    if ctx.session_token:
        try:
            await SessionStore(db).destroy(ctx.session_token)
        except StorageError as e:
            logger.error("auth.logout_failed", error=str(e))
            raise HTTPException(status_code=500, detail="Logout failed")
    clear_session_cookie(response)
    return {"message": "Logged out successfully"}


# ─── Current user ───────────────────────────────────────


@router.get("/me", response_model=UserEnvelope)
async def get_me(identity: AuthenticatedIdentity = Depends(require_authenticated)):
    """Get the current authenticated user with its organization."""
    return _envelope(identity)
