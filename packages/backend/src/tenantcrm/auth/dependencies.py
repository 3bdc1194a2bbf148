"""FastAPI auth dependencies: the authorization gate.

Used as Depends() in route handlers:
- require_authenticated: 401 unless the request carries a live identity
- require_permission(...): additionally loads the caller's role fresh
  from the database and checks it against the accepted permission atoms

Role data is never cached, so permission edits apply on the next request.
"""

from typing import Callable

import structlog
from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from tenantcrm.auth.context import RequestContext, load_request_context
from tenantcrm.auth.identity import AuthenticatedIdentity
from tenantcrm.auth.permissions import Permission, RoleGrant
from tenantcrm.db.engine import get_db
from tenantcrm.services.identity_store import IdentityStore, StorageError

logger = structlog.get_logger()


async def require_authenticated(
    ctx: RequestContext = Depends(load_request_context),
) -> AuthenticatedIdentity:
    """Current identity (required: 401 if the request is anonymous)."""
    if ctx.identity is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return ctx.identity


def require_permission(*required: Permission) -> Callable:
    """Build a guard passing roles that hold any of `required`.

    A wildcard role always passes. A role also passes when its name
    equals one of the atoms, e.g. a role named "admin" satisfies
    require_permission(Permission.ADMIN) without listing it.
    """
    if not required:
        raise ValueError("require_permission() needs at least one permission")
    accepted = tuple(Permission(p) for p in required)

    async def guard(
        identity: AuthenticatedIdentity = Depends(require_authenticated),
        db: AsyncSession = Depends(get_db),
    ) -> AuthenticatedIdentity:
        if identity.role_id is None:
            role = None
        else:
            try:
                role = await IdentityStore(db).get_role(
                    identity.role_id, identity.organization_id
                )
            except StorageError as e:
                logger.error("authz.role_lookup_failed", error=str(e))
                raise HTTPException(status_code=500, detail="Authorization error")

        if role is None:
            # Every user gets a role at registration; a missing one is a
            # data problem, not something the caller can fix.
            logger.error(
                "authz.no_role",
                user_id=str(identity.id),
                role_id=str(identity.role_id),
            )
            raise HTTPException(
                status_code=500, detail="Authorization error: no role configured"
            )

        if not RoleGrant.from_role(role).allows(accepted):
            logger.info(
                "authz.denied",
                user_id=str(identity.id),
                role=role.name,
                required=[p.value for p in accepted],
            )
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return identity

    return guard
