"""Organization roles and members.

Everything here is scoped to the caller's organization; ids from other
organizations are invisible.

- GET /user-roles → roles of my organization
- POST /user-roles → create a role (needs manage_roles)
- GET /users → members of my organization
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from tenantcrm.auth.dependencies import require_authenticated, require_permission
from tenantcrm.auth.identity import AuthenticatedIdentity
from tenantcrm.auth.permissions import Permission
from tenantcrm.db.engine import get_db
from tenantcrm.schemas.auth import MemberRead, RoleCreate, RoleRead
from tenantcrm.services.identity_store import IdentityStore, StorageError

logger = structlog.get_logger()

router = APIRouter()


def _store(db: AsyncSession = Depends(get_db)) -> IdentityStore:
    return IdentityStore(db)


@router.get("/user-roles", response_model=list[RoleRead])
async def list_roles(
    identity: AuthenticatedIdentity = Depends(require_authenticated),
    store: IdentityStore = Depends(_store),
):
    try:
        return await store.list_roles(identity.organization_id)
    except StorageError as e:
        logger.error("roles.list_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to fetch user roles")


@router.post("/user-roles", response_model=RoleRead, status_code=201)
async def create_role(
    body: RoleCreate,
    identity: AuthenticatedIdentity = Depends(require_permission(Permission.MANAGE_ROLES)),
    store: IdentityStore = Depends(_store),
):
    """Create a role in the caller's organization."""
    try:
        existing = {r.name for r in await store.list_roles(identity.organization_id)}
        if body.name in existing:
            raise HTTPException(status_code=409, detail="Role already exists")
        role = await store.create_role(
            organization_id=identity.organization_id,
            name=body.name,
            description=body.description,
            permissions=[p.value for p in body.permissions],
        )
        await store.commit()
    except StorageError as e:
        await store.rollback()
        logger.error("roles.create_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to create role")

    logger.info("roles.created", role=role.name, organization_id=str(identity.organization_id))
    return role


@router.get("/users", response_model=list[MemberRead])
async def list_users(
    identity: AuthenticatedIdentity = Depends(require_authenticated),
    store: IdentityStore = Depends(_store),
):
    try:
        return await store.list_users(identity.organization_id)
    except StorageError as e:
        logger.error("users.list_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to fetch users")
