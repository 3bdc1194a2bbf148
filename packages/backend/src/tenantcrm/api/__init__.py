"""API route aggregation.

All routers registered here get mounted in main.py.

The request context loader is attached at the top-level router, so it
runs once for every API request before any route-specific guard;
FastAPI caches it, and handlers that ask for RequestContext get the
same value. Health and auth routers are open; the guards on individual
routes decide what needs a login or a permission.
"""

from fastapi import APIRouter, Depends

from tenantcrm.api.auth import router as auth_router
from tenantcrm.api.health import router as health_router
from tenantcrm.api.roles import router as roles_router
from tenantcrm.auth.context import load_request_context

api_router = APIRouter(prefix="/api")

# Health stays outside the context loader: it must answer without a database session
api_router.include_router(health_router, tags=["health"])

_context = [Depends(load_request_context)]

api_router.include_router(auth_router, tags=["auth"], dependencies=_context)
api_router.include_router(roles_router, tags=["roles", "users"], dependencies=_context)
