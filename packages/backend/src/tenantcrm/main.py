"""FastAPI application factory.

create_app() returns a configured FastAPI instance. Lifespan manages
startup/shutdown (Redis pool, session reaper, database engine).
Middleware, CORS, and routers are all registered here.
"""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from tenantcrm import __version__
from tenantcrm.api import api_router
from tenantcrm.config import settings

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    logger.info(
        "tenantcrm.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    from tenantcrm.db.redis_pool import close_redis, init_redis
    try:
        await init_redis()
        logger.info("tenantcrm.redis_connected", url=settings.redis_url)
    except (RedisError, OSError) as e:
        # Redis is optional: only rate limiting is lost
        logger.warning("tenantcrm.redis_unavailable", error=str(e))

    from tenantcrm.services.session_reaper import SessionReaper
    reaper = SessionReaper(interval=settings.session_prune_interval_seconds)
    reaper_task = asyncio.create_task(reaper.run_loop())

    yield

    logger.info("tenantcrm.shutdown")

    reaper.stop()
    reaper_task.cancel()
    try:
        await reaper_task
    except asyncio.CancelledError:
        pass

    await close_redis()

    from tenantcrm.db.engine import engine
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="TenantCRM",
        description="Multi-tenant CRM backend: sessions, organizations, roles",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from tenantcrm.middleware.rate_limit import RateLimitMiddleware
    from tenantcrm.middleware.request_id import RequestIdMiddleware
    from tenantcrm.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: tenantcrm.main:app)
app = create_app()
