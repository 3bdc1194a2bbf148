"""Liveness and dependency status.

The database is required for every auth operation; Redis only backs
rate limiting. Either one failing reports "degraded" with a 200 so the
endpoint stays usable by load balancers that only check reachability.
"""

import structlog
from fastapi import APIRouter
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from tenantcrm import __version__
from tenantcrm.db import redis_pool
from tenantcrm.db.engine import engine

logger = structlog.get_logger()

router = APIRouter()


async def _database_status() -> str:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning("health.database_unreachable", error=str(e))
        return "unreachable"
    return "ok"


async def _redis_status() -> str:
    try:
        client = redis_pool.get_redis()
    except RuntimeError:
        # Lifespan could not connect at startup
        return "not initialized"
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        logger.warning("health.redis_unreachable", error=str(e))
        return "unreachable"
    return "ok"


@router.get("/health")
async def health_check():
    database = await _database_status()
    redis = await _redis_status()
    healthy = database == "ok" and redis == "ok"
    return {
        "status": "healthy" if healthy else "degraded",
        "version": __version__,
        "database": database,
        "redis": redis,
    }
