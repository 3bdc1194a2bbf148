"""Session reaper: prunes expired sessions in the background.

Runs as a long-lived task in the FastAPI lifespan. Expired sessions are
already refused on lookup; this only keeps the table from growing.
Each sweep gets its own DB session.

Usage:
    reaper = SessionReaper(interval=900)
    asyncio.create_task(reaper.run_loop())
"""

import asyncio

import structlog

from tenantcrm.auth.sessions import SessionStore
from tenantcrm.db.engine import async_session_factory
from tenantcrm.services.identity_store import StorageError

logger = structlog.get_logger()


class SessionReaper:
    """Periodically deletes expired session rows."""

    def __init__(self, interval: float = 900.0, session_factory=None):
        self.interval = interval
        self.session_factory = session_factory or async_session_factory
        self._running = False

    async def run_loop(self) -> None:
        self._running = True
        logger.info("session_reaper.started", interval=self.interval)

        while self._running:
            try:
                await self.sweep()
            except StorageError as e:
                logger.warning("session_reaper.error", error=str(e))
            await asyncio.sleep(self.interval)

    async def sweep(self) -> int:
        async with self.session_factory() as db:
            removed = await SessionStore(db).purge_expired()
        if removed:
            logger.info("session_reaper.purged", count=removed)
        return removed

    def stop(self) -> None:
        self._running = False
