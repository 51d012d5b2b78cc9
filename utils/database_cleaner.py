"""Helpers to remove idle story sessions from the SQLite database."""

import asyncio
import logging
from datetime import timedelta

from models.session_models import to_iso, utc_now
from utils.database_init import AsyncDatabaseInitializer

logger = logging.getLogger(__name__)


class DatabaseCleaner:
    """Delete SESSION rows (and their segments/participants) idle past the retention window."""

    def __init__(self, db_initializer: AsyncDatabaseInitializer, retention_seconds: int = 86_400) -> None:
        """
        Args:
            db_initializer: Shared database initializer/connection provider.
            retention_seconds: Inactivity threshold in seconds; sessions idle longer are removed.
        """
        self._db = db_initializer
        self.retention_seconds = retention_seconds

    async def prune_idle_sessions(self) -> int:
        """Delete sessions idle longer than the retention window and return count removed."""
        cutoff = to_iso(utc_now() - timedelta(seconds=self.retention_seconds))
        async with self._db.connection() as conn:
            await conn.execute("DELETE FROM SESSION WHERE last_activity_at < ?", (cutoff,))
            await conn.commit()
            cur = await conn.execute("SELECT changes()")
            deleted = await cur.fetchone()
            return int(deleted[0]) if deleted and deleted[0] is not None else 0

    async def run_periodic_cleanup(self, interval_seconds: int = 3_600) -> None:
        """
        Repeatedly prune idle sessions at the given interval until cancelled.

        Args:
            interval_seconds: Seconds to sleep between cleanup runs.
        """
        while True:
            try:
                removed = await self.prune_idle_sessions()
                if removed:
                    logger.info("Pruned %d idle session(s) from the database", removed)
                await asyncio.sleep(interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Database cleanup failed; retrying next interval")
                await asyncio.sleep(interval_seconds)
