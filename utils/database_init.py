import os
import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import aiosqlite

logger = logging.getLogger(__name__)

DB_FILENAME = "app.db"
SCHEMA_VERSION = 1

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS SESSION (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        starting_prompt TEXT,
        created_at TEXT NOT NULL,
        last_activity_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_session_last_activity ON SESSION(last_activity_at)",
    """
    CREATE TABLE IF NOT EXISTS SEGMENT (
        id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL REFERENCES SESSION(id) ON DELETE CASCADE,
        seq INTEGER NOT NULL,
        content TEXT NOT NULL,
        contributor_id TEXT NOT NULL,
        contributor_type TEXT NOT NULL CHECK (contributor_type IN ('user', 'ai')),
        timestamp TEXT NOT NULL,
        mood_tags TEXT NOT NULL DEFAULT '[]'
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_segment_session_timestamp ON SEGMENT(session_id, timestamp, seq)",
    """
    CREATE TABLE IF NOT EXISTS PARTICIPANT (
        id TEXT NOT NULL,
        session_id TEXT NOT NULL REFERENCES SESSION(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        joined_at TEXT NOT NULL,
        PRIMARY KEY (session_id, name)
    )
    """,
)


def resolve_db_dir(db_dir: Optional[Path | str] = None) -> Path:
    """Return a usable database directory, creating it when missing.

    Falls back to DATABASE_DIR when `db_dir` is not given. Raises RuntimeError
    when neither is set or the path names an existing file.
    """
    raw = str(db_dir) if db_dir is not None else (os.getenv("DATABASE_DIR") or "")
    if not raw.strip():
        raise RuntimeError("Set DATABASE_DIR (or pass db_dir) to enable session persistence.")

    path = Path(raw).expanduser()
    if path.is_file():
        raise RuntimeError(f"Database directory {path} is a file; point DATABASE_DIR at a directory.")
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise RuntimeError(f"Cannot create database directory {path}") from exc
    return path


class AsyncDatabaseInitializer:
    """
    Own the SQLite file that stores story sessions.

    - The file lives at `<db_dir>/app.db`.
    - The first `ensure_database()` call optionally wipes the file (`reset`),
      creates the SESSION, SEGMENT and PARTICIPANT tables and stamps
      `PRAGMA user_version`. Later calls return immediately.
    - `connection()` yields connections with foreign keys enforced, so deleting
      a session removes its segments and participants.
    """

    def __init__(self, db_dir: Optional[Path | str] = None, reset: bool = False) -> None:
        self.db_dir = resolve_db_dir(db_dir)
        self.db_path = self.db_dir / DB_FILENAME
        self.reset = reset
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def ensure_database(self) -> None:
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return
            if self.reset:
                self._remove_database_file()

            max_attempts = 3
            for attempt in range(1, max_attempts + 1):
                try:
                    await self._create_schema()
                    break
                except FileNotFoundError:
                    # Transient on some filesystems right after the directory is created.
                    if attempt >= max_attempts:
                        raise
                    await asyncio.sleep(0.1 * attempt)

            self._initialized = True
            logger.info("Session database ready at %s", self.db_path)

    def _remove_database_file(self) -> None:
        if not self.db_path.exists():
            return
        try:
            self.db_path.unlink()
        except OSError as exc:
            raise RuntimeError(f"Could not reset database at {self.db_path}") from exc
        logger.warning("Deleted existing database at %s (DATABASE_RESET)", self.db_path)

    async def _create_schema(self) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            cur = await db.execute("PRAGMA user_version")
            row = await cur.fetchone()
            version = row[0] if row else 0
            for statement in SCHEMA:
                await db.execute(statement)
            if version < SCHEMA_VERSION:
                await db.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            await db.commit()

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield an `aiosqlite.Connection`; closed on exit."""
        await self.ensure_database()
        conn = await aiosqlite.connect(self.db_path)
        try:
            await conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        finally:
            await conn.close()
