"""Async Data Access Layer for story sessions.

Provides SessionDAL with the create/get/add operations the realtime gateway
writes through to, backed by `utils.database_init.AsyncDatabaseInitializer`.
Timestamps are stored as ISO-8601 UTC text; mood tags as a JSON array.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import List, Optional, Sequence

from models.session_models import (
    ContributorType,
    Participant,
    Segment,
    StorySession,
    from_iso,
    to_iso,
    utc_now,
)
from utils.database_init import AsyncDatabaseInitializer


class SessionDAL:
    """Data access layer for SESSION, SEGMENT and PARTICIPANT rows.

    The constructor accepts an `AsyncDatabaseInitializer` (or any object
    exposing an async `connection()` context manager that yields an
    `aiosqlite.Connection`).
    """

    _SEGMENT_COLUMNS = "id, content, contributor_id, contributor_type, timestamp, mood_tags"

    def __init__(self, db_initializer: AsyncDatabaseInitializer) -> None:
        self._db = db_initializer

    async def create_session(self, session: StorySession) -> None:
        """Insert a SESSION row plus any participants it already has."""
        async with self._db.connection() as conn:
            await conn.execute(
                "INSERT INTO SESSION (id, title, starting_prompt, created_at, last_activity_at) VALUES (?, ?, ?, ?, ?)",
                (
                    session.id,
                    session.title,
                    session.starting_prompt,
                    to_iso(session.created_at),
                    to_iso(session.last_activity_at),
                ),
            )
            for participant in session.participants:
                await self._insert_participant(conn, session.id, participant)
            await conn.commit()

    async def get_session(self, session_id: str) -> Optional[StorySession]:
        """Return the full session with ordered segments, or None if not found."""
        async with self._db.connection() as conn:
            cur = await conn.execute(
                "SELECT id, title, starting_prompt, created_at, last_activity_at FROM SESSION WHERE id = ?",
                (session_id,),
            )
            row = await cur.fetchone()
            if row is None:
                return None
            return await self._hydrate(conn, row)

    async def load_active_sessions(self, since: datetime) -> List[StorySession]:
        """Return every session whose last activity is at or after `since`."""
        async with self._db.connection() as conn:
            cur = await conn.execute(
                "SELECT id, title, starting_prompt, created_at, last_activity_at FROM SESSION "
                "WHERE last_activity_at >= ? ORDER BY created_at",
                (to_iso(since),),
            )
            rows = await cur.fetchall()
            return [await self._hydrate(conn, row) for row in rows]

    async def add_participant(self, session_id: str, participant: Participant) -> None:
        """Insert a participant; a repeated name in the same session is ignored."""
        async with self._db.connection() as conn:
            await self._insert_participant(conn, session_id, participant)
            await self._touch(conn, session_id)
            await conn.commit()

    async def add_segment(self, session_id: str, segment: Segment) -> None:
        """Insert a SEGMENT row after the session's existing ones and touch the session."""
        async with self._db.connection() as conn:
            await conn.execute(
                "INSERT INTO SEGMENT (id, session_id, seq, content, contributor_id, contributor_type, timestamp, mood_tags) "
                "VALUES (?, ?, (SELECT COALESCE(MAX(seq), 0) + 1 FROM SEGMENT WHERE session_id = ?), ?, ?, ?, ?, ?)",
                (
                    segment.id,
                    session_id,
                    session_id,
                    segment.content,
                    segment.contributor_id,
                    segment.contributor_type.value,
                    to_iso(segment.timestamp),
                    json.dumps(list(segment.mood_tags)),
                ),
            )
            await self._touch(conn, session_id)
            await conn.commit()

    async def touch_session(self, session_id: str) -> None:
        async with self._db.connection() as conn:
            await self._touch(conn, session_id)
            await conn.commit()

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and its children. Returns True if a row was deleted."""
        async with self._db.connection() as conn:
            await conn.execute("DELETE FROM SESSION WHERE id = ?", (session_id,))
            await conn.commit()
            cur = await conn.execute("SELECT changes()")
            changed = await cur.fetchone()
            return bool(changed and changed[0] > 0)

    @staticmethod
    async def _insert_participant(conn, session_id: str, participant: Participant) -> None:
        await conn.execute(
            "INSERT OR IGNORE INTO PARTICIPANT (id, session_id, name, joined_at) VALUES (?, ?, ?, ?)",
            (participant.id, session_id, participant.name, to_iso(participant.joined_at)),
        )

    @staticmethod
    async def _touch(conn, session_id: str) -> None:
        await conn.execute(
            "UPDATE SESSION SET last_activity_at = ? WHERE id = ?",
            (to_iso(utc_now()), session_id),
        )

    async def _hydrate(self, conn, row: Sequence[object]) -> StorySession:
        session_id = row[0]
        cur = await conn.execute(
            "SELECT id, name, joined_at FROM PARTICIPANT WHERE session_id = ? ORDER BY joined_at, rowid",
            (session_id,),
        )
        participants = [
            Participant(id=p[0], name=p[1], joined_at=from_iso(p[2])) for p in await cur.fetchall()
        ]
        cur = await conn.execute(
            f"SELECT {self._SEGMENT_COLUMNS} FROM SEGMENT WHERE session_id = ? ORDER BY timestamp, seq",
            (session_id,),
        )
        segments = [self._row_to_segment(r) for r in await cur.fetchall()]
        return StorySession(
            id=session_id,
            title=row[1],
            starting_prompt=row[2],
            participants=participants,
            segments=segments,
            created_at=from_iso(row[3]),
            last_activity_at=from_iso(row[4]),
        )

    @staticmethod
    def _row_to_segment(row: Sequence[object]) -> Segment:
        """Convert a DB row tuple into a Segment."""
        return Segment(
            id=row[0],
            content=row[1],
            contributor_id=row[2],
            contributor_type=ContributorType(row[3]),
            timestamp=from_iso(row[4]),
            mood_tags=tuple(json.loads(row[5] or "[]")),
        )
