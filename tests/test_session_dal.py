"""Tests for SQLite persistence of sessions."""

from datetime import datetime, timedelta, timezone

import pytest

from dal.session_dal import SessionDAL
from models.session_models import ContributorType, Participant, Segment, StorySession
from utils.database_cleaner import DatabaseCleaner
from utils.database_init import AsyncDatabaseInitializer

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db(tmp_path):
    return AsyncDatabaseInitializer(tmp_path / "db")


@pytest.fixture
def dal(db):
    return SessionDAL(db)


def new_session(session_id="s1", when=None):
    when = when or datetime.now(timezone.utc)
    return StorySession(
        id=session_id,
        title="Persisted",
        starting_prompt=None,
        participants=[Participant(id="c1", name="alice", joined_at=when)],
        segments=[],
        created_at=when,
        last_activity_at=when,
    )


class TestDatabaseInitializer:
    """Database directory handling."""

    def test_file_path_rejected(self, tmp_path):
        target = tmp_path / "file"
        target.write_text("x")
        with pytest.raises(RuntimeError):
            AsyncDatabaseInitializer(target)

    async def test_reset_wipes_existing_database(self, tmp_path):
        first = AsyncDatabaseInitializer(tmp_path)
        await SessionDAL(first).create_session(new_session())
        fresh = AsyncDatabaseInitializer(tmp_path, reset=True)
        assert await SessionDAL(fresh).get_session("s1") is None


class TestSessionDAL:
    """Session, participant and segment rows."""

    async def test_round_trip(self, dal):
        await dal.create_session(new_session())
        await dal.add_participant("s1", Participant(id="c2", name="bob"))
        await dal.add_participant("s1", Participant(id="c3", name="bob"))
        await dal.add_segment(
            "s1", Segment("g2", "Later.", "c2", ContributorType.USER, T0 + timedelta(seconds=5), ("dark",))
        )
        await dal.add_segment("s1", Segment("g1", "Earlier.", "ai-coauthor", ContributorType.AI, T0))

        session = await dal.get_session("s1")
        assert [p.name for p in session.participants] == ["alice", "bob"]
        assert [s.id for s in session.segments] == ["g1", "g2"]
        assert session.segments[1].mood_tags == ("dark",)
        assert session.segments[0].contributor_type is ContributorType.AI

    async def test_missing_session(self, dal):
        assert await dal.get_session("nope") is None

    async def test_load_active_sessions(self, dal):
        now = datetime.now(timezone.utc)
        await dal.create_session(new_session("old", now - timedelta(days=3)))
        await dal.create_session(new_session("new", now))
        active = await dal.load_active_sessions(now - timedelta(days=1))
        assert [s.id for s in active] == ["new"]

    async def test_delete_cascades(self, dal, db):
        await dal.create_session(new_session())
        await dal.add_segment("s1", Segment("g1", "Gone soon.", "c1", ContributorType.USER, T0))
        assert await dal.delete_session("s1")
        assert not await dal.delete_session("s1")
        async with db.connection() as conn:
            cur = await conn.execute("SELECT COUNT(*) FROM SEGMENT")
            assert (await cur.fetchone())[0] == 0


class TestDatabaseCleaner:
    """Retention pruning."""

    async def test_prunes_only_idle_sessions(self, dal, db):
        now = datetime.now(timezone.utc)
        await dal.create_session(new_session("idle", now - timedelta(days=2)))
        await dal.create_session(new_session("busy", now))
        cleaner = DatabaseCleaner(db, retention_seconds=86_400)
        assert await cleaner.prune_idle_sessions() == 1
        assert await dal.get_session("idle") is None
        assert await dal.get_session("busy") is not None
