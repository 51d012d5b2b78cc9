"""Tests for the in-memory session registry and its segment log."""

import random
import secrets
from datetime import datetime, timedelta, timezone

import pytest

from models.session_models import ContributorType, Participant, Segment
from services.realtime.errors import ExportFormatError, SessionNotFoundError
from services.realtime.segment_log import SegmentLog
from services.realtime.session_store import SessionRegistry


def make_segment(content="The door creaked.", ts=None, kind=ContributorType.USER, contributor="p1"):
    return Segment(
        id=secrets.token_hex(8),
        content=content,
        contributor_id=contributor,
        contributor_type=kind,
        timestamp=ts or datetime.now(timezone.utc),
    )


class TestCreateSession:
    """Session creation."""

    def test_ids_are_pairwise_distinct(self, registry):
        """Many creates never hand out the same id."""
        ids = [registry.create_session(f"Story {i}").id for i in range(500)]
        assert len(set(ids)) == len(ids)

    def test_ids_are_128_bit_hex(self, registry):
        session = registry.create_session("Test")
        assert len(session.id) == 32
        int(session.id, 16)

    def test_new_session_starts_empty(self, registry):
        session = registry.create_session("Test", "It was a dark night")
        assert session.segments == []
        assert session.participants == []
        assert session.starting_prompt == "It was a dark night"
        assert session.created_at == session.last_activity_at

    def test_get_unknown_session_raises(self, registry):
        with pytest.raises(SessionNotFoundError) as exc_info:
            registry.get_session("missing")
        assert exc_info.value.code == "SESSION_NOT_FOUND"
        assert not registry.has_session("missing")


class TestParticipants:
    """Roster handling."""

    def test_rejoin_with_same_name_is_deduplicated(self, registry):
        session = registry.create_session("Test")
        first = registry.add_participant(session.id, Participant(id="c1", name="alice"))
        again = registry.add_participant(session.id, Participant(id="c2", name="alice"))
        assert again is first
        assert [p.id for p in registry.get_session(session.id).participants] == ["c1"]

    def test_participants_keep_join_order(self, registry):
        session = registry.create_session("Test")
        for idx, name in enumerate(["alice", "bob", "carol"]):
            registry.add_participant(session.id, Participant(id=f"c{idx}", name=name))
        assert [p.name for p in registry.get_session(session.id).participants] == ["alice", "bob", "carol"]


class TestSegments:
    """Append and ordering of segments."""

    def test_add_segment_grows_log_by_one(self, registry):
        session = registry.create_session("Test")
        for expected in range(1, 6):
            registry.add_segment(session.id, make_segment(f"line {expected}"))
            assert len(registry.get_session(session.id).segments) == expected

    def test_log_is_sorted_for_arbitrary_insert_order(self, registry):
        """Timestamps read back non-decreasing whatever order they arrive in."""
        session = registry.create_session("Test")
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        rng = random.Random(7)
        for _ in range(50):
            registry.add_segment(session.id, make_segment(ts=base + timedelta(seconds=rng.randint(0, 20))))
        stamps = [s.timestamp for s in registry.get_session(session.id).segments]
        assert stamps == sorted(stamps)

    def test_equal_timestamps_keep_insertion_order(self):
        log = SegmentLog()
        ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for content in ("first", "second", "third"):
            log.append(make_segment(content, ts=ts))
        assert [s.content for s in log] == ["first", "second", "third"]

    def test_snapshot_is_isolated_from_later_appends(self, registry):
        session = registry.create_session("Test")
        snapshot = registry.get_session(session.id)
        registry.add_segment(session.id, make_segment())
        assert snapshot.segments == []

    def test_user_segment_count_ignores_ai(self, registry):
        session = registry.create_session("Test")
        registry.add_segment(session.id, make_segment("a"))
        registry.add_segment(session.id, make_segment("b", kind=ContributorType.AI, contributor="ai-coauthor"))
        registry.add_segment(session.id, make_segment("c"))
        assert registry.user_segment_count(session.id) == 2

    def test_recent_segments_returns_tail(self, registry):
        session = registry.create_session("Test")
        for i in range(5):
            registry.add_segment(session.id, make_segment(f"s{i}"))
        assert [s.content for s in registry.recent_segments(session.id, 2)] == ["s3", "s4"]

    def test_add_to_unknown_session_raises(self, registry):
        with pytest.raises(SessionNotFoundError):
            registry.add_segment("missing", make_segment())


class TestExport:
    """Export through the registry."""

    def test_export_contains_title_and_every_segment(self, registry):
        session = registry.create_session("The Hollow")
        contents = [f"Segment number {i} in the hollow." for i in range(10)]
        for content in contents:
            registry.add_segment(session.id, make_segment(content))
        for fmt in ("text", "html"):
            output = registry.export_session(session.id, fmt)
            assert "The Hollow" in output
            assert all(content in output for content in contents)

    def test_unsupported_format_raises(self, registry):
        session = registry.create_session("Test")
        with pytest.raises(ExportFormatError):
            registry.export_session(session.id, "pdf")


class TestIdleEviction:
    """Inactivity expiry."""

    def test_session_expires_after_idle_timeout(self, clock):
        registry = SessionRegistry(idle_timeout=timedelta(hours=24), clock=clock)
        session = registry.create_session("Test")
        clock.advance(hours=23, minutes=59)
        assert registry.has_session(session.id)
        clock.advance(minutes=1)
        with pytest.raises(SessionNotFoundError):
            registry.get_session(session.id)

    def test_mutation_resets_the_window(self, clock):
        registry = SessionRegistry(idle_timeout=timedelta(hours=24), clock=clock)
        session = registry.create_session("Test")
        clock.advance(hours=20)
        registry.add_segment(session.id, make_segment(ts=clock()))
        clock.advance(hours=20)
        assert registry.has_session(session.id)

    def test_sweep_evicts_and_notifies(self, clock):
        registry = SessionRegistry(idle_timeout=timedelta(minutes=5), clock=clock)
        evicted = []
        registry.on_evict(evicted.append)
        stale = registry.create_session("Stale")
        clock.advance(minutes=4)
        fresh = registry.create_session("Fresh")
        clock.advance(minutes=1)
        assert registry.evict_idle() == [stale.id]
        assert evicted == [stale.id]
        assert len(registry) == 1
        assert registry.has_session(fresh.id)

    def test_restore_reinstates_persisted_session(self, registry):
        source = SessionRegistry()
        session = source.create_session("Persisted")
        source.add_participant(session.id, Participant(id="c1", name="alice"))
        source.add_segment(session.id, make_segment("kept"))
        registry.restore(source.get_session(session.id))
        restored = registry.get_session(session.id)
        assert restored.title == "Persisted"
        assert [s.content for s in restored.segments] == ["kept"]
