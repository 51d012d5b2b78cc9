"""In-memory registry of collaborative story sessions."""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from models.session_models import ContributorType, Participant, Segment, StorySession, utc_now
from services.export_renderer import ExportRenderer
from services.realtime.errors import ExportFormatError, SessionNotFoundError
from services.realtime.segment_log import SegmentLog

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT = timedelta(hours=24)


@dataclass
class _SessionRecord:
	id: str
	title: str
	starting_prompt: Optional[str]
	created_at: datetime
	last_activity_at: datetime
	log: SegmentLog = field(default_factory=SegmentLog)
	participants: List[Participant] = field(default_factory=list)

	def snapshot(self) -> StorySession:
		return StorySession(
			id=self.id,
			title=self.title,
			starting_prompt=self.starting_prompt,
			participants=list(self.participants),
			segments=self.log.snapshot(),
			created_at=self.created_at,
			last_activity_at=self.last_activity_at,
		)


class SessionRegistry:
	"""Own every live session, its segment log and its participant roster.

	Callers only ever receive snapshots; all mutation goes through this API.
	Sessions idle for longer than `idle_timeout` are dropped for good.
	"""

	def __init__(
		self,
		idle_timeout: timedelta = DEFAULT_IDLE_TIMEOUT,
		clock: Callable[[], datetime] = utc_now,
		renderer: ExportRenderer | None = None,
	) -> None:
		self.idle_timeout = idle_timeout
		self._clock = clock
		self._renderer = renderer or ExportRenderer()
		self._sessions: Dict[str, _SessionRecord] = {}
		self._issued_ids: set[str] = set()
		self._evict_listeners: List[Callable[[str], None]] = []

	def create_session(self, title: str, starting_prompt: Optional[str] = None) -> StorySession:
		"""Create an empty session with a fresh 128-bit id."""
		session_id = secrets.token_hex(16)
		while session_id in self._issued_ids:
			session_id = secrets.token_hex(16)
		self._issued_ids.add(session_id)
		now = self._clock()
		record = _SessionRecord(
			id=session_id,
			title=title,
			starting_prompt=starting_prompt,
			created_at=now,
			last_activity_at=now,
		)
		self._sessions[session_id] = record
		logger.info("Session %s created (%r)", session_id, title)
		return record.snapshot()

	def restore(self, session: StorySession) -> None:
		"""Reinstate a session loaded from durable storage."""
		record = _SessionRecord(
			id=session.id,
			title=session.title,
			starting_prompt=session.starting_prompt,
			created_at=session.created_at,
			last_activity_at=session.last_activity_at,
			participants=list(session.participants),
		)
		for segment in session.segments:
			record.log.append(segment)
		self._issued_ids.add(session.id)
		self._sessions[session.id] = record

	def get_session(self, session_id: str) -> StorySession:
		"""Return a snapshot of the session or raise SessionNotFoundError."""
		return self._get(session_id).snapshot()

	def has_session(self, session_id: str) -> bool:
		try:
			self._get(session_id)
		except SessionNotFoundError:
			return False
		return True

	def add_participant(self, session_id: str, participant: Participant) -> Participant:
		"""Add a participant unless one with the same name is already present.

		Returns the roster entry that now represents the name, so a re-join
		after a reconnect maps back to the original participant.
		"""
		record = self._get(session_id)
		for existing in record.participants:
			if existing.name == participant.name:
				logger.info("Participant %r already in session %s; not duplicating", participant.name, session_id)
				self._touch(record)
				return existing
		record.participants.append(participant)
		self._touch(record)
		return participant

	def add_segment(self, session_id: str, segment: Segment) -> Segment:
		"""Append a segment and keep the log in timestamp order."""
		record = self._get(session_id)
		record.log.append(segment)
		self._touch(record)
		return segment

	def recent_segments(self, session_id: str, limit: int) -> List[Segment]:
		return self._get(session_id).log.recent(limit)

	def user_segment_count(self, session_id: str) -> int:
		return self._get(session_id).log.count(ContributorType.USER)

	def export_session(self, session_id: str, fmt: str) -> str:
		"""Render the whole session as text or HTML."""
		session = self.get_session(session_id)
		try:
			return self._renderer.render(session, fmt)
		except ValueError as exc:
			raise ExportFormatError(str(exc)) from exc

	def remove_session(self, session_id: str) -> None:
		if self._sessions.pop(session_id, None) is not None:
			logger.info("Session %s removed", session_id)
			self._notify_evicted(session_id)

	def on_evict(self, listener: Callable[[str], None]) -> None:
		"""Register a callback invoked with the id of every dropped session."""
		self._evict_listeners.append(listener)

	def evict_idle(self, now: Optional[datetime] = None) -> List[str]:
		"""Drop every session whose inactivity window has elapsed."""
		now = now or self._clock()
		expired = [sid for sid, record in self._sessions.items() if self._is_expired(record, now)]
		for session_id in expired:
			del self._sessions[session_id]
			logger.info("Session %s evicted after %s of inactivity", session_id, self.idle_timeout)
			self._notify_evicted(session_id)
		return expired

	async def run_periodic_eviction(self, interval_seconds: float = 300) -> None:
		"""Sweep idle sessions at the given interval until cancelled."""
		while True:
			try:
				self.evict_idle()
				await asyncio.sleep(interval_seconds)
			except asyncio.CancelledError:
				break
			except Exception:
				logger.exception("Idle session sweep failed")
				await asyncio.sleep(interval_seconds)

	def __len__(self) -> int:
		return len(self._sessions)

	def _get(self, session_id: str) -> _SessionRecord:
		record = self._sessions.get(session_id)
		if record is None:
			raise SessionNotFoundError(session_id)
		if self._is_expired(record, self._clock()):
			del self._sessions[session_id]
			logger.info("Session %s expired on access", session_id)
			self._notify_evicted(session_id)
			raise SessionNotFoundError(session_id)
		return record

	def _is_expired(self, record: _SessionRecord, now: datetime) -> bool:
		return now - record.last_activity_at >= self.idle_timeout

	def _touch(self, record: _SessionRecord) -> None:
		record.last_activity_at = self._clock()

	def _notify_evicted(self, session_id: str) -> None:
		for listener in self._evict_listeners:
			try:
				listener(session_id)
			except Exception:
				logger.exception("Eviction listener failed for session %s", session_id)
