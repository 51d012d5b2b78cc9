"""Dispatch realtime story events and fan results out to session rooms."""
from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from pydantic import ValidationError

from models.event_models import (
	EVENT_PAYLOADS,
	InviteGeneratePayload,
	InviteValidatePayload,
	SegmentAddPayload,
	SessionCreatePayload,
	SessionExportPayload,
	SessionJoinPayload,
	SessionReconnectPayload,
)
from models.session_models import ContributorType, Participant, Segment, utc_now
from services import mood_tags
from services.content_filter import ValidationResult, validate_segment
from services.realtime.ai_coauthor import AICoAuthor
from services.realtime.errors import (
	ContentValidationError,
	ErrorCode,
	InvalidInviteError,
	SessionNotFoundError,
	StoryError,
)
from services.realtime.invite_tokens import DEFAULT_BASE_URL, InviteTokenStore
from services.realtime.rooms import ConnectionContext, RealtimeConnection, RoomManager
from services.realtime.session_store import SessionRegistry
from services.session_cache import CachedSessionState, SessionCache

logger = logging.getLogger(__name__)

DEFAULT_USER_NAME = "Anonymous"

_FALLBACK_ERRORS = {
	"session:create": (ErrorCode.SESSION_CREATE_ERROR, "Failed to create session"),
	"session:join": (ErrorCode.SESSION_JOIN_ERROR, "Failed to join session"),
	"segment:add": (ErrorCode.SEGMENT_ADD_ERROR, "Failed to add segment"),
	"session:export": (ErrorCode.SESSION_EXPORT_ERROR, "Failed to export session"),
	"invite:generate": (ErrorCode.INVITE_GENERATE_ERROR, "Failed to generate invite link"),
	"invite:validate": (ErrorCode.INVITE_VALIDATE_ERROR, "Failed to validate invite token"),
	"session:reconnect": (ErrorCode.RECONNECT_ERROR, "Failed to reconnect to session"),
}


class BroadcastGateway:
	"""Translate inbound events into registry calls and broadcast the results.

	Every handler failure is turned into an `error` event for the offending
	connection only. Appends, joins and AI deliveries for one session run under
	that session's lock, so each room sees `segment:added` events in log order.
	"""

	def __init__(
		self,
		registry: SessionRegistry,
		invites: InviteTokenStore,
		coauthor: Optional[AICoAuthor] = None,
		cache: Optional[SessionCache] = None,
		repository=None,
		validator: Callable[[str], ValidationResult] = validate_segment,
		invite_base_url: str = DEFAULT_BASE_URL,
	) -> None:
		self.registry = registry
		self.invites = invites
		self.coauthor = coauthor
		self.cache = cache or SessionCache()
		self.repository = repository
		self.validator = validator
		self.invite_base_url = invite_base_url
		self.rooms = RoomManager()
		self._locks: Dict[str, asyncio.Lock] = {}
		self._background: Set[asyncio.Task] = set()
		self._handlers: Dict[str, Callable[[ConnectionContext, Any], Awaitable[None]]] = {
			"session:create": self._create_session,
			"session:join": self._join_session,
			"segment:add": self._add_segment,
			"session:export": self._export_session,
			"invite:generate": self._generate_invite,
			"invite:validate": self._validate_invite,
			"session:reconnect": self._reconnect,
		}
		registry.on_evict(self._forget_session)

	# connection lifecycle

	def connect(self, connection: RealtimeConnection) -> ConnectionContext:
		logger.info("Client connected: %s", connection.connection_id)
		return self.rooms.register(connection)

	async def disconnect(self, connection_id: str) -> None:
		"""Forget a dropped connection; the session itself is untouched."""
		ctx = self.rooms.context(connection_id)
		if ctx is None:
			return
		session_id, participant_id = ctx.session_id, ctx.participant_id
		self.rooms.unregister(connection_id)
		if session_id and participant_id:
			self._leave_presence(session_id, participant_id)
		logger.info("Client disconnected: %s", connection_id)

	# dispatch

	async def handle(self, connection: RealtimeConnection, event: str, data: Any) -> None:
		"""Process one inbound event from `connection`."""
		ctx = self.rooms.context(connection.connection_id) or self.connect(connection)
		request_id = data.get("requestId") if isinstance(data, dict) else None

		handler = self._handlers.get(event)
		if handler is None:
			await self._send_error(ctx, ErrorCode.INVALID_EVENT, f"Unsupported event: {event}", request_id)
			return
		try:
			payload = EVENT_PAYLOADS[event].model_validate(data if data is not None else {})
		except ValidationError as exc:
			logger.info("Rejected %s payload from %s: %s", event, connection.connection_id, exc)
			await self._send_error(ctx, ErrorCode.INVALID_PAYLOAD, f"Invalid payload for {event}", request_id)
			return

		try:
			await handler(ctx, payload)
		except StoryError as exc:
			logger.info("%s from %s failed: %s (%s)", event, connection.connection_id, exc.message, exc.code)
			await self._send_error(ctx, exc.code, exc.message, request_id)
		except Exception:
			logger.exception("Unhandled error processing %s from %s", event, connection.connection_id)
			code, message = _FALLBACK_ERRORS[event]
			await self._send_error(ctx, code, message, request_id)

	# handlers

	async def _create_session(self, ctx: ConnectionContext, payload: SessionCreatePayload) -> None:
		session = self.registry.create_session(payload.title, payload.starting_prompt)
		async with self._lock(session.id):
			participant = self.registry.add_participant(
				session.id,
				Participant(id=ctx.connection.connection_id, name=payload.user_name or DEFAULT_USER_NAME),
			)
			self._enter_room(ctx, session.id, participant.id)
			session = self.registry.get_session(session.id)
			await self._persist("create_session", session)
			await self._send(ctx, "session:created", session.to_dict())
		logger.info("Session %s created by %s", session.id, participant.name)

	async def _join_session(self, ctx: ConnectionContext, payload: SessionJoinPayload) -> None:
		session_id = payload.session_id
		self._require(session_id)
		async with self._lock(session_id):
			participant = self.registry.add_participant(
				session_id,
				Participant(id=ctx.connection.connection_id, name=payload.user_name or DEFAULT_USER_NAME),
			)
			self._enter_room(ctx, session_id, participant.id)
			session = self.registry.get_session(session_id)
			await self._persist("add_participant", session_id, participant)
			await self._send(ctx, "session:updated", session.to_dict())
			await self._broadcast(
				session_id, "participant:joined", participant.to_dict(), exclude=ctx.connection.connection_id
			)
		logger.info("Participant %s joined session %s", participant.name, session_id)

	async def _add_segment(self, ctx: ConnectionContext, payload: SegmentAddPayload) -> None:
		result = self.validator(payload.content)
		if not result.valid:
			raise ContentValidationError(result.error or "Invalid content")

		session_id = payload.session_id
		content = result.sanitized or payload.content
		self._require(session_id)
		async with self._lock(session_id):
			segment = Segment(
				id=secrets.token_hex(16),
				content=content,
				contributor_id=ctx.participant_id or ctx.connection.connection_id,
				contributor_type=ContributorType.USER,
				timestamp=utc_now(),
				mood_tags=tuple(mood_tags.mood_tags(content)),
			)
			self.registry.add_segment(session_id, segment)
			await self._persist("add_segment", session_id, segment)
			delivered = await self._broadcast(session_id, "segment:added", segment.to_dict())
			if ctx.connection.connection_id not in delivered:
				await self._send(ctx, "segment:added", segment.to_dict())
			ack: Dict[str, Any] = {"segmentId": segment.id}
			if payload.request_id is not None:
				ack["requestId"] = payload.request_id
			await self._send(ctx, "segment:acknowledged", ack)
			self._note_mood(session_id, segment)
			user_count = self.registry.user_segment_count(session_id)

		if self.coauthor is not None and self.coauthor.should_trigger(user_count):
			logger.info("AI trigger reached in session %s (%d user segments)", session_id, user_count)
			self._spawn(self._run_coauthor(session_id))

	async def _export_session(self, ctx: ConnectionContext, payload: SessionExportPayload) -> None:
		content = self.registry.export_session(payload.session_id, payload.format)
		await self._send(
			ctx,
			"session:exported",
			{"sessionId": payload.session_id, "format": payload.format, "content": content},
		)
		logger.info("Session %s exported as %s", payload.session_id, payload.format)

	async def _generate_invite(self, ctx: ConnectionContext, payload: InviteGeneratePayload) -> None:
		self.registry.get_session(payload.session_id)
		link = self.invites.build_link(payload.session_id, payload.base_url or self.invite_base_url)
		await self._send(ctx, "invite:generated", {"sessionId": payload.session_id, "inviteLink": link})

	async def _validate_invite(self, ctx: ConnectionContext, payload: InviteValidatePayload) -> None:
		session_id = self.invites.validate(payload.token)
		if session_id is None:
			raise InvalidInviteError()
		self.registry.get_session(session_id)
		await self._send(ctx, "invite:validated", {"sessionId": session_id})

	async def _reconnect(self, ctx: ConnectionContext, payload: SessionReconnectPayload) -> None:
		session_id = payload.session_id
		self._require(session_id)
		async with self._lock(session_id):
			session = self.registry.get_session(session_id)
			self._enter_room(ctx, session_id, payload.participant_id or ctx.connection.connection_id)
			await self._send(ctx, "session:updated", session.to_dict())
			await self._send(ctx, "session:reconnected", {"sessionId": session_id})
		logger.info("Client %s reconnected to session %s", ctx.connection.connection_id, session_id)

	# AI co-author

	async def _run_coauthor(self, session_id: str) -> None:
		try:
			segments = self.registry.recent_segments(session_id, self.coauthor.context_segments)
			segment = await self.coauthor.compose(segments)
		except SessionNotFoundError:
			logger.info("Session %s vanished before AI generation", session_id)
			return
		except Exception as exc:
			logger.warning("AI co-author failed for session %s: %s", session_id, exc)
			async with self._lock(session_id):
				await self._broadcast(
					session_id,
					"error",
					{
						"message": "AI co-author failed to generate content",
						"code": ErrorCode.AI_GENERATION_ERROR,
						"details": str(exc),
					},
				)
			return

		async with self._lock(session_id):
			# Stamp under the lock so the log order matches the broadcast order.
			segment = replace(segment, timestamp=utc_now())
			try:
				self.registry.add_segment(session_id, segment)
			except SessionNotFoundError:
				logger.info("Session %s evicted during AI generation; dropping result", session_id)
				return
			await self._persist("add_segment", session_id, segment)
			await self._broadcast(session_id, "segment:added", segment.to_dict())
			self._note_mood(session_id, segment)
		logger.info("AI segment %s added to session %s", segment.id, session_id)

	def _spawn(self, coro) -> asyncio.Task:
		task = asyncio.create_task(coro)
		self._background.add(task)
		task.add_done_callback(self._background.discard)
		return task

	async def wait_for_background(self) -> None:
		"""Wait until every in-flight AI task has finished."""
		while self._background:
			await asyncio.gather(*list(self._background), return_exceptions=True)

	async def shutdown(self) -> None:
		for task in list(self._background):
			task.cancel()
		await asyncio.gather(*list(self._background), return_exceptions=True)

	# presence

	def presence(self, session_id: str) -> Dict[str, Any]:
		"""Participants connected to `session_id` right now and its latest mood tags."""
		self._require(session_id)
		state = self._cached_state(session_id)
		return {
			"sessionId": session_id,
			"activeParticipants": sorted(state.active_participants),
			"currentMood": list(state.current_mood),
		}

	# helpers

	def _require(self, session_id: str) -> None:
		if not self.registry.has_session(session_id):
			raise SessionNotFoundError(session_id)

	def _lock(self, session_id: str) -> asyncio.Lock:
		lock = self._locks.get(session_id)
		if lock is None:
			lock = self._locks[session_id] = asyncio.Lock()
		return lock

	def _enter_room(self, ctx: ConnectionContext, session_id: str, participant_id: str) -> None:
		previous = (ctx.session_id, ctx.participant_id)
		self.rooms.join(ctx, session_id)
		ctx.participant_id = participant_id
		if previous[0] and previous[1] and previous[0] != session_id:
			self._leave_presence(*previous)
		self._cached_state(session_id)
		self.cache.add_participant(session_id, participant_id)

	def _leave_presence(self, session_id: str, participant_id: str) -> None:
		# A re-joined name shares its participant id with the stale connection.
		if any(m.participant_id == participant_id for m in self.rooms.members(session_id)):
			return
		self.cache.remove_participant(session_id, participant_id)

	def _cached_state(self, session_id: str) -> CachedSessionState:
		state = self.cache.get(session_id)
		if state is not None:
			return state
		participants = {m.participant_id for m in self.rooms.members(session_id) if m.participant_id}
		segments = self.registry.get_session(session_id).segments
		mood = next((list(s.mood_tags) for s in reversed(segments) if s.mood_tags), [])
		state = CachedSessionState(session_id, active_participants=participants, current_mood=mood)
		self.cache.set(state)
		return state

	def _note_mood(self, session_id: str, segment: Segment) -> None:
		self._cached_state(session_id)
		if segment.mood_tags:
			self.cache.update(session_id, current_mood=list(segment.mood_tags))
		else:
			self.cache.refresh_ttl(session_id)

	def _forget_session(self, session_id: str) -> None:
		self.invites.revoke_session(session_id)
		self.cache.invalidate(session_id)
		self.rooms.close_room(session_id)
		self._locks.pop(session_id, None)

	async def _send(self, ctx: ConnectionContext, event: str, data: Dict[str, Any]) -> bool:
		try:
			await ctx.connection.send(event, data)
			return True
		except Exception as exc:
			logger.warning("Dropping connection %s after failed send of %s: %s", ctx.connection.connection_id, event, exc)
			await self.disconnect(ctx.connection.connection_id)
			return False

	async def _broadcast(
		self, session_id: str, event: str, data: Dict[str, Any], exclude: Optional[str] = None
	) -> Set[str]:
		"""Send to every room member; returns the ids that received it."""
		delivered: Set[str] = set()
		for member in self.rooms.members(session_id):
			connection_id = member.connection.connection_id
			if connection_id == exclude:
				continue
			if await self._send(member, event, data):
				delivered.add(connection_id)
		return delivered

	async def _send_error(self, ctx: ConnectionContext, code: str, message: str, request_id: Any = None) -> None:
		payload: Dict[str, Any] = {"message": message, "code": code}
		if request_id is not None:
			payload["requestId"] = request_id
		await self._send(ctx, "error", payload)

	async def _persist(self, method: str, *args: Any) -> None:
		if self.repository is None:
			return
		try:
			await getattr(self.repository, method)(*args)
		except Exception:
			logger.exception("Failed to persist %s", method)
