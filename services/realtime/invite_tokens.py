"""Opaque invite tokens that resolve to a session id."""

from __future__ import annotations

import logging
import secrets
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from models.session_models import utc_now

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
DEFAULT_BASE_URL = "http://localhost:5173"


@dataclass(frozen=True)
class _InviteEntry:
	session_id: str
	created_at: datetime


class InviteTokenStore:
	"""Map join-link tokens to sessions.

	Tokens are 64 hex characters from a CSPRNG. By default they never expire;
	`ttl` bounds their lifetime and `max_per_session` keeps only the newest
	tokens for each session.
	"""

	def __init__(
		self,
		ttl: Optional[timedelta] = None,
		max_per_session: Optional[int] = None,
		clock: Callable[[], datetime] = utc_now,
	) -> None:
		self.ttl = ttl
		self.max_per_session = max_per_session
		self._clock = clock
		self._tokens: "OrderedDict[str, _InviteEntry]" = OrderedDict()

	def generate(self, session_id: str) -> str:
		token = secrets.token_hex(TOKEN_BYTES)
		self._tokens[token] = _InviteEntry(session_id=session_id, created_at=self._clock())
		self._enforce_cap(session_id)
		return token

	def validate(self, token: str) -> Optional[str]:
		"""Return the session id for `token`, or None when unknown or expired."""
		entry = self._tokens.get(token)
		if entry is None:
			return None
		if self.ttl is not None and self._clock() - entry.created_at >= self.ttl:
			self.revoke(token)
			return None
		return entry.session_id

	def revoke(self, token: str) -> None:
		self._tokens.pop(token, None)

	def revoke_session(self, session_id: str) -> int:
		"""Drop every token pointing at `session_id`; returns how many."""
		doomed = [t for t, entry in self._tokens.items() if entry.session_id == session_id]
		for token in doomed:
			self.revoke(token)
		if doomed:
			logger.info("Revoked %d invite token(s) for session %s", len(doomed), session_id)
		return len(doomed)

	def build_link(self, session_id: str, base_url: Optional[str] = None) -> str:
		"""Mint a token and return the full join link."""
		base = (base_url or DEFAULT_BASE_URL).rstrip("/")
		return f"{base}/join/{self.generate(session_id)}"

	def __len__(self) -> int:
		return len(self._tokens)

	def _enforce_cap(self, session_id: str) -> None:
		if not self.max_per_session:
			return
		owned = [t for t, entry in self._tokens.items() if entry.session_id == session_id]
		# OrderedDict keeps issue order, so the head of `owned` is the oldest.
		for token in owned[: max(0, len(owned) - self.max_per_session)]:
			self.revoke(token)
