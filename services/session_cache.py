"""Ephemeral per-session state with a sliding TTL.

Holds what the gateway wants quick access to but can always rebuild from its
rooms and the session log: the set of live participant ids and the current
mood tags. A miss simply means "no cached state".
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Set

DEFAULT_TTL_SECONDS = 3600


@dataclass
class CachedSessionState:
    session_id: str
    active_participants: Set[str] = field(default_factory=set)
    current_mood: List[str] = field(default_factory=list)


class SessionCache:
    """
    In-memory cache keyed by session id:
    - sliding TTL (expires ttl_seconds after last write or refresh)
    - thread-safe operations
    - get() returns copies so callers cannot mutate cached state in place
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        # session_id -> (state, expires_at)
        self._items: Dict[str, tuple[CachedSessionState, float]] = {}

    def _get_unlocked(self, session_id: str) -> Optional[CachedSessionState]:
        item = self._items.get(session_id)
        if item is None:
            return None
        state, expires_at = item
        if expires_at <= self._clock():
            del self._items[session_id]
            return None
        return state

    def _set_unlocked(self, state: CachedSessionState) -> None:
        self._items[state.session_id] = (state, self._clock() + self.ttl_seconds)

    @staticmethod
    def _copy(state: CachedSessionState) -> CachedSessionState:
        return replace(
            state,
            active_participants=set(state.active_participants),
            current_mood=list(state.current_mood),
        )

    def get(self, session_id: str) -> Optional[CachedSessionState]:
        with self._lock:
            state = self._get_unlocked(session_id)
            return self._copy(state) if state else None

    def set(self, state: CachedSessionState) -> None:
        with self._lock:
            self._set_unlocked(self._copy(state))

    def update(self, session_id: str, **changes) -> CachedSessionState:
        """Apply `changes` to the cached state, creating it on a miss."""
        with self._lock:
            state = self._get_unlocked(session_id) or CachedSessionState(session_id=session_id)
            state = replace(state, **changes)
            self._set_unlocked(state)
            return self._copy(state)

    def refresh_ttl(self, session_id: str) -> bool:
        with self._lock:
            state = self._get_unlocked(session_id)
            if state is None:
                return False
            self._set_unlocked(state)
            return True

    def invalidate(self, session_id: str) -> None:
        with self._lock:
            self._items.pop(session_id, None)

    def add_participant(self, session_id: str, participant_id: str) -> None:
        with self._lock:
            state = self._get_unlocked(session_id) or CachedSessionState(session_id=session_id)
            state.active_participants.add(participant_id)
            self._set_unlocked(state)

    def remove_participant(self, session_id: str, participant_id: str) -> None:
        with self._lock:
            state = self._get_unlocked(session_id)
            if state is None:
                return
            state.active_participants.discard(participant_id)
            self._set_unlocked(state)
