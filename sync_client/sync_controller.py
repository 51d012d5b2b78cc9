"""Client-side orchestration of the story connection.

The controller owns the transport, the offline queue and the reconnection
manager. Contributions made while offline are queued durably and replayed in
order once the connection comes back; the remembered session is rejoined
before the replay starts.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from sync_client.errors import ContributionRejected, ContributionTimeout, NotConnectedError
from sync_client.offline_queue import OfflineQueue, QueuedContribution
from sync_client.reconnection_manager import ReconnectionManager
from sync_client.storage import KeyValueStorage
from sync_client.transport import Transport

logger = logging.getLogger(__name__)

SESSION_STORAGE_KEY = "ghost-story-current-session"
DEFAULT_ACK_TIMEOUT = 10.0


class ConnectionStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"


class ClientSyncController:
    def __init__(
        self,
        transport: Transport,
        storage: KeyValueStorage,
        user_name: Optional[str] = None,
        queue: Optional[OfflineQueue] = None,
        reconnection: Optional[ReconnectionManager] = None,
        ack_timeout: float = DEFAULT_ACK_TIMEOUT,
    ) -> None:
        self.transport = transport
        self.storage = storage
        self.user_name = user_name
        self.queue = queue or OfflineQueue(storage)
        self.reconnection = reconnection or ReconnectionManager()
        self.ack_timeout = ack_timeout

        self.status = ConnectionStatus.DISCONNECTED
        self.session: Optional[dict] = None
        self.on_contribution_lost: Optional[Callable[[QueuedContribution], Any]] = None
        self.on_fatal: Optional[Callable[[], Any]] = None

        self._status_listeners: List[Callable[[ConnectionStatus], Any]] = []
        self._event_listeners: Dict[str, List[Callable[[dict], Any]]] = {}
        self._pending: Dict[str, asyncio.Future] = {}
        self._tasks = set()
        self._closed = False
        self.session_id, self.participant_id = self._load_remembered()

        transport.bind(self._dispatch, self._handle_disconnect)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self.transport.connected

    async def connect(self) -> bool:
        """Open the transport, rejoin and replay; False if the attempt failed."""
        if self._closed:
            raise NotConnectedError("Controller is closed")
        if self.transport.connected:
            return True
        try:
            await self.transport.connect()
        except OSError as exc:
            logger.warning("Connection attempt failed: %s", exc)
            self._handle_disconnect("connect error")
            return False
        await self._on_connect()
        return True

    async def reconnect(self) -> bool:
        """Manual retry after the backoff loop gave up."""
        self.reconnection.reset()
        return await self.connect()

    async def disconnect(self) -> None:
        """Close the connection locally; no reconnect is attempted."""
        self.reconnection.clear_timer()
        self._fail_pending(NotConnectedError("Disconnected"))
        await self.transport.disconnect()
        self._set_status(ConnectionStatus.DISCONNECTED)

    async def close(self) -> None:
        self._closed = True
        await self.disconnect()
        for task in list(self._tasks):
            task.cancel()

    async def _on_connect(self) -> None:
        self._set_status(ConnectionStatus.CONNECTED)
        self.reconnection.reset()
        if self.session_id and self.participant_id:
            try:
                await self.transport.emit(
                    "session:reconnect",
                    {"sessionId": self.session_id, "participantId": self.participant_id},
                )
            except NotConnectedError as exc:
                logger.warning("Rejoin of session %s failed: %s", self.session_id, exc)
                return
        await self.flush_queue()

    def _handle_disconnect(self, reason: str) -> None:
        logger.info("Disconnected: %s", reason)
        self._fail_pending(NotConnectedError(f"Connection lost: {reason}"))
        self._set_status(ConnectionStatus.DISCONNECTED)
        if self._closed:
            return
        if self.reconnection.is_max_attempts_reached():
            logger.error("Max reconnection attempts reached; manual reconnect required")
            self._notify(self.on_fatal)
            return
        self._set_status(ConnectionStatus.RECONNECTING)
        self.reconnection.schedule_reconnect(self.connect)

    # ------------------------------------------------------------------
    # Contributions
    # ------------------------------------------------------------------

    async def add_segment(self, session_id: str, content: str) -> Optional[str]:
        """Send a contribution, or queue it while offline.

        Returns the server's segment id once acknowledged, or None when the
        contribution was queued, including when no acknowledgement arrives in
        time. Raises ContributionRejected when the server refuses it.
        """
        if self.transport.connected:
            try:
                ack = await self._send_segment(session_id, content)
                return ack.get("segmentId")
            except NotConnectedError as exc:
                logger.info("Connection dropped while sending (%s); queuing contribution", exc)
            except ContributionTimeout as exc:
                logger.warning("%s; queuing contribution for session %s", exc, session_id)
        self.queue.enqueue(session_id, content)
        logger.info("Queued contribution for session %s (%d queued)", session_id, self.queue.size())
        return None

    async def flush_queue(self) -> int:
        """Replay queued contributions in order; returns how many were accepted."""
        if self.queue.is_empty():
            return 0
        logger.info("Syncing %d queued contribution(s)", self.queue.size())
        accepted = 0
        for item in self.queue.get_all_queued():
            try:
                await self._send_segment(item.session_id, item.content)
            except NotConnectedError:
                logger.warning("Connection lost during replay; %d contribution(s) remain queued", self.queue.size())
                break
            except (ContributionRejected, ContributionTimeout) as exc:
                logger.warning("Queued contribution for session %s failed: %s", item.session_id, exc)
                if not self.queue.increment_retry(item.session_id, item.timestamp):
                    logger.error("Dropping contribution after %d attempts", self.queue.max_retries)
                    item.retry_count = self.queue.max_retries
                    self._notify(self.on_contribution_lost, item)
                continue
            self.queue.dequeue(item.session_id, item.timestamp)
            accepted += 1
        return accepted

    async def _send_segment(self, session_id: str, content: str) -> dict:
        request_id = uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self.transport.emit(
                "segment:add",
                {"sessionId": session_id, "content": content, "requestId": request_id},
            )
            return await asyncio.wait_for(future, self.ack_timeout)
        except asyncio.TimeoutError as exc:
            raise ContributionTimeout(f"No acknowledgement within {self.ack_timeout}s") from exc
        finally:
            self._pending.pop(request_id, None)

    def _fail_pending(self, exc: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(exc)

    # ------------------------------------------------------------------
    # Session requests (online only; answers arrive as events)
    # ------------------------------------------------------------------

    async def create_session(self, title: str, user_name: str, starting_prompt: Optional[str] = None) -> None:
        self.user_name = user_name
        data = {"title": title, "userName": user_name}
        if starting_prompt is not None:
            data["startingPrompt"] = starting_prompt
        await self._emit_online("session:create", data)

    async def join_session(self, session_id: str, user_name: str) -> None:
        self.user_name = user_name
        await self._emit_online("session:join", {"sessionId": session_id, "userName": user_name})

    async def export_session(self, session_id: str, fmt: str = "text") -> None:
        await self._emit_online("session:export", {"sessionId": session_id, "format": fmt})

    async def generate_invite(self, session_id: str, base_url: Optional[str] = None) -> None:
        data = {"sessionId": session_id}
        if base_url:
            data["baseUrl"] = base_url
        await self._emit_online("invite:generate", data)

    async def validate_invite(self, token: str) -> None:
        await self._emit_online("invite:validate", {"token": token})

    async def _emit_online(self, event: str, data: dict) -> None:
        if not self.transport.connected:
            raise NotConnectedError(f"Cannot send {event} while disconnected")
        await self.transport.emit(event, data)

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    def on(self, event: str, callback: Callable[[dict], Any]) -> Callable[[], None]:
        """Subscribe to a server event; returns an unsubscribe function."""
        listeners = self._event_listeners.setdefault(event, [])
        listeners.append(callback)
        return lambda: listeners.remove(callback) if callback in listeners else None

    def on_status_change(self, callback: Callable[[ConnectionStatus], Any]) -> Callable[[], None]:
        self._status_listeners.append(callback)
        return lambda: self._status_listeners.remove(callback) if callback in self._status_listeners else None

    @property
    def segments(self) -> List[dict]:
        """Server-confirmed segments of the current session, in log order."""
        return list(self.session.get("segments", [])) if self.session else []

    def _dispatch(self, event: str, data: Any) -> None:
        data = data if isinstance(data, dict) else {}
        request_id = data.get("requestId")
        future = self._pending.get(request_id) if request_id else None
        if future is not None and not future.done():
            if event == "segment:acknowledged":
                future.set_result(data)
            elif event == "error":
                future.set_exception(
                    ContributionRejected(data.get("message", "Contribution rejected"), data.get("code", ""))
                )

        if event in ("session:created", "session:updated"):
            self._adopt_session(data)
        elif event == "segment:added":
            self._merge_segment(data)

        for listener in list(self._event_listeners.get(event, ())):
            self._notify(listener, data)

    def _adopt_session(self, session: dict) -> None:
        self.session = dict(session)
        self.session["segments"] = list(session.get("segments", []))
        if not self.user_name:
            return
        for participant in session.get("participants", []):
            if participant.get("name") == self.user_name:
                self._remember(session.get("id"), participant.get("id"))
                break

    def _merge_segment(self, segment: dict) -> None:
        if not self.session:
            return
        segments = self.session["segments"]
        if any(existing.get("id") == segment.get("id") for existing in segments):
            return
        segments.append(segment)
        segments.sort(key=lambda s: s.get("timestamp", ""))

    # ------------------------------------------------------------------
    # Remembered session
    # ------------------------------------------------------------------

    def _remember(self, session_id: Optional[str], participant_id: Optional[str]) -> None:
        if not session_id or not participant_id:
            return
        self.session_id, self.participant_id = session_id, participant_id
        try:
            self.storage.set_item(
                SESSION_STORAGE_KEY,
                json.dumps({"sessionId": session_id, "participantId": participant_id}),
            )
        except Exception:
            logger.exception("Failed to persist current session")

    def forget_session(self, discard_queued: bool = False) -> None:
        """Stop rejoining the current session on connect; optionally drop its queued contributions."""
        if discard_queued and self.session_id:
            self.queue.clear_session(self.session_id)
        self.session_id = self.participant_id = None
        self.session = None
        self.storage.remove_item(SESSION_STORAGE_KEY)

    def _load_remembered(self) -> Tuple[Optional[str], Optional[str]]:
        try:
            raw = self.storage.get_item(SESSION_STORAGE_KEY)
            if not raw:
                return None, None
            data = json.loads(raw)
            return data.get("sessionId"), data.get("participantId")
        except Exception:
            logger.exception("Ignoring unreadable remembered session")
            return None, None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self.status:
            return
        self.status = status
        for listener in list(self._status_listeners):
            self._notify(listener, status)

    def _notify(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
        except Exception:
            logger.exception("Listener %r failed", callback)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
