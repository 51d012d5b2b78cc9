"""Durable queue of story contributions made while offline.

Entries are identified by `(session_id, timestamp)`, never by content, so the
same sentence queued twice is two distinct contributions. Every mutation
rewrites the whole queue to storage before returning.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from models.session_models import from_iso, to_iso, utc_now
from sync_client.storage import KeyValueStorage

logger = logging.getLogger(__name__)

STORAGE_KEY = "ghost-story-offline-queue"
MAX_RETRIES = 3


@dataclass
class QueuedContribution:
    session_id: str
    content: str
    timestamp: datetime
    retry_count: int = 0

    def matches(self, session_id: str, timestamp: datetime) -> bool:
        return self.session_id == session_id and self.timestamp == timestamp

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "content": self.content,
            "timestamp": to_iso(self.timestamp),
            "retryCount": self.retry_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "QueuedContribution":
        return cls(
            session_id=data["sessionId"],
            content=data["content"],
            timestamp=from_iso(data["timestamp"]),
            retry_count=int(data.get("retryCount", 0)),
        )


class OfflineQueue:
    """Insertion-ordered, storage-backed queue of unacknowledged contributions."""

    def __init__(
        self,
        storage: KeyValueStorage,
        max_retries: int = MAX_RETRIES,
        storage_key: str = STORAGE_KEY,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.storage = storage
        self.max_retries = max_retries
        self.storage_key = storage_key
        self._clock = clock
        self._lock = threading.Lock()
        self._queue: List[QueuedContribution] = self._load()

    def enqueue(self, session_id: str, content: str) -> QueuedContribution:
        with self._lock:
            timestamp = self._clock()
            # Identity is (session_id, timestamp); nudge past a clock tie.
            while any(item.matches(session_id, timestamp) for item in self._queue):
                timestamp += timedelta(microseconds=1)
            item = QueuedContribution(session_id=session_id, content=content, timestamp=timestamp)
            self._queue.append(item)
            self._save()
            return item

    def dequeue(self, session_id: str, timestamp: datetime) -> bool:
        """Remove the entry with this identity; False if it was not queued."""
        with self._lock:
            before = len(self._queue)
            self._queue = [item for item in self._queue if not item.matches(session_id, timestamp)]
            if len(self._queue) == before:
                return False
            self._save()
            return True

    def increment_retry(self, session_id: str, timestamp: datetime) -> bool:
        """Count a failed attempt.

        Returns True while the entry may be retried. On reaching `max_retries`
        the entry is removed and False is returned; an unknown entry also
        returns False.
        """
        with self._lock:
            item = self._find(session_id, timestamp)
            if item is None:
                return False
            item.retry_count += 1
            if item.retry_count >= self.max_retries:
                self._queue.remove(item)
                self._save()
                return False
            self._save()
            return True

    def get_all_queued(self) -> List[QueuedContribution]:
        with self._lock:
            return [self._copy(item) for item in self._queue]

    def size(self) -> int:
        return len(self._queue)

    def is_empty(self) -> bool:
        return not self._queue

    def clear_session(self, session_id: str) -> None:
        with self._lock:
            self._queue = [item for item in self._queue if item.session_id != session_id]
            self._save()

    def clear_all(self) -> None:
        with self._lock:
            self._queue = []
            self._save()

    def _find(self, session_id: str, timestamp: datetime) -> Optional[QueuedContribution]:
        return next((item for item in self._queue if item.matches(session_id, timestamp)), None)

    @staticmethod
    def _copy(item: QueuedContribution) -> QueuedContribution:
        return QueuedContribution(item.session_id, item.content, item.timestamp, item.retry_count)

    def _save(self) -> None:
        try:
            self.storage.set_item(self.storage_key, json.dumps([item.to_dict() for item in self._queue]))
        except Exception:
            logger.exception("Failed to save offline queue to storage")

    def _load(self) -> List[QueuedContribution]:
        try:
            raw = self.storage.get_item(self.storage_key)
            if not raw:
                return []
            return [QueuedContribution.from_dict(entry) for entry in json.loads(raw)]
        except Exception:
            logger.exception("Failed to load offline queue from storage; starting empty")
            return []
