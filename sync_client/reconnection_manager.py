"""Exponential backoff with jitter for transport reconnects."""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
from typing import Any, Callable, Optional, Set

logger = logging.getLogger(__name__)

BASE_DELAY = 1.0
MAX_DELAY = 30.0
MAX_ATTEMPTS = 10
JITTER = 0.25


class ReconnectionManager:
    """Compute retry delays and keep at most one reconnect timer armed.

    Delays are ``min(base * 2**attempt, max_delay)`` with a uniform ±25%
    jitter, clamped to ``[0, max_delay]``. Callbacks may be plain functions or
    coroutine functions; the latter run as tasks on the current loop.
    """

    def __init__(
        self,
        base_delay: float = BASE_DELAY,
        max_delay: float = MAX_DELAY,
        max_attempts: int = MAX_ATTEMPTS,
        jitter: float = JITTER,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.jitter = jitter
        self._rng = rng or random.Random()
        self._attempt = 0
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def current_attempt(self) -> int:
        return self._attempt

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None

    def base_delay_for(self, attempt: int) -> float:
        """Un-jittered delay for the given attempt number."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def get_next_delay(self) -> float:
        capped = self.base_delay_for(self._attempt)
        offset = capped * self.jitter * self._rng.uniform(-1.0, 1.0)
        self._attempt += 1
        return min(self.max_delay, max(0.0, capped + offset))

    def is_max_attempts_reached(self) -> bool:
        return self._attempt >= self.max_attempts

    def reset(self) -> None:
        self._attempt = 0
        self.clear_timer()

    def schedule_reconnect(self, callback: Callable[[], Any]) -> bool:
        """Arm the reconnect timer; False when attempts are exhausted."""
        self.clear_timer()
        if self.is_max_attempts_reached():
            logger.error("Max reconnection attempts (%d) reached", self.max_attempts)
            return False

        delay = self.get_next_delay()
        logger.info("Scheduling reconnection attempt %d in %.2fs", self._attempt, delay)
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self._fire, callback)
        return True

    def clear_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, callback: Callable[[], Any]) -> None:
        self._timer = None
        result = callback()
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Reconnect callback failed: %s", task.exception())
