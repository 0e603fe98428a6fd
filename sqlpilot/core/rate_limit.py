"""Per-workspace sliding-window request limiter."""

from __future__ import annotations

from collections import deque
import logging
import threading
import time
from typing import Callable

from .exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


class WorkspaceRateLimiter:
    """Allow at most ``max_requests`` per ``window_seconds`` for each workspace.

    The timestamp map is process-wide and shared by every request thread, so
    each check-and-record happens under one lock.
    """

    def __init__(
        self,
        max_requests: int = 30,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[int, deque[float]] = {}
        self._lock = threading.Lock()

    def check(self, workspace_id: int) -> None:
        """Record one request for the workspace.

        Raises:
            RateLimitExceededError: If the window is already full
        """
        with self._lock:
            now = self._clock()
            hits = self._hits.setdefault(workspace_id, deque())
            while hits and now - hits[0] >= self.window_seconds:
                hits.popleft()

            if len(hits) >= self.max_requests:
                # With max_requests=0 the window is always full and never has hits
                retry_after = self.window_seconds - (now - hits[0]) if hits else self.window_seconds
                logger.warning(f"Rate limit hit for workspace {workspace_id} ({len(hits)} requests)")
                raise RateLimitExceededError(workspace_id, retry_after)

            hits.append(now)

    def remaining(self, workspace_id: int) -> int:
        with self._lock:
            now = self._clock()
            hits = self._hits.get(workspace_id, ())
            active = sum(1 for hit in hits if now - hit < self.window_seconds)
            return max(0, self.max_requests - active)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
