# -----------------------------
# ratelimit.py
# -----------------------------
# Sliding-window rate limiting.
#
# One limiter instance tracks many keys (participant ids for chat messages,
# client addresses for HTTP requests). A hit is accepted when fewer than
# ``max_hits`` accepted hits fall inside the trailing ``window`` seconds;
# rejected hits are not recorded.

from __future__ import annotations

from collections import deque
from threading import Lock
from typing import Callable, Deque, Dict

from logging_config import get_logger
from utils import monotonic_s

logger = get_logger(__name__)


class SlidingWindowLimiter:
    """Per-key sliding window limiter."""

    def __init__(self, max_hits: int, window: float = 60.0, clock: Callable[[], float] = monotonic_s) -> None:
        """
        Args:
            max_hits: accepted hits allowed per window
            window: window length in seconds
            clock: monotonic time source (seconds)
        """
        if max_hits <= 0 or window <= 0:
            raise ValueError("max_hits and window must be positive")
        self.max_hits = max_hits
        self.window = window
        self._clock = clock
        self._lock = Lock()
        self._hits: Dict[str, Deque[float]] = {}

    def allow(self, key: str) -> bool:
        """Record a hit for `key` if it fits in the window; False when the limit is reached."""
        now = self._clock()
        with self._lock:
            hits = self._hits.get(key)
            if hits is None:
                hits = self._hits[key] = deque()
            self._prune(hits, now)
            if len(hits) >= self.max_hits:
                return False
            hits.append(now)
            return True

    def remaining(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            hits = self._hits.get(key)
            if not hits:
                return self.max_hits
            self._prune(hits, now)
            return max(0, self.max_hits - len(hits))

    def forget(self, key: str) -> None:
        with self._lock:
            self._hits.pop(key, None)

    def cleanup(self) -> int:
        """Drop keys with no hits left in the window. Returns how many were removed."""
        now = self._clock()
        removed = 0
        with self._lock:
            for key in list(self._hits):
                hits = self._hits[key]
                self._prune(hits, now)
                if not hits:
                    del self._hits[key]
                    removed += 1
        if removed:
            logger.debug("Rate limiter cleanup", removed=removed, tracked=len(self._hits))
        return removed

    def __len__(self) -> int:
        return len(self._hits)

    def _prune(self, hits: Deque[float], now: float) -> None:
        while hits and now - hits[0] >= self.window:
            hits.popleft()
