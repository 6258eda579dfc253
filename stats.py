# -----------------------------
# stats.py
# -----------------------------
# Online / waiting / chatting counts, derived from registry state on demand.

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel

from events import STATS_UPDATE
from logging_config import get_logger
from registry import ConnectionRegistry

logger = get_logger(__name__)

Broadcast = Callable[[str, Optional[Dict[str, Any]]], None]


class StatsSnapshot(BaseModel):
    online: int
    waiting: int
    chatting: int  # participants in a session, always even
    uptime: int  # seconds since the aggregator started


class StatsAggregator:
    def __init__(self, registry: ConnectionRegistry, clock: Callable[[], float] = time.monotonic):
        self.registry = registry
        self._clock = clock
        self._started = clock()
        self._changed: Optional[asyncio.Event] = None
        self._dirty = False

    def snapshot(self) -> StatsSnapshot:
        reg = self.registry
        with reg.lock:
            return StatsSnapshot(
                online=reg.online_count,
                waiting=reg.waiting_count,
                chatting=reg.chatting_count,
                uptime=int(self._clock() - self._started),
            )

    def notify_changed(self) -> None:
        """Registry hook: ask the broadcaster to push a fresh snapshot soon."""
        self._dirty = True
        if self._changed is not None:
            self._changed.set()

    @property
    def dirty(self) -> bool:
        return self._dirty

    def publish(self, broadcast: Broadcast) -> StatsSnapshot:
        snap = self.snapshot()
        self._dirty = False
        broadcast(STATS_UPDATE, snap.model_dump())
        return snap

    async def run(self, broadcast: Broadcast, interval: float = 5.0, min_gap: float = 1.0) -> None:
        """
        Broadcast every `interval` seconds, and soon after any change.
        Changes landing within `min_gap` of the last broadcast are coalesced.
        """
        self._changed = asyncio.Event()
        if self._dirty:
            self._changed.set()
        logger.info("Stats broadcaster started", interval=interval)
        try:
            while True:
                try:
                    await asyncio.wait_for(self._changed.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass
                self._changed.clear()
                self.publish(broadcast)
                if min_gap > 0:
                    await asyncio.sleep(min_gap)
        finally:
            self._changed = None
            logger.info("Stats broadcaster stopped")
