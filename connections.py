# -----------------------------
# connections.py
# -----------------------------
# Outbound side of the websocket transport.
#
# Each connected participant gets a bounded outbox queue drained by its own
# writer task. ``emit`` only enqueues, so matchmaking code can call it while
# holding the registry lock without ever awaiting network I/O.

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from fastapi import WebSocket

from events import frame
from logging_config import get_logger
from utils import short_id

logger = get_logger(__name__)


class ConnectionHub:
    def __init__(self, outbox_size: int = 256):
        self.outbox_size = outbox_size
        self._outboxes: Dict[str, asyncio.Queue] = {}

    def attach(self, participant_id: str) -> asyncio.Queue:
        outbox: asyncio.Queue = asyncio.Queue(maxsize=self.outbox_size)
        self._outboxes[participant_id] = outbox
        return outbox

    def detach(self, participant_id: str) -> None:
        self._outboxes.pop(participant_id, None)

    def is_connected(self, participant_id: str) -> bool:
        return participant_id in self._outboxes

    def __len__(self) -> int:
        return len(self._outboxes)

    def emit(self, participant_id: str, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        """Queue one frame; silently ignored for ids that are not connected."""
        outbox = self._outboxes.get(participant_id)
        if outbox is None:
            return
        try:
            outbox.put_nowait(frame(event, payload))
        except asyncio.QueueFull:
            logger.warning("Outbox full, dropping frame", participant=short_id(participant_id), event_type=event)

    def broadcast(self, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        for participant_id in list(self._outboxes):
            self.emit(participant_id, event, payload)

    async def pump(self, participant_id: str, websocket: WebSocket, outbox: asyncio.Queue) -> None:
        """Drain the outbox into the socket until cancelled or the socket fails."""
        while True:
            message = await outbox.get()
            try:
                await websocket.send_json(message)
            except Exception as e:  # transport errors end this writer; the reader side handles disconnect
                logger.info(
                    "Send failed, stopping writer",
                    participant=short_id(participant_id),
                    error=type(e).__name__,
                )
                self.detach(participant_id)
                return
