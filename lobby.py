# -----------------------------
# lobby.py
# -----------------------------
# Lobby: wires registry, matchmaker, relay and stats together and maps
# connection lifecycle callbacks and validated client events onto them.
#
# The lobby knows nothing about websockets; it talks to the outside world
# through the injected ``emit`` and ``is_connected`` callables.

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Union

from events import (
    ChatEnd,
    ClientEvent,
    Emit,
    FindPartner,
    MessageSend,
    TypingStart,
    TypingStop,
    parse_client_event,
)
from logging_config import get_logger
from matchmaking import Matchmaker
from registry import ConnectionRegistry
from relay import DEFAULT_MAX_MESSAGE_LENGTH, DEFAULT_MAX_MESSAGES_PER_MINUTE, SessionRelay
from stats import StatsAggregator, StatsSnapshot
from utils import monotonic_s, secure_uuid, short_id

logger = get_logger(__name__)


class Lobby:
    def __init__(
        self,
        emit: Emit,
        is_connected: Optional[Callable[[str], bool]] = None,
        max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
        max_messages_per_minute: int = DEFAULT_MAX_MESSAGES_PER_MINUTE,
        clock: Callable[[], float] = monotonic_s,
        id_factory: Callable[[], str] = secure_uuid,
    ):
        self.registry = ConnectionRegistry(emit=emit, is_connected=is_connected, id_factory=id_factory)
        self.stats = StatsAggregator(self.registry)
        self.registry.on_change = self.stats.notify_changed
        self.relay = SessionRelay(
            self.registry,
            max_message_length=max_message_length,
            max_messages_per_minute=max_messages_per_minute,
            clock=clock,
        )
        self.matchmaker = Matchmaker(self.registry, self.relay)

    @classmethod
    def from_settings(cls, settings, emit: Emit, is_connected: Optional[Callable[[str], bool]] = None) -> "Lobby":
        return cls(
            emit,
            is_connected=is_connected,
            max_message_length=settings.max_message_length,
            max_messages_per_minute=settings.max_messages_per_minute,
        )

    # ------------- lifecycle -------------

    def connect(self) -> str:
        return self.registry.register()

    def disconnect(self, participant_id: str) -> bool:
        removed = self.registry.unregister(participant_id)
        self.relay.forget(participant_id)
        return removed

    # ------------- events -------------

    def handle_event(self, participant_id: str, event: ClientEvent) -> Any:
        if participant_id not in self.registry:
            return None
        if isinstance(event, FindPartner):
            return self.matchmaker.find_partner(participant_id, event.tags)
        if isinstance(event, MessageSend):
            return self.relay.relay_message(participant_id, event.text)
        if isinstance(event, TypingStart):
            return self.relay.relay_typing(participant_id, True)
        if isinstance(event, TypingStop):
            return self.relay.relay_typing(participant_id, False)
        if isinstance(event, ChatEnd):
            return self.relay.end_session(participant_id, notify_partner=True)
        return None

    def handle_frame(self, participant_id: str, raw: Union[str, bytes, Dict[str, Any]]) -> Any:
        """Validate one raw inbound frame and dispatch it; malformed frames are dropped."""
        event = parse_client_event(raw)
        if event is None:
            logger.debug("Ignored frame", participant=short_id(participant_id))
            return None
        return self.handle_event(participant_id, event)

    def snapshot(self) -> StatsSnapshot:
        return self.stats.snapshot()
