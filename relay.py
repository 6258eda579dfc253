# -----------------------------
# relay.py
# -----------------------------
# Session relay: forwards chat events between the two members of a session.
#
# Every forward re-checks, under the registry lock, that the sender still has a
# session and that the partner is still live right before emitting. Nothing
# that passes through here is stored.

from __future__ import annotations

from enum import Enum
from typing import Callable, Optional

from events import (
    ERROR_NO_PARTNER,
    ERROR_RATELIMIT,
    MESSAGE_RECEIVE,
    NO_PARTNER_MESSAGE,
    PARTNER_LEFT,
    RATELIMIT_MESSAGE,
    TYPING_START,
    TYPING_STOP,
)
from logging_config import get_logger
from ratelimit import SlidingWindowLimiter
from registry import ConnectionRegistry
from utils import monotonic_s, now_ms_epoch, short_id

logger = get_logger(__name__)

DEFAULT_MAX_MESSAGE_LENGTH = 500
DEFAULT_MAX_MESSAGES_PER_MINUTE = 60


class RelayOutcome(str, Enum):
    DELIVERED = "delivered"
    NO_PARTNER = "no_partner"
    EMPTY = "empty"
    MALFORMED = "malformed"
    RATE_LIMITED = "rate_limited"
    STALE = "stale"


class SessionRelay:
    def __init__(
        self,
        registry: ConnectionRegistry,
        max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
        max_messages_per_minute: int = DEFAULT_MAX_MESSAGES_PER_MINUTE,
        clock: Callable[[], float] = monotonic_s,
        timestamp: Callable[[], int] = now_ms_epoch,
    ):
        self.registry = registry
        self.max_message_length = max_message_length
        self.limiter = SlidingWindowLimiter(max_messages_per_minute, window=60.0, clock=clock)
        self._timestamp = timestamp

    def relay_message(self, sender_id: str, text: object) -> RelayOutcome:
        if not isinstance(text, str):
            return RelayOutcome.MALFORMED
        reg = self.registry
        with reg.lock:
            partner_id = reg.partner_of(sender_id)
            if partner_id is None:
                reg.emit(sender_id, ERROR_NO_PARTNER, {"message": NO_PARTNER_MESSAGE})
                return RelayOutcome.NO_PARTNER

            clean = text.strip()[: self.max_message_length]
            if not clean:
                return RelayOutcome.EMPTY

            if not self.limiter.allow(sender_id):
                logger.info("Message rate limit hit", participant=short_id(sender_id))
                reg.emit(sender_id, ERROR_RATELIMIT, {"message": RATELIMIT_MESSAGE})
                return RelayOutcome.RATE_LIMITED

            if not reg.is_live(partner_id):
                return RelayOutcome.STALE
            reg.emit(partner_id, MESSAGE_RECEIVE, {"text": clean, "ts": self._timestamp()})
            return RelayOutcome.DELIVERED

    def relay_typing(self, sender_id: str, is_typing: bool) -> bool:
        """Forward a typing indicator. False when there is nobody to forward to."""
        reg = self.registry
        with reg.lock:
            partner_id = reg.partner_of(sender_id)
            if partner_id is None or not reg.is_live(partner_id):
                return False
            reg.emit(partner_id, TYPING_START if is_typing else TYPING_STOP, None)
            return True

    def end_session(self, participant_id: str, notify_partner: bool = True) -> Optional[str]:
        """Tear down the session for both sides. Returns the former partner id, None if there was no session."""
        reg = self.registry
        with reg.lock:
            session = reg.unpair(participant_id)
            if session is None:
                return None
            partner_id = session.other(participant_id)
            if notify_partner:
                reg.emit(partner_id, PARTNER_LEFT, None)
        logger.info("Session ended", participant=short_id(participant_id), partner=short_id(partner_id))
        return partner_id

    def forget(self, participant_id: str) -> None:
        """Discard rate-limit history for a departed participant."""
        self.limiter.forget(participant_id)
