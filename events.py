# -----------------------------
# events.py
# -----------------------------
# Wire events between browser and server.
#
# Inbound frames are JSON objects tagged by ``type``; each tag has its own
# pydantic model and anything that does not validate is dropped at the
# boundary. Outbound frames are ``{"type": <event>, **payload}``.

from __future__ import annotations

import json
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictStr, TypeAdapter, ValidationError, field_validator

from logging_config import get_logger
from utils import normalize_tags

logger = get_logger(__name__)

# emit(participant_id, event_name, payload); must no-op for unknown ids
Emit = Callable[[str, str, Optional[Dict[str, Any]]], None]

# --- server -> client ---
WAITING = "waiting"
MATCHED = "matched"
MESSAGE_RECEIVE = "message_receive"
TYPING_START = "typing_start"
TYPING_STOP = "typing_stop"
PARTNER_LEFT = "partner_left"
ERROR_RATELIMIT = "error_ratelimit"
ERROR_NO_PARTNER = "error_no_partner"
STATS_UPDATE = "stats_update"
SERVER_SHUTDOWN = "server_shutdown"

RATELIMIT_MESSAGE = "You are sending messages too fast, wait a moment."
NO_PARTNER_MESSAGE = "You are not in a chat right now."
SHUTDOWN_MESSAGE = "The server is restarting, please reconnect shortly."


class _ClientEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")


class FindPartner(_ClientEvent):
    type: Literal["find_partner"]
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, v: Any) -> List[str]:
        # Bad tag payloads degrade to "no tags" instead of dropping the request.
        return sorted(normalize_tags(v if isinstance(v, list) else None))


class MessageSend(_ClientEvent):
    type: Literal["message_send"]
    text: StrictStr


class TypingStart(_ClientEvent):
    type: Literal["typing_start"]


class TypingStop(_ClientEvent):
    type: Literal["typing_stop"]


class ChatEnd(_ClientEvent):
    type: Literal["chat_end"]


ClientEvent = Annotated[
    Union[FindPartner, MessageSend, TypingStart, TypingStop, ChatEnd],
    Field(discriminator="type"),
]

_client_event_adapter: TypeAdapter[ClientEvent] = TypeAdapter(ClientEvent)


def parse_client_event(raw: Union[str, bytes, Dict[str, Any]]) -> Optional[ClientEvent]:
    """Decode one inbound frame; None when it is not a known, well-formed event."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.debug("Dropping non-JSON frame")
            return None
    if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
        logger.debug("Dropping untyped frame")
        return None
    try:
        return _client_event_adapter.validate_python(raw)
    except ValidationError as exc:
        logger.debug("Dropping malformed frame", event_type=raw.get("type"), errors=exc.error_count())
        return None


def frame(event: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Outbound wire shape."""
    out: Dict[str, Any] = {"type": event}
    if payload:
        out.update(payload)
    return out
