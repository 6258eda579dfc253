# -----------------------------
# utils.py
# -----------------------------
from __future__ import annotations
import secrets, time, uuid
from typing import Iterable, FrozenSet

MAX_TAGS = 10
MAX_TAG_LENGTH = 32


def secure_uuid() -> str:
    """Generate a cryptographically strong UUID4 string."""
    return str(uuid.uuid4())


def new_display_id() -> str:
    """Random 4-digit nickname shown to the peer. Cosmetic only."""
    return str(1000 + secrets.randbelow(9000))


def monotonic_s() -> float:
    """Monotonic seconds, for rate windows."""
    return time.monotonic()


def now_ms_epoch() -> int:
    return int(time.time() * 1000)


def short_id(participant_id: str) -> str:
    return participant_id[:8]


def normalize_tags(raw: Iterable[object] | None) -> FrozenSet[str]:
    """
    Lower-case, strip and dedupe interest tags.
    Non-strings and blanks are skipped; at most MAX_TAGS survive, each cut to MAX_TAG_LENGTH.
    """
    if not raw or isinstance(raw, (str, bytes)):
        return frozenset()
    out: list[str] = []
    for item in raw:
        if not isinstance(item, str):
            continue
        tag = " ".join(item.split()).lower()[:MAX_TAG_LENGTH]
        if tag and tag not in out:
            out.append(tag)
        if len(out) >= MAX_TAGS:
            break
    return frozenset(out)
