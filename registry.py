# -----------------------------
# registry.py
# -----------------------------
# Connection registry: the single owned container for matchmaking state.
#
# Holds every live participant, the waiting pool and the session table, all
# guarded by one re-entrant lock. Pairing and relay code receive the registry by
# reference and take ``registry.lock`` around any sequence of reads and writes
# that has to be atomic.

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional

from events import PARTNER_LEFT, Emit
from logging_config import get_logger
from pool import WaitingPool
from utils import normalize_tags, secure_uuid, short_id

logger = get_logger(__name__)


class Status(str, Enum):
    IDLE = "idle"
    WAITING = "waiting"
    CHATTING = "chatting"


@dataclass
class Participant:
    participant_id: str
    status: Status = Status.IDLE
    tags: FrozenSet[str] = field(default_factory=frozenset)
    waiting_since: Optional[float] = None


@dataclass(frozen=True)
class Session:
    """Mutual pairing of two participants, with the nickname each one shows the other."""

    first: str
    second: str
    first_display: str
    second_display: str

    @property
    def members(self) -> tuple[str, str]:
        return self.first, self.second

    def other(self, participant_id: str) -> str:
        return self.second if participant_id == self.first else self.first

    def display_of(self, participant_id: str) -> str:
        return self.first_display if participant_id == self.first else self.second_display


def _noop_emit(participant_id, event, payload=None) -> None:
    return None


class ConnectionRegistry:
    def __init__(
        self,
        emit: Optional[Emit] = None,
        on_change: Optional[Callable[[], None]] = None,
        is_connected: Optional[Callable[[str], bool]] = None,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = secure_uuid,
    ):
        self.lock = threading.RLock()
        self.participants: Dict[str, Participant] = {}
        self.pool = WaitingPool()
        self.sessions: Dict[str, Session] = {}  # both members map to the same Session
        self.emit: Emit = emit or _noop_emit
        self.clock = clock
        self.on_change = on_change
        self._is_connected = is_connected
        self._id_factory = id_factory

    # ------------- lifecycle -------------

    def register(self) -> str:
        """New idle participant with a fresh id."""
        with self.lock:
            pid = self._id_factory()
            while pid in self.participants:
                pid = self._id_factory()
            self.participants[pid] = Participant(participant_id=pid)
            online = len(self.participants)
        logger.info("Participant registered", participant=short_id(pid), online=online)
        self._changed()
        return pid

    def unregister(self, participant_id: str) -> bool:
        """
        Drop a participant from pool and session, then forget it.
        The former partner gets partner_left. Returns False if already gone.
        """
        with self.lock:
            if participant_id not in self.participants:
                return False
            self.pool.discard(participant_id)
            session = self._drop_session(participant_id)
            if session is not None:
                self.emit(session.other(participant_id), PARTNER_LEFT, None)
            del self.participants[participant_id]
            online = len(self.participants)
        logger.info("Participant unregistered", participant=short_id(participant_id), online=online)
        self._changed()
        return True

    def lookup(self, participant_id: str) -> Optional[Participant]:
        return self.participants.get(participant_id)

    def is_live(self, participant_id: str) -> bool:
        """Registered and, when a transport probe is wired, still connected."""
        if participant_id not in self.participants:
            return False
        if self._is_connected is None:
            return True
        return self._is_connected(participant_id)

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in self.participants

    def __len__(self) -> int:
        return len(self.participants)

    def ids(self) -> List[str]:
        with self.lock:
            return list(self.participants)

    # ------------- waiting pool -------------

    def enqueue(self, participant_id: str, tags: Iterable[str] = ()) -> bool:
        """Mark waiting and add/replace the pool entry. No-op for unknown or chatting ids."""
        with self.lock:
            p = self.participants.get(participant_id)
            if p is None or p.status is Status.CHATTING:
                return False
            p.tags = normalize_tags(tags)
            if p.status is not Status.WAITING:
                p.waiting_since = self.clock()
            entry = self.pool.put(participant_id, p.tags, p.waiting_since)
            p.waiting_since = entry.since
            p.status = Status.WAITING
        self._changed()
        return True

    def dequeue(self, participant_id: str) -> bool:
        with self.lock:
            removed = self.pool.discard(participant_id)
            p = self.participants.get(participant_id)
            if p is not None and p.status is Status.WAITING:
                p.status = Status.IDLE
                p.waiting_since = None
        if removed:
            self._changed()
        return removed

    # ------------- sessions -------------

    def partner_of(self, participant_id: str) -> Optional[str]:
        session = self.sessions.get(participant_id)
        return session.other(participant_id) if session else None

    def pair(self, first: str, second: str, first_display: str, second_display: str) -> Session:
        """Record a mutual session. Both must be registered and not already chatting."""
        with self.lock:
            if first == second:
                raise ValueError("cannot pair a participant with itself")
            for pid in (first, second):
                if pid not in self.participants:
                    raise KeyError(pid)
                if pid in self.sessions:
                    raise ValueError(f"{short_id(pid)} is already in a session")
            session = Session(first, second, first_display, second_display)
            for pid in (first, second):
                self.pool.discard(pid)
                p = self.participants[pid]
                p.status = Status.CHATTING
                p.waiting_since = None
                self.sessions[pid] = session
        self._changed()
        return session

    def unpair(self, participant_id: str) -> Optional[Session]:
        """Tear the session down for both members; both return to idle."""
        with self.lock:
            session = self._drop_session(participant_id)
        if session is not None:
            self._changed()
        return session

    def _drop_session(self, participant_id: str) -> Optional[Session]:
        session = self.sessions.get(participant_id)
        if session is None:
            return None
        for pid in session.members:
            self.sessions.pop(pid, None)
            p = self.participants.get(pid)
            if p is not None:
                p.status = Status.IDLE
        return session

    # ------------- counts / checks -------------

    @property
    def online_count(self) -> int:
        return len(self.participants)

    @property
    def waiting_count(self) -> int:
        return len(self.pool)

    @property
    def chatting_count(self) -> int:
        return len(self.sessions)

    def consistency_problems(self) -> List[str]:
        """Describe every broken invariant between statuses, pool and sessions (empty when healthy)."""
        problems: List[str] = []
        with self.lock:
            for pid, p in self.participants.items():
                in_pool = pid in self.pool
                session = self.sessions.get(pid)
                if in_pool != (p.status is Status.WAITING):
                    problems.append(f"{pid}: pool membership does not match status {p.status.value}")
                if (session is not None) != (p.status is Status.CHATTING):
                    problems.append(f"{pid}: session membership does not match status {p.status.value}")
                if in_pool and session is not None:
                    problems.append(f"{pid}: waiting and chatting at once")
                if session is not None:
                    other = session.other(pid)
                    if self.partner_of(other) != pid:
                        problems.append(f"{pid}: partner {other} does not point back")
            for pid in self.pool.ids():
                if pid not in self.participants:
                    problems.append(f"{pid}: pooled but not registered")
            for pid in self.sessions:
                if pid not in self.participants:
                    problems.append(f"{pid}: in a session but not registered")
        return problems

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change()
