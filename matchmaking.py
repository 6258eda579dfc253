# -----------------------------
# matchmaking.py
# -----------------------------
from __future__ import annotations
from typing import Callable, Iterable, Optional

from events import MATCHED, WAITING
from logging_config import get_logger
from pool import WaitingEntry
from registry import ConnectionRegistry, Session, Status
from relay import SessionRelay
from utils import new_display_id, normalize_tags, short_id

logger = get_logger(__name__)


class Matchmaker:
    """
    First-match pairing over the waiting pool.
    Scan, claim and pair all happen under the registry lock, so two concurrent
    requests can never claim the same candidate.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        relay: SessionRelay,
        display_id_factory: Callable[[], str] = new_display_id,
    ):
        self.registry = registry
        self.relay = relay
        self._display_id = display_id_factory

    def find_partner(self, requester_id: str, tags: Iterable[str] = ()) -> Optional[Session]:
        """
        Pair `requester_id` with the oldest eligible waiter, or park it in the pool.
        Returns the new session, None when the requester is now waiting (or unknown).
        """
        wanted = normalize_tags(tags)
        reg = self.registry
        with reg.lock:
            me = reg.lookup(requester_id)
            if me is None:
                return None
            if me.status is Status.CHATTING:
                # a new request ends the current chat first
                self.relay.end_session(requester_id, notify_partner=True)

            while True:
                candidate = self._first_eligible(requester_id, wanted)
                if candidate is None:
                    break
                if not reg.is_live(candidate.participant_id):
                    # connection went away before its disconnect was processed
                    logger.info("Dropping stale waiter", participant=short_id(candidate.participant_id))
                    reg.dequeue(candidate.participant_id)
                    continue
                return self._pair(requester_id, candidate.participant_id)

            reg.enqueue(requester_id, wanted)
            reg.emit(requester_id, WAITING, None)
        logger.info("Participant waiting", participant=short_id(requester_id), tags=len(wanted), waiting=reg.waiting_count)
        return None

    def _first_eligible(self, requester_id: str, tags) -> Optional[WaitingEntry]:
        pool = self.registry.pool
        for entry in pool.candidates(excluding=requester_id):
            if entry.participant_id in pool and entry.matches(tags):
                return entry
        return None

    def _pair(self, requester_id: str, partner_id: str) -> Session:
        reg = self.registry
        session = reg.pair(requester_id, partner_id, self._display_id(), self._display_id())
        reg.emit(requester_id, MATCHED, {"peerId": session.display_of(partner_id)})
        reg.emit(partner_id, MATCHED, {"peerId": session.display_of(requester_id)})
        logger.info(
            "Match",
            participant=short_id(requester_id),
            partner=short_id(partner_id),
            chatting=reg.chatting_count,
        )
        return session
