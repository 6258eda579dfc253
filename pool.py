# -----------------------------
# pool.py
# -----------------------------
from __future__ import annotations
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import FrozenSet, Iterator, Optional


@dataclass
class WaitingEntry:
    participant_id: str
    tags: FrozenSet[str] = field(default_factory=frozenset)
    since: float = 0.0  # epoch seconds

    def matches(self, tags: FrozenSet[str]) -> bool:
        """Either side tag-less, or a shared tag."""
        return not tags or not self.tags or bool(self.tags & tags)


class WaitingPool:
    """
    Insertion-ordered waiting entries, oldest first.
    Pure storage: the registry keeps it in step with participant status.
    """

    def __init__(self):
        self._entries: "OrderedDict[str, WaitingEntry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in self._entries

    def put(self, participant_id: str, tags: FrozenSet[str], since: float) -> WaitingEntry:
        """Add at the tail, or replace tags in place keeping position and since."""
        entry = self._entries.get(participant_id)
        if entry is None:
            entry = WaitingEntry(participant_id, frozenset(tags), since)
            self._entries[participant_id] = entry
        else:
            entry.tags = frozenset(tags)
        return entry

    def discard(self, participant_id: str) -> bool:
        return self._entries.pop(participant_id, None) is not None

    def candidates(self, excluding: Optional[str] = None) -> Iterator[WaitingEntry]:
        """
        Every entry except `excluding`, oldest first.
        Iterates a snapshot, so callers may discard while scanning; call again to restart.
        """
        for pid, entry in list(self._entries.items()):
            if pid != excluding:
                yield entry

    def ids(self) -> list[str]:
        return list(self._entries)
