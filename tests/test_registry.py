"""Tests for the connection registry and its pool/session bookkeeping."""

import itertools

import pytest

from events import PARTNER_LEFT
from registry import ConnectionRegistry, Status


class TestConnectionRegistry:
    def setup_method(self):
        self.sent = []
        self.changes = 0
        counter = itertools.count(1)

        def emit(pid, event, payload=None):
            self.sent.append((pid, event))

        def on_change():
            self.changes += 1

        self.registry = ConnectionRegistry(
            emit=emit, on_change=on_change, id_factory=lambda: f"id{next(counter)}"
        )

    def test_register_creates_idle_participant(self):
        pid = self.registry.register()

        p = self.registry.lookup(pid)
        assert p is not None
        assert p.status is Status.IDLE
        assert self.registry.online_count == 1
        assert self.changes == 1

    def test_register_skips_colliding_ids(self):
        ids = iter(["dup", "dup", "fresh"])
        registry = ConnectionRegistry(id_factory=lambda: next(ids))
        assert registry.register() == "dup"
        assert registry.register() == "fresh"

    def test_unregister_is_idempotent(self):
        pid = self.registry.register()

        assert self.registry.unregister(pid) is True
        assert self.registry.unregister(pid) is False
        assert self.registry.lookup(pid) is None
        assert self.registry.online_count == 0
        assert self.changes == 2

    def test_online_count_tracks_connects_and_disconnects(self):
        ids = [self.registry.register() for _ in range(5)]
        for pid in ids[:3]:
            self.registry.unregister(pid)
        self.registry.unregister(ids[0])

        assert self.registry.online_count == len(self.registry.ids()) == 2

    def test_enqueue_and_dequeue_mirror_status(self):
        pid = self.registry.register()

        assert self.registry.enqueue(pid, ["Music", " music ", ""]) is True
        p = self.registry.lookup(pid)
        assert p.status is Status.WAITING
        assert p.tags == frozenset({"music"})
        assert p.waiting_since is not None
        assert pid in self.registry.pool

        assert self.registry.dequeue(pid) is True
        assert p.status is Status.IDLE
        assert pid not in self.registry.pool
        assert self.registry.dequeue(pid) is False
        assert self.registry.consistency_problems() == []

    def test_enqueue_is_noop_while_chatting(self):
        a, b = self.registry.register(), self.registry.register()
        self.registry.pair(a, b, "1111", "2222")

        assert self.registry.enqueue(a, []) is False
        assert a not in self.registry.pool
        assert self.registry.lookup(a).status is Status.CHATTING

    def test_enqueue_unknown_id_is_noop(self):
        assert self.registry.enqueue("ghost", []) is False
        assert len(self.registry.pool) == 0

    def test_pair_is_mutual_and_clears_pool(self):
        a, b = self.registry.register(), self.registry.register()
        self.registry.enqueue(a)
        self.registry.enqueue(b)

        session = self.registry.pair(a, b, "1111", "2222")

        assert self.registry.partner_of(a) == b
        assert self.registry.partner_of(b) == a
        assert session.display_of(a) == "1111"
        assert session.display_of(b) == "2222"
        assert len(self.registry.pool) == 0
        assert self.registry.chatting_count == 2
        assert self.registry.consistency_problems() == []

    def test_pair_rejects_participant_already_in_session(self):
        a, b, c = (self.registry.register() for _ in range(3))
        self.registry.pair(a, b, "1111", "2222")

        with pytest.raises(ValueError):
            self.registry.pair(c, a, "3333", "4444")
        with pytest.raises(ValueError):
            self.registry.pair(c, c, "3333", "4444")
        with pytest.raises(KeyError):
            self.registry.pair(c, "ghost", "3333", "4444")

    def test_unpair_returns_both_to_idle(self):
        a, b = self.registry.register(), self.registry.register()
        self.registry.pair(a, b, "1111", "2222")

        session = self.registry.unpair(b)

        assert session is not None
        assert self.registry.partner_of(a) is None
        assert self.registry.lookup(a).status is Status.IDLE
        assert self.registry.lookup(b).status is Status.IDLE
        assert self.registry.unpair(a) is None

    def test_unregister_chatting_participant_notifies_partner(self):
        a, b = self.registry.register(), self.registry.register()
        self.registry.pair(a, b, "1111", "2222")

        self.registry.unregister(a)

        assert (b, PARTNER_LEFT) in self.sent
        assert self.registry.partner_of(b) is None
        assert self.registry.lookup(b).status is Status.IDLE
        assert self.registry.chatting_count == 0
        assert self.registry.consistency_problems() == []

    def test_unregister_waiting_participant_leaves_pool(self):
        a = self.registry.register()
        self.registry.enqueue(a, ["chess"])

        self.registry.unregister(a)

        assert a not in self.registry.pool
        assert self.registry.waiting_count == 0

    def test_is_live_uses_transport_probe(self):
        gone = set()
        registry = ConnectionRegistry(is_connected=lambda pid: pid not in gone)
        pid = registry.register()

        assert registry.is_live(pid)
        gone.add(pid)
        assert not registry.is_live(pid)
        assert not registry.is_live("never-registered")

    def test_consistency_problems_reports_broken_state(self):
        a = self.registry.register()
        self.registry.pool.put(a, frozenset(), 0.0)  # bypasses status update

        problems = self.registry.consistency_problems()

        assert len(problems) == 1
        assert "pool membership" in problems[0]
