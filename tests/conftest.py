"""
Shared fixtures: a recording emitter standing in for the websocket transport,
a hand-driven clock, and fully wired chat engines.
"""

import itertools

import pytest

from lobby import Lobby


class RecordingEmitter:
    """Collects every emit; optionally pretends some ids are disconnected."""

    def __init__(self):
        self.sent = []
        self.connected = set()
        self.gone = set()

    def __call__(self, participant_id, event, payload=None):
        if participant_id in self.gone:
            return
        self.sent.append((participant_id, event, payload or {}))

    def is_connected(self, participant_id):
        return participant_id not in self.gone

    def events_for(self, participant_id, event=None):
        return [
            (name, payload)
            for pid, name, payload in self.sent
            if pid == participant_id and (event is None or name == event)
        ]

    def names_for(self, participant_id):
        return [name for name, _ in self.events_for(participant_id)]

    def clear(self):
        self.sent.clear()


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def emitter():
    return RecordingEmitter()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def lobby(emitter, clock):
    counter = itertools.count(1)
    return Lobby(
        emitter,
        is_connected=emitter.is_connected,
        max_message_length=500,
        max_messages_per_minute=60,
        clock=clock,
        id_factory=lambda: f"p{next(counter):03d}",
    )
