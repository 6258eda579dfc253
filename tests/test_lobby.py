"""Tests for frame dispatch through the lobby, end to end over the fake emitter."""

import json
import random

from events import ERROR_NO_PARTNER, MATCHED, MESSAGE_RECEIVE, PARTNER_LEFT, TYPING_START, WAITING
from relay import RelayOutcome


def send(lobby, pid, **frame):
    return lobby.handle_frame(pid, json.dumps(frame))


class TestLobbyDispatch:
    def test_full_conversation(self, lobby, emitter):
        a, b = lobby.connect(), lobby.connect()

        send(lobby, a, type="find_partner", tags=["films"])
        send(lobby, b, type="find_partner")
        send(lobby, a, type="typing_start")
        send(lobby, a, type="message_send", text="hey")
        send(lobby, b, type="chat_end")

        assert emitter.names_for(a) == [WAITING, MATCHED, PARTNER_LEFT]
        assert emitter.names_for(b) == [MATCHED, TYPING_START, MESSAGE_RECEIVE]
        assert lobby.registry.chatting_count == 0

    def test_malformed_frames_are_ignored(self, lobby, emitter):
        a = lobby.connect()

        assert lobby.handle_frame(a, "{broken") is None
        assert send(lobby, a, type="message_send", text=None) is None
        assert send(lobby, a, type="unknown") is None
        assert emitter.sent == []

    def test_message_without_partner(self, lobby, emitter):
        a = lobby.connect()

        assert send(lobby, a, type="message_send", text="hello") is RelayOutcome.NO_PARTNER
        assert emitter.names_for(a) == [ERROR_NO_PARTNER]

    def test_events_from_unregistered_ids_are_ignored(self, lobby, emitter):
        assert send(lobby, "ghost", type="find_partner") is None
        assert lobby.registry.waiting_count == 0

    def test_disconnect_mid_chat(self, lobby, emitter):
        a, b = lobby.connect(), lobby.connect()
        send(lobby, a, type="find_partner")
        send(lobby, b, type="find_partner")

        assert lobby.disconnect(a) is True
        assert lobby.disconnect(a) is False

        assert emitter.names_for(b)[-1] == PARTNER_LEFT
        assert send(lobby, b, type="message_send", text="hello?") is RelayOutcome.NO_PARTNER


class TestLobbyInvariants:
    def test_random_walk_keeps_invariants(self, lobby, emitter):
        rng = random.Random(7)
        live = []
        tags = [[], ["a"], ["b"], ["a", "b"]]

        for _ in range(2000):
            roll = rng.random()
            if roll < 0.15 or not live:
                live.append(lobby.connect())
            elif roll < 0.25:
                lobby.disconnect(live.pop(rng.randrange(len(live))))
            else:
                pid = rng.choice(live)
                kind = rng.choice(["find_partner", "message_send", "typing_start", "chat_end"])
                if kind == "find_partner":
                    send(lobby, pid, type=kind, tags=rng.choice(tags))
                elif kind == "message_send":
                    send(lobby, pid, type=kind, text="hi")
                else:
                    send(lobby, pid, type=kind)

            snap = lobby.snapshot()
            assert snap.online == len(live)
            assert snap.chatting % 2 == 0
            assert lobby.registry.consistency_problems() == []
