"""Tests for the outbound queue, liveness pacing and the dispatcher."""

import pytest

from pollchat.client.liveness import LivenessManager
from pollchat.client.outbound import CommandQueue, FlipTile, SendChatText
from pollchat.client.session import SessionState

from conftest import record


def join(conv, transport, num=0):
    conv.start()
    transport.watches[-1].feed(record("header", {"id": "abc", "num": num}))


def add_tile(transport, num, facing_up=False, letter=None):
    payload = {"num": num, "x": num * 10, "y": 0, "facing-up": facing_up}
    if letter:
        payload["letter"] = letter
    transport.watches[-1].feed(record("tile", payload))


class TestCommandQueue:
    def test_fifo(self):
        q = CommandQueue()
        q.push_chat("a")
        q.push_flip(1)
        q.push_chat("b")
        assert [q.pop(), q.pop(), q.pop(), q.pop()] == [SendChatText("a"), FlipTile(1), SendChatText("b"), None]

    def test_duplicate_flip_not_queued(self):
        q = CommandQueue()
        assert q.push_flip(3) is True
        assert q.push_flip(3) is False
        assert list(q) == [FlipTile(3)]

    def test_duplicate_chat_text_is_fine(self):
        q = CommandQueue()
        q.push_chat("hi")
        q.push_chat("hi")
        assert len(q) == 2


class TestLiveness:
    def test_typing_toggle(self):
        lm = LivenessManager(150.0, clock=lambda: 0.0)
        assert lm.typing_toggle(False) is None
        assert lm.typing_toggle(True) is True
        lm.typing_sent(True)
        assert lm.typing_toggle(True) is None
        lm.chat_sent()
        assert lm.sent_typing_state is False

    def test_keep_alive_only_while_live(self):
        now = [0.0]
        lm = LivenessManager(150.0, clock=lambda: now[0])
        now[0] = 151.0
        assert lm.keep_alive_due(SessionState.IN_PROGRESS)
        assert lm.keep_alive_due(SessionState.AWAITING_PARTNER)
        assert not lm.keep_alive_due(SessionState.CONNECTING)
        assert not lm.keep_alive_due(SessionState.DONE)
        lm.mark_exchange()
        assert not lm.keep_alive_due(SessionState.IN_PROGRESS)


class TestDispatcher:
    def test_nothing_sent_before_header(self, game_conv, transport):
        game_conv.start()
        game_conv.set_input_text("hello")
        assert transport.sends == []

    def test_one_exchange_in_flight(self, game_conv, transport):
        join(game_conv, transport)
        game_conv.send_message("one")
        game_conv.send_message("two")
        assert [e.request.body for e in transport.open_sends()] == ["one"]
        transport.open_sends()[0].complete(200)
        assert [e.request.body for e in transport.open_sends()] == ["two"]

    def test_duplicate_flip_clicks(self, game_conv, transport):
        join(game_conv, transport)
        add_tile(transport, 3)
        game_conv.send_message("busy")
        assert game_conv.flip_tile(3) is True
        assert game_conv.flip_tile(3) is False
        assert list(game_conv.queue) == [FlipTile(3)]

    def test_flip_ignored_for_unknown_or_revealed_tiles(self, game_conv, transport):
        join(game_conv, transport)
        add_tile(transport, 1, facing_up=True, letter="A")
        assert game_conv.flip_tile(1) is False
        assert game_conv.flip_tile(9) is False
        assert transport.sends == []

    def test_priority_queue_then_typing_then_keep_alive(self, game_conv, transport, scheduler):
        join(game_conv, transport)
        add_tile(transport, 2)
        game_conv.send_message("first")
        game_conv.flip_tile(2)
        game_conv.set_input_text("typ")

        paths = []
        for _ in range(3):
            ex = transport.open_sends()[0]
            paths.append(ex.request.path)
            ex.complete(200)
        assert paths == ["send_message?abc", "flip_tile?abc&2", "start_typing?abc"]
        assert transport.open_sends() == []

        scheduler.advance(150)
        assert [e.request.path for e in transport.open_sends()] == ["keep_alive?abc"]

    def test_sending_chat_resets_typing(self, game_conv, transport):
        join(game_conv, transport)
        game_conv.set_input_text("hello")
        transport.open_sends()[0].complete(200)
        assert game_conv.liveness.sent_typing_state is True

        assert game_conv.submit_input() is True
        assert game_conv.input_text == ""
        ex = transport.open_sends()[0]
        assert ex.request.body == "hello"
        assert game_conv.liveness.sent_typing_state is False
        ex.complete(200)
        # input is empty and the server already assumes we stopped typing
        assert transport.open_sends() == []

    def test_typing_stop_is_sent(self, game_conv, transport):
        join(game_conv, transport)
        game_conv.set_input_text("h")
        transport.open_sends()[0].complete(200)
        game_conv.set_input_text("")
        assert [e.request.path for e in transport.open_sends()] == ["stop_typing?abc"]

    def test_keep_alive_while_awaiting_partner(self, chat_conv, transport, scheduler):
        join(chat_conv, transport)
        assert chat_conv.state == SessionState.AWAITING_PARTNER
        scheduler.advance(149)
        assert transport.sends == []
        scheduler.advance(1)
        assert [e.request.path for e in transport.open_sends()] == ["keep_alive?abc"]

    def test_chat_refused_until_in_progress(self, chat_conv, transport):
        join(chat_conv, transport)
        assert chat_conv.send_message("anyone?") is False
        assert len(chat_conv.queue) == 0

    def test_failed_send_is_fatal(self, game_conv, transport, scheduler):
        join(game_conv, transport)
        game_conv.send_message("one")
        game_conv.send_message("two")
        transport.open_sends()[0].complete(500)
        assert game_conv.state == SessionState.ERROR
        assert transport.open_sends() == []
        assert transport.watches[-1].aborted
        assert scheduler.pending() == []

    @pytest.mark.parametrize("variant", ["chat", "game"])
    def test_leave_on_close(self, variant, transport, scheduler):
        from conftest import make_conversation

        conv = make_conversation(transport, scheduler, variant=variant)
        join(conv, transport)
        conv.close()
        assert [r.path for r in transport.blocking] == ["leave?abc"]
        assert scheduler.pending() == []

    def test_no_leave_without_person_id(self, game_conv, transport):
        game_conv.start()
        game_conv.close()
        assert transport.blocking == []
