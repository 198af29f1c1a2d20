"""Shared fakes and fixtures for pollchat tests."""

from __future__ import annotations

from typing import Callable, List, Optional

import pytest

from pollchat.client.conversation import Conversation
from pollchat.client.session import SessionListener
from pollchat.client.transport import Exchange
from pollchat.common.config import ClientSettings
from pollchat.common.protocol import ExchangeRequest


class FakeTimer:
    def __init__(self, scheduler: "FakeScheduler", when: float, callback: Callable[[], None]):
        self.scheduler = scheduler
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Manual clock + timer queue. `advance()` fires due timers in order."""

    def __init__(self):
        self.now = 1000.0
        self.timers: List[FakeTimer] = []

    def clock(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self, self.now + delay, callback)
        self.timers.append(timer)
        return timer

    def pending(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        end = self.now + seconds
        while True:
            due = [t for t in self.pending() if t.when <= end]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self.timers.remove(timer)
            self.now = max(self.now, timer.when)
            timer.callback()
        self.now = end


class FakeExchange(Exchange):
    def __init__(self, request, on_progress, on_complete, watch):
        super().__init__(request, on_progress, on_complete)
        self.watch = watch

    def feed(self, chunk: str, notify: bool = True) -> None:
        self._feed(chunk, notify)

    def complete(self, status: int = 200) -> None:
        self._finish(status)


class FakeTransport:
    def __init__(self):
        self.opened: List[FakeExchange] = []
        self.blocking: List[ExchangeRequest] = []

    def open(self, request, on_progress=None, on_complete=None, *, watch=False) -> FakeExchange:
        ex = FakeExchange(request, on_progress, on_complete, watch)
        self.opened.append(ex)
        return ex

    def send_blocking(self, request: ExchangeRequest) -> Optional[int]:
        self.blocking.append(request)
        return 200

    @property
    def watches(self) -> List[FakeExchange]:
        return [e for e in self.opened if e.watch]

    @property
    def sends(self) -> List[FakeExchange]:
        return [e for e in self.opened if not e.watch]

    def open_sends(self) -> List[FakeExchange]:
        return [e for e in self.sends if not e.done and not e.aborted]


class RecordingListener(SessionListener):
    def __init__(self):
        self.events = []

    def on_state_changed(self, session, old, new):
        self.events.append(("state", old.value, new.value))

    def on_status(self, key, text):
        self.events.append(("status", key))

    def on_chat_message(self, session, entry):
        self.events.append(("chat", entry.sequence, entry.text))

    def on_player_changed(self, num, player):
        self.events.append(("player", num))

    def on_tile_changed(self, num, tile, change):
        self.events.append(("tile", num, change))

    def on_error(self, error):
        self.events.append(("error", type(error).__name__))

    def of(self, kind):
        return [e for e in self.events if e[0] == kind]


def record(discriminator, payload=None) -> str:
    import json

    body = [discriminator] if payload is None else [discriminator, payload]
    return json.dumps(body) + "\r\n"


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def transport():
    return FakeTransport()


def make_conversation(transport, scheduler, variant="game", **kw) -> Conversation:
    settings = ClientSettings(
        room_name=kw.pop("room_name", "default"),
        player_name=kw.pop("player_name", "ludanto"),
        variant=variant,
        keep_alive_seconds=kw.pop("keep_alive_seconds", 150.0),
        check_data_seconds=kw.pop("check_data_seconds", 3.0),
    )
    return Conversation(settings, transport=transport, scheduler=scheduler, clock=scheduler.clock)


@pytest.fixture
def game_conv(transport, scheduler):
    return make_conversation(transport, scheduler, variant="game")


@pytest.fixture
def chat_conv(transport, scheduler):
    return make_conversation(transport, scheduler, variant="chat")
