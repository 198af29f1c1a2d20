"""
Outbound commands and the dispatcher that sends them one at a time.

Priority when nothing is in flight:
  1. queued chat text / tile flips, first in first out
  2. a typing-state toggle if the input box changed since the last one
  3. a keep-alive once the session has been quiet for the keep-alive interval
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Iterator, Optional, Union

from pollchat.client.liveness import LivenessManager
from pollchat.client.session import SessionStateMachine
from pollchat.client.transport import Exchange, Scheduler, TimerHandle, Transport, TransportError
from pollchat.common.protocol import (
    FLIP_TILE,
    KEEP_ALIVE,
    LEAVE,
    SEND_MESSAGE,
    START_TYPING,
    STATUS_OK,
    STOP_TYPING,
    ExchangeRequest,
)


_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendChatText:
    text: str

    def to_request(self, person_id: str) -> ExchangeRequest:
        return ExchangeRequest("POST", SEND_MESSAGE, (person_id,), body=self.text)


@dataclass(frozen=True)
class FlipTile:
    tile_index: int

    def to_request(self, person_id: str) -> ExchangeRequest:
        return ExchangeRequest("GET", FLIP_TILE, (person_id, self.tile_index))


@dataclass(frozen=True)
class SetTypingState:
    typing: bool

    def to_request(self, person_id: str) -> ExchangeRequest:
        return ExchangeRequest("GET", START_TYPING if self.typing else STOP_TYPING, (person_id,))


@dataclass(frozen=True)
class KeepAlive:
    def to_request(self, person_id: str) -> ExchangeRequest:
        return ExchangeRequest("GET", KEEP_ALIVE, (person_id,))


@dataclass(frozen=True)
class Leave:
    def to_request(self, person_id: str) -> ExchangeRequest:
        return ExchangeRequest("GET", LEAVE, (person_id,))


OutboundCommand = Union[SendChatText, FlipTile, SetTypingState, KeepAlive, Leave]
QueuedCommand = Union[SendChatText, FlipTile]


class CommandQueue:
    def __init__(self):
        self._items: Deque[QueuedCommand] = deque()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[QueuedCommand]:
        return iter(self._items)

    def push_chat(self, text: str) -> None:
        self._items.append(SendChatText(text))

    def push_flip(self, tile_index: int) -> bool:
        """Queue a flip unless the same tile is already waiting. Returns True if queued."""
        cmd = FlipTile(tile_index)
        if cmd in self._items:
            return False
        self._items.append(cmd)
        return True

    def pop(self) -> Optional[QueuedCommand]:
        if not self._items:
            return None
        return self._items.popleft()


class OutboundDispatcher:
    def __init__(
        self,
        machine: SessionStateMachine,
        transport: Transport,
        scheduler: Scheduler,
        liveness: LivenessManager,
        typing_now: Callable[[], bool],
        queue: Optional[CommandQueue] = None,
    ):
        self.machine = machine
        self.transport = transport
        self.scheduler = scheduler
        self.liveness = liveness
        self.typing_now = typing_now
        self.queue = queue if queue is not None else CommandQueue()
        self.in_flight: Optional[Exchange] = None
        self._in_flight_command: Optional[OutboundCommand] = None
        self._keep_alive_timer: Optional[TimerHandle] = None

    def dispatch(self) -> None:
        if self.in_flight is not None:
            return
        session = self.machine.session
        if session.person_id is None or session.state.terminal:
            return

        cmd = self._next_command()
        if cmd is None:
            return
        self._send(cmd)

    def _next_command(self) -> Optional[OutboundCommand]:
        queued = self.queue.pop()
        if queued is not None:
            if isinstance(queued, SendChatText):
                self.liveness.chat_sent()
            return queued

        toggle = self.liveness.typing_toggle(self.typing_now())
        if toggle is not None:
            self.liveness.typing_sent(toggle)
            return SetTypingState(toggle)

        if self.liveness.keep_alive_due(self.machine.state):
            return KeepAlive()
        return None

    def _send(self, cmd: OutboundCommand) -> None:
        person_id = self.machine.session.person_id
        assert person_id is not None
        _logger.debug("sending %r", cmd)
        self._in_flight_command = cmd
        self.in_flight = self.transport.open(cmd.to_request(person_id), on_complete=self._on_complete)
        self.reset_keep_alive()

    def _on_complete(self, exchange: Exchange, status: int) -> None:
        if exchange is not self.in_flight:
            return
        self.in_flight = None
        cmd = self._in_flight_command
        self._in_flight_command = None
        if status != STATUS_OK:
            self.machine.fail(TransportError(status, exchange.request.endpoint))
            return
        _logger.debug("sent %r", cmd)
        self.dispatch()

    def reset_keep_alive(self) -> None:
        self.cancel_keep_alive()
        self.liveness.mark_exchange()
        self._keep_alive_timer = self.scheduler.call_later(self.liveness.keep_alive_interval, self._keep_alive_fired)

    def cancel_keep_alive(self) -> None:
        if self._keep_alive_timer is not None:
            self._keep_alive_timer.cancel()
            self._keep_alive_timer = None

    def _keep_alive_fired(self) -> None:
        self._keep_alive_timer = None
        if self.machine.state.terminal:
            return
        self.dispatch()
        # nothing was sent (e.g. still connecting); check again next interval
        if self._keep_alive_timer is None:
            self._keep_alive_timer = self.scheduler.call_later(self.liveness.keep_alive_interval, self._keep_alive_fired)

    def stop(self) -> None:
        """Abort anything in flight and cancel the keep-alive timer. Safe to call repeatedly."""
        self.cancel_keep_alive()
        exchange = self.in_flight
        self.in_flight = None
        self._in_flight_command = None
        if exchange is not None:
            exchange.abort()
