"""
Conversation session state and the state machine that drives it.

States:
  connecting -> awaiting-partner -> in-progress -> done
  error is reachable from any non-terminal state. done and error are terminal.

Only the state machine mutates the Session and its PlayerTileCache.
Messages that don't apply to the current state are dropped (stale or
replayed data); malformed messages never get this far because the
decoder rejects them, and that failure is fatal for the session.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from pollchat.client.cache import Player, PlayerTileCache, Tile, TileChange
from pollchat.common.config import DEFAULT_PLAYER_NAME, DEFAULT_ROOM
from pollchat.common.protocol import (
    STATUS_MESSAGES,
    ChatMessage,
    End,
    Header,
    InboundMessage,
    PlayerName,
    PlayerStatus,
    ProtocolError,
    StateChanged,
    TileUpdate,
    Variant,
)


_logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    CONNECTING = "connecting"
    AWAITING_PARTNER = "awaiting-partner"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.DONE, SessionState.ERROR)


@dataclass(frozen=True)
class ChatEntry:
    person_number: int
    text: str
    sequence: int
    is_self: bool


@dataclass
class Session:
    room_name: str = DEFAULT_ROOM
    display_name: str = DEFAULT_PLAYER_NAME
    variant: Variant = "game"
    state: SessionState = SessionState.CONNECTING
    person_id: Optional[str] = None
    person_number: Optional[int] = None
    next_expected_message_number: int = 0
    transcript: List[ChatEntry] = field(default_factory=list)
    unread_messages: int = 0
    has_focus: bool = True


class SessionListener:
    """
    Receives everything the renderer needs. All methods are no-ops;
    front-ends override the ones they care about. The session and cache
    passed in are read-only for listeners.
    """

    def on_state_changed(self, session: Session, old: SessionState, new: SessionState) -> None:
        pass

    def on_status(self, key: str, text: str) -> None:
        pass

    def on_chat_message(self, session: Session, entry: ChatEntry) -> None:
        pass

    def on_player_changed(self, num: int, player: Player) -> None:
        pass

    def on_tile_changed(self, num: int, tile: Tile, change: TileChange) -> None:
        pass

    def on_error(self, error: Exception) -> None:
        pass


class SessionStateMachine:
    def __init__(self, session: Session, cache: Optional[PlayerTileCache] = None):
        self.session = session
        self.cache = cache if cache is not None else PlayerTileCache()
        self.listeners: List[SessionListener] = []
        # message number of the next chat message in the current watch stream
        self._stream_message_number = session.next_expected_message_number
        self._handlers: Dict[type, Callable[[InboundMessage], None]] = {
            Header: self._handle_header,
            StateChanged: self._handle_state_changed,
            End: self._handle_end,
            PlayerName: self._handle_player_name,
            PlayerStatus: self._handle_player_status,
            ChatMessage: self._handle_chat_message,
            TileUpdate: self._handle_tile,
        }

    @property
    def state(self) -> SessionState:
        return self.session.state

    def add_listener(self, listener: SessionListener) -> None:
        self.listeners.append(listener)

    def begin_stream(self, message_number: int) -> None:
        """A new watch exchange starts replaying chat messages from `message_number`."""
        self._stream_message_number = message_number

    def apply(self, message: InboundMessage) -> None:
        handler = self._handlers.get(type(message))
        if handler is None:
            raise TypeError(f"not an inbound message: {message!r}")
        handler(message)

    def fail(self, error: Exception) -> None:
        if self.session.state.terminal:
            _logger.debug("ignoring %r in terminal state %s", error, self.session.state.value)
            return
        _logger.error("session failed: %s", error)
        key = "bad_data" if isinstance(error, ProtocolError) else "transport_error"
        self._notify_status(key)
        self._set_state(SessionState.ERROR)
        for listener in list(self.listeners):
            listener.on_error(error)

    def focus(self) -> None:
        self.session.has_focus = True
        self.session.unread_messages = 0

    def blur(self) -> None:
        self.session.has_focus = False

    # -------------------------
    # internals
    # -------------------------
    def _set_state(self, new: SessionState) -> None:
        old = self.session.state
        if old == new:
            return
        self.session.state = new
        _logger.info("session state %s -> %s", old.value, new.value)
        for listener in list(self.listeners):
            listener.on_state_changed(self.session, old, new)

    def _notify_status(self, key: str) -> None:
        text = STATUS_MESSAGES.get(key, key)
        for listener in list(self.listeners):
            listener.on_status(key, text)

    def _stale(self, message: InboundMessage) -> None:
        _logger.debug("stale %s ignored in state %s", type(message).__name__, self.session.state.value)

    def _handle_header(self, msg: Header) -> None:
        if self.session.state != SessionState.CONNECTING:
            self._stale(msg)
            return
        self.session.person_id = msg.person_id
        self.session.person_number = msg.person_number
        # in the game the server only answers once the players are paired
        if self.session.variant == "chat":
            self._notify_status("awaiting_partner")
            self._set_state(SessionState.AWAITING_PARTNER)
        else:
            self._notify_status("in_progress")
            self._set_state(SessionState.IN_PROGRESS)

    def _handle_state_changed(self, msg: StateChanged) -> None:
        state = self.session.state
        if msg.new_state == SessionState.IN_PROGRESS.value and state == SessionState.AWAITING_PARTNER:
            self._notify_status("in_progress")
            self._set_state(SessionState.IN_PROGRESS)
        elif msg.new_state == SessionState.DONE.value and state == SessionState.IN_PROGRESS:
            self._finish()
        else:
            self._stale(msg)

    def _handle_end(self, msg: End) -> None:
        if self.session.state != SessionState.IN_PROGRESS:
            self._stale(msg)
            return
        self._finish()

    def _finish(self) -> None:
        self._notify_status("partner_left")
        self._set_state(SessionState.DONE)

    def _handle_chat_message(self, msg: ChatMessage) -> None:
        if self.session.state != SessionState.IN_PROGRESS:
            self._stale(msg)
            return

        sequence = self._stream_message_number
        self._stream_message_number += 1
        if sequence < self.session.next_expected_message_number:
            _logger.debug("duplicate chat message %d ignored", sequence)
            return

        entry = ChatEntry(
            person_number=msg.person_number,
            text=msg.text,
            sequence=sequence,
            is_self=msg.person_number == self.session.person_number,
        )
        self.session.transcript.append(entry)
        self.session.next_expected_message_number = sequence + 1
        if not self.session.has_focus:
            self.session.unread_messages += 1
        for listener in list(self.listeners):
            listener.on_chat_message(self.session, entry)

    def _handle_player_name(self, msg: PlayerName) -> None:
        if self.session.state != SessionState.IN_PROGRESS:
            self._stale(msg)
            return
        player = self.cache.apply_player_name(msg)
        for listener in list(self.listeners):
            listener.on_player_changed(msg.num, player)

    def _handle_player_status(self, msg: PlayerStatus) -> None:
        if self.session.state != SessionState.IN_PROGRESS:
            self._stale(msg)
            return
        player = self.cache.apply_player_status(msg)
        for listener in list(self.listeners):
            listener.on_player_changed(msg.num, player)

    def _handle_tile(self, msg: TileUpdate) -> None:
        if self.session.state != SessionState.IN_PROGRESS:
            self._stale(msg)
            return
        change = self.cache.apply_tile(msg)
        tile = self.cache.tiles[msg.num]
        for listener in list(self.listeners):
            listener.on_tile_changed(msg.num, tile, change)
