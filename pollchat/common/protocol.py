"""
Wire protocol for the long-poll conversation server.

This module defines the inbound message shapes, the endpoint names and
the status strings shown to the user. Everything here is pure data; the
decoder (framing.py) and the client package build on it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Literal, Optional, Tuple, Union
from urllib.parse import quote


Variant = Literal["chat", "game"]

# Endpoints (all relative to http://<host>:<port>/)
NEW_PERSON = "new_person"
WATCH_PERSON = "watch_person"
SEND_MESSAGE = "send_message"
FLIP_TILE = "flip_tile"
START_TYPING = "start_typing"
STOP_TYPING = "stop_typing"
KEEP_ALIVE = "keep_alive"
LEAVE = "leave"

STATUS_OK = 200

STATUS_MESSAGES = {
    "connecting": "Connecting...",
    "awaiting_partner": "Waiting for someone to join the conversation",
    "in_progress": "You are in a conversation. Say hello!",
    "partner_left": "The other person has left the conversation",
    "bad_data": "The server sent some invalid data",
    "transport_error": "An error occurred",
}


class ProtocolError(Exception):
    pass


class ProtocolDecodeError(ProtocolError):
    """The record body is not valid structured data."""


class ProtocolShapeError(ProtocolError):
    """The record is well-formed but its payload does not match its discriminator."""


# ---------------------------
# inbound messages
# ---------------------------
@dataclass(frozen=True)
class Header:
    person_number: int
    person_id: str


@dataclass(frozen=True)
class StateChanged:
    new_state: str


@dataclass(frozen=True)
class End:
    pass


@dataclass(frozen=True)
class PlayerName:
    num: int
    name: str


@dataclass(frozen=True)
class PlayerStatus:
    num: int
    typing: bool
    connected: bool


@dataclass(frozen=True)
class ChatMessage:
    person_number: int
    text: str


@dataclass(frozen=True)
class TileUpdate:
    num: int
    x: int
    y: int
    facing_up: bool
    letter: Optional[str] = None


InboundMessage = Union[Header, StateChanged, End, PlayerName, PlayerStatus, ChatMessage, TileUpdate]


def _require_obj(payload: Any, discriminator: str) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise ProtocolShapeError(f"bad_payload:{discriminator}")
    return payload


def _field(obj: Dict[str, Any], key: str, typ: type, discriminator: str) -> Any:
    if key not in obj:
        raise ProtocolShapeError(f"missing:{discriminator}.{key}")
    v = obj[key]
    # bool is an int subclass; numbers on the wire are never booleans and vice versa
    if typ is int and (isinstance(v, bool) or not isinstance(v, int)):
        raise ProtocolShapeError(f"bad:{discriminator}.{key}")
    if typ is not int and not isinstance(v, typ):
        raise ProtocolShapeError(f"bad:{discriminator}.{key}")
    return v


def _parse_header(p: Any) -> Header:
    obj = _require_obj(p, "header")
    return Header(person_number=_field(obj, "num", int, "header"), person_id=_field(obj, "id", str, "header"))


def _parse_state(p: Any) -> StateChanged:
    if not isinstance(p, str):
        raise ProtocolShapeError("bad_payload:state")
    return StateChanged(new_state=p)


def _parse_end(p: Any) -> End:
    if p is not None and not isinstance(p, dict):
        raise ProtocolShapeError("bad_payload:end")
    return End()


def _parse_player_name(p: Any) -> PlayerName:
    obj = _require_obj(p, "player-name")
    return PlayerName(num=_field(obj, "num", int, "player-name"), name=_field(obj, "name", str, "player-name"))


def _parse_player(p: Any) -> PlayerStatus:
    obj = _require_obj(p, "player")
    return PlayerStatus(
        num=_field(obj, "num", int, "player"),
        typing=_field(obj, "typing", bool, "player"),
        connected=_field(obj, "connected", bool, "player"),
    )


def _parse_message(p: Any) -> ChatMessage:
    obj = _require_obj(p, "message")
    return ChatMessage(person_number=_field(obj, "person", int, "message"), text=_field(obj, "text", str, "message"))


def _parse_tile(p: Any) -> TileUpdate:
    obj = _require_obj(p, "tile")
    facing_up = _field(obj, "facing-up", bool, "tile")
    letter = _field(obj, "letter", str, "tile") if facing_up else None
    return TileUpdate(
        num=_field(obj, "num", int, "tile"),
        x=_field(obj, "x", int, "tile"),
        y=_field(obj, "y", int, "tile"),
        facing_up=facing_up,
        letter=letter,
    )


MESSAGE_PARSERS: Dict[str, Callable[[Any], InboundMessage]] = {
    "header": _parse_header,
    "state": _parse_state,
    "end": _parse_end,
    "player-name": _parse_player_name,
    "player": _parse_player,
    "message": _parse_message,
    "tile": _parse_tile,
}


def parse_message(discriminator: str, payload: Any) -> Optional[InboundMessage]:
    """Build the typed message for a record, or None for discriminators we don't handle."""
    parser = MESSAGE_PARSERS.get(discriminator)
    if parser is None:
        return None
    return parser(payload)


# ---------------------------
# outbound requests
# ---------------------------
@dataclass(frozen=True)
class ExchangeRequest:
    method: str
    endpoint: str
    args: Tuple[Any, ...] = field(default_factory=tuple)
    body: Optional[str] = None

    @property
    def path(self) -> str:
        if not self.args:
            return self.endpoint
        return self.endpoint + "?" + "&".join(quote(str(a), safe="") for a in self.args)


def new_person_request(room_name: str, player_name: str) -> ExchangeRequest:
    return ExchangeRequest("GET", NEW_PERSON, (room_name, player_name))


def watch_person_request(person_id: str, message_number: int) -> ExchangeRequest:
    return ExchangeRequest("GET", WATCH_PERSON, (person_id, message_number))
