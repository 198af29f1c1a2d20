"""
Record framing for the watch stream.

Wire format (response body of a watch_person / new_person exchange):
  <JSON array>\\r\\n<JSON array>\\r\\n...

Each array is [discriminator, payload] or just [discriminator]. The body
grows while the exchange is open, so decoding works on (buffer, position)
and never emits a record whose terminator has not arrived yet.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterator, List, Optional, Tuple

from pollchat.common.protocol import InboundMessage, ProtocolDecodeError, parse_message


RECORD_TERMINATOR = "\r\n"

_logger = logging.getLogger(__name__)


def _reject_constant(name: str) -> Any:
    raise ProtocolDecodeError(f"bad_constant:{name}")


def _check_grammar(value: Any) -> None:
    # json.loads already limits us to JSON; null is not part of the record grammar.
    pending = [value]
    while pending:
        item = pending.pop()
        if item is None:
            raise ProtocolDecodeError("bad_value:null")
        if isinstance(item, list):
            pending.extend(item)
        elif isinstance(item, dict):
            pending.extend(item.values())


def parse_record(text: str) -> Tuple[str, Any]:
    """Parse one record body into (discriminator, payload). Payload is None for one-element records."""
    try:
        value = json.loads(text, parse_constant=_reject_constant)
    except ValueError as e:
        raise ProtocolDecodeError(f"bad_json:{e}") from e
    except RecursionError as e:
        raise ProtocolDecodeError("bad_json:too_deep") from e
    _check_grammar(value)
    if not isinstance(value, list) or not 1 <= len(value) <= 2:
        raise ProtocolDecodeError("bad_record")
    if not isinstance(value[0], str):
        raise ProtocolDecodeError("bad_discriminator")
    payload = value[1] if len(value) == 2 else None
    return value[0], payload


def iter_records(buffer: str, position: int) -> Iterator[Tuple[Optional[InboundMessage], int]]:
    """
    Yield (message, next_position) for each complete record after `position`.

    `message` is None for records with an unknown discriminator; they are
    still consumed. Errors propagate on the first bad record, after every
    earlier record has been yielded.
    """
    while position < len(buffer):
        end = buffer.find(RECORD_TERMINATOR, position)
        if end == -1:
            return
        discriminator, payload = parse_record(buffer[position:end])
        message = parse_message(discriminator, payload)
        if message is None:
            _logger.debug("ignoring record %r", discriminator)
        position = end + len(RECORD_TERMINATOR)
        yield message, position


def decode_records(buffer: str, position: int) -> Tuple[List[InboundMessage], int]:
    messages: List[InboundMessage] = []
    for message, position in iter_records(buffer, position):
        if message is not None:
            messages.append(message)
    return messages, position
