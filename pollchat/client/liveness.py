from __future__ import annotations

import time
from typing import Callable, Optional

from pollchat.client.session import SessionState


class LivenessManager:
    """
    Decides when the typing state has to be re-sent and when the session
    needs a keep-alive so the server doesn't expire it while idle.
    """

    def __init__(self, keep_alive_interval: float, clock: Callable[[], float] = time.monotonic):
        self.keep_alive_interval = keep_alive_interval
        self.clock = clock
        self.sent_typing_state = False
        self.last_exchange_at = clock()

    def mark_exchange(self) -> None:
        self.last_exchange_at = self.clock()

    def chat_sent(self) -> None:
        # the server assumes typing stopped when a message arrives
        self.sent_typing_state = False

    def typing_toggle(self, typing_now: bool) -> Optional[bool]:
        """Return the typing state to send, or None if the server already knows it."""
        if typing_now == self.sent_typing_state:
            return None
        return typing_now

    def typing_sent(self, typing: bool) -> None:
        self.sent_typing_state = typing

    def keep_alive_due(self, state: SessionState) -> bool:
        if state not in (SessionState.AWAITING_PARTNER, SessionState.IN_PROGRESS):
            return False
        return self.clock() - self.last_exchange_at >= self.keep_alive_interval
