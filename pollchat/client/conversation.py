"""
One conversation: the session, its state machine, the watch orchestrator
and the outbound dispatcher wired together. This is what front-ends talk to.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import httpx

from pollchat.client.cache import PlayerTileCache
from pollchat.client.liveness import LivenessManager
from pollchat.client.outbound import CommandQueue, Leave, OutboundDispatcher
from pollchat.client.session import Session, SessionListener, SessionState, SessionStateMachine
from pollchat.client.transport import AsyncioScheduler, HttpTransport, Scheduler, Transport
from pollchat.client.watch import WatchOrchestrator
from pollchat.common.config import ClientSettings


_logger = logging.getLogger(__name__)


class _Teardown(SessionListener):
    def __init__(self, conversation: "Conversation"):
        self.conversation = conversation

    def on_state_changed(self, session: Session, old: SessionState, new: SessionState) -> None:
        if new == SessionState.ERROR:
            self.conversation.shutdown()
        elif new == SessionState.DONE:
            # let an outbound exchange that is already running finish
            self.conversation.watcher.stop()
            self.conversation.dispatcher.cancel_keep_alive()
        elif new == SessionState.IN_PROGRESS:
            # typing/keep-alive may have been held back until now
            self.conversation.dispatcher.dispatch()


class Conversation:
    def __init__(
        self,
        settings: ClientSettings,
        transport: Optional[Transport] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.transport = transport or HttpTransport(
            settings.base_url,
            progressive=settings.progressive,
            watch_timeout=settings.watch_timeout_seconds,
            send_timeout=settings.send_timeout_seconds,
        )
        self.scheduler = scheduler or AsyncioScheduler()

        self.session = Session(
            room_name=settings.room_name,
            display_name=settings.player_name,
            variant=settings.variant,  # type: ignore[arg-type]
        )
        self.cache = PlayerTileCache()
        self.machine = SessionStateMachine(self.session, self.cache)
        self.input_text = ""

        self.queue = CommandQueue()
        self.liveness = LivenessManager(settings.keep_alive_seconds, clock)
        self.dispatcher = OutboundDispatcher(
            self.machine,
            self.transport,
            self.scheduler,
            self.liveness,
            typing_now=lambda: len(self.input_text) > 0,
            queue=self.queue,
        )
        self.watcher = WatchOrchestrator(
            self.machine,
            self.transport,
            self.scheduler,
            settings.check_data_seconds,
            on_watch_started=self.dispatcher.reset_keep_alive,
        )
        self.machine.add_listener(_Teardown(self))

    @property
    def state(self) -> SessionState:
        return self.session.state

    def add_listener(self, listener: SessionListener) -> None:
        self.machine.add_listener(listener)

    def start(self) -> None:
        self.watcher.start()

    # -------------------------
    # user intent
    # -------------------------
    def send_message(self, text: str) -> bool:
        if self.state != SessionState.IN_PROGRESS or not text:
            return False
        self.queue.push_chat(text)
        self.dispatcher.dispatch()
        return True

    def submit_input(self) -> bool:
        if self.state != SessionState.IN_PROGRESS or not self.input_text:
            return False
        text = self.input_text
        self.input_text = ""
        return self.send_message(text)

    def set_input_text(self, text: str) -> None:
        self.input_text = text
        # maybe update the typing state
        self.dispatcher.dispatch()

    def flip_tile(self, tile_index: int) -> bool:
        if self.state != SessionState.IN_PROGRESS:
            return False
        tile = self.cache.get_tile(tile_index)
        if tile is None or tile.facing_up:
            return False
        if not self.queue.push_flip(tile_index):
            return False
        self.dispatcher.dispatch()
        return True

    def focus(self) -> None:
        self.machine.focus()

    def blur(self) -> None:
        self.machine.blur()

    # -------------------------
    # teardown
    # -------------------------
    def shutdown(self) -> None:
        """Abort every exchange and cancel every timer. Safe to call repeatedly."""
        self.watcher.stop()
        self.dispatcher.stop()

    def close(self) -> None:
        """Tear down and tell the server we left. Blocks; failures are only logged."""
        self.shutdown()
        person_id = self.session.person_id
        if not person_id:
            return
        try:
            status = self.transport.send_blocking(Leave().to_request(person_id))
            _logger.debug("leave returned %s", status)
        except httpx.HTTPError as e:
            _logger.warning("leave failed: %s", e)
