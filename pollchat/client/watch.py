"""
Long-poll watch orchestration.

The server holds each watch exchange open, streams records into it and
eventually completes it (even with nothing new, as a heartbeat). We keep
exactly one watch open, decode whatever has arrived, and re-open with the
resume cursor when an exchange completes cleanly.

Two independent triggers feed the same idempotent `check_data()`:
progress notifications from the transport, and a fallback timer for
transports that never report partial data.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from pollchat.client.session import SessionStateMachine
from pollchat.client.transport import Exchange, Scheduler, TimerHandle, Transport, TransportError
from pollchat.common.framing import iter_records
from pollchat.common.protocol import STATUS_OK, ProtocolError, new_person_request, watch_person_request


_logger = logging.getLogger(__name__)


class WatchOrchestrator:
    def __init__(
        self,
        machine: SessionStateMachine,
        transport: Transport,
        scheduler: Scheduler,
        check_data_interval: float,
        on_watch_started: Optional[Callable[[], None]] = None,
    ):
        self.machine = machine
        self.transport = transport
        self.scheduler = scheduler
        self.check_data_interval = check_data_interval
        self.on_watch_started = on_watch_started
        self.watch: Optional[Exchange] = None
        self.watch_position = 0
        self._check_data_timer: Optional[TimerHandle] = None

    def start(self) -> None:
        session = self.machine.session
        if session.state.terminal:
            return

        if session.person_id:
            request = watch_person_request(session.person_id, session.next_expected_message_number)
        else:
            request = new_person_request(session.room_name, session.display_name)

        self._clear_watch()
        self.watch_position = 0
        self.machine.begin_stream(session.next_expected_message_number)
        _logger.info("opening %s", request.path)
        self.watch = self.transport.open(request, self._on_progress, self._on_complete, watch=True)
        self._reset_check_data_timer()
        if self.on_watch_started:
            self.on_watch_started()

    def stop(self) -> None:
        """Abort the open watch and cancel the fallback timer. Safe to call repeatedly."""
        self._clear_watch()
        self._clear_check_data_timer()

    def check_data(self) -> None:
        """Decode everything complete in the watch buffer that hasn't been consumed yet."""
        watch = self.watch
        if watch is None:
            return
        try:
            for message, position in iter_records(watch.text, self.watch_position):
                self.watch_position = position
                if message is not None:
                    self.machine.apply(message)
                # applying the message may have ended the session and torn the watch down
                if self.watch is not watch:
                    return
        except ProtocolError as e:
            self.machine.fail(e)
            return
        self._reset_check_data_timer()

    # -------------------------
    # exchange callbacks
    # -------------------------
    def _on_progress(self, exchange: Exchange) -> None:
        if exchange is not self.watch:
            return
        self.check_data()

    def _on_complete(self, exchange: Exchange, status: int) -> None:
        if exchange is not self.watch:
            return

        if status != STATUS_OK:
            self.watch = None
            self._clear_check_data_timer()
            self.machine.fail(TransportError(status, exchange.request.endpoint))
            return

        self.check_data()
        if self.watch is not exchange:
            return
        self.watch = None
        self._clear_check_data_timer()

        # the server completes watches periodically; carry on where it left off
        if not self.machine.state.terminal:
            self.start()

    # -------------------------
    # helpers
    # -------------------------
    def _clear_watch(self) -> None:
        watch = self.watch
        # clear first so an abort that reports back finds nothing to act on
        self.watch = None
        if watch is not None:
            watch.abort()

    def _clear_check_data_timer(self) -> None:
        if self._check_data_timer is not None:
            self._check_data_timer.cancel()
            self._check_data_timer = None

    def _reset_check_data_timer(self) -> None:
        self._clear_check_data_timer()
        if self.watch is None or self.machine.state.terminal:
            return
        self._check_data_timer = self.scheduler.call_later(self.check_data_interval, self._check_data_fired)

    def _check_data_fired(self) -> None:
        self._check_data_timer = None
        self.check_data()
