"""
Request/response transport used to emulate a push channel.

An Exchange is one HTTP request whose response body accumulates in
`text` while it is open. Two bindings exist:

  - progressive: on_progress fires every time more of the body arrives
  - buffered:    the body still accumulates, but only on_complete fires;
                 the caller has to poll `text` itself (see WatchOrchestrator)

Callbacks run on the event loop thread and are never called again once
the exchange has been aborted.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, Protocol

import httpx

from pollchat.common.protocol import STATUS_OK, ExchangeRequest


_logger = logging.getLogger(__name__)

# status reported for exchanges that never produced an HTTP status
STATUS_NETWORK_ERROR = 0


class TransportError(Exception):
    def __init__(self, status: int, endpoint: str = ""):
        super().__init__(f"transport_error:{endpoint}:{status}")
        self.status = status
        self.endpoint = endpoint


ProgressCallback = Callable[["Exchange"], None]
CompleteCallback = Callable[["Exchange", int], None]


class TimerHandle(Protocol):
    def cancel(self) -> Any: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioScheduler:
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


class Exchange:
    def __init__(
        self,
        request: ExchangeRequest,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
    ):
        self.request = request
        self.on_progress = on_progress
        self.on_complete = on_complete
        self.text = ""
        self.status: Optional[int] = None
        self.done = False
        self.aborted = False

    def abort(self) -> None:
        """Stop the exchange. No callback fires after this returns."""
        if self.done or self.aborted:
            return
        self.aborted = True

    def _feed(self, chunk: str, notify: bool) -> None:
        if self.aborted or not chunk:
            return
        self.text += chunk
        if notify and self.on_progress:
            self.on_progress(self)

    def _finish(self, status: int) -> None:
        if self.aborted or self.done:
            return
        self.done = True
        self.status = status
        if self.on_complete:
            self.on_complete(self, status)


class HttpExchange(Exchange):
    def __init__(
        self,
        client: httpx.AsyncClient,
        request: ExchangeRequest,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
        *,
        progressive: bool = True,
        timeout: Optional[float] = None,
    ):
        super().__init__(request, on_progress, on_complete)
        self.client = client
        self.progressive = progressive
        self.timeout = timeout
        self.task: Optional[asyncio.Task] = None

    def start(self) -> "HttpExchange":
        self.task = asyncio.get_running_loop().create_task(self._run())
        return self

    def abort(self) -> None:
        if self.done or self.aborted:
            return
        super().abort()
        if self.task and not self.task.done():
            self.task.cancel()

    async def _run(self) -> None:
        req = self.request
        headers = {}
        content = None
        if req.body is not None:
            headers["Content-Type"] = "text/plain; charset=UTF-8"
            content = req.body.encode("utf-8")
        try:
            async with self.client.stream(
                req.method, req.path, content=content, headers=headers, timeout=self.timeout
            ) as resp:
                status = resp.status_code
                if status == STATUS_OK:
                    async for chunk in resp.aiter_text():
                        self._feed(chunk, notify=self.progressive)
                else:
                    # an error page is not part of the record stream
                    await resp.aread()
        except asyncio.CancelledError:
            return
        except httpx.HTTPError as e:
            _logger.warning("%s %s failed: %s", req.method, req.endpoint, e)
            self._finish(STATUS_NETWORK_ERROR)
            return
        if status != STATUS_OK:
            _logger.warning("%s %s returned %d", req.method, req.endpoint, status)
        self._finish(status)


class Transport(Protocol):
    def open(
        self,
        request: ExchangeRequest,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
        *,
        watch: bool = False,
    ) -> Exchange: ...

    def send_blocking(self, request: ExchangeRequest) -> Optional[int]: ...


class HttpTransport:
    """
    httpx binding. `progressive` picks how watch exchanges report data;
    outbound exchanges only ever care about completion.
    """

    def __init__(
        self,
        base_url: str,
        *,
        progressive: bool = True,
        watch_timeout: float = 300.0,
        send_timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        blocking_transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url
        self.progressive = progressive
        self.watch_timeout = watch_timeout
        self.send_timeout = send_timeout
        self.client = client or httpx.AsyncClient(base_url=base_url)
        self._blocking_transport = blocking_transport

    def open(
        self,
        request: ExchangeRequest,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
        *,
        watch: bool = False,
    ) -> HttpExchange:
        _logger.debug("open %s %s", request.method, request.path)
        exchange = HttpExchange(
            self.client,
            request,
            on_progress,
            on_complete,
            progressive=self.progressive if watch else False,
            timeout=self.watch_timeout if watch else self.send_timeout,
        )
        return exchange.start()

    def send_blocking(self, request: ExchangeRequest) -> Optional[int]:
        """Synchronous request, used where the caller can't wait for the loop (leaving)."""
        with httpx.Client(base_url=self.base_url, timeout=self.send_timeout, transport=self._blocking_transport) as c:
            resp = c.request(request.method, request.path, content=request.body)
            return resp.status_code

    async def aclose(self) -> None:
        await self.client.aclose()
