"""Tests for the httpx exchange bindings, using httpx.MockTransport."""

import asyncio

import httpx

from pollchat.client.transport import STATUS_NETWORK_ERROR, HttpTransport
from pollchat.common.protocol import ExchangeRequest, watch_person_request

BASE = "http://game.test:5142/"


def make_transport(handler, progressive=True):
    client = httpx.AsyncClient(base_url=BASE, transport=httpx.MockTransport(handler))
    return HttpTransport(BASE, progressive=progressive, client=client, watch_timeout=5.0, send_timeout=5.0)


async def run_exchange(handler, request, *, progressive=True, watch=True):
    transport = make_transport(handler, progressive)
    progress = []
    done = asyncio.get_running_loop().create_future()
    ex = transport.open(
        request,
        lambda e: progress.append(e.text),
        lambda e, status: done.set_result(status),
        watch=watch,
    )
    status = await asyncio.wait_for(done, 5.0)
    await transport.aclose()
    return ex, progress, status


async def _chunks():
    yield b'["header",{"id":"abc","num":0}]\r\n'
    yield '["message",{"person":0,"text":"ĉ'.encode("utf-8")[:-1]
    yield '["message",{"person":0,"text":"ĉ'.encode("utf-8")[-1:] + b'"}]\r\n'


class TestHttpExchange:
    def test_progressive_notifies_each_chunk(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, content=_chunks())

        ex, progress, status = asyncio.run(run_exchange(handler, watch_person_request("abc", 2)))
        assert status == 200
        assert seen == [BASE + "watch_person?abc&2"]
        assert len(progress) >= 2
        assert progress[-1] == ex.text
        assert ex.text.endswith('"ĉ"}]\r\n')

    def test_buffered_only_completes(self):
        def handler(request):
            return httpx.Response(200, content=_chunks())

        ex, progress, status = asyncio.run(
            run_exchange(handler, watch_person_request("abc", 0), progressive=False)
        )
        assert progress == []
        assert status == 200
        assert ex.text.startswith('["header"')

    def test_non_success_status(self):
        def handler(request):
            return httpx.Response(500, text="boom")

        ex, progress, status = asyncio.run(run_exchange(handler, watch_person_request("abc", 0)))
        assert status == 500
        assert ex.status == 500
        assert progress == []
        assert ex.text == ""

    def test_network_error_reports_status_zero(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        _ex, _progress, status = asyncio.run(run_exchange(handler, watch_person_request("abc", 0)))
        assert status == STATUS_NETWORK_ERROR

    def test_post_body_and_content_type(self):
        bodies = []

        def handler(request):
            bodies.append((request.method, request.content, request.headers.get("content-type")))
            return httpx.Response(200)

        req = ExchangeRequest("POST", "send_message", ("abc",), body="saluton ĉiuj")
        asyncio.run(run_exchange(handler, req, watch=False))
        assert bodies == [("POST", "saluton ĉiuj".encode("utf-8"), "text/plain; charset=UTF-8")]

    def test_abort_suppresses_callbacks(self):
        async def scenario():
            async def handler(request):
                await asyncio.sleep(10)
                return httpx.Response(200)

            transport = make_transport(handler)
            calls = []
            ex = transport.open(
                watch_person_request("abc", 0),
                lambda e: calls.append("progress"),
                lambda e, s: calls.append(s),
                watch=True,
            )
            await asyncio.sleep(0.05)
            ex.abort()
            await asyncio.sleep(0.05)
            await transport.aclose()
            return ex, calls

        ex, calls = asyncio.run(scenario())
        assert ex.aborted
        assert calls == []


class TestSendBlocking:
    def test_leave_request(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200)

        transport = HttpTransport(BASE, blocking_transport=httpx.MockTransport(handler))
        status = transport.send_blocking(ExchangeRequest("GET", "leave", ("abc",)))
        assert status == 200
        assert seen == [BASE + "leave?abc"]
