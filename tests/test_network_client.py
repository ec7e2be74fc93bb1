"""Tests for the retrying HTTP client."""

import asyncio

import pytest
from aiohttp import web
from aiohttp import test_utils

from provider_sync.api_clients.base import HTTPResponse, NetworkError, NetworkErrorKind
from provider_sync.api_clients.network import NetworkClient


class RecordingClient(NetworkClient):
    """Client that records backoff delays instead of sleeping."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.delays = []

    async def sleep(self, delay):
        """Record the delay and return at once."""
        self.delays.append(delay)


def status_sequence_app(statuses, body=None):
    """App answering ``/status`` with the given statuses in turn."""
    calls = {"count": 0}

    async def _handler(request):
        index = min(calls["count"], len(statuses) - 1)
        calls["count"] += 1
        return web.json_response(body or {"status": statuses[index]}, status=statuses[index])

    app = web.Application()
    app.router.add_route("*", "/status", _handler)
    return app, calls


async def start_server(app):
    """Start ``app`` on a local port."""
    server = test_utils.TestServer(app)
    await server.start_server()
    return server


class TestRetryPolicy:
    """Retry and backoff behaviour."""

    def test_backoff_is_exponential_and_capped(self):
        """Delays double per attempt up to the maximum."""
        client = NetworkClient(retry_delay=1.0, max_retry_delay=5.0)
        assert [client.calculate_retry_delay(n) for n in range(1, 5)] == [1.0, 2.0, 4.0, 5.0]

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        """Two 503s then a 200 succeed on the third attempt."""
        app, calls = status_sequence_app([503, 503, 200])
        server = await start_server(app)
        client = RecordingClient(retries=2, retry_delay=1.0)
        try:
            response = await client.get(str(server.make_url("/status")))
        finally:
            await client.close()
            await server.close()

        assert isinstance(response, HTTPResponse)
        assert response.ok
        assert response.attempts == 3
        assert calls["count"] == 3
        assert client.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_budget_exhausted(self):
        """The last retryable error is raised once the budget is spent."""
        app, calls = status_sequence_app([500])
        server = await start_server(app)
        client = RecordingClient(retries=1)
        try:
            with pytest.raises(NetworkError) as exc_info:
                await client.get(str(server.make_url("/status")))
        finally:
            await client.close()
            await server.close()

        assert exc_info.value.kind == NetworkErrorKind.SERVER
        assert exc_info.value.status == 500
        assert calls["count"] == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,kind", [
        (401, NetworkErrorKind.AUTH),
        (403, NetworkErrorKind.PERMISSION),
        (404, NetworkErrorKind.NOT_FOUND),
        (400, NetworkErrorKind.CLIENT),
    ])
    async def test_fatal_statuses_not_retried(self, status, kind):
        """Client errors fail on the first attempt."""
        app, calls = status_sequence_app([status])
        server = await start_server(app)
        client = RecordingClient(retries=3)
        try:
            with pytest.raises(NetworkError) as exc_info:
                await client.get(str(server.make_url("/status")))
        finally:
            await client.close()
            await server.close()

        assert exc_info.value.kind == kind
        assert not exc_info.value.retryable
        assert calls["count"] == 1
        assert client.delays == []

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self):
        """429 responses are retryable."""
        app, calls = status_sequence_app([429, 200])
        server = await start_server(app)
        client = RecordingClient(retries=1)
        try:
            response = await client.get(str(server.make_url("/status")))
        finally:
            await client.close()
            await server.close()

        assert response.status == 200
        assert calls["count"] == 2

    @pytest.mark.asyncio
    async def test_request_timeout_status_is_retried(self):
        """408 responses are retried after the first backoff step."""
        app, calls = status_sequence_app([408, 200])
        server = await start_server(app)
        client = RecordingClient(retries=1)
        try:
            response = await client.get(str(server.make_url("/status")))
        finally:
            await client.close()
            await server.close()

        assert response.status == 200
        assert calls["count"] == 2
        assert client.delays == [1.0]

    @pytest.mark.asyncio
    async def test_timeout(self):
        """A slow server produces a timeout error."""
        async def _slow(request):
            await asyncio.sleep(1)
            return web.Response(text="late")

        app = web.Application()
        app.router.add_get("/slow", _slow)
        server = await start_server(app)
        client = RecordingClient(retries=0)
        try:
            with pytest.raises(NetworkError) as exc_info:
                await client.get(str(server.make_url("/slow")), timeout=0.1)
        finally:
            await client.close()
            await server.close()

        assert exc_info.value.kind == NetworkErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        """Unreachable hosts are network errors."""
        app, _ = status_sequence_app([200])
        server = await start_server(app)
        url = str(server.make_url("/status"))
        await server.close()

        client = RecordingClient(retries=0)
        try:
            with pytest.raises(NetworkError) as exc_info:
                await client.get(url)
        finally:
            await client.close()

        assert exc_info.value.kind == NetworkErrorKind.NETWORK

    @pytest.mark.asyncio
    async def test_on_retry_callback(self):
        """The callback sees each retry; a failing callback is ignored."""
        app, _ = status_sequence_app([502, 502, 200])
        server = await start_server(app)
        client = RecordingClient(retries=2)
        seen = []

        def _callback(attempt, delay, error):
            seen.append((attempt, delay, error.status))
            raise RuntimeError("callback bug")

        try:
            response = await client.get(str(server.make_url("/status")), on_retry=_callback)
        finally:
            await client.close()
            await server.close()

        assert response.status == 200
        assert seen == [(1, 1.0, 502), (2, 2.0, 502)]


class TestRequests:
    """Request helpers."""

    @pytest.mark.asyncio
    async def test_post_sends_json(self):
        """Dictionaries are sent as JSON bodies."""
        async def _echo(request):
            return web.json_response({"received": await request.json()})

        app = web.Application()
        app.router.add_post("/echo", _echo)
        server = await start_server(app)
        client = NetworkClient(retries=0)
        try:
            response = await client.post(str(server.make_url("/echo")), {"model": "gpt-4o"})
        finally:
            await client.close()
            await server.close()

        assert response.json() == {"received": {"model": "gpt-4o"}}

    @pytest.mark.asyncio
    async def test_connection_test_never_raises(self):
        """Failures are reported in the result."""
        app, _ = status_sequence_app([401])
        server = await start_server(app)
        client = RecordingClient()
        try:
            failed = await client.test_connection(str(server.make_url("/status")))
        finally:
            await client.close()
            await server.close()

        assert not failed.success
        assert failed.status == 401
        assert failed.kind == "auth"
        assert failed.to_dict()["durationMs"] >= 0

    @pytest.mark.asyncio
    async def test_batch_request_keeps_order(self):
        """Results come back in request order with per-request errors."""
        app, _ = status_sequence_app([200])

        async def _missing(request):
            return web.Response(status=404)

        app.router.add_get("/missing", _missing)
        server = await start_server(app)
        client = RecordingClient(retries=0)
        try:
            results = await client.batch_request([
                {"url": str(server.make_url("/status"))},
                {"url": str(server.make_url("/missing"))},
                {"url": str(server.make_url("/status")), "method": "POST", "json_body": {}},
            ])
        finally:
            await client.close()
            await server.close()

        assert [r["index"] for r in results] == [0, 1, 2]
        assert [r["success"] for r in results] == [True, False, True]
        assert results[1]["error"].kind == NetworkErrorKind.NOT_FOUND
