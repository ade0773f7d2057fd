"""
Tests for the request pipeline: admission, retries, middleware, events and
streaming, exercised through ``httpx.MockTransport``.
"""

import asyncio
import json

import httpx
import pytest

from conftest import API_KEY, async_chunks, chunk_payload, completion_payload, sse, sse_response
from veniceai import AsyncVenice, CancellationToken, Middleware
from veniceai.events import EventType
from veniceai.exceptions import (
    VeniceAuthenticationError,
    VeniceCancelledError,
    VeniceConnectionError,
    VeniceAPIError,
    VeniceRateLimitError,
    VeniceServerError,
    VeniceStreamError,
    VeniceTimeoutError,
)
from veniceai.middleware import RetryHeaderMiddleware
from veniceai.retry import RetryExecutor, RetryPolicy
from veniceai.streaming import acollect_content
from veniceai.transport import RequestDescriptor

MESSAGES = [{"role": "user", "content": "Hi"}]


def make_client(config, handler, **overrides):
    return AsyncVenice(
        config=config.copy_with(**overrides) if overrides else config,
        http_transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_request_carries_auth_json_and_base_url(config):
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=completion_payload("Hello!"))

    async with make_client(config, handler) as client:
        response = await client.chat.completions.create(model="llama-3.3-70b", messages=MESSAGES)

    assert response.choices[0].message.content == "Hello!"
    assert seen["url"] == "https://api.venice.test/api/v1/chat/completions"
    assert seen["auth"] == f"Bearer {API_KEY}"
    assert seen["body"] == {"model": "llama-3.3-70b", "messages": MESSAGES}


@pytest.mark.asyncio
async def test_response_metadata_from_headers(config):
    def handler(request):
        return httpx.Response(
            200,
            json={"data": []},
            headers={
                "x-ratelimit-limit-requests": "500",
                "x-ratelimit-remaining-requests": "499",
                "x-ratelimit-reset-requests": "1700000000",
                "x-venice-balance-usd": "12.50",
            },
        )

    async with make_client(config, handler) as client:
        result = await client.transport.request(RequestDescriptor("GET", "/models"))

    assert result.status_code == 200
    assert result.body == {"data": []}
    assert result.rate_limit.limit_requests == 500
    assert result.rate_limit.remaining_requests == 499
    assert result.balance.usd == 12.5
    assert result.balance.vcu is None


@pytest.mark.asyncio
async def test_empty_body_decodes_to_empty_dict(config):
    async with make_client(config, lambda request: httpx.Response(204)) as client:
        result = await client.transport.request(RequestDescriptor("DELETE", "/api_keys"))
    assert result.body == {}


@pytest.mark.asyncio
async def test_invalid_json_is_an_api_error(config):
    handler = lambda request: httpx.Response(200, content=b"<html>oops</html>")
    async with make_client(config, handler) as client:
        with pytest.raises(VeniceAPIError, match="Invalid JSON"):
            await client.models.list()


@pytest.mark.asyncio
async def test_middleware_order_and_per_attempt_execution(config):
    """Request stages run A then B on every attempt; error observers see each failure."""
    calls = []
    failures = []

    def handler(request):
        calls.append(dict(request.headers))
        if len(calls) == 1:
            return httpx.Response(503, json={"error": "busy"})
        return httpx.Response(200, json=completion_payload())

    def stamp(name):
        def on_request(ctx):
            ctx.headers["X-Trail"] = ctx.headers.get("X-Trail", "") + name

        return Middleware(name=name, on_request=on_request)

    async with make_client(config, handler) as client:
        client.use(stamp("A")).use(stamp("B")).use(RetryHeaderMiddleware())
        client.use(Middleware(name="watch", on_error=lambda ctx: failures.append(ctx.error)))
        await client.chat.completions.create(model="m", messages=MESSAGES)

    assert [c["x-trail"] for c in calls] == ["AB", "AB"]
    assert "x-retry-attempt" not in calls[0]
    assert calls[1]["x-retry-attempt"] == "2"
    assert len(failures) == 1
    assert isinstance(failures[0], VeniceServerError)


@pytest.mark.asyncio
async def test_response_hooks_see_decoded_body(config):
    bodies = []
    handler = lambda request: httpx.Response(200, json=completion_payload("x"))
    async with make_client(config, handler) as client:
        client.use(Middleware(on_response=lambda ctx: bodies.append(ctx.body["id"])))
        await client.chat.completions.create(model="m", messages=MESSAGES)
    assert bodies == ["chatcmpl-1"]


@pytest.mark.asyncio
async def test_rejecting_middleware_skips_network(config):
    calls = []

    def reject(ctx):
        raise VeniceAuthenticationError("no key for this tenant", status_code=None)

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    async with make_client(config, handler) as client:
        client.use(Middleware(on_request=reject))
        with pytest.raises(VeniceAuthenticationError):
            await client.models.list()
    assert calls == []


@pytest.mark.asyncio
async def test_unauthorized_is_not_retried(config):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(401, json={"error": "Authentication failed"})

    async with make_client(config, handler) as client:
        with pytest.raises(VeniceAuthenticationError) as exc_info:
            await client.models.list()
    assert len(calls) == 1
    assert exc_info.value.attempts == 1
    assert exc_info.value.message == "Authentication failed"


@pytest.mark.asyncio
async def test_persistent_server_errors_exhaust_retries(config):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(502, json={"error": {"message": "bad gateway"}})

    async with make_client(config, handler, max_retries=2) as client:
        with pytest.raises(VeniceServerError) as exc_info:
            await client.models.list()
    assert len(calls) == 3
    assert exc_info.value.attempts == 3
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_retry_after_is_honoured(config, recorded_sleep):
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(429, json={"error": "slow"}, headers={"Retry-After": "2"})
        return httpx.Response(200, json=completion_payload())

    async with make_client(config, handler) as client:
        client.transport.retry = RetryExecutor(
            RetryPolicy.from_config(client.config), sleep=recorded_sleep
        )
        await client.chat.completions.create(model="m", messages=MESSAGES)

    assert len(calls) == 2
    assert recorded_sleep.delays == [2.0]


@pytest.mark.asyncio
async def test_network_errors_are_classified(config):
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    def stall(request):
        raise httpx.ReadTimeout("slow", request=request)

    async with make_client(config, refuse, max_retries=1) as client:
        with pytest.raises(VeniceConnectionError) as exc_info:
            await client.models.list()
    assert exc_info.value.attempts == 2

    async with make_client(config, stall, max_retries=0) as client:
        with pytest.raises(VeniceTimeoutError):
            await client.models.list()


@pytest.mark.asyncio
async def test_single_slot_serializes_calls(config):
    """With max_concurrent=1 the second call is dispatched after the first completes."""
    active = 0
    peak = 0
    order = []

    async def handler(request):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        body = json.loads(request.content)
        order.append(body["messages"][0]["content"])
        await asyncio.sleep(0.02)
        active -= 1
        return httpx.Response(200, json=completion_payload())

    async with make_client(config, handler, max_concurrent=1) as client:
        await asyncio.gather(
            client.chat.completions.create(model="m", messages=[{"role": "user", "content": "1"}]),
            client.chat.completions.create(model="m", messages=[{"role": "user", "content": "2"}]),
        )
        assert client.transport.limiter.in_flight == 0
    assert peak == 1
    assert order == ["1", "2"]


@pytest.mark.asyncio
async def test_lifecycle_events(config):
    events = []
    handler = lambda request: httpx.Response(200, json=completion_payload())
    async with make_client(config, handler) as client:
        client.on(EventType.REQUEST, events.append).on(EventType.RESPONSE, events.append)
        await client.chat.completions.create(model="m", messages=MESSAGES)

    assert [e.type for e in events] == [EventType.REQUEST, EventType.RESPONSE]
    assert {e.operation for e in events} == {"chat.completions.create"}
    assert events[0].data["path"] == "/chat/completions"
    assert events[1].data["status_code"] == 200


@pytest.mark.asyncio
async def test_cancelled_token_short_circuits(config):
    calls = []
    token = CancellationToken()
    token.cancel()

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    async with make_client(config, handler) as client:
        with pytest.raises(VeniceCancelledError):
            await client.chat.completions.create(model="m", messages=MESSAGES, cancel=token)
        assert client.transport.limiter.in_flight == 0
    assert calls == []


@pytest.mark.asyncio
async def test_cancel_aborts_in_flight_request(config):
    token = CancellationToken()

    async def handler(request):
        await asyncio.sleep(10)
        return httpx.Response(200, json=completion_payload())

    async with make_client(config, handler) as client:
        asyncio.get_running_loop().call_later(0.05, token.cancel)
        with pytest.raises(VeniceCancelledError):
            await asyncio.wait_for(
                client.chat.completions.create(model="m", messages=MESSAGES, cancel=token),
                timeout=2.0,
            )
        assert client.transport.limiter.in_flight == 0


# Streaming


@pytest.mark.asyncio
async def test_stream_yields_chunks_in_order(config):
    seen = {}
    body = sse(chunk_payload("Hel"), chunk_payload("lo"), chunk_payload(" world"))

    def handler(request):
        seen["accept"] = request.headers["accept"]
        seen["body"] = json.loads(request.content)
        return sse_response(body, chunk_size=5)

    async with make_client(config, handler) as client:
        stream = await client.chat.completions.create(model="m", messages=MESSAGES, stream=True)
        assert client.transport.limiter.in_flight == 1
        text = await acollect_content(stream)
        assert client.transport.limiter.in_flight == 0

    assert text == "Hello world"
    assert seen["accept"] == "text/event-stream"
    assert seen["body"]["stream"] is True


@pytest.mark.asyncio
async def test_stream_open_is_retried(config):
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503, json={"error": "busy"})
        return sse_response(sse(chunk_payload("ok")))

    async with make_client(config, handler) as client:
        stream = await client.chat.completions.create(model="m", messages=MESSAGES, stream=True)
        assert await acollect_content(stream) == "ok"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_stream_open_error_releases_slot(config):
    handler = lambda request: httpx.Response(404, json={"error": "no such model"})
    async with make_client(config, handler) as client:
        with pytest.raises(VeniceAPIError) as exc_info:
            await client.chat.completions.create(model="m", messages=MESSAGES, stream=True)
        assert exc_info.value.status_code == 404
        assert client.transport.limiter.in_flight == 0


@pytest.mark.asyncio
async def test_malformed_stream_payload(config):
    """Frames before the bad payload arrive; the error ends the stream."""
    body = sse(chunk_payload("A"), "{broken", chunk_payload("C"))
    errors = []
    handler = lambda request: sse_response(body, chunk_size=7)

    async with make_client(config, handler) as client:
        client.use(Middleware(on_error=lambda ctx: errors.append(ctx.error)))
        stream = await client.chat.completions.create(model="m", messages=MESSAGES, stream=True)
        received = []
        with pytest.raises(VeniceStreamError):
            async for chunk in stream:
                received.append(chunk.choices[0].delta.content)
        assert received == ["A"]
        assert [c async for c in stream] == []
        assert client.transport.limiter.in_flight == 0
    assert len(errors) == 1


@pytest.mark.asyncio
async def test_closing_stream_early_releases_slot(config):
    body = sse(*(chunk_payload(str(n)) for n in range(10)))
    async with make_client(config, lambda request: sse_response(body, chunk_size=16)) as client:
        async with await client.chat.completions.create(
            model="m", messages=MESSAGES, stream=True
        ) as stream:
            first = await stream.__anext__()
            assert first.choices[0].delta.content == "0"
        assert client.transport.limiter.in_flight == 0


@pytest.mark.asyncio
async def test_cancel_stops_stream_emission(config):
    token = CancellationToken()
    stalled = asyncio.Event()

    async def body():
        yield sse(chunk_payload("first"), done=False)
        await stalled.wait()
        yield sse(chunk_payload("never"))

    def handler(request):
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body())

    async with make_client(config, handler) as client:
        stream = await client.chat.completions.create(
            model="m", messages=MESSAGES, stream=True, cancel=token
        )
        first = await stream.__anext__()
        assert first.choices[0].delta.content == "first"

        asyncio.get_running_loop().call_later(0.05, token.cancel)
        with pytest.raises(VeniceCancelledError):
            await asyncio.wait_for(stream.__anext__(), timeout=2.0)
        assert [c async for c in stream] == []
        assert client.transport.limiter.in_flight == 0


@pytest.mark.asyncio
async def test_stream_response_event_after_completion(config):
    events = []
    body = sse(chunk_payload("a"), chunk_payload("b"))
    async with make_client(config, lambda request: sse_response(body)) as client:
        client.on("response", events.append)
        stream = await client.chat.completions.create(model="m", messages=MESSAGES, stream=True)
        assert events == []
        await acollect_content(stream)
    assert len(events) == 1
    assert events[0].data["frames"] == 2


@pytest.mark.asyncio
async def test_pending_frame_without_blank_line_is_delivered(config):
    body = b'data: {"choices": [{"index": 0, "delta": {"content": "tail"}}], "id": "c", "created": 1, "model": "m"}'
    async with make_client(config, lambda request: sse_response(body)) as client:
        stream = await client.chat.completions.create(model="m", messages=MESSAGES, stream=True)
        assert await acollect_content(stream) == "tail"


@pytest.mark.asyncio
async def test_stream_frames_through_transport(config):
    body = sse({"n": 1}, {"n": 2})
    handler = lambda request: httpx.Response(200, content=async_chunks([body[:9], body[9:]]))
    async with make_client(config, handler) as client:
        frames = await client.transport.post_stream("/custom", json_data={})
        assert [(f.index, f.data) async for f in frames] == [(0, {"n": 1}), (1, {"n": 2})]


def chat_or_models(body):
    """Stream ``body`` for chat calls and answer everything else with an empty list."""

    def handler(request):
        if request.url.path.endswith("/chat/completions"):
            return sse_response(body)
        return httpx.Response(200, json={"data": []})

    return handler


@pytest.mark.asyncio
async def test_stream_closed_before_first_frame_releases_slot(config):
    body = sse(chunk_payload("unread"))
    async with make_client(config, chat_or_models(body), max_concurrent=1) as client:
        stream = await client.chat.completions.create(model="m", messages=MESSAGES, stream=True)
        assert client.transport.limiter.in_flight == 1
        await stream.aclose()
        assert stream.closed
        assert client.transport.limiter.in_flight == 0

        async with await client.chat.completions.create(model="m", messages=MESSAGES, stream=True):
            pass
        assert client.transport.limiter.in_flight == 0

        models = await asyncio.wait_for(client.models.list(), timeout=2.0)
        assert models.data == []


@pytest.mark.asyncio
async def test_error_frame_becomes_stream_error(config):
    body = sse(chunk_payload("partial"), {"error": {"message": "upstream died"}})
    errors = []
    async with make_client(config, lambda request: sse_response(body)) as client:
        client.use(Middleware(on_error=lambda ctx: errors.append(ctx.error)))
        stream = await client.chat.completions.create(model="m", messages=MESSAGES, stream=True)
        received = []
        with pytest.raises(VeniceStreamError) as exc_info:
            async for chunk in stream:
                received.append(chunk.choices[0].delta.content)
        assert client.transport.limiter.in_flight == 0

    assert received == ["partial"]
    assert exc_info.value.message == "upstream died"
    assert exc_info.value.body == {"error": {"message": "upstream died"}}
    assert errors == [exc_info.value]


@pytest.mark.asyncio
async def test_error_frame_with_status_is_classified(config):
    body = sse({"error": {"message": "slow down", "code": 429}})
    async with make_client(config, lambda request: sse_response(body)) as client:
        stream = await client.chat.completions.create(model="m", messages=MESSAGES, stream=True)
        with pytest.raises(VeniceRateLimitError) as exc_info:
            await acollect_content(stream)
    assert exc_info.value.status_code == 429
    assert exc_info.value.message == "slow down"


@pytest.mark.asyncio
async def test_frame_that_is_not_a_chunk(config):
    body = sse(chunk_payload("ok"), {"choices": []}, chunk_payload("never"))
    async with make_client(config, lambda request: sse_response(body)) as client:
        stream = await client.chat.completions.create(model="m", messages=MESSAGES, stream=True)
        first = await stream.__anext__()
        assert first.choices[0].delta.content == "ok"
        with pytest.raises(VeniceStreamError, match="frame 1") as exc_info:
            await stream.__anext__()
        assert "id" in exc_info.value.message
        assert [c async for c in stream] == []
        assert client.transport.limiter.in_flight == 0
