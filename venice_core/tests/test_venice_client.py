import json
from contextlib import aclosing

import httpx
import pytest

from venice_core.domain.exceptions import (
    ApiError,
    AuthenticationError,
    NetworkError,
    RateLimitError,
    UserInputError,
)
from venice_core.domain.models import ChatMessage, ChatRequest
from venice_core.providers.venice_client import VeniceClient


def _req(model="chat", **kw):
    return ChatRequest(model=model, messages=[ChatMessage(role="user", content="hi")], **kw)


def _completion(content="ok", model="llama-3.3-70b"):
    return {
        "model": model,
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 1, "completion_tokens": 1, "total_tokens": 2},
    }


@pytest.mark.asyncio
async def test_chat_parse_basic(settings_stub, retry):
    captured = {}

    def handler(request: httpx.Request):
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["authorization"]
        captured["payload"] = json.loads(request.content)
        return httpx.Response(200, json=_completion())

    client = VeniceClient(settings_stub, http_transport=httpx.MockTransport(handler), retry=retry)
    res = await client.chat(_req(temperature=0.2, options={"venice_parameters": {"include_venice_system_prompt": False}}))
    assert res.content == "ok"
    assert res.usage.total_tokens == 2
    assert captured["url"] == "https://api.venice.ai/api/v1/chat/completions"
    assert captured["auth"] == "Bearer test-key-0123456789"
    payload = captured["payload"]
    assert payload["model"] == "llama-3.3-70b"
    assert payload["temperature"] == 0.2
    assert payload["messages"] == [{"role": "user", "content": "hi"}]
    assert payload["venice_parameters"] == {"include_venice_system_prompt": False}
    assert "stream" not in payload


@pytest.mark.asyncio
async def test_chat_unknown_model_passes_through(settings_stub, retry):
    seen = []

    def handler(request):
        seen.append(json.loads(request.content)["model"])
        return httpx.Response(200, json=_completion())

    client = VeniceClient(settings_stub, http_transport=httpx.MockTransport(handler), retry=retry)
    await client.chat(_req(model="mistral-31-24b"))
    assert seen == ["mistral-31-24b"]


@pytest.mark.asyncio
async def test_chat_retries_rate_limit_then_succeeds(settings_stub, retry, sleeps):
    statuses = iter([429, 429, 200])
    calls = []

    def handler(request):
        status = next(statuses)
        calls.append(status)
        if status == 429:
            return httpx.Response(429, json={"error": "Too many requests"})
        return httpx.Response(200, json=_completion("done"))

    client = VeniceClient(settings_stub, http_transport=httpx.MockTransport(handler), retry=retry)
    res = await client.chat(_req())
    assert res.content == "done"
    assert calls == [429, 429, 200]
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_chat_auth_failure_single_attempt(settings_stub, retry):
    calls = []

    def handler(request):
        calls.append(1)
        return httpx.Response(401, json={"error": "Authentication failed"})

    client = VeniceClient(settings_stub, http_transport=httpx.MockTransport(handler), retry=retry)
    with pytest.raises(AuthenticationError):
        await client.chat(_req())
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_chat_rate_limit_exhausted(settings_stub, retry):
    calls = []

    def handler(request):
        calls.append(1)
        return httpx.Response(429, text="limited")

    client = VeniceClient(settings_stub, http_transport=httpx.MockTransport(handler), retry=retry)
    with pytest.raises(RateLimitError):
        await client.chat(_req())
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_chat_network_error_is_retried(settings_stub, retry, sleeps):
    calls = []

    def handler(request):
        calls.append(1)
        if len(calls) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json=_completion())

    client = VeniceClient(settings_stub, http_transport=httpx.MockTransport(handler), retry=retry)
    res = await client.chat(_req())
    assert res.content == "ok"
    assert sleeps == [1.0]


@pytest.mark.asyncio
async def test_chat_network_error_exhausted(settings_stub, retry):
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    client = VeniceClient(settings_stub, http_transport=httpx.MockTransport(handler), retry=retry)
    with pytest.raises(NetworkError):
        await client.chat(_req())


@pytest.mark.asyncio
async def test_missing_key_raises_before_io(settings_stub, retry):
    settings_stub.venice_api_key = None

    def handler(request):
        raise AssertionError("no request expected")

    client = VeniceClient(settings_stub, http_transport=httpx.MockTransport(handler), retry=retry)
    with pytest.raises(UserInputError):
        await client.chat(_req())


@pytest.mark.asyncio
async def test_explicit_api_key_overrides_settings(settings_stub, retry):
    settings_stub.venice_api_key = None
    seen = []

    def handler(request):
        seen.append(request.headers["authorization"])
        return httpx.Response(200, json=_completion())

    client = VeniceClient(settings_stub, api_key="user-key-abcdef", http_transport=httpx.MockTransport(handler), retry=retry)
    await client.chat(_req())
    assert seen == ["Bearer user-key-abcdef"]


@pytest.mark.asyncio
async def test_rate_limit_headers_reach_retry_controller(settings_stub, retry):
    def handler(request):
        return httpx.Response(
            200,
            headers={"x-ratelimit-remaining-requests": "1", "x-ratelimit-remaining-tokens": "900"},
            json=_completion(),
        )

    client = VeniceClient(settings_stub, http_transport=httpx.MockTransport(handler), retry=retry)
    await client.chat(_req())
    assert retry.telemetry.remaining_requests == 1
    assert retry.telemetry.remaining_tokens == 900


def _sse_handler(chunks, seen=None):
    async def body():
        for chunk in chunks:
            yield chunk

    def handler(request):
        if seen is not None:
            seen.append(json.loads(request.content))
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body())

    return handler


SSE = [
    b'data: {"choices":[{"index":0,"delta":{"content":"He"}}]}\n\ndata: {"cho',
    b'ices":[{"index":0,"delta":{"content":"llo"},"finish_reason":"stop"}]}\n\n',
    b"data: [DONE]\n\n",
]


@pytest.mark.asyncio
async def test_chat_stream_yields_deltas(settings_stub, retry):
    seen = []
    callback = []
    client = VeniceClient(settings_stub, http_transport=httpx.MockTransport(_sse_handler(SSE, seen)), retry=retry)
    deltas = [d async for d in client.chat_stream(_req(), on_delta=lambda d: callback.append(d.content))]
    assert [d.content for d in deltas] == ["He", "llo"]
    assert deltas[1].finish_reason == "stop"
    assert callback == ["He", "llo"]
    assert seen[0]["stream"] is True


@pytest.mark.asyncio
async def test_complete_stream_concatenates(settings_stub, retry):
    client = VeniceClient(settings_stub, http_transport=httpx.MockTransport(_sse_handler(SSE)), retry=retry)
    assert await client.complete_stream(_req()) == "Hello"


@pytest.mark.asyncio
async def test_chat_stream_early_break(settings_stub, retry):
    client = VeniceClient(settings_stub, http_transport=httpx.MockTransport(_sse_handler(SSE)), retry=retry)
    async with aclosing(client.chat_stream(_req())) as stream:
        async for delta in stream:
            assert delta.content == "He"
            break


@pytest.mark.asyncio
async def test_chat_stream_retries_opening(settings_stub, retry, sleeps):
    statuses = iter([429, 200])
    sse = _sse_handler(SSE)

    def handler(request):
        if next(statuses) == 429:
            return httpx.Response(429, json={"error": "slow"})
        return sse(request)

    client = VeniceClient(settings_stub, http_transport=httpx.MockTransport(handler), retry=retry)
    assert await client.complete_stream(_req()) == "Hello"
    assert sleeps == [1.0]


@pytest.mark.asyncio
async def test_chat_stream_auth_failure(settings_stub, retry):
    client = VeniceClient(
        settings_stub,
        http_transport=httpx.MockTransport(lambda r: httpx.Response(401, json={"error": "bad key"})),
        retry=retry,
    )
    with pytest.raises(AuthenticationError):
        async for _ in client.chat_stream(_req()):
            pass


@pytest.mark.asyncio
async def test_chat_many_keeps_order_and_errors(settings_stub, retry):
    def handler(request):
        model = json.loads(request.content)["model"]
        if model == "broken-model":
            return httpx.Response(401, json={"error": "nope"})
        return httpx.Response(200, json=_completion(content=f"from {model}", model=model))

    client = VeniceClient(settings_stub, http_transport=httpx.MockTransport(handler), retry=retry)
    results = await client.chat_many([_req("model-a"), _req("broken-model"), _req("model-b")])
    assert results[0].content == "from model-a"
    assert isinstance(results[1], AuthenticationError)
    assert results[2].content == "from model-b"


@pytest.mark.asyncio
async def test_chat_rejects_non_json_body(settings_stub, retry):
    def handler(request):
        return httpx.Response(200, text="<html>gateway</html>", headers={"content-type": "text/html"})

    client = VeniceClient(settings_stub, http_transport=httpx.MockTransport(handler), retry=retry)
    with pytest.raises(ApiError) as ei:
        await client.chat(_req())
    assert ei.value.code == "INVALID_RESPONSE"


@pytest.mark.asyncio
async def test_chat_rejects_non_object_body(settings_stub, retry):
    def handler(request):
        return httpx.Response(200, json=["not", "an", "object"])

    client = VeniceClient(settings_stub, http_transport=httpx.MockTransport(handler), retry=retry)
    with pytest.raises(ApiError) as ei:
        await client.chat(_req())
    assert ei.value.code == "INVALID_RESPONSE"


@pytest.mark.asyncio
async def test_chat_many_keeps_results_when_sibling_body_is_html(settings_stub, retry):
    def handler(request):
        model = json.loads(request.content)["model"]
        if model == "html-model":
            return httpx.Response(200, text="<html>oops</html>", headers={"content-type": "text/html"})
        return httpx.Response(200, json=_completion(content=f"from {model}", model=model))

    client = VeniceClient(settings_stub, http_transport=httpx.MockTransport(handler), retry=retry)
    results = await client.chat_many([_req("model-a"), _req("html-model")])
    assert results[0].content == "from model-a"
    assert isinstance(results[1], ApiError)
    assert results[1].code == "INVALID_RESPONSE"
