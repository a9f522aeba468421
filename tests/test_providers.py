from __future__ import annotations

import json

import httpx
import pytest

from ragedit.completion import CompletionRequest, OpenAIStreamProvider, ScriptedProvider
from ragedit.errors import ProviderError, TransientProviderError


def _chunk(content=None, finish_reason=None) -> str:
    delta = {"content": content} if content is not None else {}
    payload = {
        "id": "chatcmpl-1",
        "object": "chat.completion.chunk",
        "created": 0,
        "model": "gpt-test",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }
    return f"data: {json.dumps(payload)}\n\n"


def _provider(handler) -> OpenAIStreamProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAIStreamProvider(api_key="test-key", base_url="http://llm.test/v1", http_client=client)


async def _collect(provider, request):
    return [event async for event in provider.stream(request)]


async def test_openai_stream_yields_deltas_then_finish():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        body = _chunk("The") + _chunk(" cat") + _chunk(finish_reason="stop") + "data: [DONE]\n\n"
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body.encode())

    request = CompletionRequest(prompt="Fix it", system="Edit.", model="gpt-test", resume_from="The")
    events = await _collect(_provider(handler), request)

    assert [(event.kind, event.text) for event in events[:2]] == [("delta", "The"), ("delta", " cat")]
    assert events[-1].kind == "finish"
    assert events[-1].reason == "stop"
    roles = [message["role"] for message in seen["body"]["messages"]]
    assert roles == ["system", "user", "assistant", "user"]
    assert seen["body"]["messages"][2]["content"] == "The"
    assert seen["body"]["stream"] is True


async def test_rate_limit_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "slow down", "type": "rate_limit"}})

    with pytest.raises(TransientProviderError):
        await _collect(_provider(handler), CompletionRequest(prompt="Fix it"))


async def test_bad_request_is_permanent():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"message": "bad prompt", "type": "invalid_request"}})

    with pytest.raises(ProviderError) as excinfo:
        await _collect(_provider(handler), CompletionRequest(prompt="Fix it"))
    assert not isinstance(excinfo.value, TransientProviderError)


async def test_scripted_provider_skips_resumed_prefix():
    provider = ScriptedProvider(["The", " cat", " sat."])
    events = await _collect(provider, CompletionRequest(prompt="x", resume_from="The c"))
    assert [event.text for event in events if event.kind == "delta"] == ["at", " sat."]
