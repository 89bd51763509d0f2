import json

import httpx
import pytest

from arena.agents.gateway import GatewayClient, build_messages
from arena.agents.registry import ResolvedAgent
from arena.config import GatewayConfig
from arena.errors import ExternalServiceError, GatewayTimeoutError

AGENT = ResolvedAgent(
    id="claude", name="Claude", model="test/model", temperature=0.3, system_prompt="be brief"
)


def chunk(text):
    return f'data: {json.dumps({"choices": [{"delta": {"content": text}}]})}\n\n'


async def collect(handler, config=None):
    config = config or GatewayConfig(url="https://gateway.test/v1/chat/completions")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        gateway = GatewayClient(client, config)
        return [d async for d in gateway.stream_completion(AGENT, build_messages(AGENT, "hi"))]


def test_build_messages_plain_prompt():
    assert build_messages(AGENT, "hi") == [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "hi"},
    ]


def test_build_messages_with_images():
    messages = build_messages(AGENT, "what is this?", ["data:image/png;base64,AAA"])
    assert messages[1]["content"] == [
        {"type": "text", "text": "what is this?"},
        {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAA"}},
    ]


@pytest.mark.asyncio
async def test_streams_deltas_until_done(api_key):
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        body = chunk("Hel") + "data: {broken\n\n" + chunk("lo") + "data: [DONE]\n\n" + chunk("late")
        return httpx.Response(200, content=body.encode())

    assert await collect(handler) == ["Hel", "lo"]
    assert seen["auth"] == f"Bearer {api_key}"
    assert seen["body"]["model"] == "test/model"
    assert seen["body"]["stream"] is True
    assert seen["body"]["temperature"] == 0.3
    assert seen["body"]["max_tokens"] == 400


@pytest.mark.asyncio
async def test_stream_without_done_ends_at_eof(api_key):
    def handler(request):
        return httpx.Response(200, content=(chunk("a") + 'data: {"choices":[{"delta":{}}]}').encode())

    assert await collect(handler) == ["a"]


@pytest.mark.asyncio
async def test_error_status_surfaces_gateway_message(api_key):
    def handler(request):
        return httpx.Response(401, json={"error": {"message": "Invalid API key"}})

    with pytest.raises(ExternalServiceError, match="Invalid API key"):
        await collect(handler)


@pytest.mark.asyncio
async def test_error_status_raises_before_entering(api_key):
    def handler(request):
        return httpx.Response(503, text="overloaded")

    entered = False
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        gateway = GatewayClient(client, GatewayConfig())
        with pytest.raises(ExternalServiceError, match="overloaded"):
            async with gateway.open_completion(AGENT, build_messages(AGENT, "hi")):
                entered = True
    assert entered is False


@pytest.mark.asyncio
async def test_timeout_maps_to_gateway_timeout(api_key):
    def handler(request):
        raise httpx.ReadTimeout("slow")

    with pytest.raises(GatewayTimeoutError) as exc:
        await collect(handler, GatewayConfig(timeout_seconds=3))
    assert exc.value.code == "TIMEOUT_ERROR"
    assert "3s" in exc.value.message


@pytest.mark.asyncio
async def test_transport_failure_maps_to_external_error(api_key):
    def handler(request):
        raise httpx.ConnectError("no route")

    with pytest.raises(ExternalServiceError, match="no route"):
        await collect(handler)


@pytest.mark.asyncio
async def test_missing_api_key(monkeypatch):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)

    def handler(request):
        raise AssertionError("gateway must not be called")

    with pytest.raises(ExternalServiceError, match="OPENROUTER_API_KEY"):
        await collect(handler)
