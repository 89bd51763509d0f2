from contextlib import asynccontextmanager

import pytest

from arena.agents.registry import resolve_agent
from arena.errors import ExternalServiceError, ValidationError
from arena.files.store import MemoryWorkspaceStore
from arena.runtime import execute_agent_stream, validate_stream_request
from arena.schemas import ActionFrame, ErrorFrame, StatusFrame, StreamRequest


class FakeGateway:
    """``rejected`` fails on open, like an error status from the gateway;
    ``error`` fails after the given deltas were streamed."""

    def __init__(self, deltas=(), error=None, rejected=None):
        self.deltas = deltas
        self.error = error
        self.rejected = rejected
        self.messages = None

    @asynccontextmanager
    async def open_completion(self, agent, messages):
        self.messages = messages
        if self.rejected is not None:
            raise self.rejected
        yield self._stream()

    async def _stream(self):
        for delta in self.deltas:
            yield delta
        if self.error is not None:
            raise self.error


async def run(config, gateway, store=None, prompt="make x", images=None):
    agent = resolve_agent("claude", config)
    return [
        frame
        async for frame in execute_agent_stream(
            config, agent, prompt, "r1", store or MemoryWorkspaceStore(), gateway, images=images
        )
    ]


def kinds(frames):
    out = []
    for f in frames:
        if isinstance(f, StatusFrame):
            out.append(f"status:{f.status}")
        elif isinstance(f, ActionFrame):
            out.append(f"action:{f.action.type}")
        else:
            out.append(f.type)
    return out


@pytest.mark.asyncio
async def test_successful_stream_frame_order(config):
    gateway = FakeGateway(["Create file: ./app/x.ts\n```ts\n", "console.log(1)\n```"])

    frames = await run(config, gateway)

    assert kinds(frames) == [
        "status:streaming",
        "action:message",
        "action:message",
        "action:message",
        "action:message",
        "action:file_edit",
        "status:completed",
        "done",
    ]
    assert all(f.agent_id == "claude" and f.request_id == "r1" for f in frames)

    messages = [f.action for f in frames if isinstance(f, ActionFrame) and f.action.type == "message"]
    assert len({m.id for m in messages}) == 1
    assert [m.content for m in messages][0] == ""
    assert messages[-1].content.endswith("console.log(1)\n```")

    edit = frames[5].action
    assert edit.metadata.file_path == "./app/x.ts"
    assert edit.metadata.old_content == ""
    assert edit.metadata.new_content == "console.log(1)"
    assert edit.content == "Create file: ./app/x.ts"


@pytest.mark.asyncio
async def test_file_edit_carries_current_content(config):
    store = MemoryWorkspaceStore({"app/x.ts": "console.log(0)"})
    gateway = FakeGateway(["Edit file: app/x.ts\n```ts\nconsole.log(1)\n```"])

    frames = await run(config, gateway, store)

    (edit,) = [f.action for f in frames if isinstance(f, ActionFrame) and f.action.type == "file_edit"]
    assert edit.metadata.old_content == "console.log(0)"
    assert edit.metadata.new_content == "console.log(1)"
    assert store.files == {"app/x.ts": "console.log(0)"}


@pytest.mark.asyncio
async def test_system_prompt_includes_edit_instructions(config):
    gateway = FakeGateway(["ok"])
    await run(config, gateway, images=["data:image/png;base64,AAA"])

    system, user = gateway.messages
    assert "Create file:" in system["content"]
    assert user["content"][0] == {"type": "text", "text": "make x"}


@pytest.mark.asyncio
async def test_rejected_request_sends_no_message(config):
    frames = await run(config, FakeGateway(rejected=ExternalServiceError("Invalid API key")))

    assert kinds(frames) == ["status:streaming", "error", "status:error"]
    error = frames[1]
    assert isinstance(error, ErrorFrame)
    assert error.error == "Invalid API key"
    assert error.code == "EXTERNAL_API_ERROR"


@pytest.mark.asyncio
async def test_stream_failure_before_text_follows_message(config):
    frames = await run(config, FakeGateway(error=ExternalServiceError("reset")))

    assert kinds(frames) == ["status:streaming", "action:message", "error", "status:error"]
    assert frames[2].error == "reset"


@pytest.mark.asyncio
async def test_gateway_error_after_partial_text_keeps_answer(config):
    frames = await run(config, FakeGateway(["partial"], error=ExternalServiceError("reset")))

    assert kinds(frames)[-2:] == ["status:completed", "done"]
    assert not any(isinstance(f, ErrorFrame) for f in frames)
    assert frames[-3].action.content == "partial"


@pytest.mark.asyncio
async def test_unexpected_error_is_processing_error(config):
    frames = await run(config, FakeGateway(rejected=RuntimeError("kaboom")))

    error = frames[1]
    assert isinstance(error, ErrorFrame)
    assert error.code == "PROCESSING_ERROR"
    assert error.error == "kaboom"
    assert kinds(frames)[-1] == "status:error"


@pytest.mark.asyncio
async def test_empty_answer_completes_without_actions(config):
    frames = await run(config, FakeGateway([]))
    assert kinds(frames) == ["status:streaming", "action:message", "status:completed", "done"]


def test_validate_stream_request(config):
    request = StreamRequest(agentId="gemini", prompt="  hi ", requestId="request-1-abc")
    assert validate_stream_request(config, request) == ("gemini", "hi", "request-1-abc")

    for bad in (
        StreamRequest(agentId="llama", prompt="hi", requestId="r"),
        StreamRequest(agentId="claude", prompt="   ", requestId="r"),
        StreamRequest(agentId="claude", prompt="hi", requestId=None),
    ):
        with pytest.raises(ValidationError):
            validate_stream_request(config, bad)
