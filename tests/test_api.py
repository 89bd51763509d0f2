import json

import httpx
import pytest
from fastapi.testclient import TestClient

from arena.config import ArenaConfig
from arena.files.store import MemoryWorkspaceStore
from arena.main import create_app
from arena.sse import SSEDecoder, parse_frame

ANSWER = "Create file: ./app/x.ts\n```ts\nconsole.log(1)\n```"


def gateway_handler(request):
    body = "".join(
        f'data: {json.dumps({"choices": [{"delta": {"content": part}}]})}\n\n'
        for part in (ANSWER[:20], ANSWER[20:])
    )
    return httpx.Response(200, content=(body + "data: [DONE]\n\n").encode())


@pytest.fixture
def workspace():
    return MemoryWorkspaceStore({"readme.md": "# hi"})


@pytest.fixture
def client(workspace):
    http = httpx.AsyncClient(transport=httpx.MockTransport(gateway_handler))
    app = create_app(ArenaConfig(), store=workspace, http_client=http)
    with TestClient(app) as test_client:
        yield test_client


def payloads(response):
    decoder = SSEDecoder()
    return decoder.feed(response.content) + decoder.flush()


def stream(client, **body):
    request = {"agentId": "claude", "prompt": "make x", "requestId": "request-1-abc"}
    request.update(body)
    return client.post("/agents/stream", json=request)


def test_stream_emits_frames_in_order(client, api_key):
    response = stream(client)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"].startswith("no-cache")

    frames = [parse_frame(p) for p in payloads(response)]
    assert frames[0].type == "status" and frames[0].status == "streaming"
    assert [f.type for f in frames[-2:]] == ["status", "done"]
    assert all(f.agent_id == "claude" and f.request_id == "request-1-abc" for f in frames)

    edits = [f.action for f in frames if f.type == "action" and f.action.type == "file_edit"]
    assert len(edits) == 1
    assert edits[0].metadata.file_path == "./app/x.ts"
    assert edits[0].metadata.new_content == "console.log(1)"


def test_stream_does_not_write_files(client, workspace, api_key):
    stream(client)
    assert workspace.files == {"readme.md": "# hi"}


@pytest.mark.parametrize(
    "body, message",
    [
        ({"agentId": "llama"}, "Invalid agent ID"),
        ({"prompt": "   "}, "Prompt must be at least"),
        ({"requestId": "bad id"}, "Request ID contains invalid characters"),
    ],
)
def test_invalid_request_gets_single_error_frame(client, api_key, body, message):
    response = stream(client, **body)

    assert response.status_code == 400
    (payload,) = payloads(response)
    frame = json.loads(payload)
    assert frame["type"] == "error"
    assert frame["code"] == "VALIDATION_ERROR"
    assert message in frame["error"]


def test_missing_api_key_is_configuration_error(client, monkeypatch):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    response = stream(client)

    assert response.status_code == 500
    (payload,) = payloads(response)
    frame = parse_frame(payload)
    assert frame.code == "CONFIGURATION_ERROR"
    assert frame.agent_id == "claude"


def test_file_lifecycle(client, workspace):
    created = client.post("/files", json={"path": "./app/x.ts", "type": "file", "content": "v1"})
    assert created.json() == {"success": True}
    client.post("/files", json={"path": "docs", "type": "directory"})

    listing = client.get("/files", params={"path": "./"}).json()
    assert [(f["name"], f["type"]) for f in listing["files"]] == [
        ("app", "directory"),
        ("docs", "directory"),
        ("readme.md", "file"),
    ]

    read = client.get("/files/read", params={"path": "./app/x.ts"}).json()
    assert read == {"success": True, "content": "v1"}

    found = client.get("/files/search", params={"q": "x.ts"}).json()
    assert [f["path"] for f in found["files"]] == ["app/x.ts"]


def test_apply_and_undo(client, workspace):
    applied = client.post("/files/apply", json={"filePath": "./app/x.ts", "content": "new"})
    assert applied.json()["message"] == "File changes applied"
    assert workspace.files["app/x.ts"] == "new"

    restored = client.put("/files/apply", json={"filePath": "./app/x.ts", "oldContent": "old"})
    assert restored.json()["message"] == "File changes reverted"
    assert workspace.files["app/x.ts"] == "old"

    deleted = client.put("/files/apply", json={"filePath": "./app/x.ts", "oldContent": "  "})
    assert deleted.json()["message"] == "File deleted"
    assert "app/x.ts" not in workspace.files


def test_clear_workspace(client, workspace):
    assert client.delete("/files").json()["success"] is True
    assert workspace.files == {}


def test_missing_file_is_404_envelope(client):
    response = client.get("/files/read", params={"path": "nope.ts"})
    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "error": {"code": "NOT_FOUND", "message": "File not found"},
    }


def test_traversal_is_400(client):
    response = client.get("/files/read", params={"path": "../../etc/passwd"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_operational_endpoints(client, api_key):
    health = client.get("/health").json()
    assert health == {"status": "healthy", "agents": 3, "gateway_configured": True}

    config = client.get("/config").json()
    assert config["extraction"]["strategy"] == "regex"
    assert "test-key" not in json.dumps(config)

    agents = client.get("/agents").json()["agents"]
    assert [a["id"] for a in agents] == ["claude", "gemini", "chatgpt"]
    assert len({a["model"] for a in agents}) == 3
