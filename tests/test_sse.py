import json

import pytest

from arena.errors import FrameDecodeError
from arena.schemas import ActionFrame, DoneFrame, ErrorFrame, StatusFrame
from arena.sse import SSEDecoder, encode_frame, parse_frame


def test_payload_split_across_chunks():
    decoder = SSEDecoder()
    assert decoder.feed(b"data: hel") == []
    assert decoder.feed(b"lo\n\ndata: world\n") == ["hello", "world"]


def test_multibyte_character_split_between_chunks():
    raw = "data: héllo\n".encode()
    split = raw.index("é".encode()) + 1
    decoder = SSEDecoder()
    assert decoder.feed(raw[:split]) == []
    assert decoder.feed(raw[split:]) == ["héllo"]


def test_non_data_lines_are_ignored():
    decoder = SSEDecoder()
    payloads = decoder.feed(b": keep-alive\r\nevent: ping\r\ndata: 1\r\n\r\ndata:\n")
    assert payloads == ["1"]


def test_flush_returns_unterminated_line():
    decoder = SSEDecoder()
    assert decoder.feed(b"data: [DONE]") == []
    assert decoder.flush() == [SSEDecoder.DONE]
    assert decoder.flush() == []


def test_reset_drops_buffered_bytes():
    decoder = SSEDecoder()
    decoder.feed(b"data: partial")
    decoder.reset()
    assert decoder.feed(b"data: fresh\n") == ["fresh"]


def test_encode_frame_uses_camel_case_and_blank_line():
    encoded = encode_frame(StatusFrame(agent_id="claude", request_id="r1", status="streaming"))
    assert encoded.startswith("data: ")
    assert encoded.endswith("\n\n")
    assert json.loads(encoded[len("data: "):]) == {
        "type": "status",
        "agentId": "claude",
        "requestId": "r1",
        "status": "streaming",
    }


def test_encode_frame_omits_missing_code():
    encoded = encode_frame(ErrorFrame(agent_id="gemini", request_id="r1", error="boom"))
    assert "code" not in json.loads(encoded[len("data: "):])


def test_parse_frame_dispatches_on_type():
    frame = parse_frame(
        '{"type":"action","agentId":"claude","requestId":"r1",'
        '"action":{"id":"a1","agentId":"claude","type":"message","timestamp":1,"content":"hi"},'
        '"unexpected":"ignored"}'
    )
    assert isinstance(frame, ActionFrame)
    assert frame.action.content == "hi"

    assert isinstance(parse_frame('{"type":"done","agentId":"chatgpt","requestId":"r1"}'), DoneFrame)


def test_parse_frame_defaults_error_message():
    frame = parse_frame('{"type":"error","agentId":"claude","requestId":"r1"}')
    assert isinstance(frame, ErrorFrame)
    assert frame.error == "An error occurred"


@pytest.mark.parametrize(
    "payload",
    [
        "{not json",
        '{"type":"unknown","agentId":"claude","requestId":"r1"}',
        '{"type":"done","requestId":"r1"}',
        '{"type":"status","agentId":"llama","requestId":"r1","status":"streaming"}',
    ],
)
def test_parse_frame_rejects_malformed_payloads(payload):
    with pytest.raises(FrameDecodeError):
        parse_frame(payload)
