"""Server-sent event framing shared by the gateway client, the runtime and
the stream multiplexer.

Wire shape: ``data: <json>\\n\\n`` per frame, ``data: [DONE]`` as the end
sentinel. Decoding is incremental; bytes may arrive split anywhere,
including inside a multibyte character.
"""

from __future__ import annotations

import codecs
import json
import logging
import re

import pydantic

from arena.errors import FrameDecodeError
from arena.schemas import FRAME_ADAPTER, Frame, WireModel

logger = logging.getLogger(__name__)

_LINE_SPLIT = re.compile(r"\r?\n")


class SSEDecoder:
    """Turn a byte stream into the payloads of its ``data:`` lines."""

    DONE = "[DONE]"

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[str]:
        """Consume ``chunk`` and return payloads of every completed line."""
        self._buffer += self._decoder.decode(chunk)
        lines = _LINE_SPLIT.split(self._buffer)
        self._buffer = lines.pop()
        return [p for p in (self._payload(line) for line in lines) if p is not None]

    def flush(self) -> list[str]:
        """Return payloads left in an unterminated trailing line."""
        self._buffer += self._decoder.decode(b"", final=True)
        remaining, self._buffer = self._buffer, ""
        lines = _LINE_SPLIT.split(remaining)
        return [p for p in (self._payload(line) for line in lines) if p is not None]

    def reset(self) -> None:
        """Drop buffered, undecoded bytes."""
        self._decoder.reset()
        self._buffer = ""

    @staticmethod
    def _payload(line: str) -> str | None:
        if not line.startswith("data:"):
            return None
        data = line[5:].strip()
        return data or None


def encode_frame(frame: WireModel | dict) -> str:
    """Serialize one frame as an SSE event."""
    body = frame.to_wire() if isinstance(frame, WireModel) else frame
    return f"data: {json.dumps(body)}\n\n"


def parse_frame(payload: str) -> Frame:
    """Decode a payload into one of the four frame kinds.

    Raises FrameDecodeError on invalid JSON, an unknown ``type`` or a
    missing required field. Extra fields are ignored.
    """
    try:
        return FRAME_ADAPTER.validate_json(payload)
    except pydantic.ValidationError as e:
        raise FrameDecodeError(
            f"Malformed frame: {e.error_count()} error(s)",
            details={"payload": payload[:100]},
        ) from e
