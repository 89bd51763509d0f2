"""Request/response models — the contract between the service and its clients.

Python fields are snake_case; on the wire every model uses camelCase
(``agentId``, ``requestId``, ``filePath`` ...). Frames of the downstream
SSE protocol form a closed union discriminated on ``type``.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

AgentId = Literal["claude", "gemini", "chatgpt"]
AGENT_IDS: tuple[AgentId, ...] = ("claude", "gemini", "chatgpt")

ActionType = Literal[
    "message", "tool_call", "file_edit", "file_create", "file_delete", "command"
]
TurnStatus = Literal["streaming", "paused", "completed", "error"]
DiffStatus = Literal["pending", "applied", "rejected"]


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Conversation records
# ---------------------------------------------------------------------------


class ActionMetadata(WireModel):
    tool_name: str | None = None
    tool_params: dict[str, Any] | None = None
    file_name: str | None = None
    file_path: str | None = None
    old_content: str | None = None
    new_content: str | None = None
    command: str | None = None
    status: Literal["running", "completed", "failed"] | None = None
    error: str | None = None


class Action(WireModel):
    """One observable event within a turn.

    The same logical message keeps its ``id`` while its text grows, so
    consumers replace it in place instead of appending.
    """

    id: str
    agent_id: AgentId
    type: ActionType
    timestamp: int
    content: str = ""
    metadata: ActionMetadata | None = None


class ConversationTurn(WireModel):
    id: str  # "{request_id}-{agent_id}"
    prompt: str
    timestamp: int
    actions: list[Action] = []
    status: TurnStatus = "streaming"
    error: str | None = None


class FileDiff(WireModel):
    file_path: str
    old_content: str
    new_content: str
    additions: int = 0
    deletions: int = 0
    status: DiffStatus = "pending"
    agent_id: AgentId | None = None


# ---------------------------------------------------------------------------
# Downstream SSE frames
# ---------------------------------------------------------------------------


class StatusFrame(WireModel):
    type: Literal["status"] = "status"
    agent_id: AgentId
    request_id: str
    status: Literal["streaming", "completed", "error"]


class ActionFrame(WireModel):
    type: Literal["action"] = "action"
    agent_id: AgentId
    request_id: str
    action: Action


class ErrorFrame(WireModel):
    type: Literal["error"] = "error"
    agent_id: AgentId
    request_id: str
    error: str = "An error occurred"
    code: str | None = None


class DoneFrame(WireModel):
    type: Literal["done"] = "done"
    agent_id: AgentId
    request_id: str


Frame = Annotated[
    Union[StatusFrame, ActionFrame, ErrorFrame, DoneFrame],
    Field(discriminator="type"),
]
FRAME_ADAPTER: TypeAdapter[Frame] = TypeAdapter(Frame)


# ---------------------------------------------------------------------------
# HTTP request bodies
# ---------------------------------------------------------------------------


class StreamRequest(WireModel):
    """Body of POST /agents/stream. Fields are checked by arena.validation
    so that bad input is reported as an SSE error frame."""

    agent_id: Any = None
    prompt: Any = None
    request_id: Any = None
    images: list[str] | None = None


class ApplyRequest(WireModel):
    file_path: str
    content: str = ""


class UndoRequest(WireModel):
    file_path: str
    old_content: str = ""


class CreateEntryRequest(WireModel):
    path: str
    type: Literal["file", "directory"]
    content: str = ""


class FileEntry(WireModel):
    name: str
    path: str
    type: Literal["file", "directory"] = "file"
