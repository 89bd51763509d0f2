"""Runtime — bridges one agent's HTTP stream request to the upstream gateway.

Validates the request, streams the gateway's deltas as a growing message
action, extracts file operations from the finished text and yields the
downstream frames (status/action/error/done) the client multiplexer
consumes.
"""

from __future__ import annotations

import logging
import secrets
import string
import time
from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING

from arena.agents.gateway import build_messages
from arena.errors import AppError
from arena.extractors import resolve_extractor
from arena.schemas import (
    Action,
    ActionFrame,
    ActionMetadata,
    AgentId,
    DoneFrame,
    ErrorFrame,
    Frame,
    StatusFrame,
    StreamRequest,
)
from arena.validation import validate_agent_id, validate_prompt, validate_request_id

if TYPE_CHECKING:
    from arena.agents.gateway import GatewayClient
    from arena.agents.registry import ResolvedAgent
    from arena.config import ArenaConfig
    from arena.extractors import FileOperation
    from arena.files.store import WorkspaceStore

logger = logging.getLogger(__name__)

_ALPHABET = string.ascii_lowercase + string.digits


def now_ms() -> int:
    return int(time.time() * 1000)


def random_suffix(length: int = 7) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def validate_stream_request(
    config: ArenaConfig, request: StreamRequest
) -> tuple[AgentId, str, str]:
    """Check agent id, prompt and request id. Raises ValidationError."""
    agent_id = validate_agent_id(request.agent_id)
    prompt = validate_prompt(
        request.prompt,
        min_length=config.api.min_prompt_length,
        max_length=config.api.max_prompt_length,
    )
    request_id = validate_request_id(request.request_id)
    return agent_id, prompt, request_id


def _preview(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


async def _file_edit_actions(
    operations: list[FileOperation],
    agent_id: AgentId,
    store: WorkspaceStore,
) -> AsyncGenerator[Action, None]:
    """One ``file_edit`` action per extracted operation, carrying the
    file's current content as ``old_content``."""
    for index, op in enumerate(operations):
        try:
            old_content = await store.read(op.file_path) or ""
        except AppError as e:
            logger.warning(f"Skipping file operation: path={op.file_path}, error={e.message}")
            continue

        verb = "Create" if op.type == "create" else "Edit"
        yield Action(
            id=f"action-{now_ms()}-{agent_id}-file-{index}-{op.file_path}",
            agent_id=agent_id,
            type="file_edit",
            timestamp=now_ms(),
            content=f"{verb} file: {op.file_path}",
            metadata=ActionMetadata(
                file_name=op.file_path,
                file_path=op.file_path,
                old_content=old_content,
                new_content=op.content,
            ),
        )


async def execute_agent_stream(
    config: ArenaConfig,
    agent: ResolvedAgent,
    prompt: str,
    request_id: str,
    store: WorkspaceStore,
    gateway: GatewayClient,
    images: list[str] | None = None,
) -> AsyncGenerator[Frame, None]:
    """Run one agent and yield downstream frames.

    1. status(streaming)
    2. once the gateway accepted the request, an empty message action,
       re-sent with the accumulated text on every delta
    3. final message action, then one file_edit action per extracted operation
    4. status(completed), done

    A gateway failure before any text arrived yields error + status(error);
    when the gateway rejected the request no message action is sent.
    A failure after partial text keeps the partial answer and completes.
    """
    agent_id = agent.id
    logger.info(
        f"Executing agent stream: agent={agent_id}, model={agent.model}, "
        f"request={request_id}, prompt={_preview(prompt, 50)!r}"
    )

    yield StatusFrame(agent_id=agent_id, request_id=request_id, status="streaming")

    message: Action | None = None
    full_content = ""
    try:
        messages = build_messages(agent, prompt, images)
        async with gateway.open_completion(agent, messages) as deltas:
            message = Action(
                id=f"action-{now_ms()}-{random_suffix()}-{agent_id}",
                agent_id=agent_id,
                type="message",
                timestamp=now_ms(),
                content="",
            )
            yield ActionFrame(agent_id=agent_id, request_id=request_id, action=message)

            async for delta in deltas:
                if not full_content:
                    logger.info(f"First chunk from agent={agent_id}: {_preview(delta, 200)!r}")
                full_content += delta
                yield ActionFrame(
                    agent_id=agent_id,
                    request_id=request_id,
                    action=message.model_copy(update={"content": full_content}),
                )
    except AppError as e:
        if not full_content:
            logger.error(f"Error processing agent {agent_id}: {e.message}")
            yield ErrorFrame(
                agent_id=agent_id, request_id=request_id, error=e.message, code=e.code
            )
            yield StatusFrame(agent_id=agent_id, request_id=request_id, status="error")
            return
        logger.error(
            f"Stream error after partial response: agent={agent_id}, "
            f"request={request_id}, error={e.message}"
        )
    except Exception as e:
        logger.error(f"Unexpected error processing agent {agent_id}: {e}", exc_info=True)
        yield ErrorFrame(
            agent_id=agent_id,
            request_id=request_id,
            error=str(e) or "Failed to process request",
            code="PROCESSING_ERROR",
        )
        yield StatusFrame(agent_id=agent_id, request_id=request_id, status="error")
        return

    if full_content:
        logger.info(
            f"Final response from agent={agent_id}: length={len(full_content)}, "
            f"preview={_preview(full_content, 300)!r}"
        )
        yield ActionFrame(
            agent_id=agent_id,
            request_id=request_id,
            action=message.model_copy(update={"content": full_content}),
        )

        try:
            extractor = resolve_extractor(config.extraction.strategy)
            operations = extractor.extract(full_content)
        except Exception as e:
            logger.error(
                f"Error extracting file operations: agent={agent_id}, error={e}",
                exc_info=True,
            )
            operations = []

        async for action in _file_edit_actions(operations, agent_id, store):
            yield ActionFrame(agent_id=agent_id, request_id=request_id, action=action)

    yield StatusFrame(agent_id=agent_id, request_id=request_id, status="completed")
    yield DoneFrame(agent_id=agent_id, request_id=request_id)
