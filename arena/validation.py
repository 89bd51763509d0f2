"""Input validation and workspace path normalization.

Workspace paths have a single canonical form: workspace-relative, no
leading ``./`` and no ``workspace/`` prefix (``app/x.ts``). Diffs and
extractor output may carry the display form (``./app/x.ts``); every store
boundary converts with :func:`workspace_path` first.
"""

from __future__ import annotations

import posixpath
import re

from arena.errors import ValidationError
from arena.schemas import AGENT_IDS, AgentId

MAX_PATH_LENGTH = 260
MIN_PROMPT_LENGTH = 1
MAX_PROMPT_LENGTH = 100_000
MAX_REQUEST_ID_LENGTH = 100

_DANGEROUS_CHARS = re.compile(r'[<>:"|?*\x00-\x1f]')
_REQUEST_ID = re.compile(r"^[a-zA-Z0-9_-]+$")


def workspace_path(file_path: str) -> str:
    """Strip ``./workspace/``, ``workspace/`` and ``./`` prefixes.

    >>> workspace_path("./workspace/app/x.ts")
    'app/x.ts'
    """
    normalized = file_path.strip()
    while normalized.startswith("./"):
        normalized = normalized[2:]
    if normalized == "workspace":
        return ""
    if normalized.startswith("workspace/"):
        normalized = normalized[len("workspace/"):]
    normalized = re.sub(r"/+", "/", normalized)
    return normalized


def display_path(file_path: str) -> str:
    """Canonical path re-prefixed with ``./`` — the form shown to users."""
    return "./" + workspace_path(file_path).lstrip("/")


def validate_file_path(file_path: object) -> str:
    """Return the canonical workspace-relative form of ``file_path``.

    Raises ValidationError on traversal, over-long paths and characters
    that are invalid on common filesystems.
    """
    if not file_path or not isinstance(file_path, str):
        raise ValidationError("File path is required and must be a string")

    normalized = workspace_path(file_path)
    if normalized.startswith("/"):
        raise ValidationError(
            "Absolute paths are not allowed", details={"attemptedPath": file_path}
        )

    normalized = posixpath.normpath(normalized) if normalized else ""
    if normalized == ".":
        normalized = ""
    if normalized == ".." or normalized.startswith("../"):
        raise ValidationError(
            "Path traversal detected", details={"attemptedPath": file_path}
        )

    if len(normalized) > MAX_PATH_LENGTH:
        raise ValidationError(f"File path too long (max {MAX_PATH_LENGTH} characters)")

    if _DANGEROUS_CHARS.search(normalized):
        raise ValidationError("File path contains invalid characters")

    return normalized


def validate_agent_id(agent_id: object) -> AgentId:
    if not agent_id or not isinstance(agent_id, str):
        raise ValidationError("Agent ID is required and must be a string")
    if agent_id not in AGENT_IDS:
        raise ValidationError(
            f"Invalid agent ID. Must be one of: {', '.join(AGENT_IDS)}",
            details={"provided": agent_id},
        )
    return agent_id  # type: ignore[return-value]


def validate_prompt(
    prompt: object,
    allow_empty: bool = False,
    min_length: int = MIN_PROMPT_LENGTH,
    max_length: int = MAX_PROMPT_LENGTH,
) -> str:
    """Trim and bound-check a prompt."""
    if prompt is None:
        if allow_empty:
            return ""
        raise ValidationError("Prompt is required and must be a string")
    if not isinstance(prompt, str):
        raise ValidationError("Prompt must be a string")

    trimmed = prompt.strip()
    if not allow_empty and len(trimmed) < min_length:
        raise ValidationError(
            f"Prompt must be at least {min_length} character(s)",
            details={"length": len(trimmed)},
        )
    if len(trimmed) > max_length:
        raise ValidationError(
            f"Prompt too long. Maximum length is {max_length} characters",
            details={"length": len(trimmed), "maxLength": max_length},
        )
    return trimmed


def validate_request_id(request_id: object) -> str:
    if not request_id or not isinstance(request_id, str):
        raise ValidationError("Request ID is required and must be a string")
    if not _REQUEST_ID.match(request_id):
        raise ValidationError("Request ID contains invalid characters")
    if len(request_id) > MAX_REQUEST_ID_LENGTH:
        raise ValidationError(
            f"Request ID too long (max {MAX_REQUEST_ID_LENGTH} characters)"
        )
    return request_id


def sanitize_file_content(content: object, max_size: int) -> str:
    """Reject oversized content and strip NUL bytes."""
    if not isinstance(content, str):
        raise ValidationError("File content must be a string")
    size = len(content.encode("utf-8"))
    if size > max_size:
        raise ValidationError(
            f"File content too large. Maximum size is {max_size} bytes",
            details={"size": size, "maxSize": max_size},
        )
    return content.replace("\x00", "")
