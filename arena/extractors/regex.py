"""Regex extractor — best-effort file operations from free-form answers.

Three independent passes run over the complete text, in order:

1. fenced blocks whose opening fence carries a path hint
   (```` ```ts:app/x.ts ````, ```` ```app/x.ts ````, ```` ```ts // app/x.ts ````)
   or whose first line is a comment holding only a path                 → edit
2. ``Create file: <path>`` (also new/add) + next fenced block → create
3. ``Edit file: <path>`` (also update/modify/change) + block  → edit

Passes may match the same text; every match is emitted and deduplication
is left to the consumer. Nothing here raises: text that matches no pattern
simply yields no operations.
"""

from __future__ import annotations

import logging
import re

from arena.extractors import FileOperation, register
from arena.validation import display_path

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```([^\n]*)\n(.*?)```", re.DOTALL)
_LANG_PATH = re.compile(r"^[\w+#-]+:(.+)$")
_CREATE_DIRECTIVE = re.compile(
    r"\b(?:create|new|add)\s+file[:\s]+([^\n]+)\n\s*```[^\n]*\n(.*?)```",
    re.DOTALL | re.IGNORECASE,
)
_EDIT_DIRECTIVE = re.compile(
    r"\b(?:edit|update|modify|change)\s+file[:\s]+([^\n]+)\n\s*```[^\n]*\n(.*?)```",
    re.DOTALL | re.IGNORECASE,
)
_HINT_PREFIX = re.compile(r"^(?://|#|--)\s*|^(?:file|path):\s*", re.IGNORECASE)
_COMMENT_PATH = re.compile(r"^\s*(?://|#|--)\s*(?:file:\s*)?([\w.\-/]+\.\w+)\s*$")

INSTRUCTIONS = """\
You can create, edit, and modify files in the workspace. When you want to create or edit a file, use this format:
```typescript:path/to/file.ts
// Your code here
```

Or explicitly state:
"Create file: path/to/file.ts
```
code here
```"

For editing existing files, use:
"Edit file: path/to/file.ts
```
updated code here
```"

The workspace is at ./workspace/ directory. All file paths should be relative to workspace (e.g., ./app/index.ts or app/index.ts).

Be concise and action-oriented. Show complete file contents when creating or editing files."""


def _clean_path(raw: str) -> str:
    path = raw.strip()
    while True:
        stripped = _HINT_PREFIX.sub("", path, count=1).strip()
        if stripped == path:
            break
        path = stripped
    return path.strip("`*\"'").strip()


def _looks_like_path(path: str) -> bool:
    return bool(path) and "```" not in path and not re.search(r"\s", path) and (
        "/" in path or "." in path
    )


def _fence_hint(info: str) -> str:
    """Path named on an opening fence, or "" when it only names a language."""
    info = info.strip()
    if not info:
        return ""
    tagged = _LANG_PATH.match(info)
    if tagged:
        return _clean_path(tagged.group(1))
    if _looks_like_path(info):
        return _clean_path(info)
    _, _, rest = info.partition(" ")
    return _clean_path(rest)


@register
class RegexExtractor:
    name = "regex"
    instructions = INSTRUCTIONS

    def extract(self, text: str) -> list[FileOperation]:
        operations = self._hinted_blocks(text)
        operations += self._directives(text, _CREATE_DIRECTIVE, "create")
        operations += self._directives(text, _EDIT_DIRECTIVE, "edit")
        logger.debug(f"Extracted {len(operations)} file operation(s)")
        return operations

    @staticmethod
    def _hinted_blocks(text: str) -> list[FileOperation]:
        operations = []
        for match in _FENCED_BLOCK.finditer(text):
            hint, body = match.group(1), match.group(2)
            path = _fence_hint(hint)

            if not path:
                # No hint on the fence: accept a first line like "// app/x.ts"
                first, _, rest = body.partition("\n")
                comment = _COMMENT_PATH.match(first)
                if not comment:
                    continue
                path, body = comment.group(1), rest

            content = body.strip()
            if not content or not _looks_like_path(path):
                continue
            operations.append(
                FileOperation(type="edit", file_path=display_path(path), content=content)
            )
        return operations

    @staticmethod
    def _directives(text: str, pattern: re.Pattern, op_type: str) -> list[FileOperation]:
        operations = []
        for match in pattern.finditer(text):
            path = _clean_path(match.group(1))
            if not _looks_like_path(path):
                continue
            operations.append(
                FileOperation(
                    type=op_type,  # type: ignore[arg-type]
                    file_path=display_path(path),
                    content=match.group(2).strip(),
                )
            )
        return operations
