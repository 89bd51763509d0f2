"""Extractor registry — global name-based lookup for file-operation extractors.

An extractor turns an agent's complete response text into an ordered list
of :class:`FileOperation`. Strategies register themselves with
``@register`` and ``config.yaml`` picks one by name
(``extraction.strategy``), so the regex heuristics can be replaced by a
structured-output strategy without touching the state machine.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol


@dataclass(frozen=True)
class FileOperation:
    type: Literal["create", "edit"]
    file_path: str  # display form, "./app/x.ts"
    content: str


class FileOperationExtractor(Protocol):
    name: str
    instructions: str  # how an agent must phrase edits for this strategy

    def extract(self, text: str) -> list[FileOperation]: ...


_registry: dict[str, FileOperationExtractor] = {}


def register(extractor_cls: type) -> type:
    """Instantiate ``extractor_cls`` and add it to the registry by ``.name``.

    Used as a class decorator::

        @register
        class MyExtractor:
            name = "mine"
            ...
    """
    instance = extractor_cls()
    _registry[instance.name] = instance
    return extractor_cls


def resolve_extractor(name: str) -> FileOperationExtractor:
    """Look up an extractor by name. Raises ``ValueError`` if not registered."""
    if name not in _registry:
        raise ValueError(
            f"Unknown extractor '{name}'. Available: {list(_registry.keys())}"
        )
    return _registry[name]


def list_extractors() -> list[str]:
    """Return all registered extractor names."""
    return list(_registry.keys())


# Auto-import strategies so the registry is populated on first access.
import arena.extractors.regex as _regex  # noqa: E402, F401
