"""Line-level diff engine.

Pure and deterministic: the same two texts always produce the same
segments and stats.
"""

from __future__ import annotations

import difflib
from dataclasses import dataclass
from typing import Literal

SegmentKind = Literal["unchanged", "added", "removed"]


@dataclass(frozen=True)
class DiffSegment:
    text: str
    kind: SegmentKind

    @property
    def lines(self) -> list[str]:
        """Non-blank lines of the segment."""
        return [line for line in self.text.split("\n") if line != ""]


@dataclass(frozen=True)
class DiffStats:
    additions: int
    deletions: int


def compute_diff(old: str, new: str) -> list[DiffSegment]:
    """Diff two texts line by line.

    Consecutive lines of the same kind are merged into one segment.
    Removed lines precede added lines within a replaced block.
    """
    old_lines = old.splitlines(keepends=True)
    new_lines = new.splitlines(keepends=True)
    matcher = difflib.SequenceMatcher(a=old_lines, b=new_lines, autojunk=False)

    segments: list[DiffSegment] = []

    def emit(lines: list[str], kind: SegmentKind) -> None:
        if not lines:
            return
        text = "".join(lines)
        if segments and segments[-1].kind == kind:
            segments[-1] = DiffSegment(segments[-1].text + text, kind)
        else:
            segments.append(DiffSegment(text, kind))

    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            emit(old_lines[i1:i2], "unchanged")
            continue
        if tag in ("replace", "delete"):
            emit(old_lines[i1:i2], "removed")
        if tag in ("replace", "insert"):
            emit(new_lines[j1:j2], "added")

    return segments


def diff_stats(old: str, new: str) -> DiffStats:
    """Count non-blank added and removed lines.

    A change that touches only blank lines still reports the raw line
    counts, so stats are zero exactly when the texts are equal.
    """
    segments = compute_diff(old, new)
    additions = sum(len(s.lines) for s in segments if s.kind == "added")
    deletions = sum(len(s.lines) for s in segments if s.kind == "removed")
    if additions == 0 and deletions == 0 and old != new:
        additions = sum(len(s.text.splitlines()) for s in segments if s.kind == "added")
        deletions = sum(len(s.text.splitlines()) for s in segments if s.kind == "removed")
    return DiffStats(additions=additions, deletions=deletions)


def format_diff(segments: list[DiffSegment]) -> str:
    """Render segments with ``+``/``-``/`` `` line prefixes."""
    prefixes = {"added": "+", "removed": "-", "unchanged": " "}
    out = []
    for segment in segments:
        prefix = prefixes[segment.kind]
        out.extend(f"{prefix} {line}" for line in segment.lines)
    return "\n".join(out)
