"""Workspace store — the shared blob of files every agent edits.

Two backends share one async interface:

- LocalWorkspaceStore:  files under a root directory on disk
- MemoryWorkspaceStore: a dict, for tests and throwaway runs

Paths crossing this boundary may be in display form (``./app/x.ts``) or
carry a ``workspace/`` prefix; both backends validate and canonicalize
them before touching storage. Writers are not coordinated: the last write
to a path wins.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Protocol

from arena.errors import NotFoundError, StoreError, ValidationError
from arena.schemas import FileEntry
from arena.validation import sanitize_file_content, validate_file_path

logger = logging.getLogger(__name__)

MAX_SEARCH_RESULTS = 50


class WorkspaceStore(Protocol):
    async def read(self, path: str) -> str | None: ...

    async def write(self, path: str, content: str) -> None: ...

    async def delete(self, path: str) -> None: ...

    async def exists(self, path: str) -> bool: ...

    async def list(self, dir_path: str = "") -> list[FileEntry]: ...

    async def list_all(self) -> list[FileEntry]: ...

    async def make_dir(self, dir_path: str) -> None: ...

    async def clear(self) -> None: ...

    async def search(self, query: str) -> list[FileEntry]: ...


def _sort_entries(entries: list[FileEntry]) -> list[FileEntry]:
    """Directories first, then files; alphabetical within each group."""
    return sorted(entries, key=lambda e: (e.type != "directory", e.name.lower()))


def rank_search(entries: list[FileEntry], query: str) -> list[FileEntry]:
    """Filter entries by case-insensitive substring, exact matches first."""
    q = query.lower()
    if q:
        entries = [e for e in entries if q in e.name.lower() or q in e.path.lower()]

    def key(e: FileEntry) -> tuple[bool, str]:
        exact = e.name.lower() == q or e.path.lower() == q
        return (not exact, e.name.lower())

    return sorted(entries, key=key)[:MAX_SEARCH_RESULTS]


# ---------------------------------------------------------------------------
# Filesystem backend
# ---------------------------------------------------------------------------


class LocalWorkspaceStore:
    """Workspace rooted at a directory. Blocking I/O runs in a worker thread."""

    def __init__(self, root: str | Path, max_file_size: int = 10 * 1024 * 1024):
        self.root = Path(root).resolve()
        self.max_file_size = max_file_size
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> tuple[str, Path]:
        rel = validate_file_path(path) if path not in ("", ".", "./") else ""
        full = (self.root / rel).resolve()
        if full != self.root and self.root not in full.parents:
            raise ValidationError("Path traversal detected", details={"attemptedPath": path})
        return rel, full

    async def read(self, path: str) -> str | None:
        rel, full = self._resolve(path)

        def _read() -> str | None:
            if not full.is_file():
                return None
            size = full.stat().st_size
            if size > self.max_file_size:
                logger.warning(f"File too large to read: path={rel}, size={size}")
                return None
            return full.read_text(encoding="utf-8")

        try:
            return await asyncio.to_thread(_read)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Error reading file: path={rel}, error={e}")
            return None

    async def write(self, path: str, content: str) -> None:
        rel, full = self._resolve(path)
        if not rel:
            raise ValidationError("Cannot write to the workspace root")
        sanitized = sanitize_file_content(content, self.max_file_size)

        def _write() -> None:
            full.parent.mkdir(parents=True, exist_ok=True)
            full.write_text(sanitized, encoding="utf-8")

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            logger.error(f"Error writing file: path={rel}, error={e}")
            raise StoreError(f"Failed to write file: {e}") from e
        logger.info(f"File written: path={rel}, size={len(sanitized)}")

    async def delete(self, path: str) -> None:
        rel, full = self._resolve(path)
        try:
            await asyncio.to_thread(full.unlink, missing_ok=True)
        except OSError as e:
            logger.error(f"Error deleting file: path={rel}, error={e}")
            raise StoreError(f"Failed to delete file: {e}") from e
        logger.info(f"File deleted: path={rel}")

    async def exists(self, path: str) -> bool:
        _, full = self._resolve(path)
        return await asyncio.to_thread(full.is_file)

    async def make_dir(self, dir_path: str) -> None:
        rel, full = self._resolve(dir_path)
        try:
            await asyncio.to_thread(full.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Failed to create directory: {e}") from e
        logger.info(f"Directory created: path={rel}")

    async def list(self, dir_path: str = "") -> list[FileEntry]:
        rel, full = self._resolve(dir_path)
        if not full.is_dir():
            raise NotFoundError("Directory")

        def _list() -> list[FileEntry]:
            entries = []
            for child in full.iterdir():
                child_rel = f"{rel}/{child.name}" if rel else child.name
                entries.append(
                    FileEntry(
                        name=child.name,
                        path=child_rel,
                        type="directory" if child.is_dir() else "file",
                    )
                )
            return entries

        return _sort_entries(await asyncio.to_thread(_list))

    async def list_all(self) -> list[FileEntry]:
        def _walk() -> list[FileEntry]:
            return [
                FileEntry(name=p.name, path=p.relative_to(self.root).as_posix())
                for p in self.root.rglob("*")
                if p.is_file()
            ]

        return await asyncio.to_thread(_walk)

    async def clear(self) -> None:
        def _clear() -> int:
            count = 0
            for child in self.root.iterdir():
                if child.is_dir():
                    shutil.rmtree(child)
                else:
                    child.unlink()
                count += 1
            return count

        try:
            count = await asyncio.to_thread(_clear)
        except OSError as e:
            raise StoreError(f"Failed to clear workspace: {e}") from e
        logger.info(f"Workspace cleared: entries={count}")

    async def search(self, query: str) -> list[FileEntry]:
        return rank_search(await self.list_all(), query)


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class MemoryWorkspaceStore:
    """Dict-backed workspace. Directories exist implicitly through file paths."""

    def __init__(self, files: dict[str, str] | None = None, max_file_size: int = 10 * 1024 * 1024):
        self.max_file_size = max_file_size
        self.files: dict[str, str] = {}
        self._dirs: set[str] = set()
        for path, content in (files or {}).items():
            self.files[validate_file_path(path)] = content

    async def read(self, path: str) -> str | None:
        return self.files.get(validate_file_path(path))

    async def write(self, path: str, content: str) -> None:
        rel = validate_file_path(path)
        if not rel:
            raise ValidationError("Cannot write to the workspace root")
        self.files[rel] = sanitize_file_content(content, self.max_file_size)
        logger.debug(f"File written: path={rel}, size={len(content)}")

    async def delete(self, path: str) -> None:
        self.files.pop(validate_file_path(path), None)

    async def exists(self, path: str) -> bool:
        return validate_file_path(path) in self.files

    async def make_dir(self, dir_path: str) -> None:
        self._dirs.add(validate_file_path(dir_path))

    async def list(self, dir_path: str = "") -> list[FileEntry]:
        rel = validate_file_path(dir_path) if dir_path not in ("", ".", "./") else ""
        prefix = f"{rel}/" if rel else ""
        seen: dict[str, FileEntry] = {}
        for path in [*self.files, *(d for d in self._dirs)]:
            if not path.startswith(prefix) or path == rel:
                continue
            parts = path[len(prefix):].split("/")
            name = parts[0]
            is_dir = len(parts) > 1 or path in self._dirs
            full = f"{prefix}{name}"
            if full not in seen or is_dir:
                seen[full] = FileEntry(
                    name=name, path=full, type="directory" if is_dir else "file"
                )
        if rel and not seen and rel not in self._dirs:
            raise NotFoundError("Directory")
        return _sort_entries(list(seen.values()))

    async def list_all(self) -> list[FileEntry]:
        return [FileEntry(name=p.rsplit("/", 1)[-1], path=p) for p in self.files]

    async def clear(self) -> None:
        self.files.clear()
        self._dirs.clear()

    async def search(self, query: str) -> list[FileEntry]:
        return rank_search(await self.list_all(), query)


def build_store(backend: str, root: str, max_file_size: int) -> WorkspaceStore:
    match backend:
        case "local":
            return LocalWorkspaceStore(root, max_file_size=max_file_size)
        case "memory":
            return MemoryWorkspaceStore(max_file_size=max_file_size)
        case _:
            raise ValueError(f"Unknown workspace backend: {backend}")
