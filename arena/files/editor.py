"""Editor session — debounced auto-save of one workspace file.

Each ``update`` replaces the buffer and restarts the timer; the content is
written once edits have been quiet for ``delay`` seconds. Leaving the
session always flushes pending content::

    async with EditorSession.from_config(store, "app/x.ts", get_config()) as editor:
        editor.update("print('a')")
        editor.update("print('ab')")
    # "print('ab')" is on disk here
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Literal

from arena.errors import AppError, StoreError

if TYPE_CHECKING:
    from arena.config import ArenaConfig
    from arena.files.store import WorkspaceStore

logger = logging.getLogger(__name__)

SaveStatus = Literal["unsaved", "saving", "saved"]


class EditorSession:
    def __init__(self, store: WorkspaceStore, path: str, delay: float = 1.0):
        self.store = store
        self.path = path
        self.delay = delay
        self.content: str | None = None
        self.save_status: SaveStatus | None = None
        self.last_error: str | None = None
        self._pending = False
        self._timer: asyncio.TimerHandle | None = None
        self._save_task: asyncio.Task | None = None

    @classmethod
    def from_config(cls, store: WorkspaceStore, path: str, config: ArenaConfig) -> EditorSession:
        return cls(store, path, delay=config.editor.autosave_delay)

    async def __aenter__(self) -> EditorSession:
        self.content = await self.store.read(self.path)
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.flush()

    def update(self, content: str) -> None:
        """Replace the buffer and restart the debounce timer."""
        self.content = content
        self._pending = True
        self.save_status = "unsaved"
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.delay, self._fire)

    def _fire(self) -> None:
        self._timer = None
        self._save_task = asyncio.ensure_future(self._save())

    async def flush(self) -> None:
        """Cancel the timer and write pending content now.

        Raises StoreError if the content could not be written.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._save_task is not None and not self._save_task.done():
            await self._save_task
        if self._pending:
            await self._save()
            if self._pending:
                raise StoreError(f"Failed to save {self.path}: {self.last_error}")

    async def _save(self) -> None:
        if not self._pending or self.content is None:
            return
        content = self.content
        self._pending = False
        self.save_status = "saving"
        try:
            await self.store.write(self.path, content)
        except AppError as e:
            logger.error(f"Failed to save file: path={self.path}, error={e.message}")
            self.last_error = e.message
            self.save_status = "unsaved"
            self._pending = True
            return
        self.last_error = None
        # A newer update may have landed while the write was in flight
        self.save_status = "unsaved" if self._pending else "saved"
        logger.debug(f"Auto-saved file: path={self.path}, size={len(content)}")
