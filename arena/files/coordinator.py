"""Apply/undo coordinator — commits or reverts a proposed diff.

Store I/O happens first; the diff's status flips only after the store
confirmed the write or delete. A failing store leaves the diff pending and
raises StoreError.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from arena.agents.state import MarkDiff
from arena.errors import AppError, NotFoundError, StoreError, ValidationError
from arena.validation import workspace_path

if TYPE_CHECKING:
    from arena.agents.state import StateMachine
    from arena.config import ArenaConfig
    from arena.files.store import WorkspaceStore
    from arena.schemas import FileDiff

logger = logging.getLogger(__name__)


class DiffCoordinator:
    """``on_applied`` (optional) is awaited ``refresh_delay`` seconds after a
    successful apply, so a file viewer can reload the written path."""

    def __init__(
        self,
        store: WorkspaceStore,
        machine: StateMachine,
        on_applied: Callable[[str], Awaitable[None]] | None = None,
        refresh_delay: float = 0.1,
    ):
        self._store = store
        self._machine = machine
        self._on_applied = on_applied
        self._refresh_delay = refresh_delay

    @classmethod
    def from_config(
        cls,
        store: WorkspaceStore,
        machine: StateMachine,
        config: ArenaConfig,
        on_applied: Callable[[str], Awaitable[None]] | None = None,
    ) -> DiffCoordinator:
        return cls(store, machine, on_applied, refresh_delay=config.editor.refresh_delay)

    def _target(self, diff: FileDiff) -> tuple[str, FileDiff]:
        """Canonical path and the tracked copy of ``diff``, which must be pending."""
        if diff.agent_id is None:
            raise ValidationError("Diff has no agent", details={"filePath": diff.file_path})
        path = workspace_path(diff.file_path)
        if not path:
            raise ValidationError("Diff has no file path")

        agent = self._machine.state.agents.get(diff.agent_id)
        tracked = agent.diff_for(diff.file_path) if agent else None
        if tracked is None:
            raise NotFoundError("Diff")
        if tracked.status != "pending":
            raise ValidationError(
                f"Diff is already {tracked.status}", details={"filePath": diff.file_path}
            )
        return path, tracked

    async def apply(self, diff: FileDiff) -> None:
        """Write ``new_content`` to the store, then mark the diff applied."""
        path, diff = self._target(diff)
        try:
            await self._store.write(path, diff.new_content)
        except ValidationError:
            raise
        except AppError as e:
            logger.error(f"Failed to apply changes: path={path}, error={e.message}")
            raise StoreError(f"Failed to apply changes: {e.message}") from e
        except OSError as e:
            logger.error(f"Failed to apply changes: path={path}, error={e}")
            raise StoreError(f"Failed to apply changes: {e}") from e

        self._machine.dispatch(
            MarkDiff(agent_id=diff.agent_id, file_path=diff.file_path, status="applied")
        )
        logger.info(f"File changes applied: path={path}, agent={diff.agent_id}")

        if self._on_applied is not None:
            await asyncio.sleep(self._refresh_delay)
            await self._on_applied(path)

    async def undo(self, diff: FileDiff) -> None:
        """Restore ``old_content``, or delete the file when there was none,
        then mark the diff rejected."""
        path, diff = self._target(diff)
        try:
            if not diff.old_content.strip():
                await self._store.delete(path)
            else:
                await self._store.write(path, diff.old_content)
        except ValidationError:
            raise
        except AppError as e:
            logger.error(f"Failed to undo changes: path={path}, error={e.message}")
            raise StoreError(f"Failed to undo changes: {e.message}") from e
        except OSError as e:
            logger.error(f"Failed to undo changes: path={path}, error={e}")
            raise StoreError(f"Failed to undo changes: {e}") from e

        self._machine.dispatch(
            MarkDiff(agent_id=diff.agent_id, file_path=diff.file_path, status="rejected")
        )
        logger.info(f"File changes reverted: path={path}, agent={diff.agent_id}")
