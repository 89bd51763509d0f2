import pytest

from arena.agents.state import StateMachine, SubmitPrompt
from arena.config import ArenaConfig
from arena.files.store import MemoryWorkspaceStore
from arena.schemas import Action, ActionFrame, ActionMetadata


@pytest.fixture
def config():
    return ArenaConfig()


@pytest.fixture
def store():
    return MemoryWorkspaceStore()


@pytest.fixture
def machine():
    return StateMachine()


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setenv("OPENROUTER_API_KEY", "test-key")
    return "test-key"


@pytest.fixture
def file_edit_frame():
    """Factory for an action frame proposing ``new`` for ``path``."""

    def make(path, old, new, agent_id="claude", request_id="r1", action_id=None):
        return ActionFrame(
            agent_id=agent_id,
            request_id=request_id,
            action=Action(
                id=action_id or f"edit-{path}-{new}",
                agent_id=agent_id,
                type="file_edit",
                timestamp=1,
                content=f"Edit file: {path}",
                metadata=ActionMetadata(
                    file_name=path, file_path=path, old_content=old, new_content=new
                ),
            ),
        )

    return make


@pytest.fixture
def submitted(machine):
    """A machine with request ``r1`` open for claude."""
    machine.dispatch(SubmitPrompt(request_id="r1", prompt="hi", agents=("claude",), timestamp=1000))
    return machine
