"""Conversation/diff state — the authoritative per-agent state.

One writer: every change goes through :func:`reduce`, which takes the
current :class:`ArenaState` and one event and returns a new state. Only
the slice of the agent an event concerns is replaced; other agents' slices
are carried over untouched, so interleaved updates from concurrent
sessions never clobber each other.

Events are the four downstream frames plus client-side commands:

    SubmitPrompt      — open a streaming turn per selected agent
    PauseAgents       — stop streaming agents ("Paused by user")
    TransportFailed   — a session's transport broke or timed out
    ConnectionChanged — latest transport-level connectivity signal
    MarkDiff          — pending diff → applied | rejected
    ClearHistory      — drop every turn and diff

Frames whose request id is not the active one are discarded, which keeps
trailing frames of a cancelled session from touching newer turns.
"""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Literal, Union

from arena.errors import NotFoundError, ValidationError
from arena.files.diffing import diff_stats
from arena.schemas import (
    AGENT_IDS,
    Action,
    ActionFrame,
    AgentId,
    ConversationTurn,
    DoneFrame,
    ErrorFrame,
    FileDiff,
    StatusFrame,
)
from arena.validation import workspace_path

logger = logging.getLogger(__name__)

AgentPhase = Literal["idle", "streaming", "completed", "error", "paused"]
PAUSED_MESSAGE = "Paused by user"


def turn_id(request_id: str, agent_id: AgentId) -> str:
    return f"{request_id}-{agent_id}"


# ---------------------------------------------------------------------------
# State records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AgentState:
    conversations: tuple[ConversationTurn, ...] = ()
    file_diffs: tuple[FileDiff, ...] = ()
    phase: AgentPhase = "idle"
    current_error: str | None = None

    def turn(self, tid: str) -> ConversationTurn | None:
        for turn in self.conversations:
            if turn.id == tid:
                return turn
        return None

    def diff_for(self, file_path: str) -> FileDiff | None:
        key = workspace_path(file_path)
        for diff in self.file_diffs:
            if workspace_path(diff.file_path) == key:
                return diff
        return None

    @property
    def pending_diffs(self) -> list[FileDiff]:
        return [d for d in self.file_diffs if d.status == "pending"]


@dataclass(frozen=True)
class ArenaState:
    agents: dict[AgentId, AgentState]
    active_request_id: str | None = None
    selected_agents: tuple[AgentId, ...] = ()
    loading: bool = False
    connected: bool = True
    paused: bool = False

    @classmethod
    def initial(cls, agent_ids: tuple[AgentId, ...] = AGENT_IDS) -> ArenaState:
        return cls(agents={agent_id: AgentState() for agent_id in agent_ids})

    def all_done(self) -> bool:
        """True once every agent of the active request has finished."""
        return bool(self.selected_agents) and all(
            self.agents[a].phase in ("completed", "error") for a in self.selected_agents
        )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubmitPrompt:
    request_id: str
    prompt: str
    agents: tuple[AgentId, ...] = AGENT_IDS
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))


@dataclass(frozen=True)
class PauseAgents:
    agents: tuple[AgentId, ...]


@dataclass(frozen=True)
class TransportFailed:
    agent_id: AgentId
    request_id: str
    message: str
    code: str | None = None
    network: bool = False


@dataclass(frozen=True)
class ConnectionChanged:
    connected: bool


@dataclass(frozen=True)
class MarkDiff:
    agent_id: AgentId
    file_path: str
    status: Literal["applied", "rejected"]


@dataclass(frozen=True)
class ClearHistory:
    pass


Frame = Union[StatusFrame, ActionFrame, ErrorFrame, DoneFrame]
Event = Union[
    StatusFrame, ActionFrame, ErrorFrame, DoneFrame,
    SubmitPrompt, PauseAgents, TransportFailed, ConnectionChanged, MarkDiff, ClearHistory,
]


# ---------------------------------------------------------------------------
# Slice helpers
# ---------------------------------------------------------------------------


def _with_agent(state: ArenaState, agent_id: AgentId, slice_: AgentState) -> ArenaState:
    agents = dict(state.agents)
    agents[agent_id] = slice_
    return replace(state, agents=agents)


def _update_turn(agent: AgentState, tid: str, **changes) -> AgentState:
    conversations = tuple(
        turn.model_copy(update=changes) if turn.id == tid else turn
        for turn in agent.conversations
    )
    return replace(agent, conversations=conversations)


def upsert_action(actions: list[Action], action: Action) -> list[Action]:
    """Replace the action with the same id in place, or append it."""
    for index, existing in enumerate(actions):
        if existing.id == action.id:
            updated = list(actions)
            updated[index] = action
            return updated
    return [*actions, action]


def materialize_diff(action: Action, agent_id: AgentId) -> FileDiff | None:
    """Build a pending FileDiff from a file_edit action carrying both contents."""
    meta = action.metadata
    if action.type != "file_edit" or meta is None:
        return None
    if meta.old_content is None or meta.new_content is None:
        return None
    stats = diff_stats(meta.old_content, meta.new_content)
    return FileDiff(
        file_path=meta.file_path or meta.file_name or "unknown",
        old_content=meta.old_content,
        new_content=meta.new_content,
        additions=stats.additions,
        deletions=stats.deletions,
        status="pending",
        agent_id=agent_id,
    )


def upsert_diff(diffs: tuple[FileDiff, ...], diff: FileDiff) -> tuple[FileDiff, ...]:
    """Overwrite the diff for the same canonical path, or append."""
    key = workspace_path(diff.file_path)
    for index, existing in enumerate(diffs):
        if workspace_path(existing.file_path) == key:
            return diffs[:index] + (diff,) + diffs[index + 1:]
    return diffs + (diff,)


# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------


def _reduce_frame(state: ArenaState, frame: Frame) -> ArenaState:
    if frame.request_id != state.active_request_id:
        logger.debug(
            f"Discarding stale frame: type={frame.type}, agent={frame.agent_id}, "
            f"request={frame.request_id}, active={state.active_request_id}"
        )
        return state

    agent_id = frame.agent_id
    agent = state.agents.get(agent_id)
    if agent is None:
        logger.error(f"No agent state found for agent={agent_id}")
        return state

    tid = turn_id(frame.request_id, agent_id)
    turn = agent.turn(tid)
    if turn is None:
        logger.error(f"Conversation not found: agent={agent_id}, expected={tid}")
        return state
    if turn.status == "paused":
        return state

    match frame:
        case StatusFrame(status=status):
            agent = _update_turn(agent, tid, status=status, error=None)
            agent = replace(agent, phase=status)

        case ActionFrame(action=action):
            if action.agent_id != agent_id:
                logger.error(
                    f"Action agent mismatch: frame agent={agent_id}, "
                    f"action agent={action.agent_id}; dropping frame"
                )
                return state
            agent = _update_turn(agent, tid, actions=upsert_action(turn.actions, action))
            diff = materialize_diff(action, agent_id)
            if diff is not None:
                agent = replace(agent, file_diffs=upsert_diff(agent.file_diffs, diff))

        case ErrorFrame(error=error):
            agent = _update_turn(agent, tid, status="error", error=error)
            agent = replace(agent, phase="error", current_error=error)

        case DoneFrame():
            agent = _update_turn(agent, tid, status="completed")
            agent = replace(agent, phase="completed")

    return _with_agent(state, agent_id, agent)


def _reduce_submit(state: ArenaState, cmd: SubmitPrompt) -> ArenaState:
    agents = dict(state.agents)
    for offset, agent_id in enumerate(cmd.agents):
        agent = agents.get(agent_id, AgentState())
        tid = turn_id(cmd.request_id, agent_id)
        conversations = agent.conversations
        if agent.turn(tid) is None:
            conversations += (
                ConversationTurn(
                    id=tid,
                    prompt=cmd.prompt,
                    timestamp=cmd.timestamp + offset,
                    actions=[],
                    status="streaming",
                ),
            )
        agents[agent_id] = replace(
            agent, conversations=conversations, phase="streaming", current_error=None
        )
    return replace(
        state,
        agents=agents,
        active_request_id=cmd.request_id,
        selected_agents=tuple(cmd.agents),
        loading=True,
        paused=False,
    )


def _reduce_pause(state: ArenaState, cmd: PauseAgents) -> ArenaState:
    agents = dict(state.agents)
    for agent_id in cmd.agents:
        agent = agents.get(agent_id)
        if agent is None or agent.phase != "streaming":
            continue
        conversations = tuple(
            turn.model_copy(update={"status": "paused", "error": PAUSED_MESSAGE})
            if turn.status == "streaming"
            else turn
            for turn in agent.conversations
        )
        agents[agent_id] = replace(agent, conversations=conversations, phase="paused")
    return replace(state, agents=agents, loading=False, paused=True)


def _reduce_transport_failure(state: ArenaState, cmd: TransportFailed) -> ArenaState:
    if cmd.network and cmd.request_id == state.active_request_id:
        state = replace(state, connected=False)
    frame = ErrorFrame(
        agent_id=cmd.agent_id, request_id=cmd.request_id, error=cmd.message, code=cmd.code
    )
    return _reduce_frame(state, frame)


def _reduce_mark(state: ArenaState, cmd: MarkDiff) -> ArenaState:
    agent = state.agents.get(cmd.agent_id)
    diff = agent.diff_for(cmd.file_path) if agent else None
    if agent is None or diff is None:
        raise NotFoundError("Diff")
    if diff.status != "pending":
        raise ValidationError(
            f"Cannot mark a {diff.status} diff as {cmd.status}",
            details={"filePath": diff.file_path},
        )
    marked = diff.model_copy(update={"status": cmd.status})
    return _with_agent(
        state, cmd.agent_id, replace(agent, file_diffs=upsert_diff(agent.file_diffs, marked))
    )


def reduce(state: ArenaState, event: Event) -> ArenaState:
    """Apply one event. Returns ``state`` itself when nothing changes.

    Raises NotFoundError/ValidationError for MarkDiff commands that do not
    name a pending diff.
    """
    match event:
        case StatusFrame() | ActionFrame() | ErrorFrame() | DoneFrame():
            new = _reduce_frame(state, event)
        case TransportFailed():
            new = _reduce_transport_failure(state, event)
        case SubmitPrompt():
            return _reduce_submit(state, event)
        case PauseAgents():
            return _reduce_pause(state, event)
        case ConnectionChanged(connected=connected):
            return state if state.connected == connected else replace(state, connected=connected)
        case MarkDiff():
            return _reduce_mark(state, event)
        case ClearHistory():
            return ArenaState.initial(tuple(state.agents))
        case _:
            raise TypeError(f"Unknown event: {type(event).__name__}")

    if new is not state and new.loading and new.all_done():
        new = replace(new, loading=False)
    return new


# ---------------------------------------------------------------------------
# Holder
# ---------------------------------------------------------------------------


class StateMachine:
    """Owns the current ArenaState; the only place it is replaced."""

    def __init__(self, agent_ids: tuple[AgentId, ...] = AGENT_IDS):
        self._state = ArenaState.initial(agent_ids)
        self._listeners: list[Callable[[ArenaState], None]] = []

    @property
    def state(self) -> ArenaState:
        return self._state

    def snapshot(self) -> ArenaState:
        """A deep copy consumers may keep or mutate freely."""
        return copy.deepcopy(self._state)

    def dispatch(self, event: Event) -> bool:
        """Apply ``event``. Returns whether the state changed."""
        new = reduce(self._state, event)
        if new is self._state:
            return False
        self._state = new
        for listener in list(self._listeners):
            listener(new)
        return True

    def subscribe(self, listener: Callable[[ArenaState], None]) -> Callable[[], None]:
        """Call ``listener`` after every change. Returns an unsubscribe function."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)
