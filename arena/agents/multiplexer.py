"""Stream multiplexer — one cancellable streaming session per agent.

A prompt fans out to every selected agent as an independent POST to the
service's SSE endpoint. Each session is an asyncio task reading the
response body chunk by chunk, decoding frames and dispatching them, in
arrival order, into the shared :class:`StateMachine`. Sessions of
different agents are not ordered with respect to each other.

Starting a new prompt cancels an agent's previous session before the new
one is created. A cancelled session never dispatches again: the flag is
checked before every dispatch, and its buffered bytes are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

import httpx

from arena.agents.state import (
    ConnectionChanged,
    Event,
    PauseAgents,
    StateMachine,
    SubmitPrompt,
    TransportFailed,
)
from arena.errors import FrameDecodeError
from arena.runtime import now_ms, random_suffix
from arena.schemas import AGENT_IDS, AgentId, ErrorFrame
from arena.sse import SSEDecoder, parse_frame

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0


def new_request_id() -> str:
    return f"request-{now_ms()}-{random_suffix(9)}"


@dataclass
class StreamSession:
    agent_id: AgentId
    request_id: str
    task: asyncio.Task | None = field(default=None, repr=False)
    cancelled: bool = False

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()

    def cancel(self) -> None:
        self.cancelled = True
        if self.task is not None and not self.task.done():
            self.task.cancel()


class StreamMultiplexer:
    """Fan a prompt out to several agents and feed their frames to ``machine``.

    ``client`` is an ``httpx.AsyncClient`` whose base URL points at the
    service; ``url`` is the streaming endpoint relative to it.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        machine: StateMachine,
        url: str = "/agents/stream",
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._client = client
        self._machine = machine
        self._url = url
        self._timeout = timeout
        self._sessions: dict[AgentId, StreamSession] = {}

    async def __aenter__(self) -> StreamMultiplexer:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @property
    def sessions(self) -> Mapping[AgentId, StreamSession]:
        return MappingProxyType(self._sessions)

    # ── Commands ────────────────────────────────────────────────────────

    def submit(
        self,
        prompt: str,
        agents: tuple[AgentId, ...] = AGENT_IDS,
        images: list[str] | None = None,
    ) -> str:
        """Start one session per agent and return the new request id.

        Must be called from a running event loop.
        """
        request_id = new_request_id()
        for agent_id in agents:
            self._cancel(agent_id)

        self._machine.dispatch(SubmitPrompt(request_id=request_id, prompt=prompt, agents=tuple(agents)))

        for agent_id in agents:
            session = StreamSession(agent_id=agent_id, request_id=request_id)
            session.task = asyncio.create_task(
                self._run(session, prompt, images), name=f"stream-{agent_id}"
            )
            self._sessions[agent_id] = session

        logger.info(f"Submitted prompt: request={request_id}, agents={list(agents)}")
        return request_id

    def pause(self) -> list[AgentId]:
        """Cancel every live session and mark those agents paused."""
        paused = [a for a, s in self._sessions.items() if not s.cancelled and not s.done]
        for agent_id in paused:
            self._cancel(agent_id)
        self._machine.dispatch(PauseAgents(agents=tuple(paused)))
        logger.info(f"Paused agents: {paused}")
        return paused

    async def wait(self) -> None:
        """Wait for every live session to finish."""
        tasks = [s.task for s in self._sessions.values() if s.task is not None]
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                raise result

    async def aclose(self) -> None:
        """Cancel all sessions and wait for their tasks to unwind."""
        tasks = [s.task for s in self._sessions.values() if s.task is not None]
        for agent_id in list(self._sessions):
            self._cancel(agent_id)
        await asyncio.gather(*tasks, return_exceptions=True)

    # ── Session internals ───────────────────────────────────────────────

    def _cancel(self, agent_id: AgentId) -> None:
        session = self._sessions.pop(agent_id, None)
        if session is not None:
            logger.debug(f"Cancelling session: agent={agent_id}, request={session.request_id}")
            session.cancel()

    def _dispatch(self, session: StreamSession, event: Event) -> bool:
        if session.cancelled:
            return False
        return self._machine.dispatch(event)

    def _handle_payload(self, session: StreamSession, payload: str) -> None:
        if payload == SSEDecoder.DONE:
            return
        try:
            frame = parse_frame(payload)
        except FrameDecodeError as e:
            logger.warning(f"Skipping malformed frame: agent={session.agent_id}, {e.message}")
            return
        if frame.agent_id != session.agent_id:
            logger.warning(
                f"Ignoring frame for wrong agent: expected={session.agent_id}, "
                f"got={frame.agent_id}"
            )
            return
        if frame.request_id != session.request_id:
            logger.debug(f"Ignoring frame for old request: agent={session.agent_id}")
            return
        self._dispatch(session, frame)

    def _fail(
        self, session: StreamSession, message: str, code: str, network: bool = False
    ) -> None:
        logger.error(
            f"Stream failed: agent={session.agent_id}, request={session.request_id}, "
            f"code={code}, error={message}"
        )
        self._dispatch(
            session,
            TransportFailed(
                agent_id=session.agent_id,
                request_id=session.request_id,
                message=message,
                code=code,
                network=network,
            ),
        )

    @staticmethod
    def _http_error(status_code: int, body: bytes) -> tuple[str, str]:
        """Message and code of a non-2xx response (an SSE error frame when
        the service produced one)."""
        decoder = SSEDecoder()
        for payload in decoder.feed(body) + decoder.flush():
            try:
                frame = parse_frame(payload)
            except FrameDecodeError:
                continue
            if isinstance(frame, ErrorFrame):
                return frame.error, frame.code or "HTTP_ERROR"
        return f"HTTP error! status: {status_code}", "HTTP_ERROR"

    async def _run(
        self, session: StreamSession, prompt: str, images: list[str] | None
    ) -> None:
        body = {
            "agentId": session.agent_id,
            "prompt": prompt,
            "requestId": session.request_id,
        }
        if images:
            body["images"] = images

        decoder = SSEDecoder()
        try:
            async with self._client.stream(
                "POST", self._url, json=body, timeout=self._timeout
            ) as response:
                self._dispatch(session, ConnectionChanged(connected=True))

                if response.status_code >= 400:
                    message, code = self._http_error(
                        response.status_code, await response.aread()
                    )
                    self._fail(session, message, code)
                    return

                async for chunk in response.aiter_bytes():
                    if session.cancelled:
                        break
                    for payload in decoder.feed(chunk):
                        self._handle_payload(session, payload)

                if not session.cancelled:
                    for payload in decoder.flush():
                        self._handle_payload(session, payload)

        except httpx.TimeoutException:
            self._fail(
                session,
                f"Request timed out after {self._timeout:g}s. "
                "The selected model may not support this request.",
                "TIMEOUT_ERROR",
            )
        except httpx.TransportError as e:
            self._fail(session, str(e) or "Network error", "NETWORK_ERROR", network=True)
        except httpx.HTTPError as e:
            self._fail(session, str(e) or "Stream error occurred", "STREAM_ERROR")
        finally:
            decoder.reset()
            if self._sessions.get(session.agent_id) is session:
                del self._sessions[session.agent_id]
