"""Upstream gateway client — streams chat completions over httpx.

The gateway is any OpenAI-compatible ``/chat/completions`` endpoint
(OpenRouter by default). Its response is an SSE stream whose JSON payloads
carry text deltas at ``choices[0].delta.content``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import httpx

from arena.errors import ExternalServiceError, GatewayTimeoutError
from arena.sse import SSEDecoder

if TYPE_CHECKING:
    from arena.agents.registry import ResolvedAgent
    from arena.config import GatewayConfig

logger = logging.getLogger(__name__)

SERVICE_NAME = "gateway"


def build_messages(
    agent: ResolvedAgent, prompt: str, images: list[str] | None = None
) -> list[dict[str, Any]]:
    """System prompt + user prompt. Images (data URLs) make the user
    message multi-part."""
    user_content: str | list[dict[str, Any]] = prompt
    if images:
        user_content = [{"type": "text", "text": prompt}] + [
            {"type": "image_url", "image_url": {"url": url}} for url in images
        ]
    return [
        {"role": "system", "content": agent.system_prompt},
        {"role": "user", "content": user_content},
    ]


def _extract_delta(payload: str) -> str | None:
    """Pull ``choices[0].delta.content`` out of one gateway payload."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse gateway stream chunk: data={payload[:100]!r}, error={e}")
        return None
    try:
        content = data["choices"][0]["delta"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None
    return content if isinstance(content, str) and content else None


def _error_message(status_code: int, reason: str, body: str) -> str:
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return body or f"Gateway error: {status_code} {reason}"
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if data.get("message"):
            return str(data["message"])
    return body


class GatewayClient:
    """Thin wrapper over a shared ``httpx.AsyncClient``."""

    def __init__(self, client: httpx.AsyncClient, config: GatewayConfig):
        self._client = client
        self._config = config

    @asynccontextmanager
    async def open_completion(
        self, agent: ResolvedAgent, messages: list[dict[str, Any]]
    ) -> AsyncIterator[AsyncIterator[str]]:
        """Send the request and enter once the gateway accepted it.

        The yielded iterator produces text deltas until ``[DONE]`` or EOF.
        Raises GatewayTimeoutError if connecting or any read exceeds the
        configured timeout, ExternalServiceError for every other failure,
        including an error status. Malformed payload lines are logged and
        skipped.
        """
        api_key = self._config.api_key
        if not api_key:
            raise ExternalServiceError(
                f"{self._config.api_key_env} is not configured", SERVICE_NAME
            )

        body = {
            "model": agent.model,
            "messages": messages,
            "stream": True,
            "max_tokens": self._config.max_tokens,
            "temperature": agent.temperature,
        }
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self._config.referer,
            "X-Title": self._config.title,
        }
        logger.debug(
            f"Calling gateway: agent={agent.id}, model={agent.model}, "
            f"temperature={agent.temperature}, messages={len(messages)}"
        )

        try:
            async with self._client.stream(
                "POST",
                self._config.url,
                json=body,
                headers=headers,
                timeout=self._config.timeout_seconds,
            ) as response:
                if response.status_code >= 400:
                    raw = (await response.aread()).decode("utf-8", errors="replace")
                    message = _error_message(
                        response.status_code, response.reason_phrase, raw
                    )
                    logger.error(
                        f"Gateway error: agent={agent.id}, model={agent.model}, "
                        f"status={response.status_code}, message={message[:200]}"
                    )
                    raise ExternalServiceError(message, SERVICE_NAME)

                logger.info(f"Gateway call successful: agent={agent.id}, model={agent.model}")
                yield self._deltas(response)
        except httpx.TimeoutException as e:
            raise GatewayTimeoutError("Gateway request", self._config.timeout_seconds) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(str(e) or type(e).__name__, SERVICE_NAME) from e

    @staticmethod
    async def _deltas(response: httpx.Response) -> AsyncGenerator[str, None]:
        decoder = SSEDecoder()
        async for chunk in response.aiter_bytes():
            for payload in decoder.feed(chunk):
                if payload == SSEDecoder.DONE:
                    return
                delta = _extract_delta(payload)
                if delta:
                    yield delta
        for payload in decoder.flush():
            if payload == SSEDecoder.DONE:
                return
            delta = _extract_delta(payload)
            if delta:
                yield delta

    async def stream_completion(
        self, agent: ResolvedAgent, messages: list[dict[str, Any]]
    ) -> AsyncGenerator[str, None]:
        """Yield text deltas; errors as for :meth:`open_completion`."""
        async with self.open_completion(agent, messages) as deltas:
            async for delta in deltas:
                yield delta
