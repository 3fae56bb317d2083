import json
import logging
from typing import Any, Dict

import httpx

from relay.models.errors import BackendError, RateLimited
from relay.models.events import (
    BackendCompletion,
    Credential,
    ReasoningEvent,
    TextEvent,
    ToolCallsEvent,
    UsageEvent,
)
from relay.providers.base import BackendTransport, EventCallback

logger = logging.getLogger("relay.backend")

_RATE_LIMIT_HEADERS = (
    "x-ratelimit-limit-requests",
    "x-ratelimit-remaining-requests",
    "x-ratelimit-reset-requests",
    "x-ratelimit-limit-tokens",
    "x-ratelimit-remaining-tokens",
    "x-ratelimit-reset-tokens",
)


class OpenAICompatBackend(BackendTransport):
    """Backend transport for any OpenAI-compatible chat completions API."""

    name = "openai"

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 600.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_s, connect=10.0),
            transport=transport,
        )
        # last rate-limit headers seen per credential id
        self.rate_limits: Dict[str, Dict[str, str]] = {}

    async def aclose(self) -> None:
        await self.client.aclose()

    def _headers(self, credential: Credential) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {credential.access_token}",
            "Content-Type": "application/json",
        }

    async def generate_streaming(
        self,
        request: Dict[str, Any],
        credential: Credential,
        on_event: EventCallback,
    ) -> None:
        payload = {**request, "stream": True, "stream_options": {"include_usage": True}}

        async with self.client.stream(
            "POST",
            "/chat/completions",
            headers=self._headers(credential),
            json=payload,
        ) as response:
            self._remember_limits(credential, response)
            if response.status_code >= 400:
                body = await response.aread()
                raise _upstream_error(response.status_code, body.decode() or response.reason_phrase)

            async for line in response.aiter_lines():
                line = line.strip()
                if not line.startswith("data:"):
                    continue

                data_str = line[len("data:"):].strip()
                if data_str == "[DONE]":
                    return

                try:
                    chunk = json.loads(data_str)
                except json.JSONDecodeError:
                    logger.debug("Skipping non-JSON streaming chunk: %s", data_str)
                    continue

                for event in _events_from_chunk(chunk):
                    await on_event(event)

    async def generate_once(
        self,
        request: Dict[str, Any],
        credential: Credential,
    ) -> BackendCompletion:
        response = await self.client.post(
            "/chat/completions",
            headers=self._headers(credential),
            json={**request, "stream": False},
        )
        self._remember_limits(credential, response)
        if response.status_code >= 400:
            raise _upstream_error(response.status_code, response.text or response.reason_phrase)

        data = response.json()
        choices = data.get("choices") or [{}]
        message = choices[0].get("message") or {}

        return BackendCompletion(
            content=message.get("content") or "",
            reasoning_content=message.get("reasoning_content") or "",
            reasoning_signature=message.get("thoughtSignature"),
            tool_calls=message.get("tool_calls") or [],
            usage=data.get("usage"),
        )

    async def fetch_quotas(self, credential: Credential) -> Dict[str, Any]:
        return dict(self.rate_limits.get(credential.credential_id, {}))

    def _remember_limits(self, credential: Credential, response: httpx.Response) -> None:
        limits = {
            name: response.headers[name]
            for name in _RATE_LIMIT_HEADERS
            if name in response.headers
        }
        if limits:
            self.rate_limits[credential.credential_id] = limits


def _upstream_error(status_code: int, message: str) -> BackendError:
    if status_code == 429:
        return RateLimited(message)
    return BackendError(message, status_code=status_code)


def _events_from_chunk(chunk: Dict[str, Any]):
    choices = chunk.get("choices") or []
    delta = choices[0].get("delta", {}) if choices else {}

    reasoning = delta.get("reasoning_content")
    if reasoning:
        yield ReasoningEvent(
            reasoning_content=reasoning,
            signature=delta.get("thoughtSignature"),
        )

    tool_calls = delta.get("tool_calls")
    if tool_calls:
        yield ToolCallsEvent(tool_calls=tool_calls)

    content = delta.get("content")
    if content:
        yield TextEvent(content=content)

    if chunk.get("usage"):
        yield UsageEvent(usage=chunk["usage"])
