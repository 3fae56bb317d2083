import asyncio
from collections import defaultdict
from typing import Any, Dict

from relay.models.events import BackendCompletion, Credential, TextEvent, UsageEvent
from relay.providers.base import BackendTransport, EventCallback
from relay.tokenizer import usage_for


def _last_user_content(request: Dict[str, Any]) -> str:
    for m in reversed(request.get("messages", [])):
        if m.get("role") == "user" and isinstance(m.get("content"), str):
            return m["content"]
    return ""


class MockBackend(BackendTransport):
    """Echo backend for local runs: streams the reply word by word."""

    name = "mock"

    def __init__(self, delay_seconds: float = 0.02, daily_requests: int = 1000) -> None:
        self.delay_seconds = delay_seconds
        self.daily_requests = daily_requests
        self.calls: Dict[str, int] = defaultdict(int)

    def _reply(self, request: Dict[str, Any]) -> str:
        return f"Mock response to: {_last_user_content(request)}"

    async def generate_streaming(
        self,
        request: Dict[str, Any],
        credential: Credential,
        on_event: EventCallback,
    ) -> None:
        self.calls[credential.credential_id] += 1
        reply = self._reply(request)

        words = reply.split(" ")
        for i, word in enumerate(words):
            await asyncio.sleep(self.delay_seconds)
            piece = word if i == len(words) - 1 else word + " "
            await on_event(TextEvent(content=piece))

        model = request.get("model", "gpt-4o")
        await on_event(UsageEvent(usage=usage_for(model, request.get("messages", []), reply)))

    async def generate_once(
        self,
        request: Dict[str, Any],
        credential: Credential,
    ) -> BackendCompletion:
        self.calls[credential.credential_id] += 1
        await asyncio.sleep(self.delay_seconds)

        reply = self._reply(request)
        model = request.get("model", "gpt-4o")
        if "IMAGE" in request.get("response_modalities", []):
            reply = f"![image](https://example.invalid/{credential.credential_id}.png)"

        return BackendCompletion(
            content=reply,
            usage=usage_for(model, request.get("messages", []), reply),
        )

    async def fetch_quotas(self, credential: Credential) -> Dict[str, Any]:
        used = self.calls[credential.credential_id]
        return {"remaining_requests": max(0, self.daily_requests - used)}
