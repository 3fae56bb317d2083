from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import pytest

from relay.gateway.channel import ResponseChannel
from relay.gateway.handler import ChatCompletionsHandler, HandlerOptions
from relay.models.errors import RateLimited, StreamWriteFailure
from relay.models.events import BackendCompletion, Credential
from relay.models.openai_compat import ChatCompletionRequest
from relay.observability.metrics import metrics
from relay.providers.base import BackendTransport, CredentialSource, QuotaSource
from relay.providers.request_builder import DefaultRequestBuilder


class RecordingChannel(ResponseChannel):
    def __init__(self) -> None:
        self.headers_sent = False
        self.closed = False
        self.timeout_disabled = False
        self.headers: Dict[str, str] = {}
        self.frames: List[str] = []
        self.status_code: Optional[int] = None
        self.json_body: Optional[Dict[str, Any]] = None
        self.ended = False

    async def send_json(self, status_code: int, payload: Dict[str, Any]) -> None:
        self.headers_sent = True
        self.closed = True
        self.status_code = status_code
        self.json_body = payload

    async def open_stream(self, headers: Dict[str, str]) -> None:
        self.headers_sent = True
        self.status_code = 200
        self.headers = headers

    async def write(self, frame: str) -> None:
        if self.closed:
            raise StreamWriteFailure("closed")
        self.frames.append(frame)

    async def end(self) -> None:
        self.closed = True
        self.ended = True

    def disable_timeout(self) -> None:
        self.timeout_disabled = True

    def data_frames(self) -> List[Dict[str, Any]]:
        return parse_sse("".join(self.frames))


def parse_sse(body: str) -> List[Dict[str, Any]]:
    """JSON payloads of every data frame, skipping comments and [DONE]."""
    out = []
    for block in body.split("\n\n"):
        block = block.strip()
        if not block.startswith("data:"):
            continue
        data = block[len("data:"):].strip()
        if data == "[DONE]":
            continue
        out.append(json.loads(data))
    return out


class FakeCredentials(CredentialSource):
    def __init__(self, tokens: List[str]) -> None:
        self.pool = [Credential(access_token=t) for t in tokens]
        self.handed_out: List[Credential] = []
        self.attempts: List[str] = []

    async def get_credential(self, model: str) -> Optional[Credential]:
        if not self.pool:
            return None
        credential = self.pool.pop(0)
        self.handed_out.append(credential)
        return credential

    async def record_usage_attempt(self, credential: Credential, model: str) -> None:
        self.attempts.append(credential.access_token)


class FakeQuotas(QuotaSource):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.updates: List[tuple] = []

    async def fetch_quotas(self, credential: Credential) -> Dict[str, Any]:
        if self.fail:
            raise RuntimeError("quota endpoint down")
        return {"token": credential.access_token}

    async def update_quota(self, credential_id: str, quotas: Dict[str, Any]) -> None:
        self.updates.append((credential_id, quotas))


class ScriptedBackend(BackendTransport):
    """
    Each call consumes the next script entry: an exception is raised, a list
    of events is streamed, a BackendCompletion is returned.
    """

    def __init__(self, script: List[Any]) -> None:
        self.script = list(script)
        self.calls: List[Dict[str, Any]] = []

    def _next(self, request: Dict[str, Any], credential: Credential, mode: str):
        self.calls.append({"mode": mode, "token": credential.access_token, "request": request})
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, BaseException):
            raise step
        return step

    async def generate_streaming(self, request, credential, on_event) -> None:
        for event in self._next(request, credential, "stream"):
            await on_event(event)

    async def generate_once(self, request, credential) -> BackendCompletion:
        return self._next(request, credential, "once")


def rate_limited() -> RateLimited:
    return RateLimited("Resource has been exhausted")


def chat_request(**overrides) -> ChatCompletionRequest:
    data = {
        "model": "gemini-2.5-pro",
        "messages": [{"role": "user", "content": "hi"}],
        "stream": False,
    }
    data.update(overrides)
    return ChatCompletionRequest(**data)


def make_handler(
    backend: BackendTransport,
    *,
    tokens: Optional[List[str]] = None,
    quotas: Optional[FakeQuotas] = None,
    **options,
) -> ChatCompletionsHandler:
    options.setdefault("heartbeat_interval", 60.0)
    return ChatCompletionsHandler(
        credentials=FakeCredentials(tokens if tokens is not None else ["tok-a", "tok-b", "tok-c", "tok-d"]),
        quotas=quotas or FakeQuotas(),
        backend=backend,
        builder=DefaultRequestBuilder(),
        options=HandlerOptions(**options),
    )


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()
