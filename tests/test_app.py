from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from relay.config import Settings
from relay.main import create_app
from relay.models.events import TextEvent, UsageEvent

from conftest import ScriptedBackend, make_handler, parse_sse, rate_limited

API_KEY = "test-key"
USAGE = {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7}
HELLO = [TextEvent(content="Hel"), TextEvent(content="lo"), UsageEvent(usage=USAGE)]


def _client(backend, **options) -> AsyncClient:
    app = create_app(
        Settings(RELAY_API_KEYS=API_KEY),
        handler=make_handler(backend, **options),
    )
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://relay")


def _auth() -> dict:
    return {"Authorization": f"Bearer {API_KEY}"}


def _body(**overrides) -> dict:
    body = {"model": "gemini-2.5-pro", "messages": [{"role": "user", "content": "hi"}]}
    body.update(overrides)
    return body


class TestChatCompletionsEndpoint:
    @pytest.mark.asyncio
    async def test_requires_api_key(self):
        async with _client(ScriptedBackend([HELLO])) as client:
            resp = await client.post("/v1/chat/completions", json=_body())

        assert resp.status_code == 401
        assert resp.json()["error"]["type"] == "authentication_error"

    @pytest.mark.asyncio
    async def test_health_is_open(self):
        async with _client(ScriptedBackend([HELLO])) as client:
            resp = await client.get("/health")
        assert resp.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_streaming_response(self):
        async with _client(ScriptedBackend([HELLO])) as client:
            resp = await client.post("/v1/chat/completions", json=_body(stream=True), headers=_auth())

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["cache-control"] == "no-cache"
        assert "x-request-id" in resp.headers

        chunks = parse_sse(resp.text)
        assert "".join(c["choices"][0]["delta"].get("content", "") for c in chunks) == "Hello"
        assert chunks[-1]["choices"][0]["finish_reason"] == "stop"
        assert resp.text.endswith("data: [DONE]\n\n")

    @pytest.mark.asyncio
    async def test_fake_non_stream_response(self):
        async with _client(ScriptedBackend([HELLO]), fake_non_stream=True) as client:
            resp = await client.post("/v1/chat/completions", json=_body(temperature=0.2), headers=_auth())

        assert resp.status_code == 200
        body = resp.json()
        assert body["object"] == "chat.completion"
        assert body["choices"][0]["message"]["content"] == "Hello"
        assert body["usage"] == USAGE

    @pytest.mark.asyncio
    async def test_rate_limit_after_stream_open_is_error_frame(self):
        async with _client(ScriptedBackend([rate_limited()]), retry_times=1) as client:
            resp = await client.post("/v1/chat/completions", json=_body(stream=True), headers=_auth())

        # the stream is already open when the backend fails
        assert resp.status_code == 200
        assert parse_sse(resp.text)[-1]["error"]["code"] == 429

    @pytest.mark.asyncio
    async def test_validation_error(self):
        async with _client(ScriptedBackend([HELLO])) as client:
            resp = await client.post("/v1/chat/completions", json={"messages": []}, headers=_auth())

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == 400

    @pytest.mark.asyncio
    async def test_developer_role_is_accepted(self):
        messages = [
            {"role": "developer", "content": "be brief"},
            {"role": "user", "content": "hi"},
        ]
        async with _client(ScriptedBackend([HELLO]), fake_non_stream=True) as client:
            resp = await client.post("/v1/chat/completions", json=_body(messages=messages), headers=_auth())

        assert resp.status_code == 200
        assert resp.json()["choices"][0]["message"]["content"] == "Hello"

    @pytest.mark.asyncio
    async def test_metrics_count_requests(self):
        async with _client(ScriptedBackend([HELLO]), fake_non_stream=True) as client:
            await client.post("/v1/chat/completions", json=_body(), headers=_auth())
            resp = await client.get("/metrics", headers=_auth())
            prom = await client.get("/metrics/prometheus", headers=_auth())

        assert resp.json()["global"]["total_requests"] == 1
        assert "relay_total_requests 1.0" in prom.text
