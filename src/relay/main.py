from __future__ import annotations

from fastapi import FastAPI, Response

from relay.config import Settings, settings as default_settings
from relay.gateway.channel import QueueResponseChannel
from relay.gateway.handler import ChatCompletionsHandler
from relay.middleware.auth import AuthMiddleware
from relay.middleware.latency import LatencyMiddleware
from relay.middleware.logging import LoggingMiddleware
from relay.middleware.request_id import RequestIDMiddleware
from relay.models.openai_compat import ChatCompletionRequest
from relay.observability.metrics import metrics
from relay.providers.factory import build_handler


def create_app(
    settings: Settings = default_settings,
    handler: ChatCompletionsHandler | None = None,
) -> FastAPI:
    app = FastAPI()

    app.add_middleware(LatencyMiddleware)
    app.add_middleware(AuthMiddleware, api_keys=settings.api_keys)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.state.handler = handler or build_handler(settings)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/metrics")
    async def get_metrics(model: str | None = None):
        return metrics.snapshot(model)

    @app.get("/metrics/prometheus")
    async def prometheus_metrics():
        return Response(content=metrics.prometheus(), media_type="text/plain")

    @app.post("/v1/chat/completions")
    async def chat_completions(body: ChatCompletionRequest) -> Response:
        channel = QueueResponseChannel()
        channel.run(app.state.handler.handle(body, channel))
        return await channel.response()

    return app


app = create_app()
