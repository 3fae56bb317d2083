import time
from starlette.middleware.base import BaseHTTPMiddleware
from relay.observability.metrics import metrics


class LatencyMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        if not request.url.path.startswith("/v1/"):
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        metrics.observe_latency((time.perf_counter() - start) * 1000)

        return response
