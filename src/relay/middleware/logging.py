import time
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("relay.request")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(message)s",
)


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()

        response = await call_next(request)

        # SSE bodies are still being written here, so this is time to headers
        elapsed_ms = (time.perf_counter() - start) * 1000
        streaming = response.headers.get("content-type", "").startswith("text/event-stream")

        logger.info(
            "%s %s %s -> %d%s %.2fms",
            getattr(request.state, "request_id", "-"),
            request.method,
            request.url.path,
            response.status_code,
            " (stream)" if streaming else "",
            elapsed_ms,
        )

        return response
