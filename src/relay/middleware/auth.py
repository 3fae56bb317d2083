from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from relay.models.errors import RelayError, build_error_payload

OPEN_PATHS = {"/health"}


class AuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, api_keys: list[str]):
        super().__init__(app)
        self.api_keys = set(api_keys)

    async def dispatch(self, request: Request, call_next):
        if request.url.path in OPEN_PATHS:
            return await call_next(request)

        raw = request.headers.get("authorization") or ""
        token = raw.replace("Bearer", "").strip()

        if not token:
            return _unauthorized("Missing API key")

        if token not in self.api_keys:
            return _unauthorized("Invalid API key")

        return await call_next(request)


def _unauthorized(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content=build_error_payload(RelayError(message, status_code=401)),
    )
