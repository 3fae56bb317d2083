from typing import Any, Dict, Optional
from pydantic import BaseModel


class RelayError(Exception):
    """Base error; carries the HTTP status reported to the caller."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class RequestValidationError(RelayError):
    status_code = 400


class CredentialUnavailable(RelayError):
    status_code = 503


class BackendError(RelayError):
    status_code = 502


class RateLimited(BackendError):
    status_code = 429


class StreamWriteFailure(RelayError):
    """The caller went away; never reported back to it."""


class ErrorBody(BaseModel):
    message: str
    type: str
    code: int


class ErrorPayload(BaseModel):
    error: ErrorBody


def status_of(error: BaseException) -> Optional[int]:
    """HTTP status carried by error, or by the upstream response it wraps."""
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value

    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def resolve_status(error: BaseException) -> int:
    status = status_of(error)
    return status if status is not None else 500


def error_type_for(status_code: int) -> str:
    if status_code == 401:
        return "authentication_error"
    if status_code == 429:
        return "rate_limit_error"
    if status_code == 503:
        return "service_unavailable"
    if 400 <= status_code < 500:
        return "invalid_request_error"
    return "server_error"


def build_error_payload(error: BaseException, status_code: Optional[int] = None) -> Dict[str, Any]:
    if status_code is None:
        status_code = resolve_status(error)

    message = getattr(error, "message", None) or str(error) or error.__class__.__name__
    payload = ErrorPayload(
        error=ErrorBody(
            message=message,
            type=error_type_for(status_code),
            code=status_code,
        )
    )
    return payload.model_dump()
