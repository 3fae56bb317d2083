import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from relay.models.errors import status_of
from relay.models.events import Credential, credential_tag
from relay.observability.metrics import metrics
from relay.providers.base import CredentialSource

logger = logging.getLogger("relay.retry")

RATE_LIMIT_STATUS = 429
MAX_RETRIES_CEILING = 10


def safe_retries(value: Any) -> int:
    """Clamp a configured retry count into [0, MAX_RETRIES_CEILING]."""
    try:
        retries = int(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, min(retries, MAX_RETRIES_CEILING))


class RetryConfig:
    def __init__(
        self,
        max_retries: int = 3,
        delay_seconds: float = 0.0,
    ):
        self.max_retries = safe_retries(max_retries)
        self.delay_seconds = max(0.0, float(delay_seconds))


@dataclass
class RetryContext:
    attempt: int
    status: int
    credential_id: Optional[str]


@dataclass
class RetryState:
    request: Dict[str, Any]
    credential: Credential
    credential_id: Optional[str]


StateHook = Callable[[RetryState], Awaitable[None]]
RetryHook = Callable[[RetryContext, RetryState], Awaitable[None]]


@dataclass
class RetryHooks:
    on_attempt: Optional[StateHook] = None
    on_retry: Optional[RetryHook] = None
    refresh_quota: Optional[StateHook] = None
    logger_prefix: str = ""


async def with_429_retry(
    fn: Callable[[RetryState], Awaitable[Any]],
    state: RetryState,
    config: RetryConfig,
    hooks: Optional[RetryHooks] = None,
):
    """
    Run fn(state), retrying only on a 429 status while retries remain.

    Before each retry the rotation hook may swap state.credential and
    rebuild state.request; quota refresh follows and is best-effort.
    Any other failure, or a 429 past the bound, is re-raised unchanged.
    """
    hooks = hooks or RetryHooks()
    attempt = 0

    while True:
        if hooks.on_attempt is not None:
            await hooks.on_attempt(state)

        try:
            return await fn(state)

        except Exception as exc:
            status = status_of(exc)

            if status != RATE_LIMIT_STATUS or attempt >= config.max_retries:
                raise

            attempt += 1
            metrics.inc("retries_429")
            logger.warning(
                "%sgot 429, retry %d of %d",
                hooks.logger_prefix,
                attempt,
                config.max_retries,
            )

            ctx = RetryContext(
                attempt=attempt,
                status=status,
                credential_id=state.credential_id,
            )

            if hooks.on_retry is not None:
                await hooks.on_retry(ctx, state)

            if hooks.refresh_quota is not None:
                try:
                    await hooks.refresh_quota(state)
                except Exception:
                    logger.warning(
                        "%squota refresh failed for %s",
                        hooks.logger_prefix,
                        credential_tag(state.credential, state.credential_id),
                        exc_info=True,
                    )

            if config.delay_seconds:
                await asyncio.sleep(config.delay_seconds)


async def rotate_credential(
    ctx: RetryContext,
    state: RetryState,
    *,
    credentials: CredentialSource,
    model: str,
    rebuild: Callable[[Credential], Dict[str, Any]],
    logger_prefix: str = "",
) -> None:
    """Swap to the next credential for model; keep the current one if none."""
    if ctx.status != RATE_LIMIT_STATUS:
        return

    before = credential_tag(state.credential, state.credential_id)

    next_credential = await credentials.get_credential(model)
    if next_credential is not None:
        state.credential = next_credential
        state.credential_id = credentials.get_credential_id(next_credential)
        state.request = rebuild(next_credential)
        metrics.inc("credential_rotations")

    after = credential_tag(state.credential, state.credential_id)
    logger.info(
        "%sswitching credential before retry %d: %s -> %s",
        logger_prefix,
        ctx.attempt,
        before,
        after,
    )
