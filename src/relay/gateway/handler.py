from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict

from relay.config import Settings
from relay.gateway.aggregator import Aggregator, from_completion
from relay.gateway.channel import ResponseChannel
from relay.gateway.normalizer import SIGNATURE_FIELD, EventNormalizer
from relay.gateway.streaming import (
    DEFAULT_HEARTBEAT_INTERVAL,
    ResponseMeta,
    StreamEmitter,
    create_response_meta,
)
from relay.models.errors import (
    CredentialUnavailable,
    RequestValidationError,
    build_error_payload,
    resolve_status,
)
from relay.models.events import BackendEvent, Credential
from relay.models.openai_compat import ChatCompletionRequest
from relay.observability.metrics import metrics
from relay.providers.base import (
    BackendTransport,
    CredentialSource,
    QuotaSource,
    RequestBuilder,
)
from relay.reliability.retry import (
    RetryConfig,
    RetryHooks,
    RetryState,
    rotate_credential,
    with_429_retry,
)

logger = logging.getLogger("relay.handler")

_END = object()


@dataclass(frozen=True)
class HandlerOptions:
    retry_times: int = 3
    retry_delay_seconds: float = 0.0
    fake_non_stream: bool = False
    pass_signature_to_client: bool = False
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL

    @classmethod
    def from_settings(cls, settings: Settings) -> "HandlerOptions":
        return cls(
            retry_times=settings.RELAY_RETRY_TIMES,
            retry_delay_seconds=settings.RELAY_RETRY_DELAY_SECONDS,
            fake_non_stream=settings.RELAY_FAKE_NON_STREAM,
            pass_signature_to_client=settings.RELAY_PASS_SIGNATURE_TO_CLIENT,
            heartbeat_interval=settings.RELAY_HEARTBEAT_INTERVAL,
        )


def is_image_model(model: str) -> bool:
    return "-image" in model


def validate_chat_request(body: ChatCompletionRequest) -> None:
    if not isinstance(body.model, str) or not body.model:
        raise RequestValidationError("model is required")
    if not body.messages:
        raise RequestValidationError("messages must be a non-empty array")


class ChatCompletionsHandler:
    """
    Runs one chat completion request end to end and writes the result to a
    ResponseChannel: an SSE stream, or a single JSON body (result or error).
    """

    def __init__(
        self,
        *,
        credentials: CredentialSource,
        quotas: QuotaSource,
        backend: BackendTransport,
        builder: RequestBuilder,
        options: HandlerOptions,
    ) -> None:
        self.credentials = credentials
        self.quotas = quotas
        self.backend = backend
        self.builder = builder
        self.options = options

    async def handle(self, body: ChatCompletionRequest, channel: ResponseChannel) -> None:
        model = body.model or "unknown"

        try:
            validate_chat_request(body)
            metrics.inc("total_requests", model=model)

            credential = await self.credentials.get_credential(model)
            if credential is None:
                raise CredentialUnavailable(f"no credential available for model {model}")

            state = RetryState(
                request=self._build_request(body, credential),
                credential=credential,
                credential_id=self.credentials.get_credential_id(credential),
            )
            meta = create_response_meta()

            if body.stream:
                await self._stream(body, state, meta, channel)
            elif self.options.fake_non_stream and not is_image_model(model):
                channel.disable_timeout()
                await self._fake_non_stream(body, state, meta, channel)
            else:
                channel.disable_timeout()
                await self._non_stream(body, state, meta, channel)

        except Exception as exc:
            await self._fail(channel, exc, model)

    # Response modes

    async def _stream(
        self,
        body: ChatCompletionRequest,
        state: RetryState,
        meta: ResponseMeta,
        channel: ResponseChannel,
    ) -> None:
        model = body.model
        pass_signature = self.options.pass_signature_to_client

        async with StreamEmitter(
            channel, meta, model, self.options.heartbeat_interval
        ) as emitter:
            try:
                if is_image_model(model):
                    completion = await with_429_retry(
                        self._generate_once,
                        state,
                        self._retry_config(),
                        self._hooks(body, "chat.stream.image "),
                    )
                    delta: Dict[str, Any] = {"content": completion.content}
                    if completion.reasoning_signature and pass_signature:
                        delta[SIGNATURE_FIELD] = completion.reasoning_signature
                    await emitter.emit(delta)
                    await emitter.finish("stop", completion.usage)
                else:
                    normalizer = EventNormalizer(pass_signature)

                    async def on_event(event: BackendEvent) -> None:
                        delta = normalizer.normalize(event)
                        if delta is not None:
                            await emitter.emit(delta)

                    await with_429_retry(
                        lambda s: self._pump(s, on_event),
                        state,
                        self._retry_config(),
                        self._hooks(body, "chat.stream "),
                    )
                    await emitter.finish(normalizer.finish_reason, normalizer.usage)

                metrics.inc("total_success", model=model)

            except Exception as exc:
                metrics.inc("stream_errors", model=model)
                logger.error("stream for %s failed: %s", meta.id, exc)
                await emitter.fail(exc)

    async def _fake_non_stream(
        self,
        body: ChatCompletionRequest,
        state: RetryState,
        meta: ResponseMeta,
        channel: ResponseChannel,
    ) -> None:
        async def attempt(s: RetryState) -> Aggregator:
            aggregator = Aggregator()
            await self._pump(s, aggregator.on_event)
            return aggregator

        aggregator = await with_429_retry(
            attempt,
            state,
            self._retry_config(),
            self._hooks(body, "chat.fake_no_stream "),
        )
        response = aggregator.finalize(
            meta, body.model, self.options.pass_signature_to_client
        )
        metrics.inc("total_success", model=body.model)
        await channel.send_json(200, response.to_openai())

    async def _non_stream(
        self,
        body: ChatCompletionRequest,
        state: RetryState,
        meta: ResponseMeta,
        channel: ResponseChannel,
    ) -> None:
        completion = await with_429_retry(
            self._generate_once,
            state,
            self._retry_config(),
            self._hooks(body, "chat.no_stream "),
        )
        response = from_completion(
            completion, meta, body.model, self.options.pass_signature_to_client
        )
        metrics.inc("total_success", model=body.model)
        await channel.send_json(200, response.to_openai())

    # Backend dispatch

    async def _generate_once(self, state: RetryState):
        return await self.backend.generate_once(state.request, state.credential)

    async def _pump(
        self,
        state: RetryState,
        consume: Callable[[BackendEvent], Awaitable[None]],
    ) -> None:
        """
        Runs the callback-based streaming call and hands its events to
        consume, in order, through a queue.
        """
        queue: asyncio.Queue = asyncio.Queue()

        async def produce() -> None:
            try:
                await self.backend.generate_streaming(
                    state.request, state.credential, queue.put
                )
            finally:
                queue.put_nowait(_END)

        producer = asyncio.create_task(produce())
        drained = False
        try:
            while True:
                event = await queue.get()
                if event is _END:
                    break
                await consume(event)
            drained = True
        finally:
            if not drained:
                producer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await producer

        await producer

    # Retry wiring

    def _retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.options.retry_times,
            delay_seconds=self.options.retry_delay_seconds,
        )

    def _build_request(self, body: ChatCompletionRequest, credential: Credential) -> Dict[str, Any]:
        request = self.builder.build_backend_request(
            body.message_dicts(), body.model, body.params, body.tools, credential
        )
        if is_image_model(body.model):
            self.builder.augment_for_image_model(request)
        return request

    def _hooks(self, body: ChatCompletionRequest, prefix: str) -> RetryHooks:
        model = body.model

        async def on_attempt(state: RetryState) -> None:
            await self.credentials.record_usage_attempt(state.credential, model)

        async def refresh_quota(state: RetryState) -> None:
            if not state.credential_id:
                return
            quotas = await self.quotas.fetch_quotas(state.credential)
            await self.quotas.update_quota(state.credential_id, quotas)

        on_retry = functools.partial(
            rotate_credential,
            credentials=self.credentials,
            model=model,
            rebuild=functools.partial(self._build_request, body),
            logger_prefix=prefix,
        )

        return RetryHooks(
            on_attempt=on_attempt,
            on_retry=on_retry,
            refresh_quota=refresh_quota,
            logger_prefix=prefix,
        )

    async def _fail(self, channel: ResponseChannel, error: Exception, model: str) -> None:
        status_code = resolve_status(error)
        metrics.inc("total_errors", model=model)
        logger.error("chat completion for %s failed (%d): %s", model, status_code, error)

        if channel.headers_sent:
            return
        await channel.send_json(status_code, build_error_payload(error, status_code))
