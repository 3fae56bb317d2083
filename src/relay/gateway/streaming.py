from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from relay.gateway.channel import ResponseChannel
from relay.models.errors import StreamWriteFailure, build_error_payload, resolve_status
from relay.models.openai_compat import ChatCompletionChunk, ChunkChoice

logger = logging.getLogger("relay.stream")

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
HEARTBEAT_FRAME = ": heartbeat\n\n"
DONE_FRAME = "data: [DONE]\n\n"
DEFAULT_HEARTBEAT_INTERVAL = 15.0


@dataclass(frozen=True)
class ResponseMeta:
    id: str
    created: int


def create_response_meta() -> ResponseMeta:
    return ResponseMeta(
        id=f"chatcmpl-{uuid.uuid4().hex}",
        created=int(time.time()),
    )


def create_stream_chunk(
    meta: ResponseMeta,
    model: str,
    delta: Dict[str, Any],
    finish_reason: Optional[str] = None,
    usage: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    chunk = ChatCompletionChunk(
        id=meta.id,
        created=meta.created,
        model=model,
        choices=[ChunkChoice(index=0, delta=delta, finish_reason=finish_reason)],
        usage=usage,
    )
    data = chunk.model_dump()
    if finish_reason is None:
        data.pop("usage")
    return data


def sse_frame(data: Dict[str, Any]) -> str:
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


class StreamEmitter:
    """
    Writes chat.completion.chunk frames for one request onto a channel.

    Use as an async context manager: entering opens the SSE stream and
    starts the heartbeat task, leaving always cancels the heartbeat.
    """

    def __init__(
        self,
        channel: ResponseChannel,
        meta: ResponseMeta,
        model: str,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
    ) -> None:
        self.channel = channel
        self.meta = meta
        self.model = model
        self.heartbeat_interval = heartbeat_interval
        self._heartbeat: Optional[asyncio.Task] = None
        self._last_write = 0.0

    async def __aenter__(self) -> "StreamEmitter":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        await self.stop_heartbeat()
        return False

    @property
    def heartbeat_running(self) -> bool:
        return self._heartbeat is not None and not self._heartbeat.done()

    async def start(self) -> None:
        await self.channel.open_stream(dict(SSE_HEADERS))
        self._last_write = asyncio.get_running_loop().time()
        self._heartbeat = asyncio.create_task(self._beat())

    async def stop_heartbeat(self) -> None:
        task, self._heartbeat = self._heartbeat, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def emit(self, delta: Dict[str, Any]) -> None:
        await self._write(sse_frame(create_stream_chunk(self.meta, self.model, delta)))

    async def finish(self, finish_reason: str, usage: Optional[Dict[str, Any]]) -> None:
        chunk = create_stream_chunk(self.meta, self.model, {}, finish_reason, usage)
        await self._write(sse_frame(chunk))
        await self._write(DONE_FRAME)
        await self.stop_heartbeat()
        await self.channel.end()

    async def fail(self, error: BaseException) -> None:
        await self.stop_heartbeat()
        if self.channel.closed:
            return
        payload = build_error_payload(error, resolve_status(error))
        await self._write(sse_frame(payload))
        await self._write(DONE_FRAME)
        await self.channel.end()

    async def _write(self, frame: str) -> None:
        try:
            await self.channel.write(frame)
        except StreamWriteFailure:
            logger.debug("dropping frame for %s, client is gone", self.meta.id)
            return
        self._last_write = asyncio.get_running_loop().time()

    async def _beat(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            if loop.time() - self._last_write >= self.heartbeat_interval:
                logger.debug("heartbeat %s", self.meta.id)
                await self._write(HEARTBEAT_FRAME)
