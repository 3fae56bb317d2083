from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import Response
from fastapi.responses import JSONResponse, StreamingResponse

from relay.models.errors import StreamWriteFailure, build_error_payload

logger = logging.getLogger("relay.stream")


class ResponseChannel(ABC):
    """Writable response side of one request."""

    headers_sent: bool = False
    closed: bool = False

    @abstractmethod
    async def send_json(self, status_code: int, payload: Dict[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    async def open_stream(self, headers: Dict[str, str]) -> None:
        raise NotImplementedError

    @abstractmethod
    async def write(self, frame: str) -> None:
        """Writes one frame; raises StreamWriteFailure once the channel is closed."""
        raise NotImplementedError

    @abstractmethod
    async def end(self) -> None:
        raise NotImplementedError

    def disable_timeout(self) -> None:
        pass


class QueueResponseChannel(ResponseChannel):
    """
    Bridges a handler coroutine to a FastAPI response.

    The handler runs as its own task; `response()` resolves as soon as the
    handler either sends a JSON body or opens the stream, after which frames
    flow through an asyncio.Queue into a StreamingResponse body.
    """

    def __init__(self) -> None:
        self.headers_sent = False
        self.closed = False
        self.timeout_disabled = False
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._response: asyncio.Future[Response] = asyncio.get_running_loop().create_future()
        self._task: Optional[asyncio.Task] = None

    def run(self, coro) -> asyncio.Task:
        self._task = asyncio.create_task(coro)
        self._task.add_done_callback(self._on_handler_done)
        return self._task

    async def response(self) -> Response:
        return await self._response

    async def send_json(self, status_code: int, payload: Dict[str, Any]) -> None:
        if self.headers_sent:
            return
        self.headers_sent = True
        self.closed = True
        self._resolve(JSONResponse(status_code=status_code, content=payload))

    async def open_stream(self, headers: Dict[str, str]) -> None:
        headers = dict(headers)
        media_type = headers.pop("Content-Type", "text/event-stream")
        self.headers_sent = True
        self._resolve(
            StreamingResponse(self._frames(), media_type=media_type, headers=headers)
        )

    async def write(self, frame: str) -> None:
        if self.closed:
            raise StreamWriteFailure("response channel is closed")
        self._queue.put_nowait(frame)

    async def end(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(None)

    def disable_timeout(self) -> None:
        # ASGI servers apply no per-response idle timeout of their own
        self.timeout_disabled = True

    async def _frames(self) -> AsyncIterator[str]:
        try:
            while True:
                frame = await self._queue.get()
                if frame is None:
                    return
                yield frame
        finally:
            if not self.closed:
                logger.warning("client disconnected, dropping further writes")
                self.closed = True

    def _resolve(self, response: Response) -> None:
        if not self._response.done():
            self._response.set_result(response)

    def _on_handler_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            error: BaseException = RuntimeError("request handler cancelled")
        else:
            error = task.exception()

        if error is not None:
            logger.error("request handler crashed: %r", error)

        if not self._response.done():
            error = error or RuntimeError("request produced no response")
            self._resolve(
                JSONResponse(status_code=500, content=build_error_payload(error, 500))
            )

        if self.headers_sent and not self.closed:
            self.closed = True
            self._queue.put_nowait(None)
