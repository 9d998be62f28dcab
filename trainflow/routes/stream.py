"""Live observer streams: Server-Sent Events and WebSocket."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

if TYPE_CHECKING:
    from ..app import RuntimeState

LOGGER = logging.getLogger(__name__)

_SSE_SINK_MAXSIZE = 64
_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class SSESink:
    """Observer sink feeding a ``text/event-stream`` response.

    ``send_text`` waits for room in a small queue, so a client that stops
    reading makes the hub's send time out and the observer gets dropped.
    """

    def __init__(self, maxsize: int = _SSE_SINK_MAXSIZE):
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=max(1, maxsize))
        self.closed = False

    async def send_text(self, data: str) -> None:
        if self.closed:
            raise ConnectionError("SSE stream closed")
        await self._queue.put(data)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Make room for the end-of-stream marker.
        with contextlib.suppress(asyncio.QueueEmpty):
            while self._queue.full():
                self._queue.get_nowait()
        self._queue.put_nowait(None)

    async def frames(self) -> AsyncIterator[str]:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            yield f"data: {item}\n\n"


def create_stream_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.get("/api/mqtt/stream")
    async def mqtt_stream() -> StreamingResponse:
        async def _frames() -> AsyncIterator[str]:
            # A response that is never iterated never holds an observer.
            sink = SSESink()
            handle = state.hub.attach(sink, state.status_event())
            LOGGER.info("SSE observer %d connected", handle.id)
            try:
                async for frame in sink.frames():
                    yield frame
            finally:
                state.hub.detach(handle)
                LOGGER.info("SSE observer %d disconnected", handle.id)

        return StreamingResponse(_frames(), media_type="text/event-stream", headers=_SSE_HEADERS)

    @router.websocket("/ws")
    async def ws_endpoint(ws: WebSocket) -> None:
        await ws.accept()
        handle = state.hub.attach(ws, state.status_event())
        try:
            while True:
                message = await ws.receive_text()
                try:
                    payload = json.loads(message)
                except json.JSONDecodeError:
                    LOGGER.debug("Ignoring malformed WS message (not valid JSON)")
                    continue
                if not isinstance(payload, dict) or not isinstance(payload.get("topic"), str):
                    continue
                result = state.publisher.publish(payload["topic"], payload.get("message"))
                if not result.ok:
                    LOGGER.warning(
                        "Observer %d command to %s not sent: %s",
                        handle.id,
                        payload["topic"],
                        result.reason,
                    )
        except WebSocketDisconnect:
            LOGGER.debug("WebSocket observer %d disconnected", handle.id)
        except Exception:
            LOGGER.warning("WebSocket handler error", exc_info=True)
        finally:
            state.hub.detach(handle)

    return router
