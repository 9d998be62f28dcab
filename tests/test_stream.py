"""Tests for the Server-Sent Events observer stream."""

from __future__ import annotations

import asyncio
import json

import pytest

from trainflow.app import build_runtime
from trainflow.routes.stream import SSESink, create_stream_routes

from conftest import FakeTransport


def _endpoint(router, path: str):
    for route in router.routes:
        if getattr(route, "path", "") == path:
            return route.endpoint
    raise AssertionError(f"{path} not registered")


@pytest.mark.asyncio
async def test_sse_sink_frames_until_closed() -> None:
    sink = SSESink()
    await sink.send_text('{"a":1}')
    await sink.send_text('{"a":2}')
    sink.close()

    frames = [frame async for frame in sink.frames()]

    assert frames == ['data: {"a":1}\n\n', 'data: {"a":2}\n\n']


@pytest.mark.asyncio
async def test_sse_sink_rejects_sends_after_close() -> None:
    sink = SSESink()
    sink.close()
    sink.close()
    with pytest.raises(ConnectionError):
        await sink.send_text("x")


@pytest.mark.asyncio
async def test_sse_sink_close_when_full_still_ends_stream() -> None:
    sink = SSESink(maxsize=1)
    await sink.send_text("x")
    sink.close()
    frames = [frame async for frame in sink.frames()]
    assert frames == []


@pytest.mark.asyncio
async def test_stream_endpoint_sends_status_then_data(app_config) -> None:
    runtime = build_runtime(app_config, FakeTransport())
    endpoint = _endpoint(create_stream_routes(runtime), "/api/mqtt/stream")

    response = await endpoint()
    assert response.media_type == "text/event-stream"
    assert response.headers["cache-control"] == "no-cache"
    assert len(runtime.hub) == 0
    body = response.body_iterator

    first = await asyncio.wait_for(body.__anext__(), 1.0)
    assert len(runtime.hub) == 1
    assert first.startswith("data: ") and first.endswith("\n\n")
    assert json.loads(first[len("data: ") :]) == {
        "type": "status",
        "connected": True,
        "esp32Status": "offline",
    }

    runtime.ingest.handle_message("trainflow/trainState", b'{"speed": 9}')
    second = json.loads((await asyncio.wait_for(body.__anext__(), 1.0))[len("data: ") :])
    assert second["type"] == "data"
    assert second["topic"] == "trainflow/trainState"
    assert second["data"] == {"speed": 9}

    await body.aclose()
    assert len(runtime.hub) == 0
    await runtime.hub.close()


@pytest.mark.asyncio
async def test_unstreamed_response_holds_no_observer(app_config) -> None:
    runtime = build_runtime(app_config, FakeTransport())
    endpoint = _endpoint(create_stream_routes(runtime), "/api/mqtt/stream")

    response = await endpoint()
    await response.body_iterator.aclose()

    assert len(runtime.hub) == 0
    runtime.ingest.handle_message("trainflow/trainState", b'{"speed": 1}')
    assert runtime.hub.stats()["observers"] == 0
    await runtime.hub.close()
