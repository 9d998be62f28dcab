"""Fan-out of live events to attached observers.

Each observer gets its own bounded queue and writer task.  ``broadcast``
serialises an event once and enqueues it with ``put_nowait`` on a copy of
the current observer set, so it never waits on any single observer.  An
observer whose queue overflows, or whose sink fails or times out, is
detached; the others are unaffected.

The hub is bound to the running event loop: ``attach``, ``detach`` and
``broadcast`` must be called from loop callbacks or coroutines.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Protocol

from .topics import TopicRoutes
from .ws_models import DataEvent, ObserverEvent, encode_event

LOGGER = logging.getLogger(__name__)

_SEND_TIMEOUT_S: float = 0.5
"""Per-send timeout; observers exceeding this are dropped."""

_QUEUE_MAXSIZE: int = 256
"""Pending events per observer before it counts as stalled and is dropped."""

_DROP_LOG_INTERVAL_S: float = 10.0
"""Minimum interval between logged drop warnings to avoid log spam."""

_MAX_CONSECUTIVE_TICK_FAILURES = 10


class ObserverSink(Protocol):
    async def send_text(self, data: str) -> None: ...


@dataclass(slots=True, eq=False)
class ObserverHandle:
    id: int
    sink: ObserverSink
    queue: asyncio.Queue[str]
    task: asyncio.Task[None] | None = None
    detached: bool = False
    sent: int = 0
    drop_reason: str | None = None
    closed: asyncio.Event = field(default_factory=asyncio.Event)


class ObserverHub:
    def __init__(
        self,
        routes: TopicRoutes | None = None,
        *,
        send_timeout_s: float = _SEND_TIMEOUT_S,
        queue_maxsize: int = _QUEUE_MAXSIZE,
        drop_log_interval_s: float = _DROP_LOG_INTERVAL_S,
    ):
        self.routes = routes
        self._send_timeout_s = float(send_timeout_s)
        self._queue_maxsize = max(1, int(queue_maxsize))
        self._drop_log_interval_s = max(0.0, float(drop_log_interval_s))
        self._last_drop_log_ts = 0.0
        self._suppressed_drop_warnings = 0
        self._observers: dict[int, ObserverHandle] = {}
        self._ids = itertools.count(1)
        self._lock = Lock()
        self._closing_tasks: set[asyncio.Task[Any]] = set()
        self._dropped_total = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._observers)

    def handles(self) -> list[ObserverHandle]:
        """Copy of the attached handles, in attachment order."""
        with self._lock:
            return list(self._observers.values())

    def attach(
        self,
        sink: ObserverSink,
        initial_event: ObserverEvent | None = None,
    ) -> ObserverHandle:
        handle = ObserverHandle(
            id=next(self._ids),
            sink=sink,
            queue=asyncio.Queue(maxsize=self._queue_maxsize),
        )
        # Queued before the handle joins the broadcast set, so it is always first.
        if initial_event is not None:
            handle.queue.put_nowait(encode_event(initial_event))
        handle.task = asyncio.get_running_loop().create_task(
            self._pump(handle), name=f"observer-{handle.id}"
        )
        with self._lock:
            self._observers[handle.id] = handle
        LOGGER.info("Observer %d attached (%d total)", handle.id, len(self))
        return handle

    def detach(self, handle: ObserverHandle) -> None:
        self._detach(handle, cancel_task=True)

    def _detach(self, handle: ObserverHandle, *, cancel_task: bool) -> None:
        with self._lock:
            removed = self._observers.pop(handle.id, None)
        if handle.detached:
            return
        handle.detached = True
        handle.closed.set()
        if cancel_task and handle.task is not None:
            handle.task.cancel()
        self._close_sink(handle)
        if removed is not None:
            LOGGER.info(
                "Observer %d detached%s (%d remaining)",
                handle.id,
                f" ({handle.drop_reason})" if handle.drop_reason else "",
                len(self),
            )

    def _close_sink(self, handle: ObserverHandle) -> None:
        close = getattr(handle.sink, "close", None)
        if close is None:
            return
        try:
            result = close()
        except Exception:
            LOGGER.debug("Error closing sink of observer %d", handle.id, exc_info=True)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._closing_tasks.add(task)
            task.add_done_callback(self._on_close_done)

    def _on_close_done(self, task: asyncio.Future[Any]) -> None:
        self._closing_tasks.discard(task)  # type: ignore[arg-type]
        if not task.cancelled() and task.exception() is not None:
            LOGGER.debug("Observer sink close failed", exc_info=task.exception())

    def _drop(self, handle: ObserverHandle, reason: str, *, cancel_task: bool) -> None:
        handle.drop_reason = reason
        self._dropped_total += 1
        now = time.monotonic()
        if (now - self._last_drop_log_ts) >= self._drop_log_interval_s:
            suppressed = self._suppressed_drop_warnings
            self._suppressed_drop_warnings = 0
            self._last_drop_log_ts = now
            if suppressed > 0:
                LOGGER.warning(
                    "Dropping observer %d: %s; suppressed %d additional drop warnings",
                    handle.id,
                    reason,
                    suppressed,
                )
            else:
                LOGGER.warning("Dropping observer %d: %s", handle.id, reason)
        else:
            self._suppressed_drop_warnings += 1
        self._detach(handle, cancel_task=cancel_task)

    async def _pump(self, handle: ObserverHandle) -> None:
        while True:
            text = await handle.queue.get()
            try:
                await asyncio.wait_for(handle.sink.send_text(text), timeout=self._send_timeout_s)
            except asyncio.CancelledError:
                raise
            except TimeoutError:
                self._drop(handle, "send timed out", cancel_task=False)
                return
            except Exception as exc:
                self._drop(handle, f"send failed: {exc!r}", cancel_task=False)
                return
            handle.sent += 1

    def broadcast(self, event: ObserverEvent) -> int:
        """Queue *event* for every attached observer; returns how many took it."""
        with self._lock:
            handles = list(self._observers.values())
        if not handles:
            return 0
        try:
            text = encode_event(event)
        except Exception:
            LOGGER.error("Failed to encode %s event; not broadcast", event.type, exc_info=True)
            return 0
        delivered = 0
        for handle in handles:
            if handle.detached:
                continue
            try:
                handle.queue.put_nowait(text)
            except asyncio.QueueFull:
                self._drop(handle, "queue full", cancel_task=True)
                continue
            delivered += 1
        return delivered

    def on_message(self, topic: str, value: Any) -> None:
        """``MessageBus`` subscriber forwarding observer topics as data events."""
        if self.routes is not None and not self.routes.is_observer_topic(topic):
            return
        self.broadcast(DataEvent(topic=topic, data=value))

    async def run_status_ticker(
        self,
        interval_s: float,
        build_event: Callable[[], ObserverEvent],
    ) -> None:
        interval = max(0.01, float(interval_s))
        consecutive_failures = 0
        loop = asyncio.get_running_loop()
        while True:
            tick_start = loop.time()
            try:
                self.broadcast(build_event())
                consecutive_failures = 0
            except Exception:
                consecutive_failures += 1
                if consecutive_failures >= _MAX_CONSECUTIVE_TICK_FAILURES:
                    LOGGER.error(
                        "Status tick failed %d consecutive times; backing off.",
                        consecutive_failures,
                        exc_info=True,
                    )
                    await asyncio.sleep(interval * 5)
                else:
                    LOGGER.warning("Status tick failed; will retry.", exc_info=True)
            elapsed = loop.time() - tick_start
            await asyncio.sleep(max(0.0, interval - elapsed))

    async def close(self) -> None:
        handles = self.handles()
        for handle in handles:
            self.detach(handle)
        tasks = [h.task for h in handles if h.task is not None]
        await asyncio.gather(*tasks, *self._closing_tasks, return_exceptions=True)

    def stats(self) -> dict[str, int]:
        return {"observers": len(self), "dropped_total": self._dropped_total}
