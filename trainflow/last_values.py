"""Last-value-wins store keyed by topic.

Every observed topic keeps exactly one entry: the most recent value and the
time it arrived.  Entries are replaced on the next message for the same topic
and are never evicted otherwise; there is no history.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from threading import Lock
from typing import Any


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True, slots=True)
class LastValue:
    value: Any
    received_at: str

    def as_dict(self) -> dict[str, Any]:
        return {"data": self.value, "timestamp": self.received_at}


class LastValueStore:
    def __init__(self, *, now_iso: Callable[[], str] = _utc_now_iso):
        self._values: dict[str, LastValue] = {}
        self._train_state: LastValue | None = None
        self._now_iso = now_iso
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)

    def set(self, topic: str, value: Any) -> LastValue:
        entry = LastValue(value=value, received_at=self._now_iso())
        with self._lock:
            self._values[topic] = entry
        return entry

    def get(self, topic: str) -> LastValue | None:
        with self._lock:
            return self._values.get(topic)

    def snapshot(self) -> dict[str, LastValue]:
        with self._lock:
            return dict(self._values)

    def set_train_state(self, value: Any) -> None:
        entry = LastValue(value=value, received_at=self._now_iso())
        with self._lock:
            self._train_state = entry

    @property
    def train_state(self) -> LastValue | None:
        with self._lock:
            return self._train_state
