"""Fixed-capacity sample ring buffers.

``SampleBuffer`` holds the most recent samples for one sensor.  The storage
is a preallocated slot list with a write index and a count, so a push is O(1)
and eviction of the oldest sample is implicit.  A single ``RLock`` guards
both push and snapshot: readers always copy out a consistent window, and the
lock is never held across analysis work.
"""

from __future__ import annotations

from collections.abc import Iterable
from threading import RLock

from ..domain_models import Sample


class SampleBuffer:
    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"SampleBuffer capacity must be >= 1, got {capacity!r}")
        self.capacity = int(capacity)
        self._slots: list[Sample | None] = [None] * self.capacity
        self._write_idx = 0
        self._count = 0
        self._lock = RLock()

    def __len__(self) -> int:
        with self._lock:
            return self._count

    def push(self, sample: Sample) -> None:
        with self._lock:
            self._slots[self._write_idx] = sample
            self._write_idx = (self._write_idx + 1) % self.capacity
            if self._count < self.capacity:
                self._count += 1

    def snapshot(self, n: int | None = None) -> tuple[Sample, ...]:
        """Return the most recent *n* samples, oldest first.

        ``None`` returns everything buffered.  Fewer than *n* samples are
        returned while the buffer is filling; an empty buffer yields ``()``.
        """
        with self._lock:
            count = self._count
            if n is None:
                n = count
            n = min(max(0, int(n)), count)
            if n == 0:
                return ()
            start = (self._write_idx - n) % self.capacity
            if start + n <= self.capacity:
                window = self._slots[start : start + n]
            else:
                window = self._slots[start:] + self._slots[: n - (self.capacity - start)]
        return tuple(window)  # type: ignore[arg-type]


class SensorBuffers:
    """The fixed set of per-sensor buffers, created once at startup."""

    def __init__(self, sensor_ids: Iterable[str], capacity: int):
        self.capacity = int(capacity)
        self._buffers: dict[str, SampleBuffer] = {
            sensor_id: SampleBuffer(self.capacity) for sensor_id in sensor_ids
        }
        if not self._buffers:
            raise ValueError("SensorBuffers needs at least one sensor id")

    @property
    def sensor_ids(self) -> tuple[str, ...]:
        return tuple(self._buffers)

    def get(self, sensor_id: str) -> SampleBuffer:
        try:
            return self._buffers[sensor_id]
        except KeyError:
            raise KeyError(f"Unknown sensor id: {sensor_id!r}") from None

    def push(self, sensor_id: str, sample: Sample) -> None:
        self.get(sensor_id).push(sample)

    def counts(self) -> dict[str, int]:
        return {sensor_id: len(buf) for sensor_id, buf in self._buffers.items()}
