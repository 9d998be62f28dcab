"""Static topic routing table.

Maps inbound topics to what the ingestion path does with them: buffer a
sensor sample, replace the latest train state, or keep a last-known value only.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from .config import TopicsConfig


class RouteKind(StrEnum):
    SAMPLE = "sample"
    TRAIN_STATE = "train_state"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class Route:
    kind: RouteKind
    sensor_id: str | None = None


_OTHER = Route(RouteKind.OTHER)


class TopicRoutes:
    def __init__(
        self,
        sensor_topics: dict[str, str],
        train_state_topic: str,
        command_topic: str,
        sensor_prefix: str | None = None,
    ):
        self._sensor_topics = dict(sensor_topics)
        self.sensor_prefix = sensor_prefix
        self.train_state_topic = train_state_topic
        self.command_topic = command_topic

    @classmethod
    def from_config(cls, cfg: TopicsConfig) -> TopicRoutes:
        return cls(
            sensor_topics={cfg.sensor_topic(sid): sid for sid in cfg.sensor_ids},
            train_state_topic=cfg.train_state,
            command_topic=cfg.command,
            sensor_prefix=cfg.sensor_prefix,
        )

    @property
    def sensor_ids(self) -> tuple[str, ...]:
        return tuple(self._sensor_topics.values())

    def classify(self, topic: str) -> Route:
        sensor_id = self._sensor_topics.get(topic)
        if sensor_id is not None:
            return Route(RouteKind.SAMPLE, sensor_id)
        if topic == self.train_state_topic:
            return Route(RouteKind.TRAIN_STATE)
        return _OTHER

    def is_observer_topic(self, topic: str) -> bool:
        """Whether messages on *topic* are forwarded to live observers.

        Any topic under the sensor prefix qualifies, including sensors that
        have no buffer configured.
        """
        if self.sensor_prefix and topic.startswith(self.sensor_prefix):
            return True
        return self.classify(topic).kind is not RouteKind.OTHER
