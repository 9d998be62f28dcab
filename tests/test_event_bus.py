from __future__ import annotations

from trainflow.event_bus import MessageBus


def test_subscribers_called_in_order() -> None:
    bus = MessageBus()
    calls: list[tuple[str, str, object]] = []
    bus.subscribe(lambda topic, value: calls.append(("first", topic, value)))
    bus.subscribe(lambda topic, value: calls.append(("second", topic, value)))

    bus.publish("t", {"a": 1})

    assert calls == [("first", "t", {"a": 1}), ("second", "t", {"a": 1})]
    assert len(bus) == 2


def test_failing_subscriber_does_not_block_others() -> None:
    bus = MessageBus()
    received: list[str] = []

    def broken(topic, value):
        raise RuntimeError("boom")

    bus.subscribe(broken)
    bus.subscribe(lambda topic, value: received.append(topic))

    bus.publish("t", None)

    assert received == ["t"]


def test_unsubscribe_stops_delivery() -> None:
    bus = MessageBus()
    received: list[str] = []
    unsubscribe = bus.subscribe(lambda topic, value: received.append(topic))

    bus.publish("one", None)
    unsubscribe()
    bus.publish("two", None)
    unsubscribe()

    assert received == ["one"]
    assert len(bus) == 0


def test_subscriber_added_during_publish_waits_for_next_message() -> None:
    bus = MessageBus()
    late: list[str] = []

    def adder(topic, value):
        bus.subscribe(lambda t, v: late.append(t))

    bus.subscribe(adder)
    bus.publish("first", None)
    assert late == []
    bus.publish("second", None)
    assert late == ["second"]
