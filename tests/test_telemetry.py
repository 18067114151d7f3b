"""Tests for telemetry buffering and the listener registry."""

from __future__ import annotations

from weather_access.errors import ErrorKind
from weather_access.eventbus import EventBus
from weather_access.models import LinkType
from weather_access.telemetry import (
    BufferedTelemetrySink,
    CacheSweepMetric,
    NetworkStatusChangedEvent,
    RetryAttemptEvent,
)


def test_buffered_sink_keeps_bounded_history() -> None:
    sink = BufferedTelemetrySink(history=2)
    for attempt in range(1, 4):
        sink.record_event(
            RetryAttemptEvent(
                context="forecast", attempt=attempt, kind=ErrorKind.TIMEOUT, delay_ms=1
            )
        )
    sink.record_metric(CacheSweepMetric(removed=1, remaining=0))

    snapshot = sink.snapshot()

    assert [event.attempt for event in sink.events_of(RetryAttemptEvent)] == [2, 3]
    assert len(snapshot.metrics) == 1
    assert snapshot.events[0].emitted_at <= snapshot.generated_at


def test_events_of_filters_by_type() -> None:
    sink = BufferedTelemetrySink()
    sink.record_event(
        NetworkStatusChangedEvent(online=False, link_type=LinkType.WIFI, degraded=False)
    )
    sink.record_event(
        RetryAttemptEvent(context="current", attempt=1, kind=ErrorKind.CONNECTION, delay_ms=300)
    )

    assert len(sink.events_of(NetworkStatusChangedEvent)) == 1
    assert len(sink.events_of(RetryAttemptEvent)) == 1


def test_event_bus_delivers_in_subscription_order() -> None:
    bus: EventBus[int] = EventBus(name="numbers")
    seen: list[str] = []
    bus.subscribe(lambda value: seen.append(f"first:{value}"))
    bus.subscribe(lambda value: seen.append(f"second:{value}"))

    delivered = bus.publish(7)

    assert delivered == 2
    assert seen == ["first:7", "second:7"]


def test_event_bus_handle_detaches_listener() -> None:
    bus: EventBus[int] = EventBus()
    seen: list[int] = []
    handle = bus.subscribe(seen.append)

    handle.close()
    bus.publish(1)

    assert seen == []
    assert len(bus) == 0
