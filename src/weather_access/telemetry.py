"""Telemetry hook interfaces for structured logging and metrics."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from threading import Lock
from typing import Protocol

from .errors import ErrorKind
from .models import LinkType


@dataclass(frozen=True, slots=True)
class TelemetrySignal:
    """Base class for telemetry signals."""

    emitted_at: datetime = field(init=False)

    def __post_init__(self) -> None:
        """Stamp the signal with the UTC time it was emitted."""
        object.__setattr__(self, "emitted_at", datetime.now(UTC))


@dataclass(frozen=True, slots=True)
class TelemetryEvent(TelemetrySignal):
    """Represents a discrete telemetry event."""


@dataclass(frozen=True, slots=True)
class TelemetryMetric(TelemetrySignal):
    """Represents a telemetry metric sample."""


@dataclass(frozen=True, slots=True)
class RetryAttemptEvent(TelemetryEvent):
    """Event emitted when a failed attempt is scheduled for another try."""

    context: str
    attempt: int
    kind: ErrorKind
    delay_ms: float
    message: str | None = None


@dataclass(frozen=True, slots=True)
class RetryExhaustedEvent(TelemetryEvent):
    """Event emitted when an operation fails terminally."""

    context: str
    attempts: int
    kind: ErrorKind
    retryable: bool
    message: str | None = None


@dataclass(frozen=True, slots=True)
class NetworkStatusChangedEvent(TelemetryEvent):
    """Event emitted when the classified link condition changes."""

    online: bool
    link_type: LinkType
    degraded: bool


@dataclass(frozen=True, slots=True)
class CacheLookupMetric(TelemetryMetric):
    """Metric sample describing the outcome of a cache lookup."""

    key: str
    hit: bool


@dataclass(frozen=True, slots=True)
class CacheSweepMetric(TelemetryMetric):
    """Metric emitted after a cache compaction pass."""

    removed: int
    remaining: int


class TelemetrySink(Protocol):
    """Protocol for emitting structured telemetry signals."""

    def record_event(self, event: TelemetryEvent) -> None:  # pragma: no cover - protocol
        """Record a structured event for diagnostics."""
        ...

    def record_metric(self, metric: TelemetryMetric) -> None:  # pragma: no cover - protocol
        """Record a metric sample."""
        ...


class NullTelemetrySink(TelemetrySink):
    """Telemetry sink that drops all signals."""

    def record_event(self, event: TelemetryEvent) -> None:
        """Drop the event without side effects."""

    def record_metric(self, metric: TelemetryMetric) -> None:
        """Drop the metric without side effects."""


@dataclass(frozen=True, slots=True)
class TelemetrySnapshot:
    """Immutable snapshot of recently buffered telemetry."""

    generated_at: datetime
    events: list[TelemetryEvent]
    metrics: list[TelemetryMetric]


class BufferedTelemetrySink(TelemetrySink):
    """Thread-safe telemetry sink retaining a bounded history of signals."""

    def __init__(self, *, history: int = 100) -> None:
        """Initialise the sink with bounded history capacity."""
        self._events: deque[TelemetryEvent] = deque(maxlen=history)
        self._metrics: deque[TelemetryMetric] = deque(maxlen=history)
        self._lock = Lock()

    def record_event(self, event: TelemetryEvent) -> None:
        """Buffer a structured telemetry event."""
        with self._lock:
            self._events.append(event)

    def record_metric(self, metric: TelemetryMetric) -> None:
        """Buffer a metric sample."""
        with self._lock:
            self._metrics.append(metric)

    def events_of[SignalT: TelemetryEvent](self, kind: type[SignalT]) -> list[SignalT]:
        """Return buffered events of type *kind*, oldest first."""
        with self._lock:
            return [event for event in self._events if isinstance(event, kind)]

    def snapshot(self) -> TelemetrySnapshot:
        """Return an immutable snapshot of recent telemetry buffers."""
        with self._lock:
            return TelemetrySnapshot(
                generated_at=datetime.now(UTC),
                events=list(self._events),
                metrics=list(self._metrics),
            )
