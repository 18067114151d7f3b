"""Connectivity monitoring and link-quality classification."""

from __future__ import annotations

import logging
from collections.abc import Callable
from threading import Lock, RLock
from typing import Protocol

from .config import StatusMonitorConfig
from .eventbus import EventBus, SubscriptionHandle
from .models import LinkReading, LinkType, NetworkStatus
from .telemetry import NetworkStatusChangedEvent, NullTelemetrySink, TelemetrySink

logger = logging.getLogger(__name__)

StatusListener = Callable[[NetworkStatus], None]

_LINK_TYPES: dict[str, LinkType] = {
    "wifi": LinkType.WIFI,
    "cellular": LinkType.CELLULAR,
    "ethernet": LinkType.WIRED,
    "wired": LinkType.WIRED,
}


class ConnectivityProbe(Protocol):
    """Capability that actively samples the platform's connectivity state."""

    async def probe(self) -> LinkReading:  # pragma: no cover - protocol
        """Return the current raw link reading."""
        ...


def classify_reading(
    reading: LinkReading, config: StatusMonitorConfig | None = None
) -> NetworkStatus:
    """Derive a :class:`NetworkStatus` from a raw platform *reading*."""
    cfg = config or StatusMonitorConfig()
    link_type = _LINK_TYPES.get(reading.link_type.strip().lower(), LinkType.UNKNOWN)
    online = reading.connected and reading.internet_reachable is True
    return NetworkStatus(
        online=online,
        link_type=link_type,
        degraded=_is_degraded(reading, link_type, cfg),
    )


def _is_degraded(reading: LinkReading, link_type: LinkType, cfg: StatusMonitorConfig) -> bool:
    if link_type is LinkType.CELLULAR and reading.cellular_generation:
        return reading.cellular_generation.strip().lower() in cfg.slow_cellular_generations
    if link_type is LinkType.WIFI and reading.wifi_strength_dbm is not None:
        return reading.wifi_strength_dbm < cfg.weak_wifi_dbm
    return False


class StatusMonitor:
    """Tracks the latest network snapshot and notifies listeners on material change.

    ``observe`` may be called from whatever thread the platform delivers
    connectivity events on; listeners run synchronously on that thread and
    must not block.
    """

    def __init__(
        self,
        probe: ConnectivityProbe | None = None,
        *,
        config: StatusMonitorConfig | None = None,
        telemetry: TelemetrySink | None = None,
        initial: NetworkStatus | None = None,
    ) -> None:
        """Create a monitor backed by an optional active *probe*."""
        self._probe = probe
        self._config = config or StatusMonitorConfig()
        self._telemetry = telemetry or NullTelemetrySink()
        self._current = initial or NetworkStatus(
            online=True, link_type=LinkType.UNKNOWN, degraded=False
        )
        self._lock = Lock()
        self._delivery_lock = RLock()
        self._bus: EventBus[NetworkStatus] = EventBus(name="network-status")

    def current(self) -> NetworkStatus:
        """Return the last known snapshot without probing."""
        with self._lock:
            return self._current

    def subscribe(self, listener: StatusListener) -> SubscriptionHandle:
        """Register *listener* for materially different snapshots."""
        return self._bus.subscribe(listener)

    def observe(self, reading: LinkReading) -> NetworkStatus:
        """Record a pushed platform *reading* and return the resulting snapshot."""
        return self._apply(classify_reading(reading, self._config))

    async def refresh(self) -> NetworkStatus:
        """Actively probe connectivity and return the updated snapshot.

        A failing probe leaves the previous snapshot in place.
        """
        if self._probe is None:
            return self.current()
        try:
            reading = await self._probe.probe()
        except Exception:
            logger.exception("Connectivity probe failed; keeping last known status")
            return self.current()
        return self.observe(reading)

    def close(self) -> None:
        """Detach every listener."""
        self._bus.clear()

    def _apply(self, status: NetworkStatus) -> NetworkStatus:
        # Held across delivery so listeners see snapshots in observation order.
        with self._delivery_lock:
            with self._lock:
                changed = not self._current.same_condition(status)
                self._current = status
            if not changed:
                return status
            logger.info(
                "Network status changed: online=%s link=%s degraded=%s",
                status.online,
                status.link_type.value,
                status.degraded,
            )
            self._telemetry.record_event(
                NetworkStatusChangedEvent(
                    online=status.online, link_type=status.link_type, degraded=status.degraded
                )
            )
            self._bus.publish(status)
            return status
