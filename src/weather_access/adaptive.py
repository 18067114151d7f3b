"""Network-aware retry and sampling parameters."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Final

from .config import RetryPolicy
from .models import CacheStrategy, FetchParams, LinkType, LocationAccuracy, NetworkStatus
from .status import StatusMonitor

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _Tier:
    timeout_ms: int
    max_attempts: int
    base_delay_ms: int
    max_delay_ms: int


# Richest first; ordering is strict on every field at equal degradation.
_TIERS: Final[dict[LinkType, _Tier]] = {
    LinkType.WIRED: _Tier(timeout_ms=12000, max_attempts=5, base_delay_ms=200, max_delay_ms=25000),
    LinkType.WIFI: _Tier(timeout_ms=10000, max_attempts=4, base_delay_ms=300, max_delay_ms=20000),
    LinkType.CELLULAR: _Tier(
        timeout_ms=8000, max_attempts=3, base_delay_ms=500, max_delay_ms=15000
    ),
    LinkType.UNKNOWN: _Tier(
        timeout_ms=6000, max_attempts=2, base_delay_ms=1000, max_delay_ms=10000
    ),
}

OFFLINE_TIMEOUT_MS: Final[int] = 1000
_HEALTHY_MULTIPLIER: Final[float] = 1.5
_DEGRADED_MULTIPLIER: Final[float] = 2.0
_DEGRADED_TIMEOUT_FACTOR: Final[float] = 0.75
_DEGRADED_BASE_DELAY_CAP_MS: Final[int] = 2000

_OFFLINE_POLICY: Final[RetryPolicy] = RetryPolicy(
    max_attempts=0, base_delay_ms=0, max_delay_ms=0, backoff_multiplier=1.0
)

_OFFLINE_PARAMS: Final[FetchParams] = FetchParams(
    timeout_ms=5000,
    sample_interval_ms=5000,
    min_movement_meters=50,
    accuracy=LocationAccuracy.BALANCED,
)
_CONSTRAINED_PARAMS: Final[FetchParams] = FetchParams(
    timeout_ms=15000,
    sample_interval_ms=10000,
    min_movement_meters=15,
    accuracy=LocationAccuracy.HIGH,
)
_WIFI_PARAMS: Final[FetchParams] = FetchParams(
    timeout_ms=25000,
    sample_interval_ms=20000,
    min_movement_meters=3,
    accuracy=LocationAccuracy.HIGHEST,
)
_DEFAULT_PARAMS: Final[FetchParams] = FetchParams(
    timeout_ms=20000,
    sample_interval_ms=15000,
    min_movement_meters=5,
    accuracy=LocationAccuracy.HIGHEST,
)


class AdaptiveConfigProvider:
    """Derives per-call retry policy and sampling parameters from link quality.

    Offline links get a zero attempt budget so callers fall back to cached data
    immediately. Degraded links trade thoroughness for responsiveness: shorter
    timeouts, one fewer attempt and a larger initial back-off.
    """

    def __init__(
        self,
        monitor: StatusMonitor | None = None,
        *,
        override: RetryPolicy | None = None,
    ) -> None:
        """Create a provider reading *monitor* with an optional fixed *override*."""
        self._monitor = monitor
        self._override = override

    def policy_for(self, status: NetworkStatus) -> RetryPolicy:
        """Return a fresh retry policy for *status*."""
        if not status.online:
            return _OFFLINE_POLICY
        if self._override is not None:
            return self._override
        tier = _TIERS[status.link_type]
        if not status.degraded:
            return RetryPolicy(
                max_attempts=tier.max_attempts,
                base_delay_ms=tier.base_delay_ms,
                max_delay_ms=tier.max_delay_ms,
                backoff_multiplier=_HEALTHY_MULTIPLIER,
            )
        return RetryPolicy(
            max_attempts=max(tier.max_attempts - 1, 1),
            base_delay_ms=min(tier.base_delay_ms * 2, _DEGRADED_BASE_DELAY_CAP_MS),
            max_delay_ms=tier.max_delay_ms,
            backoff_multiplier=_DEGRADED_MULTIPLIER,
        )

    def timeout_ms_for(self, status: NetworkStatus) -> int:
        """Return the per-attempt transport timeout for *status*."""
        if not status.online:
            return OFFLINE_TIMEOUT_MS
        timeout = _TIERS[status.link_type].timeout_ms
        if status.degraded:
            return int(timeout * _DEGRADED_TIMEOUT_FACTOR)
        return timeout

    def fetch_params_for(self, status: NetworkStatus) -> FetchParams:
        """Return location-sampling parameters for *status*."""
        return replace(
            self._sampling_params_for(status), cache_strategy=self.cache_strategy_for(status)
        )

    def cache_strategy_for(self, status: NetworkStatus) -> CacheStrategy:
        """Return how heavily callers should rely on cached data for *status*.

        Offline and degraded links favour cached data; wired and Wi-Fi links
        keep reliance on it minimal.
        """
        if not status.online or status.degraded:
            return CacheStrategy.AGGRESSIVE
        if status.link_type in (LinkType.WIRED, LinkType.WIFI):
            return CacheStrategy.MINIMAL
        return CacheStrategy.BALANCED

    def current_status(self) -> NetworkStatus:
        """Return the monitor's latest snapshot."""
        if self._monitor is None:
            raise RuntimeError("AdaptiveConfigProvider was created without a StatusMonitor")
        return self._monitor.current()

    def current_policy(self) -> RetryPolicy:
        """Return the policy for the monitor's latest snapshot."""
        status = self.current_status()
        policy = self.policy_for(status)
        logger.debug(
            "Adaptive policy for online=%s link=%s degraded=%s: %s",
            status.online,
            status.link_type.value,
            status.degraded,
            policy,
        )
        return policy

    def current_fetch_params(self) -> FetchParams:
        """Return fetch parameters for the monitor's latest snapshot."""
        return self.fetch_params_for(self.current_status())

    def _sampling_params_for(self, status: NetworkStatus) -> FetchParams:
        if not status.online:
            return _OFFLINE_PARAMS
        if status.degraded or status.link_type is LinkType.CELLULAR:
            return _CONSTRAINED_PARAMS
        if status.link_type is LinkType.WIFI:
            return _WIFI_PARAMS
        return _DEFAULT_PARAMS
