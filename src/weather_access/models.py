"""Typed value objects shared by the network, retry, and cache layers."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum


def _utc_now() -> datetime:
    return datetime.now(UTC)


class LinkType(str, Enum):
    """Physical link classes ordered from richest to poorest."""

    WIRED = "wired"
    WIFI = "wifi"
    CELLULAR = "cellular"
    UNKNOWN = "unknown"


class LocationAccuracy(str, Enum):
    """Accuracy tier requested from the location-sampling collaborator."""

    HIGHEST = "highest"
    HIGH = "high"
    BALANCED = "balanced"
    LOW = "low"


class CacheStrategy(str, Enum):
    """How eagerly callers should lean on cached data for the current link."""

    AGGRESSIVE = "aggressive"
    BALANCED = "balanced"
    MINIMAL = "minimal"


@dataclass(frozen=True, slots=True)
class LinkReading:
    """Raw connectivity state as reported by a platform probe."""

    connected: bool
    internet_reachable: bool | None = None
    link_type: str = "unknown"
    cellular_generation: str | None = None
    wifi_strength_dbm: float | None = None


@dataclass(frozen=True, slots=True)
class NetworkStatus:
    """Immutable snapshot of classified link quality."""

    online: bool
    link_type: LinkType
    degraded: bool
    observed_at: datetime = field(default_factory=_utc_now)

    def same_condition(self, other: NetworkStatus) -> bool:
        """Return ``True`` when *other* matches on the discriminating fields."""

        return (
            self.online == other.online
            and self.link_type == other.link_type
            and self.degraded == other.degraded
        )


@dataclass(frozen=True, slots=True)
class FetchParams:
    """Timeout and location-sampling parameters tuned to link quality."""

    timeout_ms: int
    sample_interval_ms: int
    min_movement_meters: float
    accuracy: LocationAccuracy
    cache_strategy: CacheStrategy = CacheStrategy.BALANCED


@dataclass(frozen=True, slots=True)
class Coordinates:
    """A geographic point in decimal degrees."""

    latitude: float
    longitude: float


@dataclass(frozen=True, slots=True)
class LocationSample:
    """A location fix together with its reported horizontal accuracy."""

    latitude: float
    longitude: float
    accuracy_meters: float = 100.0

    @property
    def coordinates(self) -> Coordinates:
        """Return the sample position without its accuracy."""

        return Coordinates(latitude=self.latitude, longitude=self.longitude)


@dataclass(frozen=True, slots=True)
class FetchResult[ValueT]:
    """Value returned by the resilient client along with its provenance."""

    value: ValueT
    fetched_at: datetime
    cache_hit: bool
    attempts: int = 0

    def mark_cache_hit(self) -> FetchResult[ValueT]:
        """Return a copy of this result flagged as a cache hit."""

        if self.cache_hit:
            return self
        return replace(self, cache_hit=True, attempts=0)


@dataclass(frozen=True, slots=True)
class CacheEntryStats:
    """Diagnostic view of a single cache entry."""

    key: str
    age_ms: float
    accuracy_meters: float
    ttl_ms: int
    valid: bool


@dataclass(frozen=True, slots=True)
class CacheStats:
    """Diagnostic view of the whole cache."""

    size: int
    entries: Sequence[CacheEntryStats]
