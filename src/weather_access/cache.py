"""Geo-keyed in-memory cache whose TTL scales with location accuracy."""

from __future__ import annotations

import json
import logging
import math
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from threading import Lock
from typing import Final

from .config import GeoCacheConfig
from .errors import CacheError
from .models import CacheEntryStats, CacheStats, Coordinates, LocationSample
from .telemetry import CacheLookupMetric, CacheSweepMetric, NullTelemetrySink, TelemetrySink

logger = logging.getLogger(__name__)

KEY_PRECISION: Final[int] = 4
DEFAULT_TOLERANCE_DEGREES: Final[float] = 0.001
DEFAULT_ACCURACY_METERS: Final[float] = 100.0
ACCURACY_REFERENCE_METERS: Final[float] = 100.0
ACCURACY_IMPROVEMENT_METERS: Final[float] = 20.0

Point = Coordinates | LocationSample
CacheParams = Mapping[str, object]


@dataclass(frozen=True, slots=True)
class CacheEntry[ValueT]:
    """A cached value with the sample it was captured for."""

    value: ValueT
    captured_at: float
    sample_accuracy_meters: float
    ttl_ms: int
    key_coordinates: Coordinates

    def age_ms(self, now: float) -> float:
        """Return the entry age in milliseconds at clock reading *now*."""
        return (now - self.captured_at) * 1000.0

    def is_fresh(self, now: float) -> bool:
        """Return ``True`` while the entry is younger than its TTL."""
        return self.age_ms(now) < self.ttl_ms


def make_cache_key(coords: Point, params: CacheParams | None = None) -> str:
    """Return the cache key for *coords* rounded to four decimals plus a *params* fingerprint."""
    lat = _rounded(coords.latitude)
    lon = _rounded(coords.longitude)
    key = f"{lat:.{KEY_PRECISION}f},{lon:.{KEY_PRECISION}f}"
    if params:
        fingerprint = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
        key = f"{key}_{fingerprint}"
    return key


def compute_ttl_ms(accuracy_meters: float, config: GeoCacheConfig) -> int:
    """Return the clamped TTL for a sample of *accuracy_meters*.

    Accuracy at or beyond 100 m yields the base TTL; sharper fixes push the
    TTL toward ``max_ttl_ms``.
    """
    factor = max(0.0, ACCURACY_REFERENCE_METERS - accuracy_meters) / ACCURACY_REFERENCE_METERS
    raw = config.base_ttl_ms + config.base_ttl_ms * factor * config.accuracy_multiplier
    return int(round(min(max(raw, config.min_ttl_ms), config.max_ttl_ms)))


class GeoCache[ValueT]:
    """Thread-safe cache keyed by rounded coordinates.

    Expiry is lazy: stale or out-of-tolerance entries are deleted when read.
    :meth:`sweep` compacts the whole store and is meant to be driven by the
    owner; the cache never starts timers of its own.
    """

    def __init__(
        self,
        config: GeoCacheConfig | None = None,
        *,
        clock: Callable[[], float] | None = None,
        tolerance_degrees: float = DEFAULT_TOLERANCE_DEGREES,
        telemetry: TelemetrySink | None = None,
    ) -> None:
        """Create an empty cache with optional *config* and injectable *clock* (seconds)."""
        if tolerance_degrees < 0:
            raise CacheError("tolerance_degrees must be non-negative")
        self._config = config or GeoCacheConfig()
        self._clock = clock or time.monotonic
        self._tolerance = tolerance_degrees
        self._telemetry = telemetry or NullTelemetrySink()
        self._store: dict[str, CacheEntry[ValueT]] = {}
        self._lock = Lock()
        self._closed = False

    @property
    def config(self) -> GeoCacheConfig:
        """Return the TTL configuration."""
        return self._config

    def ttl_for(self, accuracy_meters: float | None) -> int:
        """Return the TTL a sample of *accuracy_meters* would receive."""
        return compute_ttl_ms(_normalise_accuracy(accuracy_meters), self._config)

    def get(
        self,
        coords: Point,
        accuracy_meters: float | None = None,
        params: CacheParams | None = None,
    ) -> ValueT | None:
        """Return the cached value for *coords* or ``None`` on a miss."""
        _validate_point(coords)
        key = make_cache_key(coords, params)
        now = self._clock()
        dropped: str | None = None
        entry: CacheEntry[ValueT] | None
        with self._lock:
            self._ensure_open()
            entry = self._store.get(key)
            if entry is not None and not entry.is_fresh(now):
                del self._store[key]
                entry, dropped = None, "expired"
            elif entry is not None and self._moved(coords, entry.key_coordinates):
                del self._store[key]
                entry, dropped = None, "out of tolerance"

        if dropped is not None:
            logger.debug("Evicted cache entry %s on read (%s)", key, dropped)
        self._telemetry.record_metric(CacheLookupMetric(key=key, hit=entry is not None))
        if entry is None:
            return None
        if accuracy_meters is not None and accuracy_meters < (
            entry.sample_accuracy_meters - ACCURACY_IMPROVEMENT_METERS
        ):
            logger.debug(
                "Location accuracy improved from %.0fm to %.0fm for %s; entry may need refresh",
                entry.sample_accuracy_meters,
                accuracy_meters,
                key,
            )
        return entry.value

    def put(
        self,
        coords: Point,
        accuracy_meters: float | None,
        value: ValueT,
        params: CacheParams | None = None,
    ) -> CacheEntry[ValueT]:
        """Store *value* for *coords*, replacing any entry under the same key."""
        _validate_point(coords)
        accuracy = _normalise_accuracy(accuracy_meters)
        key = make_cache_key(coords, params)
        entry = CacheEntry(
            value=value,
            captured_at=self._clock(),
            sample_accuracy_meters=accuracy,
            ttl_ms=compute_ttl_ms(accuracy, self._config),
            key_coordinates=Coordinates(latitude=coords.latitude, longitude=coords.longitude),
        )
        with self._lock:
            self._ensure_open()
            self._store[key] = entry
        logger.debug(
            "Cached %s with accuracy %.0fm, TTL %ds", key, accuracy, entry.ttl_ms // 1000
        )
        return entry

    def invalidate(self, coords: Point, params: CacheParams | None = None) -> bool:
        """Drop the entry for *coords*; return ``True`` when one existed."""
        key = make_cache_key(coords, params)
        with self._lock:
            self._ensure_open()
            removed = self._store.pop(key, None) is not None
        if removed:
            logger.debug("Invalidated cache entry %s", key)
        return removed

    def sweep(self) -> int:
        """Remove every expired entry and return how many were dropped."""
        now = self._clock()
        with self._lock:
            self._ensure_open()
            stale = [key for key, entry in self._store.items() if not entry.is_fresh(now)]
            for key in stale:
                del self._store[key]
            remaining = len(self._store)
        if stale:
            logger.debug("Cache sweep removed %d entr(ies); %d remain", len(stale), remaining)
        self._telemetry.record_metric(CacheSweepMetric(removed=len(stale), remaining=remaining))
        return len(stale)

    def clear(self) -> int:
        """Drop every entry and return how many were held."""
        with self._lock:
            self._ensure_open()
            count = len(self._store)
            self._store.clear()
        return count

    def stats(self) -> CacheStats:
        """Return a diagnostic view of the store."""
        now = self._clock()
        with self._lock:
            self._ensure_open()
            items = list(self._store.items())
        return CacheStats(
            size=len(items),
            entries=[
                CacheEntryStats(
                    key=key,
                    age_ms=entry.age_ms(now),
                    accuracy_meters=entry.sample_accuracy_meters,
                    ttl_ms=entry.ttl_ms,
                    valid=entry.is_fresh(now),
                )
                for key, entry in items
            ],
        )

    def close(self) -> None:
        """Release all entries; further use raises :class:`CacheError`."""
        with self._lock:
            self._store.clear()
            self._closed = True

    @property
    def closed(self) -> bool:
        """Return ``True`` once :meth:`close` has been called."""
        return self._closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def _moved(self, requested: Point, stored: Coordinates) -> bool:
        return (
            abs(requested.latitude - stored.latitude) > self._tolerance
            or abs(requested.longitude - stored.longitude) > self._tolerance
        )

    def _ensure_open(self) -> None:
        if self._closed:
            raise CacheError("GeoCache has been closed")


def _rounded(value: float) -> float:
    # Adding 0.0 folds -0.0 into 0.0 so both sides of the equator share keys.
    return round(value, KEY_PRECISION) + 0.0


def _normalise_accuracy(accuracy_meters: float | None) -> float:
    if accuracy_meters is None:
        return DEFAULT_ACCURACY_METERS
    if math.isnan(accuracy_meters) or accuracy_meters < 0:
        raise CacheError(f"accuracy_meters must be a non-negative number, got {accuracy_meters}")
    return float(accuracy_meters)


def _validate_point(coords: Point) -> None:
    lat, lon = coords.latitude, coords.longitude
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise CacheError(f"Coordinates must be finite, got ({lat}, {lon})")
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        raise CacheError(f"Coordinates out of range: ({lat}, {lon})")
