"""Configuration schemas for the weather data-access layer."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    NonNegativeInt,
    PositiveInt,
    model_validator,
)

_ENV_PREFIX = "WEATHER_ACCESS_"


def _read_overrides(
    source: Mapping[str, str],
    fields: Mapping[str, tuple[str, type[int] | type[float]]],
) -> dict[str, int | float]:
    """Parse numeric overrides from *source*, naming the variable on failure."""
    updates: dict[str, int | float] = {}
    for env_key, (field, caster) in fields.items():
        raw = source.get(env_key)
        if raw is None:
            continue
        try:
            updates[field] = caster(raw)
        except ValueError as exc:
            kind = "an integer" if caster is int else "a floating point value"
            raise ValueError(f"{env_key} must be {kind}") from exc
    return updates


class RetryPolicy(BaseModel):
    """Immutable backoff policy applied to a single operation invocation."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_attempts: NonNegativeInt = Field(
        default=4, description="Maximum number of operation invocations (0 => never invoke)"
    )
    base_delay_ms: NonNegativeInt = Field(
        default=500, description="Delay before the second attempt in milliseconds"
    )
    max_delay_ms: NonNegativeInt = Field(
        default=15000, description="Upper bound on any single backoff delay in milliseconds"
    )
    backoff_multiplier: float = Field(
        default=1.5,
        ge=1.0,
        description="Growth factor applied to the delay after each failed attempt",
    )

    @model_validator(mode="after")
    def _ensure_delay_bounds(self) -> RetryPolicy:
        """Reject policies whose ceiling sits below their base delay."""
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be greater than or equal to base_delay_ms")
        return self

    @classmethod
    def from_environment(cls, *, env: Mapping[str, str] | None = None) -> RetryPolicy | None:
        """Build an override policy from environment variables.

        Returns ``None`` when none of the variables are set so the adaptive
        default stays in effect.

        Recognised variables:
            - ``WEATHER_ACCESS_MAX_ATTEMPTS`` (integer)
            - ``WEATHER_ACCESS_BASE_DELAY_MS`` (integer)
            - ``WEATHER_ACCESS_MAX_DELAY_MS`` (integer)
            - ``WEATHER_ACCESS_BACKOFF_MULTIPLIER`` (float)
        """
        source = dict(os.environ if env is None else env)
        updates = _read_overrides(
            source,
            {
                f"{_ENV_PREFIX}MAX_ATTEMPTS": ("max_attempts", int),
                f"{_ENV_PREFIX}BASE_DELAY_MS": ("base_delay_ms", int),
                f"{_ENV_PREFIX}MAX_DELAY_MS": ("max_delay_ms", int),
                f"{_ENV_PREFIX}BACKOFF_MULTIPLIER": ("backoff_multiplier", float),
            },
        )
        if not updates:
            return None
        return cls(**updates)


class GeoCacheConfig(BaseModel):
    """TTL tuning for the accuracy-aware geo cache."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    base_ttl_ms: PositiveInt = Field(
        default=10 * 60 * 1000, description="TTL for a sample at or beyond 100 m accuracy"
    )
    accuracy_multiplier: float = Field(
        default=2.0,
        ge=0.0,
        description="How strongly better accuracy extends the TTL above the base",
    )
    min_ttl_ms: PositiveInt = Field(
        default=5 * 60 * 1000, description="Lower clamp for computed TTLs"
    )
    max_ttl_ms: PositiveInt = Field(
        default=60 * 60 * 1000, description="Upper clamp for computed TTLs"
    )

    @model_validator(mode="after")
    def _ensure_ttl_bounds(self) -> GeoCacheConfig:
        """Validate that the clamp range is well formed."""
        if self.min_ttl_ms > self.max_ttl_ms:
            raise ValueError("min_ttl_ms must not exceed max_ttl_ms")
        return self

    @classmethod
    def from_environment(
        cls,
        *,
        env: Mapping[str, str] | None = None,
        defaults: GeoCacheConfig | None = None,
    ) -> GeoCacheConfig:
        """Construct a cache configuration from environment variables.

        Recognised variables:
            - ``WEATHER_ACCESS_CACHE_BASE_TTL_MS`` (integer)
            - ``WEATHER_ACCESS_CACHE_ACCURACY_MULTIPLIER`` (float)
            - ``WEATHER_ACCESS_CACHE_MIN_TTL_MS`` (integer)
            - ``WEATHER_ACCESS_CACHE_MAX_TTL_MS`` (integer)
        """
        source = dict(os.environ if env is None else env)
        updates = _read_overrides(
            source,
            {
                f"{_ENV_PREFIX}CACHE_BASE_TTL_MS": ("base_ttl_ms", int),
                f"{_ENV_PREFIX}CACHE_ACCURACY_MULTIPLIER": ("accuracy_multiplier", float),
                f"{_ENV_PREFIX}CACHE_MIN_TTL_MS": ("min_ttl_ms", int),
                f"{_ENV_PREFIX}CACHE_MAX_TTL_MS": ("max_ttl_ms", int),
            },
        )
        base = defaults or cls()
        return cls(**{**base.model_dump(), **updates})


WEATHER_CACHE_CONFIG = GeoCacheConfig()
LOCATION_CACHE_CONFIG = GeoCacheConfig(
    base_ttl_ms=30 * 60 * 1000,
    accuracy_multiplier=1.5,
    min_ttl_ms=10 * 60 * 1000,
    max_ttl_ms=4 * 60 * 60 * 1000,
)


class StatusMonitorConfig(BaseModel):
    """Thresholds used to mark an online link as degraded."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    weak_wifi_dbm: float = Field(
        default=-70.0,
        le=0.0,
        description="Wi-Fi signal strength (dBm) below which the link counts as degraded",
    )
    slow_cellular_generations: frozenset[str] = Field(
        default=frozenset({"2g", "3g"}),
        description="Cellular generations treated as degraded",
    )


class ClassifierConfig(BaseModel):
    """Defaults applied while classifying raw failures."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    default_retry_after_seconds: PositiveInt = Field(
        default=60,
        description="Back-off reported for HTTP 429 responses that omit Retry-After",
    )


class HttpClientConfig(BaseModel):
    """HTTP client tuning parameters for weather provider requests."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    base_url: HttpUrl | None = Field(
        default=None, description="Optional root URL prepended to relative request paths"
    )
    user_agent: str = Field(
        default="weather-access/0.1",
        description="User agent sent with outbound requests",
    )
    probe_url: HttpUrl = Field(
        default=HttpUrl("https://clients3.google.com/generate_204"),
        description="Lightweight endpoint used to confirm internet reachability",
    )
    probe_timeout_ms: PositiveInt = Field(
        default=3000, description="Timeout applied to connectivity probe requests"
    )
    max_connections: NonNegativeInt = Field(
        default=10, description="Maximum concurrent HTTP connections"
    )
    enable_http2: bool = Field(
        default=False,
        description="Whether HTTP/2 should be attempted; requires the http2 extra (h2)",
    )

    @classmethod
    def from_environment(cls, *, env: Mapping[str, str] | None = None) -> HttpClientConfig:
        """Build an HTTP configuration from environment variables.

        Recognised variables:
            - ``WEATHER_ACCESS_BASE_URL`` → ``base_url``
            - ``WEATHER_ACCESS_PROBE_URL`` → ``probe_url``
            - ``WEATHER_ACCESS_USER_AGENT`` → ``user_agent``
        """
        source = dict(os.environ if env is None else env)
        base_url = source.get(f"{_ENV_PREFIX}BASE_URL")
        probe_url = source.get(f"{_ENV_PREFIX}PROBE_URL")
        user_agent = source.get(f"{_ENV_PREFIX}USER_AGENT")
        defaults = cls()
        return cls(
            base_url=HttpUrl(base_url) if base_url else None,
            probe_url=HttpUrl(probe_url) if probe_url else defaults.probe_url,
            user_agent=user_agent or defaults.user_agent,
        )
