"""Integration-focused tests covering the resilient data client."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import pytest

from weather_access import (
    ClassifiedError,
    ErrorKind,
    FetchParams,
    GeoCache,
    LinkReading,
    LinkType,
    LocationAccuracy,
    LocationSample,
    ResilientDataClient,
    ResilientDataClientDependencies,
    RetryOrchestrator,
    RetryPolicy,
    StatusMonitor,
)
from weather_access.config import WEATHER_CACHE_CONFIG
from weather_access.errors import CacheError

SAMPLE = LocationSample(latitude=59.9139, longitude=10.7522, accuracy_meters=15)
REQUEST = httpx.Request("GET", "https://weather.example/current")


def _reachable(link_type: str) -> LinkReading:
    return LinkReading(connected=True, internet_reachable=True, link_type=link_type)


class StubProbe:
    """Probe that reports a fixed reading and counts invocations."""

    def __init__(self, reading: LinkReading) -> None:
        """Store the *reading* to return."""
        self.reading = reading
        self.calls = 0

    async def probe(self) -> LinkReading:
        """Return the configured reading."""
        self.calls += 1
        return self.reading


class StubJsonClient:
    """JSON client stub that returns canned payloads and records requests."""

    def __init__(self, payload: Any) -> None:
        """Store the canned *payload*."""
        self.payload = payload
        self.requests: list[tuple[str, dict[str, Any] | None]] = []
        self.closed = False

    async def get_json(
        self, url: str, *, params: Any = None, timeout_ms: int | None = None
    ) -> Any:
        """Record the request and return the payload."""
        self.requests.append((url, None if params is None else dict(params)))
        return self.payload

    async def close(self) -> None:
        """Record that the client was closed."""
        self.closed = True


class NoJitter(random.Random):
    """Random source that never adds jitter."""

    def uniform(self, a: float, b: float) -> float:
        """Return the lower bound."""
        return a


async def _no_sleep(_: float) -> None:
    await asyncio.sleep(0)


def _build_client(
    reading: LinkReading | None = None,
    *,
    http_client: StubJsonClient | None = None,
    sweep_interval: float | None = None,
    cache: GeoCache[Any] | None = None,
) -> tuple[ResilientDataClient, StubProbe]:
    probe = StubProbe(reading or _reachable("wifi"))
    client = ResilientDataClient(
        dependencies=ResilientDataClientDependencies(
            probe=probe,
            orchestrator=RetryOrchestrator(sleep=_no_sleep, rng=NoJitter()),
            http_client=http_client,
            cache=cache,
        ),
        sweep_interval=sweep_interval,
    )
    return client, probe


@pytest.mark.asyncio
async def test_fetch_miss_then_hit() -> None:
    client, _ = _build_client()
    calls: list[FetchParams] = []

    async def operation(params: FetchParams) -> str:
        calls.append(params)
        return "clear"

    async with client:
        first = await client.fetch(SAMPLE, operation)
        second = await client.fetch(SAMPLE, operation)

    assert first.value == "clear"
    assert first.cache_hit is False
    assert first.attempts == 1
    assert second.value == "clear"
    assert second.cache_hit is True
    assert second.fetched_at == first.fetched_at
    assert len(calls) == 1
    assert calls[0].accuracy is LocationAccuracy.HIGHEST


@pytest.mark.asyncio
async def test_start_probes_network() -> None:
    client, probe = _build_client(_reachable("cellular"))

    await client.start()
    await client.start()
    try:
        assert probe.calls == 1
        assert client.network_status().link_type is LinkType.CELLULAR
    finally:
        await client.shutdown()


@pytest.mark.asyncio
async def test_offline_fails_fast_without_invoking_operation() -> None:
    client, _ = _build_client(LinkReading(connected=False))
    calls = 0

    async def operation(_: FetchParams) -> str:
        nonlocal calls
        calls += 1
        return "unreachable"

    async with client:
        with pytest.raises(ClassifiedError) as excinfo:
            await client.fetch(SAMPLE, operation)

    assert calls == 0
    assert excinfo.value.kind is ErrorKind.CONNECTION
    assert excinfo.value.retryable is False


@pytest.mark.asyncio
async def test_offline_still_serves_cached_values() -> None:
    client, _ = _build_client()

    async def operation(_: FetchParams) -> str:
        return "cached-forecast"

    async with client:
        await client.fetch(SAMPLE, operation)
        client.monitor.observe(LinkReading(connected=False))
        result = await client.fetch(SAMPLE, operation)

    assert result.cache_hit is True
    assert result.value == "cached-forecast"


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_adaptive_policy() -> None:
    client, _ = _build_client(_reachable("cellular"))
    calls = 0

    async def operation(_: FetchParams) -> str:
        nonlocal calls
        calls += 1
        if calls < 3:
            raise httpx.ConnectError("reset", request=REQUEST)
        return "ok"

    async with client:
        result = await client.fetch(SAMPLE, operation)

    assert result.value == "ok"
    assert result.attempts == 3


@pytest.mark.asyncio
async def test_terminal_failure_is_not_cached() -> None:
    client, _ = _build_client()

    async def operation(_: FetchParams) -> str:
        response = httpx.Response(404, request=REQUEST)
        raise httpx.HTTPStatusError("missing", request=REQUEST, response=response)

    async with client:
        with pytest.raises(ClassifiedError) as excinfo:
            await client.fetch(SAMPLE, operation)
        assert len(client.cache) == 0

    assert excinfo.value.kind is ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_params_separate_cache_entries_and_invalidate() -> None:
    client, _ = _build_client()
    units: list[str] = []

    def operation_for(unit: str) -> Callable[[FetchParams], Awaitable[str]]:
        async def _operation(_: FetchParams) -> str:
            units.append(unit)
            return unit

        return _operation

    async with client:
        await client.fetch(SAMPLE, operation_for("metric"), params={"units": "metric"})
        await client.fetch(SAMPLE, operation_for("imperial"), params={"units": "imperial"})
        assert client.invalidate(SAMPLE, {"units": "metric"}) is True
        await client.fetch(SAMPLE, operation_for("metric"), params={"units": "metric"})
        stats = client.cache_stats()

    assert units == ["metric", "imperial", "metric"]
    assert stats.size == 2


@pytest.mark.asyncio
async def test_fetch_json_uses_http_client_and_caches() -> None:
    http_client = StubJsonClient({"temperature": 4})
    client, _ = _build_client(http_client=http_client)

    async with client:
        first = await client.fetch_json("/current", SAMPLE, query={"units": "metric"})
        second = await client.fetch_json("/current", SAMPLE, query={"units": "metric"})

    assert first.value == {"temperature": 4}
    assert second.cache_hit is True
    assert http_client.requests == [("/current", {"units": "metric"})]
    assert http_client.closed is False


@pytest.mark.asyncio
async def test_shutdown_closes_cache_and_stops_sweeper() -> None:
    clock_now = [0.0]
    cache: GeoCache[Any] = GeoCache(WEATHER_CACHE_CONFIG, clock=lambda: clock_now[0])
    client, _ = _build_client(sweep_interval=0.01, cache=cache)

    async def operation(_: FetchParams) -> str:
        return "value"

    await client.start()
    await client.fetch(SAMPLE, operation)
    clock_now[0] += WEATHER_CACHE_CONFIG.max_ttl_ms / 1000.0
    for _ in range(50):
        if len(cache) == 0:
            break
        await asyncio.sleep(0.01)
    assert len(cache) == 0

    await client.shutdown()

    assert cache.closed is True


@pytest.mark.asyncio
async def test_refresh_network_updates_status() -> None:
    client, probe = _build_client(_reachable("wifi"))

    async with client:
        probe.reading = _reachable("wired")
        status = await client.refresh_network()

    assert status.link_type is LinkType.WIRED


def test_invalid_sweep_interval_is_rejected() -> None:
    with pytest.raises(ValueError):
        ResilientDataClient(sweep_interval=0)


@pytest.mark.asyncio
async def test_policy_override_is_honoured() -> None:
    probe = StubProbe(_reachable("wired"))
    client = ResilientDataClient(
        dependencies=ResilientDataClientDependencies(
            probe=probe,
            policy_override=RetryPolicy(max_attempts=1),
            orchestrator=RetryOrchestrator(sleep=_no_sleep, rng=NoJitter()),
        )
    )
    calls = 0

    async def operation(_: FetchParams) -> str:
        nonlocal calls
        calls += 1
        raise TimeoutError()

    async with client:
        with pytest.raises(ClassifiedError):
            await client.fetch(SAMPLE, operation)

    assert calls == 1


def test_monitor_can_be_injected() -> None:
    monitor = StatusMonitor()
    client = ResilientDataClient(dependencies=ResilientDataClientDependencies(monitor=monitor))

    assert client.monitor is monitor


@pytest.mark.asyncio
async def test_restart_after_shutdown_uses_fresh_cache() -> None:
    client, probe = _build_client()
    calls = 0

    async def operation(_: FetchParams) -> str:
        nonlocal calls
        calls += 1
        return f"forecast-{calls}"

    async with client:
        first = await client.fetch(SAMPLE, operation)
    closed_cache = client.cache

    async with client:
        second = await client.fetch(SAMPLE, operation)
        third = await client.fetch(SAMPLE, operation)

    assert closed_cache.closed is True
    assert client.cache is not closed_cache
    assert first.value == "forecast-1"
    assert second.value == "forecast-2"
    assert second.cache_hit is False
    assert third.cache_hit is True
    assert probe.calls == 2


@pytest.mark.asyncio
async def test_restart_with_closed_injected_cache_raises() -> None:
    cache: GeoCache[Any] = GeoCache(WEATHER_CACHE_CONFIG)
    client, _ = _build_client(cache=cache)

    await client.start()
    await client.shutdown()

    with pytest.raises(CacheError, match="supply a fresh cache"):
        await client.start()
