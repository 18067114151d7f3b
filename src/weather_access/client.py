"""Resilient data-access facade combining cache, link awareness and retries."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, cast

from .adaptive import AdaptiveConfigProvider
from .cache import GeoCache
from .classifier import ErrorClassifier
from .config import GeoCacheConfig, HttpClientConfig, RetryPolicy
from .errors import CacheError
from .http import AsyncJsonClientProtocol, WeatherHttpClient
from .models import CacheStats, FetchParams, FetchResult, LocationSample, NetworkStatus
from .retry import RetryOrchestrator
from .status import ConnectivityProbe, StatusMonitor
from .telemetry import NullTelemetrySink, TelemetrySink

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ResilientDataClientDependencies:
    """Optional dependency overrides for :class:`ResilientDataClient`."""

    probe: ConnectivityProbe | None = None
    monitor: StatusMonitor | None = None
    provider: AdaptiveConfigProvider | None = None
    policy_override: RetryPolicy | None = None
    classifier: ErrorClassifier | None = None
    orchestrator: RetryOrchestrator | None = None
    cache: GeoCache[FetchResult[Any]] | None = None
    cache_config: GeoCacheConfig | None = None
    http_client: AsyncJsonClientProtocol | None = None
    http_config: HttpClientConfig | None = None
    telemetry: TelemetrySink | None = None


class ResilientDataClient:
    """Serves location-keyed data from cache, falling back to retried fetches.

    A cache hit returns immediately. On a miss the current network snapshot
    selects the retry policy, per-attempt timeout and sampling parameters; an
    offline snapshot fails fast with a non-retryable ``connection`` error so
    the caller can fall back to whatever it already has.
    """

    def __init__(
        self,
        *,
        dependencies: ResilientDataClientDependencies | None = None,
        sweep_interval: float | None = None,
    ) -> None:
        """Wire optional dependency overrides; *sweep_interval* is in seconds."""
        deps = dependencies or ResilientDataClientDependencies()
        if sweep_interval is not None and sweep_interval <= 0:
            raise ValueError("sweep_interval must be positive")
        self._telemetry = deps.telemetry or NullTelemetrySink()
        self._monitor = deps.monitor or StatusMonitor(deps.probe, telemetry=self._telemetry)
        self._provider = deps.provider or AdaptiveConfigProvider(
            self._monitor, override=deps.policy_override
        )
        self._orchestrator = deps.orchestrator or RetryOrchestrator(
            deps.classifier, telemetry=self._telemetry
        )
        self._cache_config = deps.cache_config
        self._cache: GeoCache[FetchResult[Any]] = deps.cache or self._new_cache()
        self._owns_cache = deps.cache is None
        self._http_config = deps.http_config or HttpClientConfig()
        self._http_client = deps.http_client
        self._owns_http_client = deps.http_client is None
        self._sweep_interval = sweep_interval
        self._sweep_task: asyncio.Task[None] | None = None
        self._lifecycle_lock = asyncio.Lock()
        self._started = False
        logger.debug("ResilientDataClient initialised")

    @property
    def cache(self) -> GeoCache[FetchResult[Any]]:
        """Return the owned geo cache."""
        return self._cache

    @property
    def monitor(self) -> StatusMonitor:
        """Return the network status monitor."""
        return self._monitor

    async def fetch[ValueT](
        self,
        sample: LocationSample,
        operation: Callable[[FetchParams], Awaitable[ValueT]],
        *,
        params: Mapping[str, object] | None = None,
        context: str = "fetch",
    ) -> FetchResult[ValueT]:
        """Return the value for *sample*, from cache or by running *operation*.

        *operation* receives the :class:`FetchParams` resolved for the current
        link. Terminal failures propagate as :class:`ClassifiedError`.
        """
        cached = self._cache.get(sample, sample.accuracy_meters, params)
        if cached is not None:
            logger.debug("%s served from cache", context)
            return cast(FetchResult[ValueT], cached.mark_cache_hit())

        status = self._monitor.current()
        policy = self._provider.policy_for(status)
        fetch_params = self._provider.fetch_params_for(status)
        outcome = await self._orchestrator.run_with_timeout(
            lambda: operation(fetch_params),
            self._provider.timeout_ms_for(status),
            policy,
            context=context,
        )
        result = FetchResult(
            value=outcome.value,
            fetched_at=datetime.now(UTC),
            cache_hit=False,
            attempts=outcome.attempts,
        )
        self._cache.put(sample, sample.accuracy_meters, result, params)
        return result

    async def fetch_json(
        self,
        url: str,
        sample: LocationSample,
        *,
        query: Mapping[str, Any] | None = None,
    ) -> FetchResult[Any]:
        """Fetch JSON from *url* for *sample* through the owned HTTP client."""
        client = self._ensure_http_client()
        query_params = dict(query or {})
        cache_params: dict[str, object] = {"url": url, **query_params}

        async def _operation(_: FetchParams) -> Any:
            return await client.get_json(url, params=query_params or None)

        return await self.fetch(sample, _operation, params=cache_params, context=f"GET {url}")

    def invalidate(
        self, sample: LocationSample, params: Mapping[str, object] | None = None
    ) -> bool:
        """Drop any cached value for *sample*."""
        return self._cache.invalidate(sample, params)

    def sweep_cache(self) -> int:
        """Remove expired cache entries and return how many were dropped."""
        return self._cache.sweep()

    def cache_stats(self) -> CacheStats:
        """Return diagnostic cache statistics."""
        return self._cache.stats()

    def network_status(self) -> NetworkStatus:
        """Return the last known network snapshot."""
        return self._monitor.current()

    async def refresh_network(self) -> NetworkStatus:
        """Probe connectivity and return the updated snapshot."""
        return await self._monitor.refresh()

    async def start(self) -> None:
        """Probe the network once and start the periodic cache sweep if configured.

        Starting again after :meth:`shutdown` replaces the owned cache with an
        empty one; an injected cache that was closed raises :class:`CacheError`.
        """
        async with self._lifecycle_lock:
            if self._started:
                return
            self._reopen_cache()
            status = await self._monitor.refresh()
            if self._sweep_interval is not None:
                self._sweep_task = asyncio.create_task(self._sweep_loop(self._sweep_interval))
            self._started = True
        logger.info(
            "ResilientDataClient started (online=%s link=%s)",
            status.online,
            status.link_type.value,
        )

    async def shutdown(self) -> None:
        """Stop the sweep task and release the cache, monitor and owned HTTP client."""
        async with self._lifecycle_lock:
            task, self._sweep_task = self._sweep_task, None
            self._started = False
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._cache.close()
        self._monitor.close()
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.close()
            self._http_client = None
        logger.info("ResilientDataClient shutdown complete")

    async def __aenter__(self) -> ResilientDataClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    def _new_cache(self) -> GeoCache[FetchResult[Any]]:
        return GeoCache(self._cache_config, telemetry=self._telemetry)

    def _reopen_cache(self) -> None:
        if not self._cache.closed:
            return
        if not self._owns_cache:
            raise CacheError("Injected GeoCache was closed by shutdown; supply a fresh cache")
        logger.debug("Recreating cache closed by a previous shutdown")
        self._cache = self._new_cache()

    def _ensure_http_client(self) -> AsyncJsonClientProtocol:
        if self._http_client is None:
            self._http_client = WeatherHttpClient(self._http_config)
        return self._http_client

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self._cache.sweep()
            except CacheError:
                logger.debug("Cache closed; stopping sweep loop")
                return
            except Exception:
                logger.exception("Cache sweep failed")
