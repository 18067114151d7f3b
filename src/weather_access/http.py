"""httpx-backed transport and connectivity probe for weather provider requests."""

from __future__ import annotations

import logging
from collections.abc import Mapping, MutableMapping
from typing import Any, Protocol

import httpx

from .config import HttpClientConfig
from .errors import ProbeError, TransportError
from .models import LinkReading

logger = logging.getLogger(__name__)


class AsyncJsonClientProtocol(Protocol):
    """Protocol describing the async HTTP operations the data client relies on."""

    async def get_json(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        timeout_ms: int | None = None,
    ) -> Any:  # pragma: no cover - protocol signature
        """Send a GET request and return the decoded JSON body."""
        ...

    async def close(self) -> None:  # pragma: no cover - protocol signature
        """Release HTTP resources and close underlying connections."""
        ...


class WeatherHttpClient(AsyncJsonClientProtocol):
    """httpx-based client that injects default headers and manages connection pooling.

    Non-2xx responses raise :class:`httpx.HTTPStatusError` so the classifier can
    read the status and ``Retry-After`` header; transport failures are wrapped
    in :class:`TransportError` with the httpx exception chained as the cause.
    """

    def __init__(
        self,
        config: HttpClientConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialise the HTTP client with optional *config* and *transport*."""
        self._config = config or HttpClientConfig()
        limits = httpx.Limits(max_connections=self._config.max_connections or None)
        self._client = httpx.AsyncClient(
            base_url=str(self._config.base_url) if self._config.base_url else "",
            http2=self._config.enable_http2,
            limits=limits,
            headers=self._build_default_headers(),
            transport=transport,
        )

    @property
    def httpx_client(self) -> httpx.AsyncClient:
        """Return the underlying :class:`httpx.AsyncClient`."""
        return self._client

    async def get(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout_ms: int | None = None,
    ) -> httpx.Response:
        """Send a GET request and return the successful response."""
        logger.debug("GET %s with params=%s", url, None if params is None else list(params.keys()))
        try:
            response = await self._client.get(
                url,
                params=params,
                headers=self._merge_headers(headers),
                **_timeout_kwargs(timeout_ms),
            )
        except httpx.TimeoutException:
            logger.warning("HTTP GET %s timed out", url)
            raise
        except httpx.HTTPError as exc:
            logger.error("HTTP GET %s failed: %s", url, exc)
            raise TransportError(str(exc) or type(exc).__name__) from exc
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error("HTTP GET %s returned status %s", url, exc.response.status_code)
            raise
        logger.debug(
            "GET %s completed in %.2f ms",
            url,
            response.elapsed.total_seconds() * 1000.0,
        )
        return response

    async def get_json(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        timeout_ms: int | None = None,
    ) -> Any:
        """Send a GET request and return the decoded JSON body."""
        response = await self.get(url, params=params, timeout_ms=timeout_ms)
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(f"Response from {url} is not valid JSON") from exc

    async def close(self) -> None:
        """Close the underlying httpx.AsyncClient instance."""
        await self._client.aclose()
        logger.debug("httpx.AsyncClient closed for base URL %s", self._client.base_url)

    def _merge_headers(self, headers: Mapping[str, str] | None) -> MutableMapping[str, str]:
        merged: MutableMapping[str, str] = dict(self._client.headers)
        if headers:
            merged.update(headers)
        return merged

    def _build_default_headers(self) -> MutableMapping[str, str]:
        return {
            "User-Agent": self._config.user_agent,
            "Accept": "application/json",
        }


class HttpConnectivityProbe:
    """Connectivity probe that issues a short HEAD request to a known endpoint.

    The platform link type cannot be observed over HTTP, so it is supplied by
    the caller as *link_type*. Any HTTP response counts as reachable; only
    transport failures report the internet as unreachable.
    """

    def __init__(
        self,
        config: HttpClientConfig | None = None,
        *,
        link_type: str = "unknown",
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create a probe targeting ``config.probe_url``.

        *transport* applies only to the client the probe creates for itself.
        """
        self._config = config or HttpClientConfig()
        self._link_type = link_type
        self._client = client
        self._transport = transport
        self._owns_client = client is None

    async def probe(self) -> LinkReading:
        """Return a :class:`LinkReading` describing current reachability."""
        client = self._ensure_client()
        url = str(self._config.probe_url)
        try:
            response = await client.head(url, **_timeout_kwargs(self._config.probe_timeout_ms))
        except httpx.TransportError as exc:
            logger.info("Connectivity probe to %s failed: %s", url, exc)
            return LinkReading(connected=False, internet_reachable=False, link_type=self._link_type)
        except httpx.HTTPError as exc:
            raise ProbeError(f"Connectivity probe to {url} could not complete") from exc
        logger.debug("Connectivity probe to %s returned %s", url, response.status_code)
        return LinkReading(connected=True, internet_reachable=True, link_type=self._link_type)

    async def close(self) -> None:
        """Close the probe's HTTP client when it owns one."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"User-Agent": self._config.user_agent},
                transport=self._transport,
            )
        return self._client


def _timeout_kwargs(timeout_ms: int | None) -> dict[str, httpx.Timeout]:
    # Omitting the argument keeps the client default; None would disable timeouts.
    if timeout_ms is None:
        return {}
    return {"timeout": httpx.Timeout(timeout_ms / 1000.0)}
