"""Command-line interface for inspecting adaptive policies and running resilient fetches."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import traceback
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final, cast

import httpx
from dotenv import find_dotenv, load_dotenv
from rich.console import Console
from rich.table import Table

from .adaptive import AdaptiveConfigProvider
from .client import ResilientDataClient, ResilientDataClientDependencies
from .config import WEATHER_CACHE_CONFIG, GeoCacheConfig, HttpClientConfig, RetryPolicy
from .errors import ClassifiedError, WeatherAccessError
from .http import HttpConnectivityProbe, WeatherHttpClient
from .models import FetchParams, FetchResult, LinkType, LocationSample, NetworkStatus
from .status import StatusMonitor

LOG_LEVELS: Final[dict[str, int]] = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}
LINK_CHOICES: Final[tuple[str, ...]] = tuple(link.value for link in LinkType)


@dataclass(frozen=True, slots=True)
class CliOptions:
    """Parsed command-line options for the ``weather-access`` CLI."""

    command: str
    link: LinkType
    dotenv_path: Path | None
    log_level: int
    degraded: bool = field(default=False)
    offline: bool = field(default=False)
    url: str | None = field(default=None)
    latitude: float | None = field(default=None)
    longitude: float | None = field(default=None)
    accuracy_meters: float = field(default=100.0)
    query: tuple[tuple[str, str], ...] = field(default_factory=tuple)


def _setup_logging(log_level: int) -> logging.Logger:
    """Configure logging and return the CLI logger.

    Reduces noise from network libraries at non-DEBUG levels.
    """
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    return logging.getLogger("weather_access.cli")


def _parse_query_param(value: str) -> tuple[str, str]:
    key, sep, raw = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {value!r}")
    return key, raw


def parse_cli_args(argv: Sequence[str] | None = None) -> CliOptions:
    """Parse command-line arguments into :class:`CliOptions`."""
    parser = argparse.ArgumentParser(
        prog="weather-access",
        description="Inspect network-adaptive retry policies and run cached, retried fetches.",
    )
    parser.add_argument(
        "--dotenv",
        type=Path,
        default=None,
        help="Path to a .env file (default: search upward from the working directory)",
    )
    parser.add_argument(
        "--log-level",
        choices=tuple(LOG_LEVELS),
        default="WARNING",
        help="Logging verbosity (default: WARNING)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    policy_parser = subparsers.add_parser(
        "policy", help="Print the retry policy and fetch parameters for a link condition"
    )
    policy_parser.add_argument("--link", choices=LINK_CHOICES, default=LinkType.UNKNOWN.value)
    policy_parser.add_argument("--degraded", action="store_true", help="Treat the link as slow")
    policy_parser.add_argument("--offline", action="store_true", help="Treat the link as down")

    status_parser = subparsers.add_parser(
        "status", help="Probe connectivity and print the classified network status"
    )
    status_parser.add_argument(
        "--link",
        choices=LINK_CHOICES,
        default=LinkType.UNKNOWN.value,
        help="Link type hint reported alongside the probe result",
    )

    fetch_parser = subparsers.add_parser(
        "fetch", help="GET a JSON document for a location through the resilient client"
    )
    fetch_parser.add_argument(
        "url", help="Absolute URL, or a path relative to WEATHER_ACCESS_BASE_URL"
    )
    fetch_parser.add_argument("--lat", dest="latitude", type=float, required=True)
    fetch_parser.add_argument("--lon", dest="longitude", type=float, required=True)
    fetch_parser.add_argument(
        "--accuracy",
        dest="accuracy_meters",
        type=float,
        default=100.0,
        help="Horizontal accuracy of the location fix in metres (default: 100)",
    )
    fetch_parser.add_argument(
        "--param",
        dest="query",
        type=_parse_query_param,
        action="append",
        default=None,
        help="Query parameter KEY=VALUE (repeat for multiple)",
    )
    fetch_parser.add_argument("--link", choices=LINK_CHOICES, default=LinkType.UNKNOWN.value)

    namespace = parser.parse_args(argv)
    if namespace.command == "fetch":
        if not -90.0 <= namespace.latitude <= 90.0:
            parser.error("--lat must be between -90 and 90")
        if not -180.0 <= namespace.longitude <= 180.0:
            parser.error("--lon must be between -180 and 180")
        if namespace.accuracy_meters < 0:
            parser.error("--accuracy must be zero or positive")

    raw_query = cast(list[tuple[str, str]] | None, getattr(namespace, "query", None)) or []
    return CliOptions(
        command=namespace.command,
        link=LinkType(namespace.link),
        dotenv_path=namespace.dotenv,
        log_level=LOG_LEVELS[namespace.log_level],
        degraded=bool(getattr(namespace, "degraded", False)),
        offline=bool(getattr(namespace, "offline", False)),
        url=getattr(namespace, "url", None),
        latitude=getattr(namespace, "latitude", None),
        longitude=getattr(namespace, "longitude", None),
        accuracy_meters=float(getattr(namespace, "accuracy_meters", 100.0)),
        query=tuple(raw_query),
    )


async def run_async(
    options: CliOptions,
    *,
    console: Console | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    """Execute the selected subcommand and return the process exit code.

    *transport* replaces the network layer of every HTTP client the command creates.
    """
    logger = _setup_logging(options.log_level)
    out = console or Console()

    dotenv_file = (
        str(options.dotenv_path) if options.dotenv_path is not None else find_dotenv(usecwd=True)
    )
    if dotenv_file:
        load_dotenv(dotenv_file, override=True)
        logger.info("Loaded environment from %s (override=True)", dotenv_file)
    else:
        logger.debug("No .env file found; relying on process environment only")

    try:
        override = RetryPolicy.from_environment()
        http_config = HttpClientConfig.from_environment()
        cache_config = GeoCacheConfig.from_environment(defaults=WEATHER_CACHE_CONFIG)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    if options.command == "policy":
        status = NetworkStatus(
            online=not options.offline, link_type=options.link, degraded=options.degraded
        )
        provider = AdaptiveConfigProvider(override=override)
        out.print(
            render_policy(
                status,
                provider.policy_for(status),
                provider.fetch_params_for(status),
                provider.timeout_ms_for(status),
            )
        )
        return 0

    probe = HttpConnectivityProbe(http_config, link_type=options.link.value, transport=transport)
    try:
        if options.command == "status":
            status = await StatusMonitor(probe).refresh()
            out.print(render_status(status))
            return 0
        http_client = WeatherHttpClient(http_config, transport=transport)
        try:
            return await _run_fetch(
                options, probe, override, http_client, cache_config, out, logger
            )
        finally:
            await http_client.close()
    finally:
        await probe.close()


async def _run_fetch(
    options: CliOptions,
    probe: HttpConnectivityProbe,
    override: RetryPolicy | None,
    http_client: WeatherHttpClient,
    cache_config: GeoCacheConfig,
    out: Console,
    logger: logging.Logger,
) -> int:
    if options.url is None or options.latitude is None or options.longitude is None:
        raise ValueError("fetch requires a URL and coordinates")
    client = ResilientDataClient(
        dependencies=ResilientDataClientDependencies(
            probe=probe,
            policy_override=override,
            http_client=http_client,
            cache_config=cache_config,
        )
    )
    sample = LocationSample(
        latitude=options.latitude,
        longitude=options.longitude,
        accuracy_meters=options.accuracy_meters,
    )
    try:
        async with client:
            result = await client.fetch_json(options.url, sample, query=dict(options.query))
    except ClassifiedError as exc:
        out.print(render_error(exc))
        return 1
    except WeatherAccessError as exc:
        logger.error("Weather access error: %s", exc)
        print(f"Weather access error: {exc}", file=sys.stderr)
        return 1
    _print_result(out, result)
    return 0


def _print_result(out: Console, result: FetchResult[object]) -> None:
    out.print(
        f"[dim]fetched_at={result.fetched_at.isoformat()} "
        f"cache_hit={result.cache_hit} attempts={result.attempts}[/dim]"
    )
    out.print_json(data=result.value)


def render_policy(
    status: NetworkStatus, policy: RetryPolicy, params: FetchParams, timeout_ms: int
) -> Table:
    """Return a table describing the derived policy for *status*."""
    table = Table(title=f"Adaptive policy ({_describe_status(status)})", show_header=False)
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value")
    table.add_row("max_attempts", str(policy.max_attempts))
    table.add_row("base_delay_ms", str(policy.base_delay_ms))
    table.add_row("max_delay_ms", str(policy.max_delay_ms))
    table.add_row("backoff_multiplier", f"{policy.backoff_multiplier:g}")
    table.add_row("attempt_timeout_ms", str(timeout_ms))
    table.add_row("sample_timeout_ms", str(params.timeout_ms))
    table.add_row("sample_interval_ms", str(params.sample_interval_ms))
    table.add_row("min_movement_meters", f"{params.min_movement_meters:g}")
    table.add_row("accuracy", params.accuracy.value)
    table.add_row("cache_strategy", params.cache_strategy.value)
    return table


def render_status(status: NetworkStatus) -> Table:
    """Return a table describing a network snapshot."""
    table = Table(title="Network status", show_header=False)
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value")
    table.add_row("online", "yes" if status.online else "[red]no[/red]")
    table.add_row("link_type", status.link_type.value)
    table.add_row("degraded", "[yellow]yes[/yellow]" if status.degraded else "no")
    table.add_row("observed_at", status.observed_at.isoformat())
    return table


def render_error(error: ClassifiedError) -> Table:
    """Return a table describing a classified failure and how to recover."""
    table = Table(title="[red]Request failed[/red]", show_header=False)
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value")
    table.add_row("kind", error.kind.value)
    table.add_row("code", error.code)
    table.add_row("retryable", str(error.retryable))
    table.add_row("recovery", error.recovery_action.value)
    hint = error.retry_hint
    if hint is not None:
        table.add_row("retry_after", f"{hint.seconds:g}s ({hint.reason})")
    table.add_row("message", error.message)
    return table


def _describe_status(status: NetworkStatus) -> str:
    if not status.online:
        return "offline"
    suffix = ", degraded" if status.degraded else ""
    return f"{status.link_type.value}{suffix}"


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for the ``weather-access`` console script."""
    options = parse_cli_args(argv)
    try:
        exit_code = asyncio.run(run_async(options))
    except KeyboardInterrupt:
        exit_code = 130
    except Exception:  # noqa: BLE001
        traceback.print_exc(limit=1)
        exit_code = 1
    raise SystemExit(exit_code)
