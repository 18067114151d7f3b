"""Tests for the weather-access CLI helpers."""

from __future__ import annotations

import io
import logging
from pathlib import Path

import httpx
import pytest
from rich.console import Console

from weather_access.cli import CliOptions, parse_cli_args, render_error, run_async
from weather_access.errors import ClassifiedError, ErrorKind
from weather_access.models import LinkType


def _console() -> tuple[Console, io.StringIO]:
    buffer = io.StringIO()
    return Console(file=buffer, width=120, color_system=None), buffer


def test_parse_policy_defaults() -> None:
    options = parse_cli_args(["policy"])

    assert options.command == "policy"
    assert options.link is LinkType.UNKNOWN
    assert options.degraded is False
    assert options.offline is False
    assert options.log_level == logging.WARNING


def test_parse_policy_flags() -> None:
    options = parse_cli_args(["--log-level", "DEBUG", "policy", "--link", "cellular", "--degraded"])

    assert options.link is LinkType.CELLULAR
    assert options.degraded is True
    assert options.log_level == logging.DEBUG


def test_parse_fetch_collects_query_params() -> None:
    options = parse_cli_args(
        [
            "fetch",
            "https://api.weather.example/current",
            "--lat",
            "-33.8688",
            "--lon",
            "151.2093",
            "--accuracy",
            "12",
            "--param",
            "units=metric",
            "--param",
            "lang=en",
        ]
    )

    assert options.url == "https://api.weather.example/current"
    assert options.latitude == pytest.approx(-33.8688)
    assert options.longitude == pytest.approx(151.2093)
    assert options.accuracy_meters == 12
    assert options.query == (("units", "metric"), ("lang", "en"))


def test_parse_fetch_rejects_out_of_range_latitude() -> None:
    with pytest.raises(SystemExit):
        parse_cli_args(["fetch", "/current", "--lat", "95", "--lon", "0"])


def test_parse_fetch_rejects_malformed_param() -> None:
    with pytest.raises(SystemExit):
        parse_cli_args(["fetch", "/current", "--lat", "0", "--lon", "0", "--param", "units"])


def test_subcommand_is_required() -> None:
    with pytest.raises(SystemExit):
        parse_cli_args([])


@pytest.mark.asyncio
async def test_policy_command_renders_offline_policy(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    dotenv_path = tmp_path / ".env"
    dotenv_path.write_text("")
    console, buffer = _console()
    options = CliOptions(
        command="policy",
        link=LinkType.WIFI,
        dotenv_path=dotenv_path,
        log_level=logging.WARNING,
        offline=True,
    )

    exit_code = await run_async(options, console=console)

    output = buffer.getvalue()
    assert exit_code == 0
    assert "offline" in output
    assert "max_attempts" in output
    assert "balanced" in output


@pytest.mark.asyncio
async def test_policy_command_honours_environment_override(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    dotenv_path = tmp_path / ".env"
    dotenv_path.write_text("WEATHER_ACCESS_MAX_ATTEMPTS=9\n")
    monkeypatch.setenv("WEATHER_ACCESS_MAX_ATTEMPTS", "1")
    console, buffer = _console()
    options = CliOptions(
        command="policy", link=LinkType.WIRED, dotenv_path=dotenv_path, log_level=logging.WARNING
    )

    exit_code = await run_async(options, console=console)

    assert exit_code == 0
    assert "9" in buffer.getvalue()


@pytest.mark.asyncio
async def test_invalid_environment_value_exits_with_error(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    dotenv_path = tmp_path / ".env"
    dotenv_path.write_text("WEATHER_ACCESS_BASE_DELAY_MS=later\n")
    monkeypatch.setenv("WEATHER_ACCESS_BASE_DELAY_MS", "0")
    options = CliOptions(
        command="policy", link=LinkType.WIFI, dotenv_path=dotenv_path, log_level=logging.WARNING
    )

    exit_code = await run_async(options, console=_console()[0])

    assert exit_code == 1
    assert "WEATHER_ACCESS_BASE_DELAY_MS" in capsys.readouterr().err


def test_render_error_includes_recovery_hint() -> None:
    console, buffer = _console()
    error = ClassifiedError(
        ErrorKind.RATE_LIMITED, "Slow down", retryable=True, retry_after_seconds=42
    )

    console.print(render_error(error))

    output = buffer.getvalue()
    assert "rate_limited" in output
    assert "42s" in output
    assert "wait" in output


def _network_options(
    tmp_path: Path,
    command: str,
    *,
    latitude: float = 51.5072,
    longitude: float = -0.1276,
) -> CliOptions:
    dotenv_path = tmp_path / ".env"
    dotenv_path.write_text("")
    return CliOptions(
        command=command,
        link=LinkType.WIFI,
        dotenv_path=dotenv_path,
        log_level=logging.WARNING,
        url="https://api.weather.example/current",
        latitude=latitude,
        longitude=longitude,
        accuracy_meters=25.0,
        query=(("units", "metric"),),
    )


@pytest.mark.asyncio
async def test_status_command_reports_reachable_link(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    console, buffer = _console()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(204)

    exit_code = await run_async(
        _network_options(tmp_path, "status"),
        console=console,
        transport=httpx.MockTransport(handler),
    )

    output = buffer.getvalue()
    assert exit_code == 0
    assert "Network status" in output
    assert "wifi" in output
    assert "yes" in output


@pytest.mark.asyncio
async def test_status_command_reports_unreachable_link(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    console, buffer = _console()

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("network unreachable", request=request)

    exit_code = await run_async(
        _network_options(tmp_path, "status"),
        console=console,
        transport=httpx.MockTransport(handler),
    )

    output = buffer.getvalue()
    assert exit_code == 0
    assert "no" in output
    assert "yes" not in output


@pytest.mark.asyncio
async def test_fetch_command_prints_json_body(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    console, buffer = _console()
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.method == "HEAD":
            return httpx.Response(204)
        return httpx.Response(200, json={"temperature": 14.5})

    exit_code = await run_async(
        _network_options(tmp_path, "fetch"),
        console=console,
        transport=httpx.MockTransport(handler),
    )

    output = buffer.getvalue()
    assert exit_code == 0
    assert '"temperature": 14.5' in output
    assert "cache_hit=False" in output
    assert "attempts=1" in output
    assert [request.method for request in requests] == ["HEAD", "GET"]
    assert requests[1].url.params["units"] == "metric"


@pytest.mark.asyncio
async def test_fetch_command_renders_classified_error(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    console, buffer = _console()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "HEAD":
            return httpx.Response(204)
        return httpx.Response(404)

    exit_code = await run_async(
        _network_options(tmp_path, "fetch"),
        console=console,
        transport=httpx.MockTransport(handler),
    )

    output = buffer.getvalue()
    assert exit_code == 1
    assert "Request failed" in output
    assert "not_found" in output


@pytest.mark.asyncio
async def test_fetch_command_fails_fast_when_offline(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    console, buffer = _console()
    methods: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        methods.append(request.method)
        raise httpx.ConnectError("network unreachable", request=request)

    exit_code = await run_async(
        _network_options(tmp_path, "fetch"),
        console=console,
        transport=httpx.MockTransport(handler),
    )

    output = buffer.getvalue()
    assert exit_code == 1
    assert "connection" in output
    assert "OFFLINE" in output
    assert methods == ["HEAD"]


@pytest.mark.asyncio
async def test_fetch_command_reports_unclassified_library_error(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.chdir(tmp_path)
    console, buffer = _console()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(204)

    exit_code = await run_async(
        _network_options(tmp_path, "fetch", latitude=float("nan")),
        console=console,
        transport=httpx.MockTransport(handler),
    )

    assert exit_code == 1
    assert "Weather access error" in capsys.readouterr().err
    assert buffer.getvalue() == ""
