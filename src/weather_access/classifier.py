"""Classification of raw failures into the closed error taxonomy."""

from __future__ import annotations

import asyncio
import errno
import logging
import socket
from collections.abc import Iterator, Mapping
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Final

import httpx

from .config import ClassifierConfig
from .errors import ClassifiedError, ErrorKind

logger = logging.getLogger(__name__)

DEFAULT_MESSAGES: Final[Mapping[ErrorKind, str]] = {
    ErrorKind.CONNECTION: (
        "Unable to connect to the weather service. Please check your internet connection."
    ),
    ErrorKind.TIMEOUT: "Request timed out. Please check your internet connection and try again.",
    ErrorKind.RATE_LIMITED: "Too many requests. Please wait a moment before trying again.",
    ErrorKind.SERVER_FAULT: "Weather service is temporarily unavailable. Please try again later.",
    ErrorKind.AUTH_FAILURE: "Invalid API key. Please check your weather provider API key.",
    ErrorKind.FORBIDDEN: "Access denied. Please check your API permissions.",
    ErrorKind.NOT_FOUND: "Weather data not found for this location.",
    ErrorKind.INVALID_REQUEST: "Invalid request. Please check your input and try again.",
    ErrorKind.UNKNOWN: "An unexpected error occurred. Please try again.",
}

_CONNECTION_CODES: Final[frozenset[str]] = frozenset(
    {
        "ENOTFOUND",
        "EAI_AGAIN",
        "EAI_NONAME",
        "ECONNREFUSED",
        "ECONNRESET",
        "ENETUNREACH",
        "EHOSTUNREACH",
        "ENETDOWN",
        "EPIPE",
    }
)
_TIMEOUT_CODES: Final[frozenset[str]] = frozenset({"ECONNABORTED", "ETIMEDOUT"})
_CONNECTION_ERRNOS: Final[frozenset[int]] = frozenset(
    {
        errno.ECONNREFUSED,
        errno.ECONNRESET,
        errno.ENETUNREACH,
        errno.EHOSTUNREACH,
        errno.ENETDOWN,
        errno.EPIPE,
    }
)
_ABORT_NAMES: Final[frozenset[str]] = frozenset({"AbortError", "CancelledError", "CanceledError"})
_ABORT_MARKERS: Final[tuple[str, ...]] = ("canceled", "cancelled", "aborted")
_TIMEOUT_MARKERS: Final[tuple[str, ...]] = ("timeout", "timed out")
_MAX_CAUSE_DEPTH: Final[int] = 8


class ErrorClassifier:
    """Maps arbitrary failures onto :class:`ClassifiedError` values.

    Rules are evaluated in a fixed order and the first match wins:
    cancellation, transport failure, timeout, HTTP status, network-ish
    message, and finally ``UNKNOWN``. Wrapper exceptions that match nothing
    themselves are classified through their ``__cause__`` chain.
    """

    def __init__(self, config: ClassifierConfig | None = None) -> None:
        """Create a classifier with optional *config* defaults."""
        self._config = config or ClassifierConfig()

    def classify(self, raw: object) -> ClassifiedError:
        """Return the classified form of *raw*."""
        if isinstance(raw, ClassifiedError):
            return raw
        for candidate in _cause_chain(raw):
            classified = self._classify_single(candidate, origin=raw)
            if classified is not None:
                return classified
        return ClassifiedError(
            ErrorKind.UNKNOWN,
            _raw_message(raw) or DEFAULT_MESSAGES[ErrorKind.UNKNOWN],
            retryable=False,
            cause=raw,
            code=_string_code(raw),
        )

    __call__ = classify

    def _classify_single(self, raw: object, *, origin: object) -> ClassifiedError | None:
        if isinstance(raw, ClassifiedError):
            return raw
        code = _string_code(raw)
        status = _http_status(raw)
        # Status-bearing errors carry reason phrases such as "Gateway Timeout";
        # message heuristics only apply when no status is available.
        message = "" if status is not None else _raw_message(raw).lower()

        if _is_abort(raw, message):
            return _build(ErrorKind.CONNECTION, origin, retryable=False, code=code, cancelled=True)
        if _is_transport_failure(raw, code):
            return _build(ErrorKind.CONNECTION, origin, retryable=True, code=code)
        if _is_timeout(raw, code, message):
            return _build(ErrorKind.TIMEOUT, origin, retryable=True, code=code)
        if status is not None:
            return self._classify_status(status, raw, origin=origin, code=code)
        if "network" in message:
            return _build(ErrorKind.CONNECTION, origin, retryable=True, code=code)
        return None

    def _classify_status(
        self, status: int, raw: object, *, origin: object, code: str | None
    ) -> ClassifiedError | None:
        status_code = code or f"HTTP_{status}"
        if status == 401:
            return _build(ErrorKind.AUTH_FAILURE, origin, retryable=False, code=status_code)
        if status == 403:
            return _build(ErrorKind.FORBIDDEN, origin, retryable=False, code=status_code)
        if status == 404:
            return _build(ErrorKind.NOT_FOUND, origin, retryable=False, code=status_code)
        if status == 422:
            return _build(ErrorKind.INVALID_REQUEST, origin, retryable=False, code=status_code)
        if status == 429:
            retry_after = _retry_after_seconds(raw)
            return _build(
                ErrorKind.RATE_LIMITED,
                origin,
                retryable=True,
                code=status_code,
                retry_after_seconds=(
                    retry_after
                    if retry_after is not None
                    else self._config.default_retry_after_seconds
                ),
            )
        if status >= 500:
            return _build(ErrorKind.SERVER_FAULT, origin, retryable=True, code=status_code)
        return None


_DEFAULT_CLASSIFIER = ErrorClassifier()


def classify(raw: object) -> ClassifiedError:
    """Classify *raw* using the default configuration."""
    return _DEFAULT_CLASSIFIER.classify(raw)


def log_classified(error: ClassifiedError, context: str = "weather_access") -> None:
    """Log *error* at a severity matching its kind."""
    level = (
        logging.ERROR
        if error.kind in {ErrorKind.UNKNOWN, ErrorKind.SERVER_FAULT}
        else logging.WARNING
    )
    logger.log(
        level,
        "%s failed: kind=%s code=%s retryable=%s retry_after=%s message=%s",
        context,
        error.kind.value,
        error.code,
        error.retryable,
        error.retry_after_seconds,
        error.message,
    )


def _build(
    kind: ErrorKind,
    origin: object,
    *,
    retryable: bool,
    code: str | None,
    retry_after_seconds: int | None = None,
    cancelled: bool = False,
) -> ClassifiedError:
    return ClassifiedError(
        kind,
        DEFAULT_MESSAGES[kind],
        retryable=retryable,
        retry_after_seconds=retry_after_seconds,
        cause=origin,
        code=code,
        cancelled=cancelled,
    )


def _cause_chain(raw: object) -> Iterator[object]:
    seen: set[int] = set()
    current: object | None = raw
    while current is not None and id(current) not in seen and len(seen) < _MAX_CAUSE_DEPTH:
        seen.add(id(current))
        yield current
        current = getattr(current, "__cause__", None)


def _raw_message(raw: object) -> str:
    if isinstance(raw, BaseException):
        return str(raw)
    message = getattr(raw, "message", None)
    if isinstance(message, str):
        return message
    return ""


def _string_code(raw: object) -> str | None:
    code = getattr(raw, "code", None)
    if isinstance(code, str) and code:
        return code
    if isinstance(raw, OSError) and raw.errno is not None:
        return errno.errorcode.get(raw.errno)
    return None


def _is_abort(raw: object, message: str) -> bool:
    if isinstance(raw, asyncio.CancelledError):
        return True
    name = getattr(raw, "name", None)
    if type(raw).__name__ in _ABORT_NAMES or (isinstance(name, str) and name in _ABORT_NAMES):
        return True
    return any(marker in message for marker in _ABORT_MARKERS)


def _is_transport_failure(raw: object, code: str | None) -> bool:
    if isinstance(raw, httpx.TimeoutException):
        return False
    if isinstance(raw, (httpx.ConnectError, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    if isinstance(raw, socket.gaierror):
        return True
    if isinstance(raw, (ConnectionError, OSError)) and not isinstance(raw, TimeoutError):
        if isinstance(raw, ConnectionError):
            return True
        if raw.errno in _CONNECTION_ERRNOS:
            return True
    return code in _CONNECTION_CODES


def _is_timeout(raw: object, code: str | None, message: str) -> bool:
    if isinstance(raw, (TimeoutError, httpx.TimeoutException)):
        return True
    if code in _TIMEOUT_CODES:
        return True
    return any(marker in message for marker in _TIMEOUT_MARKERS)


def _http_status(raw: object) -> int | None:
    if isinstance(raw, httpx.HTTPStatusError):
        return raw.response.status_code
    for attr in ("status_code", "status"):
        value = getattr(raw, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(raw, "response", None)
    if response is not None:
        for attr in ("status_code", "status"):
            value = getattr(response, attr, None)
            if isinstance(value, int):
                return value
    return None


def _retry_after_seconds(raw: object) -> int | None:
    headers = _response_headers(raw)
    if headers is None:
        return None
    value = headers.get("retry-after") or headers.get("Retry-After")
    if not value:
        return None
    value = str(value).strip()
    if value.isdigit():
        return int(value)
    try:
        target = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring unparseable Retry-After header %r", value)
        return None
    if target.tzinfo is None:
        target = target.replace(tzinfo=UTC)
    return max(0, int((target - datetime.now(UTC)).total_seconds()))


def _response_headers(raw: object) -> Mapping[str, str] | None:
    if isinstance(raw, httpx.HTTPStatusError):
        return raw.response.headers
    response = getattr(raw, "response", None)
    headers = getattr(response, "headers", None) if response is not None else None
    if headers is None:
        headers = getattr(raw, "headers", None)
    if isinstance(headers, Mapping):
        return headers
    return None
