"""Exception hierarchy and error taxonomy for the weather data-access layer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class WeatherAccessError(Exception):
    """Base exception for all weather data-access errors."""


class CacheError(WeatherAccessError):
    """Raised when the geo cache is used outside its lifecycle or misconfigured."""


class ProbeError(WeatherAccessError):
    """Raised when a connectivity probe cannot determine link state."""


class TransportError(WeatherAccessError):
    """Raised when an HTTP transport request cannot be completed."""


class ErrorKind(str, Enum):
    """Closed taxonomy of failure kinds surfaced to callers."""

    CONNECTION = "connection"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    SERVER_FAULT = "server_fault"
    AUTH_FAILURE = "auth_failure"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"
    UNKNOWN = "unknown"


RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {
        ErrorKind.CONNECTION,
        ErrorKind.TIMEOUT,
        ErrorKind.RATE_LIMITED,
        ErrorKind.SERVER_FAULT,
    }
)


class RecoveryAction(str, Enum):
    """What a user-facing caller should offer after a terminal failure."""

    RETRY_NOW = "retry_now"
    WAIT = "wait"
    FIX_INPUT = "fix_input"
    NONE = "none"


@dataclass(frozen=True, slots=True)
class RetryHint:
    """Describes how long a failed operation should back off before retrying."""

    seconds: float
    reason: str


class ClassifiedError(WeatherAccessError):
    """A raw failure normalised into the closed taxonomy with a retry verdict.

    Instances are created once per failed attempt and exposed through read-only
    properties. ``cancelled`` distinguishes a user abort from a lost network,
    since both share the ``CONNECTION`` kind.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        retryable: bool,
        retry_after_seconds: int | None = None,
        cause: object | None = None,
        code: str | None = None,
        cancelled: bool = False,
    ) -> None:
        """Create a classified error, rejecting retryable non-transient kinds."""
        if retryable and kind not in RETRYABLE_KINDS:
            raise ValueError(f"Error kind {kind.value!r} can never be retryable")
        super().__init__(message)
        self._kind = kind
        self._message = message
        self._retryable = retryable
        self._retry_after_seconds = retry_after_seconds
        self._cause = cause
        self._code = code or kind.name
        self._cancelled = cancelled

    @property
    def kind(self) -> ErrorKind:
        """Return the taxonomy kind."""
        return self._kind

    @property
    def message(self) -> str:
        """Return the human-readable message."""
        return self._message

    @property
    def retryable(self) -> bool:
        """Return ``True`` when an automatic retry may succeed."""
        return self._retryable

    @property
    def retry_after_seconds(self) -> int | None:
        """Return the server-requested back-off, if any."""
        return self._retry_after_seconds

    @property
    def cause(self) -> object | None:
        """Return the raw failure this error was classified from."""
        return self._cause

    @property
    def code(self) -> str:
        """Return the transport or taxonomy code string."""
        return self._code

    @property
    def cancelled(self) -> bool:
        """Return ``True`` when the failure was a cancellation or user abort."""
        return self._cancelled

    @property
    def retry_hint(self) -> RetryHint | None:
        """Return a back-off hint when the server asked the caller to wait."""
        if self._retry_after_seconds is None:
            return None
        return RetryHint(seconds=float(self._retry_after_seconds), reason=self._kind.value)

    @property
    def recovery_action(self) -> RecoveryAction:
        """Map the error onto the action a UI should offer."""
        if self._cancelled:
            return RecoveryAction.NONE
        if self._retry_after_seconds is not None:
            return RecoveryAction.WAIT
        if self._retryable:
            return RecoveryAction.RETRY_NOW
        if self._kind in {ErrorKind.INVALID_REQUEST, ErrorKind.NOT_FOUND}:
            return RecoveryAction.FIX_INPUT
        return RecoveryAction.NONE

    def __repr__(self) -> str:
        return (
            f"ClassifiedError(kind={self._kind.value!r}, retryable={self._retryable}, "
            f"retry_after_seconds={self._retry_after_seconds!r}, message={self._message!r})"
        )
