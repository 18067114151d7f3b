"""Bounded retry execution with exponential backoff and jitter."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from random import Random
from secrets import SystemRandom
from typing import Final, NoReturn

from .classifier import ErrorClassifier, log_classified
from .config import RetryPolicy
from .errors import ClassifiedError, ErrorKind
from .telemetry import NullTelemetrySink, RetryAttemptEvent, RetryExhaustedEvent, TelemetrySink

logger = logging.getLogger(__name__)

RetryCallback = Callable[[int, ClassifiedError], None]
Sleeper = Callable[[float], Awaitable[None]]

DEFAULT_JITTER_RATIO: Final[float] = 0.1


def backoff_delay_ms(policy: RetryPolicy, attempt: int) -> float:
    """Return the un-jittered delay after failed *attempt* (1-based) under *policy*."""
    if attempt < 1:
        raise ValueError("attempt numbers start at 1")
    try:
        raw = policy.base_delay_ms * policy.backoff_multiplier ** (attempt - 1)
    except OverflowError:
        return float(policy.max_delay_ms)
    return float(min(raw, policy.max_delay_ms))


@dataclass(frozen=True, slots=True)
class RetryOutcome[ValueT]:
    """Successful result of an orchestrated call and the attempts it took."""

    value: ValueT
    attempts: int


class RetryOrchestrator:
    """Runs async operations under a :class:`RetryPolicy`.

    Every failure is classified; only retryable kinds are retried, and never
    beyond ``policy.max_attempts`` invocations. Rate-limit errors that carry a
    ``Retry-After`` value are surfaced immediately so the caller owns that
    back-off. The orchestrator keeps no per-call state on the instance, so one
    instance can serve any number of concurrent callers.
    """

    def __init__(
        self,
        classifier: ErrorClassifier | None = None,
        *,
        telemetry: TelemetrySink | None = None,
        sleep: Sleeper | None = None,
        rng: Random | None = None,
        jitter_ratio: float = DEFAULT_JITTER_RATIO,
    ) -> None:
        """Create an orchestrator; *sleep* and *rng* are injectable for tests."""
        if jitter_ratio < 0:
            raise ValueError("jitter_ratio must be non-negative")
        self._classifier = classifier or ErrorClassifier()
        self._telemetry = telemetry or NullTelemetrySink()
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or _JITTER_RANDOM
        self._jitter_ratio = jitter_ratio

    async def execute[ValueT](
        self,
        operation: Callable[[], Awaitable[ValueT]],
        policy: RetryPolicy,
        *,
        context: str = "operation",
        on_retry: RetryCallback | None = None,
    ) -> ValueT:
        """Invoke *operation* until it succeeds or the policy gives up."""
        outcome = await self.run(operation, policy, context=context, on_retry=on_retry)
        return outcome.value

    async def run[ValueT](
        self,
        operation: Callable[[], Awaitable[ValueT]],
        policy: RetryPolicy,
        *,
        context: str = "operation",
        on_retry: RetryCallback | None = None,
    ) -> RetryOutcome[ValueT]:
        """Like :meth:`execute` but also report how many attempts were made."""
        if policy.max_attempts == 0:
            error = ClassifiedError(
                ErrorKind.CONNECTION,
                "No attempts allowed while offline; serve cached data instead.",
                retryable=False,
                code="OFFLINE",
            )
            self._record_terminal(context, 0, error)
            raise error

        attempt = 1
        while True:
            try:
                value = await operation()
            except asyncio.CancelledError as exc:
                if _caller_is_cancelling():
                    logger.debug("%s cancelled by caller during attempt %d", context, attempt)
                    raise
                failure: BaseException = exc
            except Exception as exc:
                failure = exc
            else:
                if attempt > 1:
                    logger.info("%s succeeded on attempt %d", context, attempt)
                return RetryOutcome(value=value, attempts=attempt)

            error = self._classifier.classify(failure)
            if not error.retryable or attempt >= policy.max_attempts:
                self._record_terminal(context, attempt, error)
                _raise_classified(error, failure)
            if error.kind is ErrorKind.RATE_LIMITED and error.retry_after_seconds is not None:
                logger.warning(
                    "%s rate limited; surfacing Retry-After=%ss to caller",
                    context,
                    error.retry_after_seconds,
                )
                self._record_terminal(context, attempt, error)
                _raise_classified(error, failure)

            delay_ms = self._jittered(backoff_delay_ms(policy, attempt))
            logger.warning(
                "%s attempt %d/%d failed (%s); retrying in %.0f ms",
                context,
                attempt,
                policy.max_attempts,
                error.kind.value,
                delay_ms,
            )
            self._telemetry.record_event(
                RetryAttemptEvent(
                    context=context,
                    attempt=attempt,
                    kind=error.kind,
                    delay_ms=delay_ms,
                    message=error.message,
                )
            )
            if on_retry is not None:
                on_retry(attempt, error)
            await self._sleep(delay_ms / 1000.0)
            attempt += 1

    async def execute_with_fallback[ValueT](
        self,
        operation: Callable[[], Awaitable[ValueT]],
        fallback: Callable[[], Awaitable[ValueT]],
        policy: RetryPolicy,
        *,
        context: str = "operation",
    ) -> ValueT:
        """Run *operation* under *policy*, then *fallback* once if it ultimately fails.

        Errors raised by *fallback* propagate unchanged.
        """
        try:
            return await self.execute(operation, policy, context=context)
        except ClassifiedError as exc:
            logger.warning("%s failed (%s); using fallback", context, exc.kind.value)
        return await fallback()

    async def execute_with_timeout[ValueT](
        self,
        operation: Callable[[], Awaitable[ValueT]],
        timeout_ms: int,
        policy: RetryPolicy,
        *,
        context: str = "operation",
        on_retry: RetryCallback | None = None,
    ) -> ValueT:
        """Race each attempt of *operation* against a *timeout_ms* timer."""
        outcome = await self.run_with_timeout(
            operation, timeout_ms, policy, context=context, on_retry=on_retry
        )
        return outcome.value

    async def run_with_timeout[ValueT](
        self,
        operation: Callable[[], Awaitable[ValueT]],
        timeout_ms: int,
        policy: RetryPolicy,
        *,
        context: str = "operation",
        on_retry: RetryCallback | None = None,
    ) -> RetryOutcome[ValueT]:
        """Like :meth:`execute_with_timeout` but also report the attempt count."""
        if timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")

        async def _attempt() -> ValueT:
            try:
                return await asyncio.wait_for(operation(), timeout=timeout_ms / 1000.0)
            except TimeoutError as exc:
                raise ClassifiedError(
                    ErrorKind.TIMEOUT,
                    f"Operation timed out after {timeout_ms}ms",
                    retryable=True,
                    cause=exc,
                    code="ETIMEDOUT",
                ) from exc

        return await self.run(_attempt, policy, context=context, on_retry=on_retry)

    async def execute_all[ValueT](
        self,
        operations: Iterable[Callable[[], Awaitable[ValueT]]],
        policy: RetryPolicy,
        *,
        context: str = "operation",
    ) -> list[ValueT]:
        """Run *operations* concurrently, each under its own retry loop.

        Returns the successful values in input order. Raises the first error
        only when every operation failed.
        """
        pending = list(operations)
        if not pending:
            return []
        results = await asyncio.gather(
            *(
                self.execute(op, policy, context=f"{context}[{index}]")
                for index, op in enumerate(pending)
            ),
            return_exceptions=True,
        )
        successes: list[ValueT] = []
        errors: list[BaseException] = []
        for index, result in enumerate(results):
            if isinstance(result, BaseException):
                logger.error("%s[%d] failed: %s", context, index, result)
                errors.append(result)
            else:
                successes.append(result)
        if not successes and errors:
            raise errors[0]
        return successes

    def wrap[**ParamsT, ValueT](
        self,
        fn: Callable[ParamsT, Awaitable[ValueT]],
        policy: RetryPolicy,
        *,
        context: str | None = None,
    ) -> Callable[ParamsT, Awaitable[ValueT]]:
        """Return a coroutine function that calls *fn* under *policy*."""
        label = context or getattr(fn, "__qualname__", "operation")

        @functools.wraps(fn)
        async def _wrapper(*args: ParamsT.args, **kwargs: ParamsT.kwargs) -> ValueT:
            return await self.execute(lambda: fn(*args, **kwargs), policy, context=label)

        return _wrapper

    def _jittered(self, delay_ms: float) -> float:
        if delay_ms <= 0 or self._jitter_ratio <= 0:
            return delay_ms
        return delay_ms + self._rng.uniform(0.0, delay_ms * self._jitter_ratio)

    def _record_terminal(self, context: str, attempts: int, error: ClassifiedError) -> None:
        log_classified(error, context)
        self._telemetry.record_event(
            RetryExhaustedEvent(
                context=context,
                attempts=attempts,
                kind=error.kind,
                retryable=error.retryable,
                message=error.message,
            )
        )


def _caller_is_cancelling() -> bool:
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0


def _raise_classified(error: ClassifiedError, failure: BaseException) -> NoReturn:
    if error is failure:
        raise error
    raise error from failure


_JITTER_RANDOM = SystemRandom()
