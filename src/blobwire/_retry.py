"""Retry orchestration with primary/secondary endpoint failover.

One ``AttemptContext`` is created per logical request. Attempt 1 always goes to
the primary host; for read-only requests with a secondary host configured the
even attempts go to the secondary until it answers 404, after which every
remaining attempt stays on the primary.
"""

from __future__ import annotations

import enum
import inspect
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar, cast

from ._cancel import CancellationToken, SleepFn, async_sleep
from .errors import (
    ConfigurationError,
    HttpResponseError,
    OperationCancelledError,
    ServiceRequestError,
    StorageError,
)

T = TypeVar("T")

DEFAULT_MAX_TRIES = 4
DEFAULT_RETRY_DELAY = 4.0
DEFAULT_MAX_RETRY_DELAY = 120.0
DEFAULT_JITTER = 0.1

_log = logging.getLogger("blobwire.retry")


class RetryMode(str, enum.Enum):
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


@dataclass(frozen=True)
class RetryPolicyConfig:
    """Immutable retry settings, fixed for the lifetime of a client.

    Delays are in seconds. ``retry_delay`` and ``max_retry_delay`` are either
    both zero (no artificial delay) or both positive.
    """

    mode: RetryMode = RetryMode.EXPONENTIAL
    max_tries: int = DEFAULT_MAX_TRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY
    secondary_host: str | None = None
    try_timeout: float | None = None
    total_timeout: float | None = None
    jitter: float = DEFAULT_JITTER

    def __post_init__(self) -> None:
        if self.max_tries < 1:
            raise ConfigurationError("max_tries must be at least 1")
        if self.retry_delay < 0 or self.max_retry_delay < 0:
            raise ConfigurationError("retry delays must not be negative")
        if (self.retry_delay == 0) != (self.max_retry_delay == 0):
            raise ConfigurationError(
                "retry_delay and max_retry_delay must both be zero or both be positive"
            )
        if not 0 <= self.jitter < 1:
            raise ConfigurationError("jitter must be in [0, 1)")
        if self.try_timeout is not None and self.try_timeout <= 0:
            raise ConfigurationError("try_timeout must be positive")
        if self.total_timeout is not None and self.total_timeout <= 0:
            raise ConfigurationError("total_timeout must be positive")
        if self.secondary_host is not None and not self.secondary_host:
            raise ConfigurationError("secondary_host must not be empty")

    @classmethod
    def no_delay(cls, max_tries: int = DEFAULT_MAX_TRIES, **kwargs: Any) -> RetryPolicyConfig:
        return cls(max_tries=max_tries, retry_delay=0.0, max_retry_delay=0.0, **kwargs)

    def compute_delay(
        self, attempt: int, random_fn: Callable[[], float] = random.random
    ) -> float:
        """Delay to wait after ``attempt`` failed, before the next attempt."""
        if self.retry_delay == 0:
            return 0.0
        if self.mode is RetryMode.EXPONENTIAL:
            delay = min(self.max_retry_delay, self.retry_delay * 2 ** (attempt - 1))
        else:
            delay = min(self.retry_delay, self.max_retry_delay)
        if self.jitter:
            delay *= 1 + self.jitter * (2 * random_fn() - 1)
        return min(delay, self.max_retry_delay)


@dataclass
class AttemptContext:
    """Mutable state of one logical request, threaded through its attempts."""

    operation: str
    read_only: bool
    primary_host: str
    secondary_host: str | None = None
    deadline: float | None = None
    attempt: int = 1
    secondary_has_404: bool = False
    host: str = ""

    @property
    def secondary_eligible(self) -> bool:
        return self.read_only and bool(self.secondary_host) and not self.secondary_has_404

    @property
    def on_secondary(self) -> bool:
        return self.secondary_host is not None and self.host == self.secondary_host

    def select_host(self) -> str:
        if self.attempt % 2 == 0 and self.secondary_eligible:
            self.host = cast(str, self.secondary_host)
        else:
            self.host = self.primary_host
        return self.host

    def remaining(self, now: float) -> float | None:
        if self.deadline is None:
            return None
        return self.deadline - now


class FailureKind(enum.Enum):
    RETRYABLE = "retryable"
    SECONDARY_NOT_FOUND = "secondary_not_found"
    PERMANENT = "permanent"
    CANCELLED = "cancelled"


def classify_failure(error: BaseException, context: AttemptContext) -> FailureKind:
    if isinstance(error, OperationCancelledError):
        return FailureKind.CANCELLED
    if isinstance(error, ServiceRequestError):
        return FailureKind.RETRYABLE
    if isinstance(error, HttpResponseError):
        if error.status_code == 404 and context.on_secondary:
            return FailureKind.SECONDARY_NOT_FOUND
        if error.status_code >= 500:
            return FailureKind.RETRYABLE
    return FailureKind.PERMANENT


async def _await_if_necessary(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await cast(Awaitable[Any], value)
    return value


class RetryOrchestrator:
    """Runs one logical request with bounded, policy-driven retries.

    ``sleep_fn`` receives the delay and the cancellation token; it may be a
    plain function (blocking clients) or a coroutine function (async clients).
    """

    def __init__(
        self,
        config: RetryPolicyConfig,
        *,
        sleep_fn: SleepFn = async_sleep,
        clock: Callable[[], float] = time.monotonic,
        random_fn: Callable[[], float] = random.random,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self.config = config
        self._sleep_fn = sleep_fn
        self._clock = clock
        self._random_fn = random_fn
        self._log = logger or _log

    def new_context(
        self,
        *,
        operation: str,
        read_only: bool,
        primary_host: str,
        timeout: float | None = None,
    ) -> AttemptContext:
        return AttemptContext(
            operation=operation,
            read_only=read_only,
            primary_host=primary_host,
            secondary_host=self.config.secondary_host,
            deadline=self._clock() + timeout if timeout is not None else None,
        )

    async def execute(
        self,
        attempt_fn: Callable[[AttemptContext], Awaitable[T]],
        *,
        operation: str,
        read_only: bool,
        primary_host: str,
        cancellation: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> T:
        """Run ``attempt_fn`` until it succeeds or the retry budget is spent.

        Raises the last failure, unchanged in kind, with ``attempts`` set.
        """
        context = self.new_context(
            operation=operation,
            read_only=read_only,
            primary_host=primary_host,
            timeout=timeout,
        )
        while True:
            if cancellation is not None:
                cancellation.raise_if_cancelled(operation)
            context.select_host()
            try:
                return await attempt_fn(context)
            except StorageError as exc:
                error = exc

            if cancellation is not None and cancellation.cancelled:
                raise self._annotate(
                    OperationCancelledError(
                        cancellation.reason or "The operation was cancelled",
                        operation=operation,
                    ),
                    context,
                ) from error

            kind = classify_failure(error, context)
            if kind is FailureKind.CANCELLED:
                raise self._annotate(error, context)
            if kind is FailureKind.SECONDARY_NOT_FOUND:
                context.secondary_has_404 = True
                self._log.debug(
                    "%s: secondary %s returned 404, staying on primary",
                    operation,
                    context.host,
                )
            if kind is FailureKind.PERMANENT or context.attempt >= self.config.max_tries:
                raise self._annotate(error, context)

            delay = self.config.compute_delay(context.attempt, self._random_fn)
            remaining = context.remaining(self._clock())
            if remaining is not None and remaining <= delay:
                self._log.debug("%s: time budget exhausted, not retrying", operation)
                raise self._annotate(error, context)

            self._log.info(
                "%s: attempt %d against %s failed (%s), retrying in %.3fs",
                operation,
                context.attempt,
                context.host,
                error,
                delay,
            )
            try:
                if delay > 0:
                    await _await_if_necessary(self._sleep_fn(delay, cancellation))
                elif cancellation is not None:
                    cancellation.raise_if_cancelled(operation)
            except OperationCancelledError as cancelled:
                raise self._annotate(cancelled, context) from error
            context.attempt += 1

    @staticmethod
    def _annotate(error: StorageError, context: AttemptContext) -> StorageError:
        error.attempts = context.attempt
        if error.operation is None:
            error.operation = context.operation
        return error


__all__ = [
    "AttemptContext",
    "FailureKind",
    "RetryMode",
    "RetryOrchestrator",
    "RetryPolicyConfig",
    "classify_failure",
    "DEFAULT_MAX_TRIES",
    "DEFAULT_RETRY_DELAY",
    "DEFAULT_MAX_RETRY_DELAY",
]
