"""State machine and pollers for server-side blob copies."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Union, cast

from ._cancel import CancellationToken, SleepFn, async_sleep, blocking_sleep
from ._http.iter_coroutine import iter_coroutine
from .errors import HttpResponseError, OperationCancelledError, StorageError
from .types import BlobProperties, CopyProperties

DEFAULT_POLL_INTERVAL = 1.0

_log = logging.getLogger("blobwire.poller")


@dataclass(frozen=True)
class NotStarted:
    pass


@dataclass(frozen=True)
class InProgress:
    progress: str | None = None


@dataclass(frozen=True)
class Succeeded:
    result: CopyProperties


@dataclass(frozen=True)
class Failed:
    error: StorageError


@dataclass(frozen=True)
class Cancelled:
    reason: str | None = None


CopyState = Union[NotStarted, InProgress, Succeeded, Failed, Cancelled]


def is_terminal(state: CopyState) -> bool:
    return isinstance(state, (Succeeded, Failed, Cancelled))


def transition(
    state: CopyState,
    copy_status: str | None,
    progress: str | None = None,
    description: str | None = None,
    *,
    copy: CopyProperties | None = None,
) -> CopyState:
    """Next state after observing ``copy_status``; terminal states never change."""
    if is_terminal(state):
        return state
    if copy_status == "pending":
        return InProgress(progress)
    if copy_status == "success":
        return Succeeded(
            copy or CopyProperties(status="success", progress=progress, status_description=description)
        )
    if copy_status == "aborted":
        return Cancelled(description)
    if copy_status == "failed":
        return Failed(StorageError(description or "copy failed", operation="copy_blob"))
    return Failed(
        StorageError(f"unexpected copy status {copy_status!r}", operation="copy_blob")
    )


async def _await_if_necessary(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await cast(Awaitable[Any], value)
    return value


class _BaseCopyPoller:
    def __init__(
        self,
        copy_id: str | None,
        *,
        get_properties: Callable[[], Awaitable[BlobProperties]],
        abort_copy: Callable[[str], Awaitable[None]],
        initial: CopyProperties | None = None,
        sleep_fn: SleepFn,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self.copy_id = copy_id
        self._get_properties = get_properties
        self._abort_copy = abort_copy
        self._sleep_fn = sleep_fn
        self._log = logger or _log
        self.state: CopyState = NotStarted()
        if initial is not None:
            self._observe(initial)

    def done(self) -> bool:
        return is_terminal(self.state)

    def _observe(self, copy: CopyProperties) -> CopyState:
        previous = self.state
        self.state = transition(
            self.state, copy.status, copy.progress, copy.status_description, copy=copy
        )
        if type(previous) is not type(self.state):
            self._log.debug("copy %s: %s -> %s", self.copy_id, previous, self.state)
        return self.state

    async def _poll_once(self) -> CopyState:
        if self.done():
            return self.state
        properties = await self._get_properties()
        if self.copy_id and properties.copy.id and properties.copy.id != self.copy_id:
            self.state = Failed(
                StorageError(
                    f"copy {self.copy_id} was superseded by copy {properties.copy.id}",
                    operation="copy_blob",
                )
            )
            return self.state
        return self._observe(properties.copy)

    async def _wait(
        self,
        interval: float = DEFAULT_POLL_INTERVAL,
        cancellation: CancellationToken | None = None,
    ) -> CopyState:
        while True:
            if cancellation is not None:
                cancellation.raise_if_cancelled("copy_blob")
            state = await self._poll_once()
            if is_terminal(state):
                return state
            await _await_if_necessary(self._sleep_fn(interval, cancellation))

    async def _cancel(self) -> CopyState:
        """Abort a pending copy; a copy that already finished keeps its final state."""
        if self.done():
            return self.state
        if self.copy_id is None:
            raise StorageError("copy id unknown, cannot abort", operation="abort_copy")
        try:
            await self._abort_copy(self.copy_id)
        except HttpResponseError as exc:
            if exc.status_code != 409:
                raise
            # NoPendingCopyOperation: the copy finished before the abort arrived.
            return await self._poll_once()
        self.state = Cancelled("aborted by caller")
        return self.state

    def _result(self) -> CopyProperties:
        state = self.state
        if isinstance(state, Succeeded):
            return state.result
        if isinstance(state, Failed):
            raise state.error
        if isinstance(state, Cancelled):
            raise OperationCancelledError(state.reason or "copy was aborted", operation="copy_blob")
        raise StorageError("copy has not finished", operation="copy_blob")


class BlobCopyPoller(_BaseCopyPoller):
    """Tracks a copy started by ``BlobClient.start_copy_from_url``."""

    def __init__(self, copy_id: str | None, **kwargs: Any) -> None:
        kwargs.setdefault("sleep_fn", blocking_sleep)
        super().__init__(copy_id, **kwargs)

    def poll_once(self) -> CopyState:
        return iter_coroutine(self._poll_once())

    def wait(
        self,
        interval: float = DEFAULT_POLL_INTERVAL,
        cancellation: CancellationToken | None = None,
    ) -> CopyState:
        return iter_coroutine(self._wait(interval, cancellation))

    def cancel(self) -> CopyState:
        return iter_coroutine(self._cancel())

    def result(
        self,
        interval: float = DEFAULT_POLL_INTERVAL,
        cancellation: CancellationToken | None = None,
    ) -> CopyProperties:
        self.wait(interval, cancellation)
        return self._result()


class AsyncBlobCopyPoller(_BaseCopyPoller):
    def __init__(self, copy_id: str | None, **kwargs: Any) -> None:
        kwargs.setdefault("sleep_fn", async_sleep)
        super().__init__(copy_id, **kwargs)

    async def poll_once(self) -> CopyState:
        return await self._poll_once()

    async def wait(
        self,
        interval: float = DEFAULT_POLL_INTERVAL,
        cancellation: CancellationToken | None = None,
    ) -> CopyState:
        return await self._wait(interval, cancellation)

    async def cancel(self) -> CopyState:
        return await self._cancel()

    async def result(
        self,
        interval: float = DEFAULT_POLL_INTERVAL,
        cancellation: CancellationToken | None = None,
    ) -> CopyProperties:
        await self._wait(interval, cancellation)
        return self._result()


__all__ = [
    "AsyncBlobCopyPoller",
    "BlobCopyPoller",
    "Cancelled",
    "CopyState",
    "Failed",
    "InProgress",
    "NotStarted",
    "Succeeded",
    "is_terminal",
    "transition",
]
