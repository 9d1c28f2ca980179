"""Caller-owned cancellation signal and sleeps that wake up when it fires."""

from __future__ import annotations

import threading
import time
from collections.abc import Awaitable, Callable

import anyio

from .errors import OperationCancelledError

SleepFn = Callable[[float, "CancellationToken | None"], Awaitable[None] | None]


class CancellationToken:
    """A one-shot abort signal observed at every suspension point of an operation.

    ``cancel()`` runs the registered callbacks on the calling thread. For async
    code the token must be cancelled from the event loop thread (use
    ``anyio.from_thread.run_sync(token.cancel)`` from worker threads).
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def raise_if_cancelled(self, operation: str | None = None) -> None:
        if self._event.is_set():
            raise OperationCancelledError(
                self.reason or "The operation was cancelled", operation=operation
            )

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run ``callback`` on cancellation; returns a function that unregisters it."""
        with self._lock:
            fire_now = self._event.is_set()
            if not fire_now:
                self._callbacks.append(callback)
        if fire_now:
            callback()

        def remove() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return remove

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def child(self) -> tuple[CancellationToken, Callable[[], None]]:
        """A token cancelled together with this one, plus a detach function."""
        linked = CancellationToken()
        detach = self.add_callback(lambda: linked.cancel(self.reason))
        return linked, detach


def blocking_sleep(delay: float, cancellation: CancellationToken | None = None) -> None:
    if cancellation is None:
        time.sleep(delay)
        return
    cancellation.raise_if_cancelled()
    if cancellation.wait(delay):
        cancellation.raise_if_cancelled()


async def async_sleep(delay: float, cancellation: CancellationToken | None = None) -> None:
    if cancellation is None:
        await anyio.sleep(delay)
        return
    cancellation.raise_if_cancelled()
    woken = anyio.Event()
    remove = cancellation.add_callback(woken.set)
    try:
        with anyio.move_on_after(delay):
            await woken.wait()
    finally:
        remove()
    cancellation.raise_if_cancelled()


__all__ = ["CancellationToken", "SleepFn", "async_sleep", "blocking_sleep"]
