"""Per-flavour runtime pieces: transport, sleep, transfer coordinator, poller."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from .._cancel import SleepFn, async_sleep, blocking_sleep
from .._http import (
    AsyncTransport,
    BaseTransport,
    BlockingTransport,
    create_base_async_client,
    create_base_client,
)
from .._poller import AsyncBlobCopyPoller, BlobCopyPoller, _BaseCopyPoller
from .._transfer import (
    AsyncTransferCoordinator,
    BlockingTransferCoordinator,
    _TransferCoordinator,
)


@dataclass(frozen=True)
class ClientRuntime:
    """What differs between the blocking and the async clients.

    Everything else, including every request the clients make, is shared code
    that awaits these pieces.
    """

    transport: BaseTransport
    sleep_fn: SleepFn
    coordinator_cls: type[_TransferCoordinator]
    poller_cls: type[_BaseCopyPoller]
    is_async: bool


def create_blocking_runtime(
    timeout: float | None = None,
    *,
    http_client: httpx.Client | None = None,
) -> ClientRuntime:
    client = http_client or create_base_client(timeout)
    return ClientRuntime(
        transport=BlockingTransport(client, owns_client=http_client is None),
        sleep_fn=blocking_sleep,
        coordinator_cls=BlockingTransferCoordinator,
        poller_cls=BlobCopyPoller,
        is_async=False,
    )


def create_async_runtime(
    timeout: float | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> ClientRuntime:
    client = http_client or create_base_async_client(timeout)
    return ClientRuntime(
        transport=AsyncTransport(client, owns_client=http_client is None),
        sleep_fn=async_sleep,
        coordinator_cls=AsyncTransferCoordinator,
        poller_cls=AsyncBlobCopyPoller,
        is_async=True,
    )


__all__ = ["ClientRuntime", "create_async_runtime", "create_blocking_runtime"]
