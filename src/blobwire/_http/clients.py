"""Client factory functions for creating pre-configured httpx clients."""

from __future__ import annotations

import httpx

from .config import DEFAULT_TIMEOUT

# Parallel transfers keep several connections to the same host busy.
DEFAULT_MAX_CONNECTIONS = 64


def _build_client_kwargs(timeout: float | None, max_connections: int) -> dict:
    effective_timeout = timeout if timeout is not None else DEFAULT_TIMEOUT
    return {
        "timeout": httpx.Timeout(effective_timeout),
        "limits": httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_connections,
        ),
        # Signed requests must not be replayed against another URL.
        "follow_redirects": False,
    }


def create_base_client(
    timeout: float | None = None,
    *,
    max_connections: int = DEFAULT_MAX_CONNECTIONS,
) -> httpx.Client:
    """Create a sync httpx client for storage requests.

    Auth is applied per attempt by the request pipeline, after the retry
    policy has chosen the host.

    Args:
        timeout: Request timeout in seconds. Defaults to DEFAULT_TIMEOUT.
        max_connections: Connection pool size.

    Returns:
        An httpx.Client with storage defaults.
    """
    return httpx.Client(**_build_client_kwargs(timeout, max_connections))


def create_base_async_client(
    timeout: float | None = None,
    *,
    max_connections: int = DEFAULT_MAX_CONNECTIONS,
) -> httpx.AsyncClient:
    """Create an async httpx client for storage requests.

    Args:
        timeout: Request timeout in seconds. Defaults to DEFAULT_TIMEOUT.
        max_connections: Connection pool size.

    Returns:
        An httpx.AsyncClient with storage defaults.
    """
    return httpx.AsyncClient(**_build_client_kwargs(timeout, max_connections))


__all__ = ["create_base_client", "create_base_async_client", "DEFAULT_MAX_CONNECTIONS"]
