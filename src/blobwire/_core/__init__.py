"""Client cores with shared code between the blocking and async clients."""

from __future__ import annotations

from .runtime import ClientRuntime, create_async_runtime, create_blocking_runtime

__all__ = [
    "ClientRuntime",
    "create_async_runtime",
    "create_blocking_runtime",
]
