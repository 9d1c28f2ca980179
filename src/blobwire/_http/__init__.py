"""Shared HTTP infrastructure for blob storage clients."""

from .clients import create_base_async_client, create_base_client
from .config import DEFAULT_API_VERSION, DEFAULT_TIMEOUT, HTTPConfig
from .iter_coroutine import iter_async_iterator, iter_coroutine
from .transport import (
    AsyncTransport,
    BaseTransport,
    BlockingTransport,
    BytesBody,
    RequestBody,
    XMLBody,
)

__all__ = [
    "DEFAULT_API_VERSION",
    "DEFAULT_TIMEOUT",
    "HTTPConfig",
    "iter_coroutine",
    "iter_async_iterator",
    "BaseTransport",
    "BlockingTransport",
    "AsyncTransport",
    "BytesBody",
    "XMLBody",
    "RequestBody",
    "create_base_client",
    "create_base_async_client",
]
