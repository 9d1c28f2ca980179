"""HTTP transport implementations for sync and async clients."""

from __future__ import annotations

import abc
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import httpx

from ..errors import ServiceRequestError, ServiceTimeoutError, StorageError


@dataclass(frozen=True, slots=True)
class BytesBody:
    """Raw bytes request body with explicit content type."""

    data: bytes
    content_type: str = "application/octet-stream"


@dataclass(frozen=True, slots=True)
class XMLBody:
    """XML document request body."""

    data: str
    content_type: str = "application/xml; charset=utf-8"

    def encode(self) -> bytes:
        return self.data.encode("utf-8")


RequestBody = BytesBody | XMLBody | None


def body_content(body: RequestBody) -> bytes | None:
    if isinstance(body, XMLBody):
        return body.encode()
    if isinstance(body, BytesBody):
        return body.data
    return None


def translate_transport_error(exc: httpx.TransportError) -> ServiceRequestError:
    if isinstance(exc, httpx.TimeoutException):
        return ServiceTimeoutError(str(exc) or type(exc).__name__)
    return ServiceRequestError(str(exc) or type(exc).__name__)


class BaseTransport(abc.ABC):
    """Abstract base class for HTTP transports.

    Every method is ``async def`` so the shared client core can await it; the
    blocking implementation never suspends, which lets the sync clients run the
    core through ``iter_coroutine``.
    """

    def __init__(self, *, owns_client: bool = True) -> None:
        self._owns_client = owns_client
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise StorageError("Client is closed")

    @abc.abstractmethod
    async def send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        body: RequestBody = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        stream: bool = False,
    ) -> httpx.Response:
        """Send an HTTP request and return the response."""
        ...

    @abc.abstractmethod
    async def read(self, response: httpx.Response) -> bytes:
        """Read the whole body of a (possibly streamed) response and close it."""
        ...

    @abc.abstractmethod
    def iter_bytes(self, response: httpx.Response) -> AsyncIterator[bytes]:
        """Iterate a streamed body, closing the response when done."""
        ...

    @abc.abstractmethod
    async def close_response(self, response: httpx.Response) -> None: ...


class BlockingTransport(BaseTransport):
    """
    Synchronous HTTP transport using httpx.Client.

    Methods are declared async but don't actually await anything,
    allowing them to be executed via iter_coroutine().
    """

    def __init__(self, client: httpx.Client, *, owns_client: bool = True) -> None:
        super().__init__(owns_client=owns_client)
        self._client = client

    async def send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        body: RequestBody = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        stream: bool = False,
    ) -> httpx.Response:
        self._ensure_open()
        request = self._client.build_request(
            method,
            url,
            params=params or None,
            content=body_content(body),
            headers=headers,
            timeout=httpx.Timeout(timeout) if timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )
        try:
            return self._client.send(request, stream=stream)
        except httpx.TransportError as exc:
            raise translate_transport_error(exc) from exc

    async def read(self, response: httpx.Response) -> bytes:
        try:
            return response.read()
        except httpx.TransportError as exc:
            raise translate_transport_error(exc) from exc
        finally:
            response.close()

    def iter_bytes(self, response: httpx.Response) -> AsyncIterator[bytes]:
        async def _iterate() -> AsyncIterator[bytes]:
            try:
                for chunk in response.iter_bytes():
                    yield chunk
            except httpx.TransportError as exc:
                raise translate_transport_error(exc) from exc
            finally:
                response.close()

        return _iterate()

    async def close_response(self, response: httpx.Response) -> None:
        response.close()

    def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._closed:
            return
        self._closed = True
        if self._owns_client:
            self._client.close()


class AsyncTransport(BaseTransport):
    """Asynchronous HTTP transport using httpx.AsyncClient."""

    def __init__(self, client: httpx.AsyncClient, *, owns_client: bool = True) -> None:
        super().__init__(owns_client=owns_client)
        self._client = client

    async def send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        body: RequestBody = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        stream: bool = False,
    ) -> httpx.Response:
        self._ensure_open()
        request = self._client.build_request(
            method,
            url,
            params=params or None,
            content=body_content(body),
            headers=headers,
            timeout=httpx.Timeout(timeout) if timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )
        try:
            return await self._client.send(request, stream=stream)
        except httpx.TransportError as exc:
            raise translate_transport_error(exc) from exc

    async def read(self, response: httpx.Response) -> bytes:
        try:
            return await response.aread()
        except httpx.TransportError as exc:
            raise translate_transport_error(exc) from exc
        finally:
            await response.aclose()

    def iter_bytes(self, response: httpx.Response) -> AsyncIterator[bytes]:
        async def _iterate() -> AsyncIterator[bytes]:
            try:
                async for chunk in response.aiter_bytes():
                    yield chunk
            except httpx.TransportError as exc:
                raise translate_transport_error(exc) from exc
            finally:
                await response.aclose()

        return _iterate()

    async def close_response(self, response: httpx.Response) -> None:
        await response.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._closed:
            return
        self._closed = True
        if self._owns_client:
            await self._client.aclose()


__all__ = [
    "BaseTransport",
    "BlockingTransport",
    "AsyncTransport",
    "BytesBody",
    "XMLBody",
    "RequestBody",
    "body_content",
    "translate_transport_error",
]
