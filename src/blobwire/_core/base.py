"""Shared state and request helpers for every client flavour."""

from __future__ import annotations

from dataclasses import replace
from typing import Any, TypeVar
from urllib.parse import quote, urlparse, urlunparse

import httpx

from .._cancel import CancellationToken
from .._http import AsyncTransport, BlockingTransport, RequestBody
from .._pipeline import Pipeline, PipelineRequest, build_pipeline
from ..config import ClientOptions, ConnectionSettings
from ..credentials import Credential, SasCredential, SharedKeyCredential, resolve_credential
from ..errors import ConfigurationError, ResourceNotFoundError
from .runtime import ClientRuntime

_C = TypeVar("_C", bound="_BaseStorageClient")


def split_sas_from_url(url: str) -> tuple[str, str | None]:
    """Strip a SAS query string from ``url``; returns the bare URL and the token."""
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(f"invalid account URL: {url!r}")
    bare = urlunparse(parsed._replace(query="", fragment="")).rstrip("/")
    return bare, (parsed.query or None)


def quote_blob_name(name: str) -> str:
    if not name:
        raise ConfigurationError("blob name must not be empty")
    return quote(name, safe="/~")


def quote_container_name(name: str) -> str:
    if not name:
        raise ConfigurationError("container name must not be empty")
    return quote(name, safe="")


class ClientContext:
    """Pipeline, runtime and options shared by a client and the clients it hands out."""

    def __init__(
        self,
        runtime: ClientRuntime,
        credential: Credential,
        options: ClientOptions,
    ) -> None:
        self.runtime = runtime
        self.credential = credential
        self.options = options
        self.log = options.log.get_logger("client")
        self.transfer_log = options.log.get_logger("transfer")
        self.pipeline: Pipeline = build_pipeline(
            runtime.transport,
            credential,
            http_config=options.http_config(),
            retry=options.retry,
            sleep_fn=runtime.sleep_fn,
            logger=options.log.get_logger("pipeline"),
            retry_logger=options.log.get_logger("retry"),
        )


def make_context(
    runtime: ClientRuntime,
    url: str,
    credential: Credential | str | None,
    options: ClientOptions | None,
) -> tuple[str, ClientContext]:
    bare_url, sas = split_sas_from_url(url)
    if credential is None and sas:
        credential = SasCredential(sas)
    context = ClientContext(runtime, resolve_credential(credential), options or ClientOptions())
    return bare_url, context


def options_for_settings(
    settings: ConnectionSettings,
    options: ClientOptions | None,
    *,
    use_secondary: bool,
) -> ClientOptions:
    """Client options with the secondary read host from ``settings`` switched on."""
    options = options or ClientOptions()
    if use_secondary and settings.secondary_host and options.retry.secondary_host is None:
        retry = replace(options.retry, secondary_host=settings.secondary_host)
        options = replace(options, retry=retry)
    return options


class _BaseStorageClient:
    """Base class for all clients with the shared async request helpers."""

    _context: ClientContext
    _url: str
    _owns_transport: bool

    @classmethod
    def _from_context(cls: type[_C], url: str, context: ClientContext, **attrs: Any) -> _C:
        """A client sharing ``context``; it never closes the shared transport."""
        client = cls.__new__(cls)
        client._url = url
        client._context = context
        client._owns_transport = False
        for name, value in attrs.items():
            setattr(client, name, value)
        return client

    @property
    def url(self) -> str:
        return self._url

    @property
    def credential(self) -> Credential:
        return self._context.credential

    @property
    def options(self) -> ClientOptions:
        return self._context.options

    async def _send(
        self,
        method: str,
        *,
        operation: str,
        url: str | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, Any] | None = None,
        body: RequestBody = None,
        read_only: bool | None = None,
        stream: bool = False,
        cancellation: CancellationToken | None = None,
    ) -> httpx.Response:
        request = PipelineRequest(
            method=method,
            url=url or self._url,
            params=dict(params or {}),
            headers=dict(headers or {}),
            body=body,
            operation=operation,
            read_only=read_only,
            stream=stream,
            cancellation=cancellation,
        )
        return await self._context.pipeline.run(request)

    def _require_shared_key(self) -> SharedKeyCredential:
        credential = self.credential
        if not isinstance(credential, SharedKeyCredential):
            raise ConfigurationError("generating a SAS requires a SharedKeyCredential")
        return credential

    async def _exists(self, probe: Any) -> bool:
        try:
            await probe()
        except ResourceNotFoundError:
            return False
        return True

    async def _close(self) -> None:
        if not self._owns_transport:
            return
        transport = self._context.runtime.transport
        if isinstance(transport, AsyncTransport):
            await transport.aclose()
        elif isinstance(transport, BlockingTransport):
            transport.close()


__all__ = [
    "ClientContext",
    "make_context",
    "options_for_settings",
    "quote_blob_name",
    "quote_container_name",
    "split_sas_from_url",
]
