"""Request pipeline: an ordered list of policies ending in the HTTP transport.

Each policy receives the request and the next stage and returns the response,
so a policy can act before and after the rest of the pipeline (or, like the
retry policy, run the rest of the pipeline several times).
"""

from __future__ import annotations

import dataclasses
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import urlparse, urlunparse

import httpx

from ._cancel import CancellationToken, SleepFn
from ._http import BaseTransport, HTTPConfig, RequestBody
from ._http.transport import body_content
from ._retry import AttemptContext, RetryOrchestrator, RetryPolicyConfig
from ._serialize import error_from_response
from .credentials import Credential

_READ_ONLY_METHODS = frozenset({"GET", "HEAD"})
_REDACTED_HEADERS = frozenset({"authorization", "x-ms-copy-source-authorization"})
_REDACTED_PARAMS = frozenset({"sig"})


@dataclass
class PipelineRequest:
    """One logical storage request. Header names are kept lower-case."""

    method: str
    url: str
    params: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    body: RequestBody = None
    operation: str = "request"
    read_only: bool | None = None
    stream: bool = False
    timeout: float | None = None
    cancellation: CancellationToken | None = None

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        self.headers = {k.lower(): str(v) for k, v in self.headers.items() if v is not None}
        self.params = {k: v for k, v in self.params.items() if v is not None}
        if self.read_only is None:
            self.read_only = self.method in _READ_ONLY_METHODS
        content = body_content(self.body)
        if content is not None:
            self.headers.setdefault("content-type", self.body.content_type)  # type: ignore[union-attr]
            self.headers["content-length"] = str(len(content))
        elif self.method in {"PUT", "POST"}:
            self.headers["content-length"] = "0"

    @property
    def host(self) -> str:
        return urlparse(self.url).netloc

    def with_host(self, host: str) -> PipelineRequest:
        """A copy of this request aimed at ``host`` with independent headers and params."""
        parsed = urlparse(self.url)
        return dataclasses.replace(
            self,
            url=urlunparse(parsed._replace(netloc=host)),
            headers=dict(self.headers),
            params=dict(self.params),
        )

    def redacted_url(self) -> str:
        url = httpx.URL(self.url, params={k: str(v) for k, v in self.params.items()})
        for name in _REDACTED_PARAMS:
            if name in url.params:
                url = url.copy_set_param(name, "REDACTED")
        return str(url)


NextStage = Callable[[PipelineRequest], Awaitable[httpx.Response]]


class Policy(Protocol):
    async def send(self, request: PipelineRequest, next_stage: NextStage) -> httpx.Response: ...


class HeadersPolicy:
    """Adds version, user agent, and a client request id shared by all attempts."""

    def __init__(self, config: HTTPConfig) -> None:
        self._headers = {k.lower(): v for k, v in config.get_headers().items()}

    async def send(self, request: PipelineRequest, next_stage: NextStage) -> httpx.Response:
        for name, value in self._headers.items():
            request.headers.setdefault(name, value)
        request.headers.setdefault("x-ms-client-request-id", str(uuid.uuid4()))
        return await next_stage(request)


class RetryPolicy:
    """Runs the rest of the pipeline under the retry orchestrator.

    Each attempt works on its own copy of the request, re-targeted at the host
    chosen for that attempt; error responses are read, closed, and raised as
    ``HttpResponseError`` so the orchestrator can classify them.
    """

    def __init__(self, orchestrator: RetryOrchestrator, transport: BaseTransport) -> None:
        self._orchestrator = orchestrator
        self._transport = transport

    @property
    def config(self) -> RetryPolicyConfig:
        return self._orchestrator.config

    async def send(self, request: PipelineRequest, next_stage: NextStage) -> httpx.Response:
        try_timeout = self.config.try_timeout

        async def attempt(context: AttemptContext) -> httpx.Response:
            attempt_request = request.with_host(context.host)
            if try_timeout is not None:
                attempt_request.timeout = (
                    min(try_timeout, request.timeout) if request.timeout else try_timeout
                )
            response = await next_stage(attempt_request)
            if response.status_code >= 400:
                body = await self._transport.read(response)
                raise error_from_response(
                    response,
                    body,
                    operation=request.operation,
                    host=context.host,
                )
            return response

        return await self._orchestrator.execute(
            attempt,
            operation=request.operation,
            read_only=bool(request.read_only),
            primary_host=request.host,
            cancellation=request.cancellation,
            timeout=self.config.total_timeout,
        )


class CredentialPolicy:
    def __init__(self, credential: Credential) -> None:
        self._credential = credential

    async def send(self, request: PipelineRequest, next_stage: NextStage) -> httpx.Response:
        self._credential.sign(request)
        return await next_stage(request)


class LoggingPolicy:
    def __init__(self, logger: logging.Logger | logging.LoggerAdapter) -> None:
        self._log = logger

    def _safe_headers(self, headers: dict[str, str]) -> dict[str, str]:
        return {k: ("REDACTED" if k in _REDACTED_HEADERS else v) for k, v in headers.items()}

    async def send(self, request: PipelineRequest, next_stage: NextStage) -> httpx.Response:
        if self._log.isEnabledFor(logging.DEBUG):
            self._log.debug(
                "%s %s %s headers=%s",
                request.operation,
                request.method,
                request.redacted_url(),
                self._safe_headers(request.headers),
            )
        started = time.monotonic()
        try:
            response = await next_stage(request)
        except Exception as exc:
            self._log.warning(
                "%s %s %s failed: %s",
                request.operation,
                request.method,
                request.host,
                exc,
            )
            raise
        elapsed = time.monotonic() - started
        log_level = logging.WARNING if response.status_code >= 400 else logging.DEBUG
        self._log.log(
            log_level,
            "%s %s %s -> %d in %.3fs",
            request.operation,
            request.method,
            request.host,
            response.status_code,
            elapsed,
        )
        return response


class Pipeline:
    """Composes policies by walking the list; the last stage is the transport."""

    def __init__(self, transport: BaseTransport, policies: Sequence[Policy]) -> None:
        self._transport = transport
        self._policies = tuple(policies)

    @property
    def transport(self) -> BaseTransport:
        return self._transport

    @property
    def policies(self) -> tuple[Policy, ...]:
        return self._policies

    async def run(self, request: PipelineRequest) -> httpx.Response:
        return await self._dispatch(0, request)

    async def _dispatch(self, index: int, request: PipelineRequest) -> httpx.Response:
        if index == len(self._policies):
            return await self._transport.send(
                request.method,
                request.url,
                params=request.params,
                body=request.body,
                headers=request.headers,
                timeout=request.timeout,
                stream=request.stream,
            )

        async def next_stage(next_request: PipelineRequest) -> httpx.Response:
            return await self._dispatch(index + 1, next_request)

        return await self._policies[index].send(request, next_stage)


def build_pipeline(
    transport: BaseTransport,
    credential: Credential,
    *,
    http_config: HTTPConfig,
    retry: RetryPolicyConfig,
    sleep_fn: SleepFn,
    logger: logging.Logger | logging.LoggerAdapter,
    retry_logger: logging.Logger | logging.LoggerAdapter | None = None,
) -> Pipeline:
    orchestrator = RetryOrchestrator(retry, sleep_fn=sleep_fn, logger=retry_logger or logger)
    return Pipeline(
        transport,
        [
            HeadersPolicy(http_config),
            RetryPolicy(orchestrator, transport),
            CredentialPolicy(credential),
            LoggingPolicy(logger),
        ],
    )


__all__ = [
    "CredentialPolicy",
    "HeadersPolicy",
    "LoggingPolicy",
    "NextStage",
    "Pipeline",
    "PipelineRequest",
    "Policy",
    "RetryPolicy",
    "build_pipeline",
]
