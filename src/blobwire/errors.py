"""Exceptions raised by blobwire clients."""

from __future__ import annotations

from collections.abc import Mapping


class StorageError(Exception):
    """Base class for every error raised by blobwire.

    ``operation`` names the logical operation that failed and ``attempts`` is the
    number of attempts the retry policy made before giving up.
    """

    def __init__(self, message: str = "", *, operation: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.attempts = 1

    def __str__(self) -> str:
        text = self.message
        if self.operation:
            text = f"{self.operation}: {text}" if text else self.operation
        if self.attempts > 1:
            text = f"{text} (after {self.attempts} attempts)"
        return text


class ConfigurationError(StorageError, ValueError):
    pass


class ServiceRequestError(StorageError):
    """The request never produced an HTTP response (connection reset, DNS, ...)."""


class ServiceTimeoutError(ServiceRequestError):
    pass


class OperationCancelledError(StorageError):
    def __init__(
        self,
        message: str = "The operation was cancelled",
        *,
        operation: str | None = None,
    ) -> None:
        super().__init__(message, operation=operation)


class HttpResponseError(StorageError):
    """The service answered with a non-success status code."""

    def __init__(
        self,
        message: str = "",
        *,
        status_code: int,
        error_code: str | None = None,
        host: str | None = None,
        headers: Mapping[str, str] | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message or f"HTTP {status_code}", operation=operation)
        self.status_code = status_code
        self.error_code = error_code
        self.host = host
        self.headers = dict(headers or {})

    def __str__(self) -> str:
        text = super().__str__()
        if self.error_code:
            text = f"{text} [{self.error_code}]"
        return text


class ResourceNotFoundError(HttpResponseError):
    pass


class ResourceExistsError(HttpResponseError):
    pass


class ClientAuthenticationError(HttpResponseError):
    pass


class TransferError(StorageError):
    """A chunked transfer was aborted because at least one chunk failed.

    ``failed_chunk`` is the sequence index of the first failure observed; other
    chunks may have failed too once their siblings were cancelled.
    """

    def __init__(
        self,
        message: str,
        *,
        failed_chunk: int | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message, operation=operation)
        self.failed_chunk = failed_chunk


class StreamTruncatedError(StorageError):
    def __init__(
        self,
        message: str,
        *,
        received: int,
        expected: int,
        restarts: int,
        operation: str | None = None,
    ) -> None:
        super().__init__(message, operation=operation)
        self.received = received
        self.expected = expected
        self.restarts = restarts


_STATUS_ERRORS: dict[int, type[HttpResponseError]] = {
    401: ClientAuthenticationError,
    403: ClientAuthenticationError,
    404: ResourceNotFoundError,
    409: ResourceExistsError,
}


def error_for_status(
    status_code: int,
    message: str = "",
    **kwargs: object,
) -> HttpResponseError:
    error_cls = _STATUS_ERRORS.get(status_code, HttpResponseError)
    return error_cls(message, status_code=status_code, **kwargs)  # type: ignore[arg-type]


__all__ = [
    "StorageError",
    "ConfigurationError",
    "ServiceRequestError",
    "ServiceTimeoutError",
    "OperationCancelledError",
    "HttpResponseError",
    "ResourceNotFoundError",
    "ResourceExistsError",
    "ClientAuthenticationError",
    "TransferError",
    "StreamTruncatedError",
    "error_for_status",
]
