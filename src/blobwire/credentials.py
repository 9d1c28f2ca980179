"""Credential kinds that sign outgoing requests.

Each credential is an immutable value with a single capability, ``sign``, which
mutates the per-attempt request in place. The pipeline signs every attempt
after the retry policy has chosen the target host.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from collections.abc import Callable
from dataclasses import dataclass
from email.utils import formatdate
from typing import TYPE_CHECKING, Union
from urllib.parse import parse_qsl, urlparse

from .errors import ConfigurationError

if TYPE_CHECKING:
    from ._pipeline import PipelineRequest

_SIGNED_STANDARD_HEADERS = (
    "content-encoding",
    "content-language",
    "content-length",
    "content-md5",
    "content-type",
    "date",
    "if-modified-since",
    "if-match",
    "if-none-match",
    "if-unmodified-since",
    "range",
)


@dataclass(frozen=True)
class AnonymousCredential:
    """Public-read access; requests go out unsigned."""

    def sign(self, request: PipelineRequest) -> None:
        return None


@dataclass(frozen=True)
class SharedKeyCredential:
    """Account name plus base64 account key, signing with HMAC-SHA256."""

    account_name: str
    account_key: str

    def __post_init__(self) -> None:
        if not self.account_name:
            raise ConfigurationError("account_name is required")
        try:
            base64.b64decode(self.account_key, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ConfigurationError("account_key must be base64 encoded") from exc

    def compute_hmac(self, string_to_sign: str) -> str:
        key = base64.b64decode(self.account_key)
        digest = hmac.new(key, string_to_sign.encode("utf-8"), hashlib.sha256).digest()
        return base64.b64encode(digest).decode("utf-8")

    def string_to_sign(self, request: PipelineRequest) -> str:
        headers = request.headers
        values = []
        for name in _SIGNED_STANDARD_HEADERS:
            value = headers.get(name, "")
            if name == "content-length" and value == "0":
                value = ""
            values.append(value + "\n")

        canonical_headers = "".join(
            f"{name}:{' '.join(value.split())}\n"
            for name, value in sorted(headers.items())
            if name.startswith("x-ms-")
        )

        path = urlparse(request.url).path or "/"
        canonical_resource = f"/{self.account_name}{path}"
        for name, value in sorted((k.lower(), str(v)) for k, v in request.params.items()):
            canonical_resource += f"\n{name}:{value}"

        return request.method.upper() + "\n" + "".join(values) + canonical_headers + canonical_resource

    def sign(self, request: PipelineRequest) -> None:
        request.headers["x-ms-date"] = formatdate(usegmt=True)
        signature = self.compute_hmac(self.string_to_sign(request))
        request.headers["authorization"] = f"SharedKey {self.account_name}:{signature}"


@dataclass(frozen=True)
class TokenCredential:
    """Bearer token, either fixed or produced fresh by a callable on every attempt."""

    token: str | Callable[[], str]

    def get_token(self) -> str:
        token = self.token() if callable(self.token) else self.token
        if not token:
            raise ConfigurationError("token credential produced an empty token")
        return token

    def sign(self, request: PipelineRequest) -> None:
        request.headers["authorization"] = f"Bearer {self.get_token()}"


@dataclass(frozen=True)
class SasCredential:
    """Shared access signature appended to every request's query string."""

    sas_token: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "sas_token", self.sas_token.lstrip("?"))
        if not self.sas_token:
            raise ConfigurationError("sas_token must not be empty")

    @property
    def params(self) -> dict[str, str]:
        return dict(parse_qsl(self.sas_token, keep_blank_values=True))

    def sign(self, request: PipelineRequest) -> None:
        for name, value in self.params.items():
            request.params.setdefault(name, value)


Credential = Union[AnonymousCredential, SharedKeyCredential, TokenCredential, SasCredential]


def resolve_credential(credential: Credential | str | None) -> Credential:
    """Map the ``credential`` argument accepted by client constructors to a credential kind."""
    if credential is None:
        return AnonymousCredential()
    if isinstance(credential, str):
        return SasCredential(credential)
    if isinstance(
        credential, (AnonymousCredential, SharedKeyCredential, TokenCredential, SasCredential)
    ):
        return credential
    raise ConfigurationError(f"unsupported credential type: {type(credential).__name__}")


__all__ = [
    "AnonymousCredential",
    "Credential",
    "SasCredential",
    "SharedKeyCredential",
    "TokenCredential",
    "resolve_credential",
]
