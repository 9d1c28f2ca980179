"""Client options, connection strings, and environment settings."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from urllib.parse import urlparse

from ._http.config import DEFAULT_API_VERSION, DEFAULT_TIMEOUT, HTTPConfig
from ._logging import LogConfig
from ._retry import RetryPolicyConfig
from ._transfer import TransferOptions
from .credentials import Credential, SasCredential, SharedKeyCredential
from .errors import ConfigurationError

CONNECTION_STRING_ENV = "AZURE_STORAGE_CONNECTION_STRING"
ACCOUNT_NAME_ENV = "AZURE_STORAGE_ACCOUNT_NAME"
ACCOUNT_KEY_ENV = "AZURE_STORAGE_ACCOUNT_KEY"

DEFAULT_ENDPOINT_SUFFIX = "core.windows.net"

# Local emulator account, published with the emulator.
DEVELOPMENT_ACCOUNT_NAME = "devstoreaccount1"
DEVELOPMENT_ACCOUNT_KEY = (
    "Eby8vdM02xNOcqFlqUwJPLlmEtlCDXJ1OUzFT50uSRZ6IFsuFq2UVErCz4I6tq/K1SZFPTOtr/KBHBeksoGMGw=="
)
DEVELOPMENT_BLOB_ENDPOINT = "http://127.0.0.1:10000/devstoreaccount1"


@dataclass(frozen=True)
class ClientOptions:
    """Everything a client needs besides its URL and credential."""

    retry: RetryPolicyConfig = field(default_factory=RetryPolicyConfig)
    transfer: TransferOptions = field(default_factory=TransferOptions)
    log: LogConfig = field(default_factory=LogConfig)
    timeout: float = DEFAULT_TIMEOUT
    api_version: str = DEFAULT_API_VERSION
    user_agent: str | None = None

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ConfigurationError("timeout must be positive")

    def http_config(self) -> HTTPConfig:
        return HTTPConfig(
            timeout=self.timeout,
            api_version=self.api_version,
            user_agent=self.user_agent,
        )


@dataclass(frozen=True)
class ConnectionSettings:
    account_url: str
    account_name: str | None
    credential: Credential | None
    secondary_host: str | None = None


def _split_connection_string(connection_string: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for segment in connection_string.strip().split(";"):
        if not segment.strip():
            continue
        key, sep, value = segment.partition("=")
        if not sep or not key.strip():
            raise ConfigurationError(f"malformed connection string segment: {key.strip()!r}")
        values[key.strip().lower()] = value.strip()
    return values


def parse_connection_string(connection_string: str) -> ConnectionSettings:
    """Parse an account connection string into URL, credential and secondary host.

    Supports account key strings, ``BlobEndpoint`` plus ``SharedAccessSignature``
    strings, and ``UseDevelopmentStorage=true``.
    """
    values = _split_connection_string(connection_string)
    if not values:
        raise ConfigurationError("connection string is empty")

    if values.get("usedevelopmentstorage", "").lower() == "true":
        return ConnectionSettings(
            account_url=DEVELOPMENT_BLOB_ENDPOINT,
            account_name=DEVELOPMENT_ACCOUNT_NAME,
            credential=SharedKeyCredential(DEVELOPMENT_ACCOUNT_NAME, DEVELOPMENT_ACCOUNT_KEY),
        )

    account_name = values.get("accountname")
    account_key = values.get("accountkey")
    sas_token = values.get("sharedaccesssignature")
    protocol = values.get("defaultendpointsprotocol", "https")
    suffix = values.get("endpointsuffix", DEFAULT_ENDPOINT_SUFFIX)

    blob_endpoint = values.get("blobendpoint")
    secondary_host: str | None = None
    if blob_endpoint:
        account_url = blob_endpoint.rstrip("/")
        secondary = values.get("blobsecondaryendpoint")
        if secondary:
            secondary_host = urlparse(secondary).netloc or None
    elif account_name:
        account_url = f"{protocol}://{account_name}.blob.{suffix}"
        secondary_host = f"{account_name}-secondary.blob.{suffix}"
    else:
        raise ConfigurationError("connection string needs AccountName or BlobEndpoint")

    credential: Credential | None
    if account_key:
        if not account_name:
            raise ConfigurationError("AccountKey requires AccountName")
        credential = SharedKeyCredential(account_name, account_key)
    elif sas_token:
        credential = SasCredential(sas_token)
    else:
        credential = None

    return ConnectionSettings(
        account_url=account_url,
        account_name=account_name,
        credential=credential,
        secondary_host=secondary_host,
    )


def settings_from_env(environ: Mapping[str, str] | None = None) -> ConnectionSettings:
    """Read ``AZURE_STORAGE_CONNECTION_STRING``, else account name plus key."""
    env = os.environ if environ is None else environ
    connection_string = env.get(CONNECTION_STRING_ENV)
    if connection_string:
        return parse_connection_string(connection_string)
    account_name = env.get(ACCOUNT_NAME_ENV)
    account_key = env.get(ACCOUNT_KEY_ENV)
    if not account_name or not account_key:
        raise ConfigurationError(
            f"set {CONNECTION_STRING_ENV}, or both {ACCOUNT_NAME_ENV} and {ACCOUNT_KEY_ENV}"
        )
    return ConnectionSettings(
        account_url=f"https://{account_name}.blob.{DEFAULT_ENDPOINT_SUFFIX}",
        account_name=account_name,
        credential=SharedKeyCredential(account_name, account_key),
        secondary_host=f"{account_name}-secondary.blob.{DEFAULT_ENDPOINT_SUFFIX}",
    )


__all__ = [
    "ACCOUNT_KEY_ENV",
    "ACCOUNT_NAME_ENV",
    "CONNECTION_STRING_ENV",
    "ClientOptions",
    "ConnectionSettings",
    "parse_connection_string",
    "settings_from_env",
]
