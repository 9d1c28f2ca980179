"""Shared fixtures for all tests."""

import base64
from collections.abc import Generator

import pytest

from blobwire import ClientOptions, RetryPolicyConfig, SharedKeyCredential

ACCOUNT_NAME = "testacct"
ACCOUNT_KEY = base64.b64encode(b"blobwire-test-account-key").decode()


@pytest.fixture
def mock_env_clear(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Clear storage-related environment variables for testing.

    This ensures tests don't accidentally use real credentials from the environment.
    """
    env_vars_to_clear = [
        "AZURE_STORAGE_CONNECTION_STRING",
        "AZURE_STORAGE_ACCOUNT_NAME",
        "AZURE_STORAGE_ACCOUNT_KEY",
        "BLOBWIRE_LOG_LEVEL",
        "DEBUG",
    ]
    for var in env_vars_to_clear:
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def shared_key() -> SharedKeyCredential:
    return SharedKeyCredential(ACCOUNT_NAME, ACCOUNT_KEY)


@pytest.fixture
def connection_string() -> str:
    return (
        f"DefaultEndpointsProtocol=https;AccountName={ACCOUNT_NAME};"
        f"AccountKey={ACCOUNT_KEY};EndpointSuffix=core.windows.net"
    )


@pytest.fixture
def fast_options() -> ClientOptions:
    """Client options whose retries never wait."""
    return ClientOptions(retry=RetryPolicyConfig.no_delay())


class RecordingSleep:
    """Sleep function that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, delay: float, cancellation=None) -> None:
        self.delays.append(delay)
        if cancellation is not None:
            cancellation.raise_if_cancelled()


class AsyncRecordingSleep(RecordingSleep):
    async def __call__(self, delay: float, cancellation=None) -> None:  # type: ignore[override]
        super().__call__(delay, cancellation)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def async_recording_sleep() -> AsyncRecordingSleep:
    return AsyncRecordingSleep()
