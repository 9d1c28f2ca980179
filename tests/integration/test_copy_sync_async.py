"""Server-side copies and their pollers against the in-memory account.

Tests both sync and async variants to ensure API parity.
"""

import pytest

from blobwire import (
    BlobClient,
    BlobCopyPoller,
    Cancelled,
    ClientOptions,
    InProgress,
    OperationCancelledError,
    ResourceNotFoundError,
    RetryPolicyConfig,
    Succeeded,
)
from blobwire.aio import AsyncBlobClient

SOURCE = "https://testacct.blob.core.windows.net/photos/cat.jpg"


@pytest.fixture
def options() -> ClientOptions:
    return ClientOptions(retry=RetryPolicyConfig.no_delay())


@pytest.fixture
def service(blob_service):
    blob_service.add_blob("photos", "cat.jpg", b"meow" * 100, metadata={"kind": "cat"})
    blob_service.add_container("backup")
    return blob_service


class TestCopy:
    def test_copy_is_polled_to_completion_sync(self, service, account_url, options):
        with BlobClient(account_url, "backup", "cat.jpg", options=options) as blob:
            poller = blob.start_copy_from_url(SOURCE)

            assert isinstance(poller, BlobCopyPoller)
            assert isinstance(poller.state, InProgress)
            assert not poller.done()

            result = poller.result(interval=0)

        assert result.status == "success"
        assert result.id == poller.copy_id
        assert result.progress == "400/400"
        copied = service.blob("backup", "cat.jpg")
        assert bytes(copied.data) == b"meow" * 100
        assert copied.metadata == {"kind": "cat"}
        assert len(service.calls("HEAD")) == 2

        (start,) = service.calls("PUT")
        assert start.headers["x-ms-copy-source"] == SOURCE

    @pytest.mark.asyncio
    async def test_copy_is_polled_to_completion_async(self, service, account_url, options):
        async with AsyncBlobClient(account_url, "backup", "cat.jpg", options=options) as blob:
            poller = await blob.start_copy_from_url(SOURCE, metadata={"copied": "yes"})
            state = await poller.wait(interval=0)

        assert isinstance(state, Succeeded)
        assert service.blob("backup", "cat.jpg").metadata == {"copied": "yes"}

    def test_abort_pending_copy_sync(self, service, account_url, options):
        service.copy_polls = 10

        with BlobClient(account_url, "backup", "cat.jpg", options=options) as blob:
            poller = blob.start_copy_from_url(SOURCE)
            poller.poll_once()
            state = poller.cancel()

            with pytest.raises(OperationCancelledError):
                poller.result(interval=0)
            properties = blob.get_properties()

        assert isinstance(state, Cancelled)
        assert properties.copy.status == "aborted"
        (abort,) = service.calls("PUT", "copy")
        assert abort.url.params["copyid"] == poller.copy_id
        assert abort.headers["x-ms-copy-action"] == "abort"

    @pytest.mark.asyncio
    async def test_abort_after_completion_keeps_success_async(self, service, account_url, options):
        service.copy_polls = 1

        async with AsyncBlobClient(account_url, "backup", "cat.jpg", options=options) as blob:
            poller = await blob.start_copy_from_url(SOURCE)
            # The first HEAD finishes the copy, so the abort is answered with 409.
            await blob.get_properties()
            state = await poller.cancel()

        assert isinstance(state, Succeeded)
        assert len(service.calls("PUT", "copy")) == 1

    def test_missing_source_sync(self, service, account_url, options):
        with BlobClient(account_url, "backup", "dog.jpg", options=options) as blob:
            with pytest.raises(ResourceNotFoundError) as exc_info:
                blob.start_copy_from_url(
                    "https://testacct.blob.core.windows.net/photos/dog.jpg"
                )

        assert exc_info.value.error_code == "CannotVerifyCopySource"

    def test_abort_copy_directly_sync(self, service, account_url, options):
        service.copy_polls = 10

        with BlobClient(account_url, "backup", "cat.jpg", options=options) as blob:
            poller = blob.start_copy_from_url(SOURCE)
            blob.abort_copy(poller.copy_id)
            state = poller.poll_once()

        assert isinstance(state, Cancelled)
