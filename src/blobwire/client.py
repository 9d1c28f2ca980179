"""Blocking blob storage clients."""

from __future__ import annotations

import os
from collections.abc import Iterator
from typing import IO, Any

import httpx

from ._cancel import CancellationToken
from ._core.append_blob import _BaseAppendBlobClient
from ._core.base import (
    _BaseStorageClient,
    make_context,
    options_for_settings,
    quote_blob_name,
    quote_container_name,
)
from ._core.blob import DeleteSnapshots, DownloadHandle, _BaseBlobClient
from ._core.block_blob import UploadData, _BaseBlockBlobClient
from ._core.container import _BaseContainerClient
from ._core.page_blob import _BasePageBlobClient
from ._core.runtime import create_blocking_runtime
from ._core.service import _BaseBlobServiceClient
from ._http import iter_async_iterator, iter_coroutine
from ._poller import BlobCopyPoller
from .config import ClientOptions, parse_connection_string, settings_from_env
from .credentials import Credential
from .errors import StorageError
from .types import (
    AccessTier,
    BlobItem,
    BlobProperties,
    BlockList,
    BlockListType,
    ContainerItem,
    ContainerProperties,
    ContentSettings,
    PageRange,
    PublicAccess,
    TransferProgressCallback,
    UploadResult,
)


class _SyncClient(_BaseStorageClient):
    def _init(
        self,
        url: str,
        credential: Credential | str | None,
        options: ClientOptions | None,
        http_client: httpx.Client | None,
    ) -> None:
        options = options or ClientOptions()
        runtime = create_blocking_runtime(options.timeout, http_client=http_client)
        self._url, self._context = make_context(runtime, url, credential, options)
        self._owns_transport = True

    def close(self) -> None:
        """Close the HTTP client; clients handed out by this one stop working too."""
        iter_coroutine(self._close())

    def __enter__(self):
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class StorageStreamDownloader:
    """A blob body being streamed; iterate ``chunks()`` or read it all at once.

    The body can be consumed once. Iterating to the end closes the response,
    otherwise call ``close()`` (or use the downloader as a context manager).
    """

    def __init__(self, handle: DownloadHandle, client: _BaseStorageClient) -> None:
        self.properties: BlobProperties = handle.properties
        self.size = handle.size
        self._handle = handle
        self._transport = client._context.runtime.transport
        self._consumed = False

    def chunks(self) -> Iterator[bytes]:
        if self._consumed:
            raise StorageError("download stream was already consumed", operation="download_blob")
        self._consumed = True
        try:
            yield from iter_async_iterator(self._handle.stream.__aiter__())
        finally:
            self.close()

    def readall(self) -> bytes:
        return b"".join(self.chunks())

    def readinto(self, stream: IO[bytes]) -> int:
        """Write the body into a writable binary stream; returns the byte count."""
        written = 0
        for chunk in self.chunks():
            stream.write(chunk)
            written += len(chunk)
        return written

    def close(self) -> None:
        iter_coroutine(self._transport.close_response(self._handle.response))

    def __enter__(self) -> StorageStreamDownloader:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class BlobClient(_SyncClient, _BaseBlobClient):
    """Operations on one blob of any type."""

    def __init__(
        self,
        account_url: str,
        container_name: str,
        blob_name: str,
        credential: Credential | str | None = None,
        *,
        snapshot: str | None = None,
        options: ClientOptions | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        base, _, query = account_url.partition("?")
        url = (
            f"{base.rstrip('/')}/{quote_container_name(container_name)}/"
            f"{quote_blob_name(blob_name)}"
        )
        self._init(f"{url}?{query}" if query else url, credential, options, http_client)
        self.container_name = container_name
        self.blob_name = blob_name
        self.snapshot = snapshot

    @classmethod
    def from_connection_string(
        cls,
        connection_string: str,
        container_name: str,
        blob_name: str,
        *,
        snapshot: str | None = None,
        options: ClientOptions | None = None,
        use_secondary: bool = False,
        http_client: httpx.Client | None = None,
    ):
        settings = parse_connection_string(connection_string)
        return cls(
            settings.account_url,
            container_name,
            blob_name,
            settings.credential,
            snapshot=snapshot,
            options=options_for_settings(settings, options, use_secondary=use_secondary),
            http_client=http_client,
        )

    def get_properties(self, *, cancellation: CancellationToken | None = None) -> BlobProperties:
        return iter_coroutine(self._get_properties(cancellation=cancellation))

    def exists(self) -> bool:
        return iter_coroutine(self._blob_exists())

    def delete(self, *, delete_snapshots: DeleteSnapshots | None = None) -> None:
        iter_coroutine(self._delete_blob(delete_snapshots=delete_snapshots))

    def set_metadata(self, metadata: dict[str, str] | None = None) -> UploadResult:
        return iter_coroutine(self._set_blob_metadata(metadata))

    def set_http_headers(self, content_settings: ContentSettings | None = None) -> UploadResult:
        return iter_coroutine(self._set_http_headers(content_settings))

    def set_tier(self, tier: AccessTier) -> None:
        iter_coroutine(self._set_tier(tier))

    def create_snapshot(self, metadata: dict[str, str] | None = None) -> str:
        return iter_coroutine(self._create_snapshot(metadata))

    def download(
        self,
        offset: int = 0,
        length: int | None = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> StorageStreamDownloader:
        """Stream the blob (or a range of it) over one resumable connection."""
        handle = iter_coroutine(self._open_download(offset, length, cancellation=cancellation))
        return StorageStreamDownloader(handle, self)

    def download_to_bytes(
        self,
        offset: int = 0,
        length: int | None = None,
        *,
        max_concurrency: int | None = None,
        progress: TransferProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> bytes:
        return iter_coroutine(
            self._download_to_bytes(
                offset,
                length,
                max_concurrency=max_concurrency,
                progress=progress,
                cancellation=cancellation,
            )
        )

    def download_to_file(
        self,
        path: str | os.PathLike,
        *,
        offset: int = 0,
        length: int | None = None,
        overwrite: bool = False,
        create_parents: bool = True,
        max_concurrency: int | None = None,
        progress: TransferProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> str:
        return iter_coroutine(
            self._download_to_file(
                path,
                offset=offset,
                length=length,
                overwrite=overwrite,
                create_parents=create_parents,
                max_concurrency=max_concurrency,
                progress=progress,
                cancellation=cancellation,
            )
        )

    def start_copy_from_url(
        self,
        source_url: str,
        *,
        metadata: dict[str, str] | None = None,
        tier: AccessTier | None = None,
        requires_sync: bool = False,
    ) -> BlobCopyPoller:
        return iter_coroutine(
            self._start_copy_from_url(
                source_url, metadata=metadata, tier=tier, requires_sync=requires_sync
            )
        )

    def abort_copy(self, copy_id: str) -> None:
        iter_coroutine(self._abort_copy(copy_id))


class BlockBlobClient(BlobClient, _BaseBlockBlobClient):
    def upload(
        self,
        data: bytes | str,
        *,
        overwrite: bool = False,
        content_settings: ContentSettings | None = None,
        metadata: dict[str, str] | None = None,
        tier: AccessTier | None = None,
        cancellation: CancellationToken | None = None,
    ) -> UploadResult:
        return iter_coroutine(
            self._upload(
                data,
                overwrite=overwrite,
                content_settings=content_settings,
                metadata=metadata,
                tier=tier,
                cancellation=cancellation,
            )
        )

    def stage_block(
        self,
        block_id: str,
        data: bytes,
        *,
        cancellation: CancellationToken | None = None,
    ) -> None:
        iter_coroutine(self._stage_block(block_id, data, cancellation=cancellation))

    def commit_block_list(
        self,
        block_ids: list[str],
        *,
        overwrite: bool = True,
        content_settings: ContentSettings | None = None,
        metadata: dict[str, str] | None = None,
        tier: AccessTier | None = None,
        cancellation: CancellationToken | None = None,
    ) -> UploadResult:
        return iter_coroutine(
            self._commit_block_list(
                block_ids,
                overwrite=overwrite,
                content_settings=content_settings,
                metadata=metadata,
                tier=tier,
                cancellation=cancellation,
            )
        )

    def get_block_list(self, list_type: BlockListType = "committed") -> BlockList:
        return iter_coroutine(self._get_block_list(list_type))

    def upload_data(
        self,
        data: UploadData,
        *,
        length: int | None = None,
        overwrite: bool = False,
        content_settings: ContentSettings | None = None,
        metadata: dict[str, str] | None = None,
        tier: AccessTier | None = None,
        max_concurrency: int | None = None,
        progress: TransferProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> UploadResult:
        """Upload ``data``, in parallel blocks once it exceeds ``max_single_put_size``."""
        return iter_coroutine(
            self._upload_data(
                data,
                length=length,
                overwrite=overwrite,
                content_settings=content_settings,
                metadata=metadata,
                tier=tier,
                max_concurrency=max_concurrency,
                progress=progress,
                cancellation=cancellation,
            )
        )

    def upload_file(
        self,
        path: str | os.PathLike,
        *,
        overwrite: bool = False,
        content_settings: ContentSettings | None = None,
        metadata: dict[str, str] | None = None,
        tier: AccessTier | None = None,
        max_concurrency: int | None = None,
        progress: TransferProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> UploadResult:
        return iter_coroutine(
            self._upload_file(
                path,
                overwrite=overwrite,
                content_settings=content_settings,
                metadata=metadata,
                tier=tier,
                max_concurrency=max_concurrency,
                progress=progress,
                cancellation=cancellation,
            )
        )


class PageBlobClient(BlobClient, _BasePageBlobClient):
    def create(
        self,
        size: int,
        *,
        sequence_number: int | None = None,
        content_settings: ContentSettings | None = None,
        metadata: dict[str, str] | None = None,
        tier: AccessTier | None = None,
    ) -> UploadResult:
        return iter_coroutine(
            self._create_page_blob(
                size,
                sequence_number=sequence_number,
                content_settings=content_settings,
                metadata=metadata,
                tier=tier,
            )
        )

    def upload_pages(self, data: bytes, offset: int) -> UploadResult:
        return iter_coroutine(self._upload_pages(data, offset))

    def clear_pages(self, offset: int, length: int) -> UploadResult:
        return iter_coroutine(self._clear_pages(offset, length))

    def get_page_ranges(
        self, offset: int | None = None, length: int | None = None
    ) -> list[PageRange]:
        return iter_coroutine(self._get_page_ranges(offset, length))

    def resize(self, size: int) -> UploadResult:
        return iter_coroutine(self._resize(size))


class AppendBlobClient(BlobClient, _BaseAppendBlobClient):
    def create(
        self,
        *,
        content_settings: ContentSettings | None = None,
        metadata: dict[str, str] | None = None,
    ) -> UploadResult:
        return iter_coroutine(
            self._create_append_blob(content_settings=content_settings, metadata=metadata)
        )

    def append_block(
        self,
        data: bytes | str,
        *,
        appendpos_condition: int | None = None,
        maxsize_condition: int | None = None,
    ) -> UploadResult:
        return iter_coroutine(
            self._append_block(
                data,
                appendpos_condition=appendpos_condition,
                maxsize_condition=maxsize_condition,
            )
        )

    def seal(self) -> UploadResult:
        return iter_coroutine(self._seal())


class ContainerClient(_SyncClient, _BaseContainerClient):
    """Operations on one container and factory for its blob clients."""

    _blob_client_cls = BlobClient
    _block_blob_client_cls = BlockBlobClient
    _page_blob_client_cls = PageBlobClient
    _append_blob_client_cls = AppendBlobClient

    def __init__(
        self,
        account_url: str,
        container_name: str,
        credential: Credential | str | None = None,
        *,
        options: ClientOptions | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        base, _, query = account_url.partition("?")
        url = f"{base.rstrip('/')}/{quote_container_name(container_name)}"
        self._init(f"{url}?{query}" if query else url, credential, options, http_client)
        self.container_name = container_name

    @classmethod
    def from_connection_string(
        cls,
        connection_string: str,
        container_name: str,
        *,
        options: ClientOptions | None = None,
        use_secondary: bool = False,
        http_client: httpx.Client | None = None,
    ):
        settings = parse_connection_string(connection_string)
        return cls(
            settings.account_url,
            container_name,
            settings.credential,
            options=options_for_settings(settings, options, use_secondary=use_secondary),
            http_client=http_client,
        )

    def create(
        self,
        *,
        metadata: dict[str, str] | None = None,
        public_access: PublicAccess | None = None,
    ) -> UploadResult:
        return iter_coroutine(
            self._create_container(metadata=metadata, public_access=public_access)
        )

    def delete(self) -> None:
        iter_coroutine(self._delete_container())

    def exists(self) -> bool:
        return iter_coroutine(self._container_exists())

    def get_properties(self) -> ContainerProperties:
        return iter_coroutine(self._get_container_properties())

    def set_metadata(self, metadata: dict[str, str] | None = None) -> UploadResult:
        return iter_coroutine(self._set_container_metadata(metadata))

    def list_blobs(
        self,
        prefix: str | None = None,
        *,
        include_metadata: bool = False,
        results_per_page: int | None = None,
    ) -> Iterator[BlobItem]:
        """Yield every blob under ``prefix``, following continuation markers."""
        marker: str | None = None
        while True:
            page = iter_coroutine(
                self._list_blobs_page(
                    prefix=prefix,
                    marker=marker,
                    results_per_page=results_per_page,
                    include_metadata=include_metadata,
                )
            )
            yield from page.items
            if not page.next_marker:
                return
            marker = page.next_marker

    def list_blob_names(self, prefix: str | None = None) -> Iterator[str]:
        for item in self.list_blobs(prefix):
            yield item.name

    def upload_blob(
        self,
        blob_name: str,
        data: UploadData,
        **kwargs: Any,
    ) -> BlockBlobClient:
        """Upload ``data`` as a block blob; keyword arguments as for ``upload_data``."""
        blob = self.get_block_blob_client(blob_name)
        blob.upload_data(data, **kwargs)
        return blob

    def delete_blob(
        self, blob_name: str, *, delete_snapshots: DeleteSnapshots | None = None
    ) -> None:
        iter_coroutine(self._delete_blob(blob_name, delete_snapshots=delete_snapshots))


class BlobServiceClient(_SyncClient, _BaseBlobServiceClient):
    """Entry point for an account: containers, and blobs by container and name."""

    _container_client_cls = ContainerClient
    _blob_client_cls = BlobClient

    def __init__(
        self,
        account_url: str,
        credential: Credential | str | None = None,
        *,
        options: ClientOptions | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._init(account_url, credential, options, http_client)

    @classmethod
    def from_connection_string(
        cls,
        connection_string: str,
        *,
        options: ClientOptions | None = None,
        use_secondary: bool = False,
        http_client: httpx.Client | None = None,
    ) -> BlobServiceClient:
        settings = parse_connection_string(connection_string)
        return cls(
            settings.account_url,
            settings.credential,
            options=options_for_settings(settings, options, use_secondary=use_secondary),
            http_client=http_client,
        )

    @classmethod
    def from_environment(
        cls,
        *,
        options: ClientOptions | None = None,
        use_secondary: bool = False,
        http_client: httpx.Client | None = None,
    ) -> BlobServiceClient:
        settings = settings_from_env()
        return cls(
            settings.account_url,
            settings.credential,
            options=options_for_settings(settings, options, use_secondary=use_secondary),
            http_client=http_client,
        )

    def list_containers(
        self,
        prefix: str | None = None,
        *,
        include_metadata: bool = False,
        results_per_page: int | None = None,
    ) -> Iterator[ContainerItem]:
        marker: str | None = None
        while True:
            page = iter_coroutine(
                self._list_containers_page(
                    prefix=prefix,
                    marker=marker,
                    results_per_page=results_per_page,
                    include_metadata=include_metadata,
                )
            )
            yield from page.items
            if not page.next_marker:
                return
            marker = page.next_marker

    def create_container(
        self,
        container_name: str,
        *,
        metadata: dict[str, str] | None = None,
        public_access: PublicAccess | None = None,
    ) -> ContainerClient:
        return iter_coroutine(
            self._create_container(
                container_name, metadata=metadata, public_access=public_access
            )
        )

    def delete_container(self, container_name: str) -> None:
        iter_coroutine(self._delete_container(container_name))


__all__ = [
    "AppendBlobClient",
    "BlobClient",
    "BlobServiceClient",
    "BlockBlobClient",
    "ContainerClient",
    "PageBlobClient",
    "StorageStreamDownloader",
]
