"""Async blob storage clients, mirroring ``blobwire.client`` method for method."""

from __future__ import annotations

import os
from collections.abc import AsyncIterator
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
from ._core.runtime import create_async_runtime
from ._core.service import _BaseBlobServiceClient
from ._poller import AsyncBlobCopyPoller
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


class _AsyncClient(_BaseStorageClient):
    def _init(
        self,
        url: str,
        credential: Credential | str | None,
        options: ClientOptions | None,
        http_client: httpx.AsyncClient | None,
    ) -> None:
        options = options or ClientOptions()
        runtime = create_async_runtime(options.timeout, http_client=http_client)
        self._url, self._context = make_context(runtime, url, credential, options)
        self._owns_transport = True

    async def aclose(self) -> None:
        await self._close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


class AsyncStorageStreamDownloader:
    """Async counterpart of ``StorageStreamDownloader``."""

    def __init__(self, handle: DownloadHandle, client: _BaseStorageClient) -> None:
        self.properties: BlobProperties = handle.properties
        self.size = handle.size
        self._handle = handle
        self._transport = client._context.runtime.transport
        self._consumed = False

    async def chunks(self) -> AsyncIterator[bytes]:
        if self._consumed:
            raise StorageError("download stream was already consumed", operation="download_blob")
        self._consumed = True
        try:
            async for chunk in self._handle.stream:
                yield chunk
        finally:
            await self.aclose()

    async def readall(self) -> bytes:
        return b"".join([chunk async for chunk in self.chunks()])

    async def readinto(self, stream: IO[bytes]) -> int:
        written = 0
        async for chunk in self.chunks():
            stream.write(chunk)
            written += len(chunk)
        return written

    async def aclose(self) -> None:
        await self._transport.close_response(self._handle.response)

    async def __aenter__(self) -> AsyncStorageStreamDownloader:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


class AsyncBlobClient(_AsyncClient, _BaseBlobClient):
    def __init__(
        self,
        account_url: str,
        container_name: str,
        blob_name: str,
        credential: Credential | str | None = None,
        *,
        snapshot: str | None = None,
        options: ClientOptions | None = None,
        http_client: httpx.AsyncClient | None = None,
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
        http_client: httpx.AsyncClient | None = None,
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

    async def get_properties(
        self, *, cancellation: CancellationToken | None = None
    ) -> BlobProperties:
        return await self._get_properties(cancellation=cancellation)

    async def exists(self) -> bool:
        return await self._blob_exists()

    async def delete(self, *, delete_snapshots: DeleteSnapshots | None = None) -> None:
        await self._delete_blob(delete_snapshots=delete_snapshots)

    async def set_metadata(self, metadata: dict[str, str] | None = None) -> UploadResult:
        return await self._set_blob_metadata(metadata)

    async def set_http_headers(
        self, content_settings: ContentSettings | None = None
    ) -> UploadResult:
        return await self._set_http_headers(content_settings)

    async def set_tier(self, tier: AccessTier) -> None:
        await self._set_tier(tier)

    async def create_snapshot(self, metadata: dict[str, str] | None = None) -> str:
        return await self._create_snapshot(metadata)

    async def download(
        self,
        offset: int = 0,
        length: int | None = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> AsyncStorageStreamDownloader:
        handle = await self._open_download(offset, length, cancellation=cancellation)
        return AsyncStorageStreamDownloader(handle, self)

    async def download_to_bytes(
        self,
        offset: int = 0,
        length: int | None = None,
        *,
        max_concurrency: int | None = None,
        progress: TransferProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> bytes:
        return await self._download_to_bytes(
            offset,
            length,
            max_concurrency=max_concurrency,
            progress=progress,
            cancellation=cancellation,
        )

    async def download_to_file(
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
        return await self._download_to_file(
            path,
            offset=offset,
            length=length,
            overwrite=overwrite,
            create_parents=create_parents,
            max_concurrency=max_concurrency,
            progress=progress,
            cancellation=cancellation,
        )

    async def start_copy_from_url(
        self,
        source_url: str,
        *,
        metadata: dict[str, str] | None = None,
        tier: AccessTier | None = None,
        requires_sync: bool = False,
    ) -> AsyncBlobCopyPoller:
        return await self._start_copy_from_url(
            source_url, metadata=metadata, tier=tier, requires_sync=requires_sync
        )

    async def abort_copy(self, copy_id: str) -> None:
        await self._abort_copy(copy_id)


class AsyncBlockBlobClient(AsyncBlobClient, _BaseBlockBlobClient):
    async def upload(
        self,
        data: bytes | str,
        *,
        overwrite: bool = False,
        content_settings: ContentSettings | None = None,
        metadata: dict[str, str] | None = None,
        tier: AccessTier | None = None,
        cancellation: CancellationToken | None = None,
    ) -> UploadResult:
        return await self._upload(
            data,
            overwrite=overwrite,
            content_settings=content_settings,
            metadata=metadata,
            tier=tier,
            cancellation=cancellation,
        )

    async def stage_block(
        self,
        block_id: str,
        data: bytes,
        *,
        cancellation: CancellationToken | None = None,
    ) -> None:
        await self._stage_block(block_id, data, cancellation=cancellation)

    async def commit_block_list(
        self,
        block_ids: list[str],
        *,
        overwrite: bool = True,
        content_settings: ContentSettings | None = None,
        metadata: dict[str, str] | None = None,
        tier: AccessTier | None = None,
        cancellation: CancellationToken | None = None,
    ) -> UploadResult:
        return await self._commit_block_list(
            block_ids,
            overwrite=overwrite,
            content_settings=content_settings,
            metadata=metadata,
            tier=tier,
            cancellation=cancellation,
        )

    async def get_block_list(self, list_type: BlockListType = "committed") -> BlockList:
        return await self._get_block_list(list_type)

    async def upload_data(
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
        return await self._upload_data(
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

    async def upload_file(
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
        return await self._upload_file(
            path,
            overwrite=overwrite,
            content_settings=content_settings,
            metadata=metadata,
            tier=tier,
            max_concurrency=max_concurrency,
            progress=progress,
            cancellation=cancellation,
        )


class AsyncPageBlobClient(AsyncBlobClient, _BasePageBlobClient):
    async def create(
        self,
        size: int,
        *,
        sequence_number: int | None = None,
        content_settings: ContentSettings | None = None,
        metadata: dict[str, str] | None = None,
        tier: AccessTier | None = None,
    ) -> UploadResult:
        return await self._create_page_blob(
            size,
            sequence_number=sequence_number,
            content_settings=content_settings,
            metadata=metadata,
            tier=tier,
        )

    async def upload_pages(self, data: bytes, offset: int) -> UploadResult:
        return await self._upload_pages(data, offset)

    async def clear_pages(self, offset: int, length: int) -> UploadResult:
        return await self._clear_pages(offset, length)

    async def get_page_ranges(
        self, offset: int | None = None, length: int | None = None
    ) -> list[PageRange]:
        return await self._get_page_ranges(offset, length)

    async def resize(self, size: int) -> UploadResult:
        return await self._resize(size)


class AsyncAppendBlobClient(AsyncBlobClient, _BaseAppendBlobClient):
    async def create(
        self,
        *,
        content_settings: ContentSettings | None = None,
        metadata: dict[str, str] | None = None,
    ) -> UploadResult:
        return await self._create_append_blob(
            content_settings=content_settings, metadata=metadata
        )

    async def append_block(
        self,
        data: bytes | str,
        *,
        appendpos_condition: int | None = None,
        maxsize_condition: int | None = None,
    ) -> UploadResult:
        return await self._append_block(
            data,
            appendpos_condition=appendpos_condition,
            maxsize_condition=maxsize_condition,
        )

    async def seal(self) -> UploadResult:
        return await self._seal()


class AsyncContainerClient(_AsyncClient, _BaseContainerClient):
    _blob_client_cls = AsyncBlobClient
    _block_blob_client_cls = AsyncBlockBlobClient
    _page_blob_client_cls = AsyncPageBlobClient
    _append_blob_client_cls = AsyncAppendBlobClient

    def __init__(
        self,
        account_url: str,
        container_name: str,
        credential: Credential | str | None = None,
        *,
        options: ClientOptions | None = None,
        http_client: httpx.AsyncClient | None = None,
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
        http_client: httpx.AsyncClient | None = None,
    ):
        settings = parse_connection_string(connection_string)
        return cls(
            settings.account_url,
            container_name,
            settings.credential,
            options=options_for_settings(settings, options, use_secondary=use_secondary),
            http_client=http_client,
        )

    async def create(
        self,
        *,
        metadata: dict[str, str] | None = None,
        public_access: PublicAccess | None = None,
    ) -> UploadResult:
        return await self._create_container(metadata=metadata, public_access=public_access)

    async def delete(self) -> None:
        await self._delete_container()

    async def exists(self) -> bool:
        return await self._container_exists()

    async def get_properties(self) -> ContainerProperties:
        return await self._get_container_properties()

    async def set_metadata(self, metadata: dict[str, str] | None = None) -> UploadResult:
        return await self._set_container_metadata(metadata)

    async def list_blobs(
        self,
        prefix: str | None = None,
        *,
        include_metadata: bool = False,
        results_per_page: int | None = None,
    ) -> AsyncIterator[BlobItem]:
        marker: str | None = None
        while True:
            page = await self._list_blobs_page(
                prefix=prefix,
                marker=marker,
                results_per_page=results_per_page,
                include_metadata=include_metadata,
            )
            for item in page.items:
                yield item
            if not page.next_marker:
                return
            marker = page.next_marker

    async def list_blob_names(self, prefix: str | None = None) -> AsyncIterator[str]:
        async for item in self.list_blobs(prefix):
            yield item.name

    async def upload_blob(
        self,
        blob_name: str,
        data: UploadData,
        **kwargs: Any,
    ) -> AsyncBlockBlobClient:
        blob = self.get_block_blob_client(blob_name)
        await blob.upload_data(data, **kwargs)
        return blob

    async def delete_blob(
        self, blob_name: str, *, delete_snapshots: DeleteSnapshots | None = None
    ) -> None:
        await self._delete_blob(blob_name, delete_snapshots=delete_snapshots)


class AsyncBlobServiceClient(_AsyncClient, _BaseBlobServiceClient):
    _container_client_cls = AsyncContainerClient
    _blob_client_cls = AsyncBlobClient

    def __init__(
        self,
        account_url: str,
        credential: Credential | str | None = None,
        *,
        options: ClientOptions | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._init(account_url, credential, options, http_client)

    @classmethod
    def from_connection_string(
        cls,
        connection_string: str,
        *,
        options: ClientOptions | None = None,
        use_secondary: bool = False,
        http_client: httpx.AsyncClient | None = None,
    ) -> AsyncBlobServiceClient:
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
        http_client: httpx.AsyncClient | None = None,
    ) -> AsyncBlobServiceClient:
        settings = settings_from_env()
        return cls(
            settings.account_url,
            settings.credential,
            options=options_for_settings(settings, options, use_secondary=use_secondary),
            http_client=http_client,
        )

    async def list_containers(
        self,
        prefix: str | None = None,
        *,
        include_metadata: bool = False,
        results_per_page: int | None = None,
    ) -> AsyncIterator[ContainerItem]:
        marker: str | None = None
        while True:
            page = await self._list_containers_page(
                prefix=prefix,
                marker=marker,
                results_per_page=results_per_page,
                include_metadata=include_metadata,
            )
            for item in page.items:
                yield item
            if not page.next_marker:
                return
            marker = page.next_marker

    async def create_container(
        self,
        container_name: str,
        *,
        metadata: dict[str, str] | None = None,
        public_access: PublicAccess | None = None,
    ) -> AsyncContainerClient:
        return await self._create_container(
            container_name, metadata=metadata, public_access=public_access
        )

    async def delete_container(self, container_name: str) -> None:
        await self._delete_container(container_name)


__all__ = [
    "AsyncAppendBlobClient",
    "AsyncBlobClient",
    "AsyncBlobServiceClient",
    "AsyncBlockBlobClient",
    "AsyncContainerClient",
    "AsyncPageBlobClient",
    "AsyncStorageStreamDownloader",
]
