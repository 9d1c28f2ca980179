"""Operations shared by every blob type."""

from __future__ import annotations

import os
from collections.abc import AsyncIterator
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Literal

import httpx

from .._cancel import CancellationToken
from .._poller import _BaseCopyPoller
from .._serialize import (
    blob_properties_from_headers,
    content_settings_headers,
    format_range,
    metadata_headers,
    upload_result_from_headers,
)
from .._transfer import (
    AsyncResumableStream,
    ChunkDescriptor,
    ChunkResult,
    TransferPlan,
    _TransferCoordinator,
    plan_transfer,
)
from ..errors import ConfigurationError, HttpResponseError, StorageError
from ..sas import BlobSasPermissions, generate_blob_sas
from ..types import (
    AccessTier,
    BlobProperties,
    ContentSettings,
    CopyProperties,
    TransferProgressCallback,
    UploadResult,
)
from .base import _BaseStorageClient

DeleteSnapshots = Literal["include", "only"]


@dataclass
class DownloadHandle:
    """An open download: blob properties plus the resumable body."""

    properties: BlobProperties
    size: int
    stream: AsyncResumableStream
    response: httpx.Response


class _BaseBlobClient(_BaseStorageClient):
    """Blob operations written once as coroutines."""

    container_name: str
    blob_name: str
    snapshot: str | None

    def _params(self, **params: Any) -> dict[str, Any]:
        if self.snapshot:
            params.setdefault("snapshot", self.snapshot)
        return params

    def _coordinator(
        self,
        operation: str,
        *,
        max_concurrency: int | None,
        progress: TransferProgressCallback | None,
        cancellation: CancellationToken | None,
    ) -> _TransferCoordinator:
        options = self.options.transfer
        if max_concurrency is not None:
            options = replace(options, max_concurrency=max_concurrency)
        return self._context.runtime.coordinator_cls(
            options,
            cancellation=cancellation,
            progress=progress,
            logger=self._context.transfer_log,
            operation=operation,
        )

    # -- properties --------------------------------------------------------

    async def _get_properties(
        self, *, cancellation: CancellationToken | None = None
    ) -> BlobProperties:
        response = await self._send(
            "HEAD",
            operation="get_blob_properties",
            params=self._params(),
            cancellation=cancellation,
        )
        return blob_properties_from_headers(
            response.headers, name=self.blob_name, container=self.container_name
        )

    async def _blob_exists(self) -> bool:
        return await self._exists(self._get_properties)

    async def _delete_blob(self, *, delete_snapshots: DeleteSnapshots | None = None) -> None:
        headers = {"x-ms-delete-snapshots": delete_snapshots} if delete_snapshots else {}
        await self._send(
            "DELETE", operation="delete_blob", params=self._params(), headers=headers
        )

    async def _set_blob_metadata(self, metadata: dict[str, str] | None) -> UploadResult:
        response = await self._send(
            "PUT",
            operation="set_blob_metadata",
            params={"comp": "metadata"},
            headers=metadata_headers(metadata),
        )
        return upload_result_from_headers(response.headers)

    async def _set_http_headers(self, content_settings: ContentSettings | None) -> UploadResult:
        response = await self._send(
            "PUT",
            operation="set_http_headers",
            params={"comp": "properties"},
            headers=content_settings_headers(content_settings),
        )
        return upload_result_from_headers(response.headers)

    async def _set_tier(self, tier: AccessTier) -> None:
        await self._send(
            "PUT",
            operation="set_blob_tier",
            params=self._params(comp="tier"),
            headers={"x-ms-access-tier": tier},
        )

    async def _create_snapshot(self, metadata: dict[str, str] | None = None) -> str:
        response = await self._send(
            "PUT",
            operation="create_snapshot",
            params={"comp": "snapshot"},
            headers=metadata_headers(metadata),
        )
        snapshot = response.headers.get("x-ms-snapshot")
        if not snapshot:
            raise StorageError("service did not return a snapshot id", operation="create_snapshot")
        return snapshot

    # -- download ----------------------------------------------------------

    async def _open_download(
        self,
        offset: int = 0,
        length: int | None = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> DownloadHandle:
        if offset < 0:
            raise ConfigurationError("offset must not be negative")
        if length is not None and length <= 0:
            raise ConfigurationError("length must be positive")

        headers: dict[str, str] = {}
        if offset or length is not None:
            headers["x-ms-range"] = format_range(
                offset, offset + length - 1 if length is not None else None
            )
        try:
            response = await self._send(
                "GET",
                operation="download_blob",
                params=self._params(),
                headers=headers,
                stream=True,
                cancellation=cancellation,
            )
        except HttpResponseError as exc:
            # Every range of an empty blob is unsatisfiable.
            if exc.status_code != 416 or offset:
                raise
            response = await self._send(
                "GET",
                operation="download_blob",
                params=self._params(),
                stream=True,
                cancellation=cancellation,
            )

        properties = blob_properties_from_headers(
            response.headers, name=self.blob_name, container=self.container_name
        )
        body_length = int(response.headers.get("content-length") or 0)
        etag = response.headers.get("etag")
        transport = self._context.runtime.transport

        async def reopen(position: int) -> AsyncIterator[bytes]:
            reopen_headers = {"x-ms-range": format_range(position, offset + body_length - 1)}
            if etag:
                reopen_headers["if-match"] = etag
            reopened = await self._send(
                "GET",
                operation="download_blob",
                params=self._params(),
                headers=reopen_headers,
                stream=True,
                cancellation=cancellation,
            )
            return transport.iter_bytes(reopened)

        stream = AsyncResumableStream(
            reopen,
            start=offset,
            length=body_length,
            first=transport.iter_bytes(response),
            max_restarts=self.options.transfer.max_stream_restarts,
            cancellation=cancellation,
            operation="download_blob",
            logger=self._context.transfer_log,
        )
        return DownloadHandle(properties, body_length, stream, response)

    async def _fetch_range(
        self,
        chunk: ChunkDescriptor,
        etag: str | None,
        cancellation: CancellationToken,
    ) -> ChunkResult:
        headers: dict[str, str] = {}
        if chunk.length:
            headers["x-ms-range"] = format_range(chunk.offset, chunk.end - 1)
        if etag:
            headers["if-match"] = etag
        response = await self._send(
            "GET",
            operation="download_blob",
            params=self._params(),
            headers=headers,
            cancellation=cancellation,
        )
        return ChunkResult(chunk.sequence, data=response.content[: chunk.length])

    async def _plan_download(
        self,
        offset: int,
        length: int | None,
        cancellation: CancellationToken | None,
    ) -> tuple[TransferPlan, str | None]:
        if offset < 0:
            raise ConfigurationError("offset must not be negative")
        if length is not None and length <= 0:
            raise ConfigurationError("length must be positive")
        properties = await self._get_properties(cancellation=cancellation)
        if offset and offset >= properties.size:
            raise ConfigurationError(
                f"offset {offset} is beyond the end of the blob ({properties.size} bytes)"
            )
        end = properties.size if length is None else min(properties.size, offset + length)
        plan = plan_transfer(end - offset, self.options.transfer.download_chunk_size(), offset=offset)
        return plan, properties.etag

    async def _download_to_bytes(
        self,
        offset: int = 0,
        length: int | None = None,
        *,
        max_concurrency: int | None = None,
        progress: TransferProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> bytes:
        plan, etag = await self._plan_download(offset, length, cancellation)
        buffer = bytearray(plan.total_size)

        async def fetch(chunk: ChunkDescriptor, token: CancellationToken) -> ChunkResult:
            return await self._fetch_range(chunk, etag, token)

        def write(chunk: ChunkDescriptor, data: bytes) -> None:
            position = chunk.offset - plan.start
            buffer[position : position + len(data)] = data

        coordinator = self._coordinator(
            "download_blob",
            max_concurrency=max_concurrency,
            progress=progress,
            cancellation=cancellation,
        )
        await coordinator.download(plan, fetch, write)
        return bytes(buffer)

    async def _download_to_file(
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
        dst = os.fspath(path)
        if not overwrite and os.path.exists(dst):
            raise StorageError(
                "destination exists; pass overwrite=True to replace it", operation="download_blob"
            )
        if create_parents:
            os.makedirs(os.path.dirname(dst) or ".", exist_ok=True)

        plan, etag = await self._plan_download(offset, length, cancellation)
        tmp = dst + ".part"

        async def fetch(chunk: ChunkDescriptor, token: CancellationToken) -> ChunkResult:
            return await self._fetch_range(chunk, etag, token)

        coordinator = self._coordinator(
            "download_blob",
            max_concurrency=max_concurrency,
            progress=progress,
            cancellation=cancellation,
        )
        try:
            with open(tmp, "wb") as f:
                f.truncate(plan.total_size)

                def write(chunk: ChunkDescriptor, data: bytes) -> None:
                    f.seek(chunk.offset - plan.start)
                    f.write(data)

                await coordinator.download(plan, fetch, write)
            os.replace(tmp, dst)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise
        return dst

    # -- copy --------------------------------------------------------------

    async def _start_copy_from_url(
        self,
        source_url: str,
        *,
        metadata: dict[str, str] | None = None,
        tier: AccessTier | None = None,
        requires_sync: bool = False,
    ) -> _BaseCopyPoller:
        headers = {"x-ms-copy-source": source_url, **metadata_headers(metadata)}
        if tier:
            headers["x-ms-access-tier"] = tier
        if requires_sync:
            headers["x-ms-requires-sync"] = "true"
        response = await self._send("PUT", operation="start_copy_from_url", headers=headers)
        initial = CopyProperties(
            id=response.headers.get("x-ms-copy-id"),
            status=response.headers.get("x-ms-copy-status"),  # type: ignore[arg-type]
        )
        runtime = self._context.runtime
        return runtime.poller_cls(
            initial.id,
            get_properties=self._get_properties,
            abort_copy=self._abort_copy,
            initial=initial,
            sleep_fn=runtime.sleep_fn,
            logger=self.options.log.get_logger("poller"),
        )

    async def _abort_copy(self, copy_id: str) -> None:
        await self._send(
            "PUT",
            operation="abort_copy",
            params={"comp": "copy", "copyid": copy_id},
            headers={"x-ms-copy-action": "abort"},
        )

    # -- SAS ---------------------------------------------------------------

    def generate_sas(
        self,
        *,
        permission: BlobSasPermissions | str | None = None,
        expiry: datetime | str | None = None,
        start: datetime | str | None = None,
        policy_id: str | None = None,
        **kwargs: Any,
    ) -> str:
        """SAS token for this blob, signed with the client's shared key."""
        return generate_blob_sas(
            self._require_shared_key(),
            self.container_name,
            self.blob_name,
            permission=permission,
            expiry=expiry,
            start=start,
            policy_id=policy_id,
            snapshot=self.snapshot,
            version=self.options.api_version,
            **kwargs,
        )


__all__ = ["DeleteSnapshots", "DownloadHandle"]
