"""Block blob uploads: single shot, staged blocks, and parallel chunked upload."""

from __future__ import annotations

import io
import os
import threading
import uuid
from collections.abc import Iterable
from typing import IO, Any, Union

from .._cancel import CancellationToken
from .._http import BytesBody, XMLBody
from .._serialize import (
    build_block_list_xml,
    content_settings_headers,
    metadata_headers,
    parse_block_list,
    upload_result_from_headers,
)
from .._transfer import ChunkDescriptor, ChunkResult, emit_progress, make_block_id, plan_transfer
from ..errors import ConfigurationError
from ..types import (
    AccessTier,
    BlockList,
    BlockListType,
    ContentSettings,
    TransferProgressCallback,
    UploadResult,
)
from .blob import _BaseBlobClient

UploadData = Union[bytes, bytearray, memoryview, str, IO[bytes], Iterable[bytes]]
PUT_BODY_ERROR = "data must be bytes, str, a binary file object or an iterable of bytes"


class _BytesSource:
    def __init__(self, data: bytes | bytearray | memoryview) -> None:
        self._view = memoryview(data)
        self.size = len(self._view)

    def read(self, chunk: ChunkDescriptor) -> bytes:
        return bytes(self._view[chunk.offset : chunk.end])


class _FileSource:
    """Reads chunks of a seekable binary file; seek and read happen under one lock."""

    def __init__(self, fileobj: IO[bytes], size: int | None = None) -> None:
        self._file = fileobj
        self._start = fileobj.tell()
        if size is None:
            size = fileobj.seek(0, io.SEEK_END) - self._start
            fileobj.seek(self._start)
        self.size = size
        self._lock = threading.Lock()

    def read(self, chunk: ChunkDescriptor) -> bytes:
        with self._lock:
            self._file.seek(self._start + chunk.offset)
            data = self._file.read(chunk.length)
        if len(data) != chunk.length:
            raise ConfigurationError(
                f"file ended at byte {chunk.offset + len(data)}, expected {chunk.end}"
            )
        return data


def _make_source(data: Any, length: int | None) -> _BytesSource | _FileSource:
    if isinstance(data, str):
        return _BytesSource(data.encode("utf-8"))
    if isinstance(data, (bytes, bytearray, memoryview)):
        source = _BytesSource(data)
        if length is not None:
            source = _BytesSource(source._view[:length])
        return source
    if hasattr(data, "read"):
        if hasattr(data, "seekable") and data.seekable():
            return _FileSource(data, length)
        return _BytesSource(data.read() if length is None else data.read(length))
    if isinstance(data, Iterable):
        return _BytesSource(b"".join(bytes(part) for part in data))
    raise ConfigurationError(PUT_BODY_ERROR)


def _upload_headers(
    *,
    overwrite: bool,
    content_settings: ContentSettings | None,
    metadata: dict[str, str] | None,
    tier: AccessTier | None,
) -> dict[str, str]:
    headers = {**content_settings_headers(content_settings), **metadata_headers(metadata)}
    if not overwrite:
        headers["if-none-match"] = "*"
    if tier:
        headers["x-ms-access-tier"] = tier
    return headers


class _BaseBlockBlobClient(_BaseBlobClient):
    async def _upload(
        self,
        data: bytes | str,
        *,
        overwrite: bool = False,
        content_settings: ContentSettings | None = None,
        metadata: dict[str, str] | None = None,
        tier: AccessTier | None = None,
        cancellation: CancellationToken | None = None,
    ) -> UploadResult:
        body = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        headers = _upload_headers(
            overwrite=overwrite, content_settings=content_settings, metadata=metadata, tier=tier
        )
        headers["x-ms-blob-type"] = "BlockBlob"
        response = await self._send(
            "PUT",
            operation="upload_blob",
            headers=headers,
            body=BytesBody(body),
            cancellation=cancellation,
        )
        return upload_result_from_headers(response.headers)

    async def _stage_block(
        self,
        block_id: str,
        data: bytes,
        *,
        cancellation: CancellationToken | None = None,
    ) -> None:
        await self._send(
            "PUT",
            operation="stage_block",
            params={"comp": "block", "blockid": block_id},
            body=BytesBody(bytes(data)),
            cancellation=cancellation,
        )

    async def _commit_block_list(
        self,
        block_ids: list[str],
        *,
        overwrite: bool = True,
        content_settings: ContentSettings | None = None,
        metadata: dict[str, str] | None = None,
        tier: AccessTier | None = None,
        cancellation: CancellationToken | None = None,
    ) -> UploadResult:
        response = await self._send(
            "PUT",
            operation="commit_block_list",
            params={"comp": "blocklist"},
            headers=_upload_headers(
                overwrite=overwrite,
                content_settings=content_settings,
                metadata=metadata,
                tier=tier,
            ),
            body=XMLBody(build_block_list_xml(block_ids)),
            cancellation=cancellation,
        )
        return upload_result_from_headers(response.headers)

    async def _get_block_list(self, list_type: BlockListType = "committed") -> BlockList:
        response = await self._send(
            "GET",
            operation="get_block_list",
            params=self._params(comp="blocklist", blocklisttype=list_type),
        )
        return parse_block_list(response.content)

    async def _upload_data(
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
        """Upload in one request when small enough, otherwise as parallel staged blocks."""
        source = _make_source(data, length)
        options = self.options.transfer
        if source.size <= options.max_single_put_size:
            whole = plan_transfer(source.size, max(source.size, 1))
            result = await self._upload(
                source.read(whole.chunks[0]),
                overwrite=overwrite,
                content_settings=content_settings,
                metadata=metadata,
                tier=tier,
                cancellation=cancellation,
            )
            await emit_progress(progress, source.size, source.size)
            return result

        plan = plan_transfer(source.size, options.upload_chunk_size(source.size))
        prefix = uuid.uuid4().hex

        async def stage(chunk: ChunkDescriptor, token: CancellationToken) -> ChunkResult:
            block_id = make_block_id(prefix, chunk.sequence)
            await self._stage_block(block_id, source.read(chunk), cancellation=token)
            return ChunkResult(chunk.sequence, block_id=block_id)

        async def commit(block_ids: list[str]) -> UploadResult:
            return await self._commit_block_list(
                block_ids,
                overwrite=overwrite,
                content_settings=content_settings,
                metadata=metadata,
                tier=tier,
                cancellation=cancellation,
            )

        coordinator = self._coordinator(
            "upload_blob",
            max_concurrency=max_concurrency,
            progress=progress,
            cancellation=cancellation,
        )
        return await coordinator.upload(plan, stage, commit)

    async def _upload_file(
        self,
        path: str | os.PathLike,
        **kwargs: Any,
    ) -> UploadResult:
        with open(os.fspath(path), "rb") as f:
            return await self._upload_data(f, **kwargs)


__all__ = ["UploadData"]
