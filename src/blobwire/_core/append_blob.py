from __future__ import annotations

from .._http import BytesBody
from .._serialize import content_settings_headers, metadata_headers, upload_result_from_headers
from ..errors import ConfigurationError
from ..types import ContentSettings, UploadResult
from .blob import _BaseBlobClient

MAX_APPEND_BLOCK_SIZE = 100 * 1024 * 1024


class _BaseAppendBlobClient(_BaseBlobClient):
    async def _create_append_blob(
        self,
        *,
        content_settings: ContentSettings | None = None,
        metadata: dict[str, str] | None = None,
    ) -> UploadResult:
        response = await self._send(
            "PUT",
            operation="create_append_blob",
            headers={
                "x-ms-blob-type": "AppendBlob",
                **content_settings_headers(content_settings),
                **metadata_headers(metadata),
            },
        )
        return upload_result_from_headers(response.headers)

    async def _append_block(
        self,
        data: bytes | str,
        *,
        appendpos_condition: int | None = None,
        maxsize_condition: int | None = None,
    ) -> UploadResult:
        body = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        if not body:
            raise ConfigurationError("data must not be empty")
        if len(body) > MAX_APPEND_BLOCK_SIZE:
            raise ConfigurationError(
                f"append blocks are limited to {MAX_APPEND_BLOCK_SIZE} bytes, got {len(body)}"
            )
        headers: dict[str, str] = {}
        if appendpos_condition is not None:
            headers["x-ms-blob-condition-appendpos"] = str(appendpos_condition)
        if maxsize_condition is not None:
            headers["x-ms-blob-condition-maxsize"] = str(maxsize_condition)
        response = await self._send(
            "PUT",
            operation="append_block",
            params={"comp": "appendblock"},
            headers=headers,
            body=BytesBody(body),
        )
        return upload_result_from_headers(response.headers)

    async def _seal(self) -> UploadResult:
        response = await self._send("PUT", operation="seal_append_blob", params={"comp": "seal"})
        return upload_result_from_headers(response.headers)


__all__ = ["MAX_APPEND_BLOCK_SIZE"]
