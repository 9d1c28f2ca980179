from __future__ import annotations

from .._http import BytesBody
from .._serialize import (
    content_settings_headers,
    format_range,
    metadata_headers,
    parse_page_ranges,
    upload_result_from_headers,
)
from ..errors import ConfigurationError
from ..types import AccessTier, ContentSettings, PageRange, UploadResult
from .blob import _BaseBlobClient

PAGE_SIZE = 512


def _check_aligned(name: str, value: int) -> None:
    if value < 0 or value % PAGE_SIZE:
        raise ConfigurationError(f"{name} must be a non-negative multiple of {PAGE_SIZE}, got {value}")


class _BasePageBlobClient(_BaseBlobClient):
    async def _create_page_blob(
        self,
        size: int,
        *,
        sequence_number: int | None = None,
        content_settings: ContentSettings | None = None,
        metadata: dict[str, str] | None = None,
        tier: AccessTier | None = None,
    ) -> UploadResult:
        _check_aligned("size", size)
        headers = {
            "x-ms-blob-type": "PageBlob",
            "x-ms-blob-content-length": str(size),
            **content_settings_headers(content_settings),
            **metadata_headers(metadata),
        }
        if sequence_number is not None:
            headers["x-ms-blob-sequence-number"] = str(sequence_number)
        if tier:
            headers["x-ms-access-tier"] = tier
        response = await self._send("PUT", operation="create_page_blob", headers=headers)
        return upload_result_from_headers(response.headers)

    async def _upload_pages(self, data: bytes, offset: int) -> UploadResult:
        _check_aligned("offset", offset)
        _check_aligned("length", len(data))
        if not data:
            raise ConfigurationError("data must not be empty")
        response = await self._send(
            "PUT",
            operation="upload_pages",
            params={"comp": "page"},
            headers={
                "x-ms-page-write": "update",
                "x-ms-range": format_range(offset, offset + len(data) - 1),
            },
            body=BytesBody(bytes(data)),
        )
        return upload_result_from_headers(response.headers)

    async def _clear_pages(self, offset: int, length: int) -> UploadResult:
        _check_aligned("offset", offset)
        _check_aligned("length", length)
        if not length:
            raise ConfigurationError("length must be positive")
        response = await self._send(
            "PUT",
            operation="clear_pages",
            params={"comp": "page"},
            headers={
                "x-ms-page-write": "clear",
                "x-ms-range": format_range(offset, offset + length - 1),
            },
        )
        return upload_result_from_headers(response.headers)

    async def _get_page_ranges(
        self, offset: int | None = None, length: int | None = None
    ) -> list[PageRange]:
        headers: dict[str, str] = {}
        if offset is not None or length is not None:
            start = offset or 0
            _check_aligned("offset", start)
            if length is not None:
                _check_aligned("length", length)
            headers["x-ms-range"] = format_range(
                start, start + length - 1 if length else None
            )
        response = await self._send(
            "GET",
            operation="get_page_ranges",
            params=self._params(comp="pagelist"),
            headers=headers,
        )
        return parse_page_ranges(response.content)

    async def _resize(self, size: int) -> UploadResult:
        _check_aligned("size", size)
        response = await self._send(
            "PUT",
            operation="resize_blob",
            params={"comp": "properties"},
            headers={"x-ms-blob-content-length": str(size)},
        )
        return upload_result_from_headers(response.headers)


__all__ = ["PAGE_SIZE"]
