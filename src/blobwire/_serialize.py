"""Translation between service wire formats (headers, XML) and blobwire types."""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import Any, cast

import httpx

from .errors import HttpResponseError, error_for_status
from .types import (
    BlobItem,
    BlobProperties,
    BlobType,
    BlockInfo,
    BlockList,
    ContainerItem,
    ContainerProperties,
    ContentSettings,
    CopyProperties,
    ListPage,
    PageRange,
    PublicAccess,
    UploadResult,
)

METADATA_PREFIX = "x-ms-meta-"
_CONTENT_RANGE = re.compile(r"bytes (\d+)-(\d+)/(\d+|\*)")

_CONTENT_HEADERS = {
    "content_type": "x-ms-blob-content-type",
    "content_encoding": "x-ms-blob-content-encoding",
    "content_language": "x-ms-blob-content-language",
    "content_disposition": "x-ms-blob-content-disposition",
    "cache_control": "x-ms-blob-cache-control",
    "content_md5": "x-ms-blob-content-md5",
}


def parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def format_http_date(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def _parse_bool(value: str | None) -> bool | None:
    if value is None:
        return None
    return value.strip().lower() == "true"


def _parse_int(value: str | None) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


# Errors


def error_from_response(
    response: httpx.Response,
    body: bytes = b"",
    *,
    operation: str | None = None,
    host: str | None = None,
) -> HttpResponseError:
    """Build the exception for a failed response.

    The error code comes from ``x-ms-error-code``, falling back to the
    ``<Code>`` element of an XML error body.
    """
    error_code = response.headers.get("x-ms-error-code")
    message = ""
    if body:
        try:
            root = ET.fromstring(body)
        except ET.ParseError:
            message = body.decode("utf-8", errors="replace").strip()[:500]
        else:
            error_code = error_code or (root.findtext("Code") or None)
            # The service appends RequestId and Time lines to the message.
            lines = (root.findtext("Message") or "").strip().splitlines()
            message = lines[0] if lines else ""
    if not message:
        message = response.reason_phrase or f"HTTP {response.status_code}"
    return error_for_status(
        response.status_code,
        message,
        error_code=error_code,
        host=host,
        headers=dict(response.headers),
        operation=operation,
    )


# Headers


def metadata_headers(metadata: Mapping[str, str] | None) -> dict[str, str]:
    return {f"{METADATA_PREFIX}{k}": v for k, v in (metadata or {}).items()}


def parse_metadata(headers: Mapping[str, str]) -> dict[str, str]:
    return {
        k[len(METADATA_PREFIX) :]: v
        for k, v in headers.items()
        if k.lower().startswith(METADATA_PREFIX)
    }


def content_settings_headers(settings: ContentSettings | None) -> dict[str, str]:
    if settings is None:
        return {}
    return {
        header: value
        for attr, header in _CONTENT_HEADERS.items()
        if (value := getattr(settings, attr)) is not None
    }


def parse_content_range(value: str | None) -> tuple[int, int, int | None] | None:
    """``bytes 0-99/1234`` -> ``(0, 99, 1234)``; total is None for ``*``."""
    if not value:
        return None
    match = _CONTENT_RANGE.fullmatch(value.strip())
    if not match:
        return None
    total = match.group(3)
    return int(match.group(1)), int(match.group(2)), (None if total == "*" else int(total))


def format_range(start: int, end: int | None = None) -> str:
    """Inclusive byte range header value; ``end=None`` means to the end of the blob."""
    return f"bytes={start}-" if end is None else f"bytes={start}-{end}"


def parse_copy_properties(headers: Mapping[str, str]) -> CopyProperties:
    return CopyProperties(
        id=headers.get("x-ms-copy-id"),
        status=cast(Any, headers.get("x-ms-copy-status")),
        source=headers.get("x-ms-copy-source"),
        progress=headers.get("x-ms-copy-progress"),
        status_description=headers.get("x-ms-copy-status-description"),
        completion_time=parse_datetime(headers.get("x-ms-copy-completion-time")),
    )


def blob_properties_from_headers(
    headers: Mapping[str, str], *, name: str, container: str
) -> BlobProperties:
    size = _parse_int(headers.get("content-length")) or 0
    content_range = parse_content_range(headers.get("content-range"))
    if content_range is not None and content_range[2] is not None:
        size = content_range[2]
    return BlobProperties(
        name=name,
        container=container,
        size=size,
        blob_type=cast("BlobType | None", headers.get("x-ms-blob-type")),
        etag=headers.get("etag"),
        last_modified=parse_datetime(headers.get("last-modified")),
        content_settings=ContentSettings(
            content_type=headers.get("content-type"),
            content_encoding=headers.get("content-encoding"),
            content_language=headers.get("content-language"),
            content_disposition=headers.get("content-disposition"),
            cache_control=headers.get("cache-control"),
            content_md5=headers.get("x-ms-blob-content-md5") or headers.get("content-md5"),
        ),
        metadata=parse_metadata(headers),
        access_tier=headers.get("x-ms-access-tier"),
        creation_time=parse_datetime(headers.get("x-ms-creation-time")),
        snapshot=headers.get("x-ms-snapshot"),
        is_sealed=_parse_bool(headers.get("x-ms-blob-sealed")),
        copy=parse_copy_properties(headers),
    )


def container_properties_from_headers(
    headers: Mapping[str, str], *, name: str
) -> ContainerProperties:
    return ContainerProperties(
        name=name,
        etag=headers.get("etag"),
        last_modified=parse_datetime(headers.get("last-modified")),
        metadata=parse_metadata(headers),
        public_access=cast("PublicAccess | None", headers.get("x-ms-blob-public-access")),
        has_immutability_policy=bool(_parse_bool(headers.get("x-ms-has-immutability-policy"))),
        has_legal_hold=bool(_parse_bool(headers.get("x-ms-has-legal-hold"))),
    )


def upload_result_from_headers(headers: Mapping[str, str]) -> UploadResult:
    return UploadResult(
        etag=headers.get("etag"),
        last_modified=parse_datetime(headers.get("last-modified")),
        content_md5=headers.get("content-md5"),
        version_id=headers.get("x-ms-version-id"),
        request_server_encrypted=_parse_bool(headers.get("x-ms-request-server-encrypted")),
        blob_append_offset=_parse_int(headers.get("x-ms-blob-append-offset")),
        blob_committed_block_count=_parse_int(headers.get("x-ms-blob-committed-block-count")),
        blob_sequence_number=_parse_int(headers.get("x-ms-blob-sequence-number")),
    )


# XML


def _metadata_from_element(element: ET.Element | None) -> dict[str, str]:
    if element is None:
        return {}
    return {child.tag: child.text or "" for child in element}


def _next_marker(root: ET.Element) -> str | None:
    return root.findtext("NextMarker") or None


def parse_container_list(body: bytes) -> ListPage:
    root = ET.fromstring(body)
    items: list[ContainerItem] = []
    for node in root.iterfind("Containers/Container"):
        props = node.find("Properties")
        get = props.findtext if props is not None else (lambda _tag: None)
        items.append(
            ContainerItem(
                name=node.findtext("Name") or "",
                etag=get("Etag"),
                last_modified=parse_datetime(get("Last-Modified")),
                metadata=_metadata_from_element(node.find("Metadata")),
                public_access=cast("PublicAccess | None", get("PublicAccess")),
            )
        )
    return ListPage(items=items, next_marker=_next_marker(root))


def parse_blob_list(body: bytes) -> ListPage:
    root = ET.fromstring(body)
    items: list[BlobItem] = []
    for node in root.iterfind("Blobs/Blob"):
        props = node.find("Properties")
        get = props.findtext if props is not None else (lambda _tag: None)
        items.append(
            BlobItem(
                name=node.findtext("Name") or "",
                size=_parse_int(get("Content-Length")) or 0,
                blob_type=cast("BlobType | None", get("BlobType")),
                etag=get("Etag"),
                last_modified=parse_datetime(get("Last-Modified")),
                content_settings=ContentSettings(
                    content_type=get("Content-Type") or None,
                    content_encoding=get("Content-Encoding") or None,
                    content_language=get("Content-Language") or None,
                    content_disposition=get("Content-Disposition") or None,
                    cache_control=get("Cache-Control") or None,
                    content_md5=get("Content-MD5") or None,
                ),
                metadata=_metadata_from_element(node.find("Metadata")),
                access_tier=get("AccessTier"),
                snapshot=node.findtext("Snapshot") or None,
            )
        )
    return ListPage(items=items, next_marker=_next_marker(root))


def _to_xml(root: ET.Element) -> str:
    return '<?xml version="1.0" encoding="utf-8"?>' + ET.tostring(root, encoding="unicode")


def build_block_list_xml(block_ids: Iterable[str]) -> str:
    root = ET.Element("BlockList")
    for block_id in block_ids:
        ET.SubElement(root, "Latest").text = block_id
    return _to_xml(root)


def parse_block_list(body: bytes) -> BlockList:
    root = ET.fromstring(body)

    def blocks(path: str) -> list[BlockInfo]:
        return [
            BlockInfo(id=node.findtext("Name") or "", size=_parse_int(node.findtext("Size")) or 0)
            for node in root.iterfind(path)
        ]

    return BlockList(
        committed=blocks("CommittedBlocks/Block"),
        uncommitted=blocks("UncommittedBlocks/Block"),
    )


def parse_page_ranges(body: bytes) -> list[PageRange]:
    root = ET.fromstring(body)
    ranges = []
    for node in root:
        if node.tag not in ("PageRange", "ClearRange"):
            continue
        ranges.append(
            PageRange(
                start=int(node.findtext("Start") or 0),
                end=int(node.findtext("End") or 0),
                cleared=node.tag == "ClearRange",
            )
        )
    return sorted(ranges, key=lambda r: r.start)


__all__ = [
    "METADATA_PREFIX",
    "blob_properties_from_headers",
    "build_block_list_xml",
    "container_properties_from_headers",
    "content_settings_headers",
    "error_from_response",
    "format_http_date",
    "format_range",
    "metadata_headers",
    "parse_blob_list",
    "parse_block_list",
    "parse_container_list",
    "parse_content_range",
    "parse_copy_properties",
    "parse_datetime",
    "parse_metadata",
    "parse_page_ranges",
    "upload_result_from_headers",
]
