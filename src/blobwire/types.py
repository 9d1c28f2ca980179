from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

BlobType = Literal["BlockBlob", "PageBlob", "AppendBlob"]
AccessTier = Literal["Hot", "Cool", "Cold", "Archive", "P4", "P10", "P20", "P30", "P40", "P50"]
PublicAccess = Literal["container", "blob"]
BlockListType = Literal["committed", "uncommitted", "all"]
CopyStatus = Literal["pending", "success", "aborted", "failed"]


@dataclass(slots=True)
class ContentSettings:
    content_type: str | None = None
    content_encoding: str | None = None
    content_language: str | None = None
    content_disposition: str | None = None
    cache_control: str | None = None
    content_md5: str | None = None


@dataclass(slots=True)
class CopyProperties:
    id: str | None = None
    status: CopyStatus | None = None
    source: str | None = None
    progress: str | None = None
    status_description: str | None = None
    completion_time: datetime | None = None


@dataclass(slots=True)
class BlobProperties:
    name: str
    container: str
    size: int
    blob_type: BlobType | None
    etag: str | None
    last_modified: datetime | None
    content_settings: ContentSettings = field(default_factory=ContentSettings)
    metadata: dict[str, str] = field(default_factory=dict)
    access_tier: str | None = None
    creation_time: datetime | None = None
    snapshot: str | None = None
    is_sealed: bool | None = None
    copy: CopyProperties = field(default_factory=CopyProperties)


@dataclass(slots=True)
class ContainerProperties:
    name: str
    etag: str | None
    last_modified: datetime | None
    metadata: dict[str, str] = field(default_factory=dict)
    public_access: PublicAccess | None = None
    has_immutability_policy: bool = False
    has_legal_hold: bool = False


@dataclass(slots=True)
class ContainerItem:
    name: str
    etag: str | None
    last_modified: datetime | None
    metadata: dict[str, str] = field(default_factory=dict)
    public_access: PublicAccess | None = None


@dataclass(slots=True)
class BlobItem:
    name: str
    size: int
    blob_type: BlobType | None
    etag: str | None
    last_modified: datetime | None
    content_settings: ContentSettings = field(default_factory=ContentSettings)
    metadata: dict[str, str] = field(default_factory=dict)
    access_tier: str | None = None
    snapshot: str | None = None


@dataclass(slots=True)
class ListPage:
    """One page of a marker-paged listing."""

    items: list
    next_marker: str | None


@dataclass(slots=True)
class BlockInfo:
    id: str
    size: int


@dataclass(slots=True)
class BlockList:
    committed: list[BlockInfo] = field(default_factory=list)
    uncommitted: list[BlockInfo] = field(default_factory=list)


@dataclass(slots=True)
class PageRange:
    start: int
    end: int
    cleared: bool = False


@dataclass(slots=True)
class UploadResult:
    etag: str | None
    last_modified: datetime | None
    content_md5: str | None = None
    version_id: str | None = None
    request_server_encrypted: bool | None = None
    blob_append_offset: int | None = None
    blob_committed_block_count: int | None = None
    blob_sequence_number: int | None = None


@dataclass(slots=True)
class TransferProgressEvent:
    transferred: int
    total: int
    percentage: float


TransferProgressCallback = (
    Callable[[TransferProgressEvent], None] | Callable[[TransferProgressEvent], Awaitable[None]]
)


__all__ = [
    "AccessTier",
    "BlobItem",
    "BlobProperties",
    "BlobType",
    "BlockInfo",
    "BlockList",
    "BlockListType",
    "ContainerItem",
    "ContainerProperties",
    "ContentSettings",
    "CopyProperties",
    "CopyStatus",
    "ListPage",
    "PageRange",
    "PublicAccess",
    "TransferProgressCallback",
    "TransferProgressEvent",
    "UploadResult",
]
