"""Blob storage client with blocking and async flavours built on one async core."""

from __future__ import annotations

from ._cancel import CancellationToken
from ._logging import LogConfig
from ._poller import (
    AsyncBlobCopyPoller,
    BlobCopyPoller,
    Cancelled,
    CopyState,
    Failed,
    InProgress,
    NotStarted,
    Succeeded,
)
from ._retry import RetryMode, RetryPolicyConfig
from ._transfer import TransferOptions
from .client import (
    AppendBlobClient,
    BlobClient,
    BlobServiceClient,
    BlockBlobClient,
    ContainerClient,
    PageBlobClient,
    StorageStreamDownloader,
)
from .config import ClientOptions, parse_connection_string
from .credentials import (
    AnonymousCredential,
    SasCredential,
    SharedKeyCredential,
    TokenCredential,
)
from .errors import (
    ClientAuthenticationError,
    ConfigurationError,
    HttpResponseError,
    OperationCancelledError,
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceTimeoutError,
    StorageError,
    StreamTruncatedError,
    TransferError,
)
from .sas import (
    AccountSasPermissions,
    BlobSasPermissions,
    ContainerSasPermissions,
    ResourceTypes,
    generate_account_sas,
    generate_blob_sas,
    generate_container_sas,
)
from .types import (
    BlobItem,
    BlobProperties,
    BlockList,
    ContainerItem,
    ContainerProperties,
    ContentSettings,
    CopyProperties,
    PageRange,
    TransferProgressEvent,
    UploadResult,
)

__version__ = "0.1.0"

__all__ = [
    # Clients
    "BlobServiceClient",
    "ContainerClient",
    "BlobClient",
    "BlockBlobClient",
    "PageBlobClient",
    "AppendBlobClient",
    "StorageStreamDownloader",
    # Configuration
    "ClientOptions",
    "LogConfig",
    "RetryMode",
    "RetryPolicyConfig",
    "TransferOptions",
    "parse_connection_string",
    # Credentials and SAS
    "AnonymousCredential",
    "SasCredential",
    "SharedKeyCredential",
    "TokenCredential",
    "AccountSasPermissions",
    "BlobSasPermissions",
    "ContainerSasPermissions",
    "ResourceTypes",
    "generate_account_sas",
    "generate_blob_sas",
    "generate_container_sas",
    # Cancellation and copy polling
    "CancellationToken",
    "BlobCopyPoller",
    "AsyncBlobCopyPoller",
    "CopyState",
    "NotStarted",
    "InProgress",
    "Succeeded",
    "Failed",
    "Cancelled",
    # Models
    "BlobItem",
    "BlobProperties",
    "BlockList",
    "ContainerItem",
    "ContainerProperties",
    "ContentSettings",
    "CopyProperties",
    "PageRange",
    "TransferProgressEvent",
    "UploadResult",
    # Errors
    "StorageError",
    "ConfigurationError",
    "ServiceRequestError",
    "ServiceTimeoutError",
    "OperationCancelledError",
    "HttpResponseError",
    "ResourceNotFoundError",
    "ResourceExistsError",
    "ClientAuthenticationError",
    "TransferError",
    "StreamTruncatedError",
]
