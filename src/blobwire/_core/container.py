from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar

from .._serialize import (
    container_properties_from_headers,
    metadata_headers,
    parse_blob_list,
    upload_result_from_headers,
)
from ..sas import ContainerSasPermissions, generate_container_sas
from ..types import ContainerProperties, ListPage, PublicAccess, UploadResult
from .base import _BaseStorageClient, quote_blob_name
from .blob import DeleteSnapshots

DEFAULT_PAGE_SIZE = 5000


class _BaseContainerClient(_BaseStorageClient):
    container_name: str

    _blob_client_cls: ClassVar[type]
    _block_blob_client_cls: ClassVar[type]
    _page_blob_client_cls: ClassVar[type]
    _append_blob_client_cls: ClassVar[type]

    def _blob_url(self, blob_name: str) -> str:
        return f"{self._url}/{quote_blob_name(blob_name)}"

    def _child(self, cls: type, blob_name: str, snapshot: str | None) -> Any:
        return cls._from_context(
            self._blob_url(blob_name),
            self._context,
            container_name=self.container_name,
            blob_name=blob_name,
            snapshot=snapshot,
        )

    def get_blob_client(self, blob_name: str, *, snapshot: str | None = None) -> Any:
        return self._child(self._blob_client_cls, blob_name, snapshot)

    def get_block_blob_client(self, blob_name: str, *, snapshot: str | None = None) -> Any:
        return self._child(self._block_blob_client_cls, blob_name, snapshot)

    def get_page_blob_client(self, blob_name: str, *, snapshot: str | None = None) -> Any:
        return self._child(self._page_blob_client_cls, blob_name, snapshot)

    def get_append_blob_client(self, blob_name: str, *, snapshot: str | None = None) -> Any:
        return self._child(self._append_blob_client_cls, blob_name, snapshot)

    async def _create_container(
        self,
        *,
        metadata: dict[str, str] | None = None,
        public_access: PublicAccess | None = None,
    ) -> UploadResult:
        headers = metadata_headers(metadata)
        if public_access:
            headers["x-ms-blob-public-access"] = public_access
        response = await self._send(
            "PUT",
            operation="create_container",
            params={"restype": "container"},
            headers=headers,
        )
        return upload_result_from_headers(response.headers)

    async def _delete_container(self) -> None:
        await self._send("DELETE", operation="delete_container", params={"restype": "container"})

    async def _get_container_properties(self) -> ContainerProperties:
        response = await self._send(
            "HEAD",
            operation="get_container_properties",
            params={"restype": "container"},
        )
        return container_properties_from_headers(response.headers, name=self.container_name)

    async def _container_exists(self) -> bool:
        return await self._exists(self._get_container_properties)

    async def _set_container_metadata(self, metadata: dict[str, str] | None) -> UploadResult:
        response = await self._send(
            "PUT",
            operation="set_container_metadata",
            params={"restype": "container", "comp": "metadata"},
            headers=metadata_headers(metadata),
        )
        return upload_result_from_headers(response.headers)

    async def _list_blobs_page(
        self,
        *,
        prefix: str | None = None,
        marker: str | None = None,
        results_per_page: int | None = None,
        include_metadata: bool = False,
    ) -> ListPage:
        response = await self._send(
            "GET",
            operation="list_blobs",
            params={
                "restype": "container",
                "comp": "list",
                "prefix": prefix or None,
                "marker": marker or None,
                "maxresults": results_per_page,
                "include": "metadata" if include_metadata else None,
            },
        )
        return parse_blob_list(response.content)

    async def _delete_blob(
        self, blob_name: str, *, delete_snapshots: DeleteSnapshots | None = None
    ) -> None:
        blob = self._child(self._blob_client_cls, blob_name, None)
        await blob._delete_blob(delete_snapshots=delete_snapshots)

    def generate_sas(
        self,
        *,
        permission: ContainerSasPermissions | str | None = None,
        expiry: datetime | str | None = None,
        start: datetime | str | None = None,
        policy_id: str | None = None,
        **kwargs: Any,
    ) -> str:
        """SAS token for this container, signed with the client's shared key."""
        return generate_container_sas(
            self._require_shared_key(),
            self.container_name,
            permission=permission,
            expiry=expiry,
            start=start,
            policy_id=policy_id,
            version=self.options.api_version,
            **kwargs,
        )


__all__ = ["DEFAULT_PAGE_SIZE"]
