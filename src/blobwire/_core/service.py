from __future__ import annotations

from typing import Any, ClassVar
from urllib.parse import urlparse

from .._serialize import parse_container_list
from ..credentials import SharedKeyCredential
from ..types import ListPage, PublicAccess
from .base import _BaseStorageClient, quote_blob_name, quote_container_name


class _BaseBlobServiceClient(_BaseStorageClient):
    _container_client_cls: ClassVar[type]
    _blob_client_cls: ClassVar[type]

    @property
    def account_name(self) -> str | None:
        if isinstance(self.credential, SharedKeyCredential):
            return self.credential.account_name
        parsed = urlparse(self._url)
        if parsed.path.strip("/"):
            # Path-style endpoints such as the local emulator.
            return parsed.path.strip("/").split("/")[0]
        host = parsed.hostname or ""
        return host.split(".")[0] or None

    def _container_url(self, container_name: str) -> str:
        return f"{self._url}/{quote_container_name(container_name)}"

    def get_container_client(self, container_name: str) -> Any:
        return self._container_client_cls._from_context(
            self._container_url(container_name),
            self._context,
            container_name=container_name,
        )

    def get_blob_client(
        self, container_name: str, blob_name: str, *, snapshot: str | None = None
    ) -> Any:
        return self._blob_client_cls._from_context(
            f"{self._container_url(container_name)}/{quote_blob_name(blob_name)}",
            self._context,
            container_name=container_name,
            blob_name=blob_name,
            snapshot=snapshot,
        )

    async def _list_containers_page(
        self,
        *,
        prefix: str | None = None,
        marker: str | None = None,
        results_per_page: int | None = None,
        include_metadata: bool = False,
    ) -> ListPage:
        response = await self._send(
            "GET",
            operation="list_containers",
            url=self._url + "/",
            params={
                "comp": "list",
                "prefix": prefix or None,
                "marker": marker or None,
                "maxresults": results_per_page,
                "include": "metadata" if include_metadata else None,
            },
        )
        return parse_container_list(response.content)

    async def _create_container(
        self,
        container_name: str,
        *,
        metadata: dict[str, str] | None = None,
        public_access: PublicAccess | None = None,
    ) -> Any:
        container = self.get_container_client(container_name)
        await container._create_container(metadata=metadata, public_access=public_access)
        return container

    async def _delete_container(self, container_name: str) -> None:
        await self.get_container_client(container_name)._delete_container()
