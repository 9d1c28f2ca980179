"""Fixtures for integration tests: an in-memory blob account behind respx."""

from __future__ import annotations

import re
import threading
import time
import xml.etree.ElementTree as ET
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from email.utils import formatdate
from urllib.parse import unquote, urlparse

import httpx
import pytest
import respx

ACCOUNT_NAME = "testacct"
ACCOUNT_HOST = f"{ACCOUNT_NAME}.blob.core.windows.net"
SECONDARY_HOST = f"{ACCOUNT_NAME}-secondary.blob.core.windows.net"
ACCOUNT_URL = f"https://{ACCOUNT_HOST}"

_RANGE = re.compile(r"bytes=(\d+)-(\d*)")


@dataclass
class FakeBlob:
    blob_type: str
    data: bytearray = field(default_factory=bytearray)
    metadata: dict[str, str] = field(default_factory=dict)
    content_type: str = "application/octet-stream"
    etag: str = '"0x1"'
    tier: str | None = None
    sealed: bool = False
    staged: dict[str, bytes] = field(default_factory=dict)
    committed: list[str] = field(default_factory=list)
    block_sizes: dict[str, int] = field(default_factory=dict)
    written_pages: set[int] = field(default_factory=set)
    copy: dict[str, str] | None = None
    copy_polls_left: int = 0
    visible: bool = True


@dataclass
class FakeContainer:
    metadata: dict[str, str] = field(default_factory=dict)
    public_access: str | None = None
    blobs: dict[str, FakeBlob] = field(default_factory=dict)


def _error(status: int, code: str) -> httpx.Response:
    body = (
        f'<?xml version="1.0" encoding="utf-8"?><Error><Code>{code}</Code>'
        f"<Message>{code}\nRequestId:00000000\nTime:now</Message></Error>"
    )
    return httpx.Response(
        status,
        headers={"x-ms-error-code": code, "content-type": "application/xml"},
        content=body.encode(),
    )


def _xml(root: ET.Element) -> httpx.Response:
    return httpx.Response(
        200,
        headers={"content-type": "application/xml"},
        content=ET.tostring(root, encoding="utf-8", xml_declaration=True),
    )


class BrokenStream(httpx.SyncByteStream, httpx.AsyncByteStream):
    """Yields ``data`` and then fails like a dropped connection."""

    def __init__(self, data: bytes) -> None:
        self._data = data

    def __iter__(self) -> Iterator[bytes]:
        yield self._data
        raise httpx.ReadError("connection reset by peer")

    async def __aiter__(self):
        yield self._data
        raise httpx.ReadError("connection reset by peer")


class FakeBlobService:
    """Just enough of the blob REST API for end-to-end client tests.

    Every request is recorded in ``requests``. ``inject`` queues canned
    responses for the next matching requests, and ``break_next_download``
    cuts the next download body short. ``latency`` returns the seconds to
    hold each request before answering it.
    """

    def __init__(self) -> None:
        self.containers: dict[str, FakeContainer] = {}
        self.requests: list[httpx.Request] = []
        self.hosts: list[str] = []
        self.secondary_enabled = True
        self._injected: list[tuple[Callable[[httpx.Request], bool], httpx.Response]] = []
        self._truncations: list[tuple[int, bool]] = []
        self.copy_polls = 2
        self.latency: Callable[[httpx.Request], float] | None = None
        self._etag = 0
        self._lock = threading.Lock()

    # -- helpers for tests ------------------------------------------------

    def inject(
        self,
        response: httpx.Response,
        *,
        method: str | None = None,
        comp: str | None = None,
        times: int = 1,
    ) -> None:
        def matches(request: httpx.Request) -> bool:
            if method and request.method != method:
                return False
            return comp is None or request.url.params.get("comp") == comp

        for _ in range(times):
            self._injected.append((matches, response))

    def break_next_download(self, after: int, *, error: bool = False) -> None:
        """The next blob GET sends only ``after`` bytes, then ends (or fails)."""
        self._truncations.append((after, error))

    def add_container(self, name: str, **attrs) -> FakeContainer:
        return self.containers.setdefault(name, FakeContainer(**attrs))

    def add_blob(self, container: str, name: str, data: bytes, **attrs) -> FakeBlob:
        blob = FakeBlob(blob_type=attrs.pop("blob_type", "BlockBlob"), data=bytearray(data), **attrs)
        blob.etag = self._next_etag()
        self.containers.setdefault(container, FakeContainer()).blobs[name] = blob
        return blob

    def blob(self, container: str, name: str) -> FakeBlob:
        return self.containers[container].blobs[name]

    def calls(self, method: str, comp: str | None = None) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method and r.url.params.get("comp") == comp
        ]

    # -- dispatch ---------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        if self.latency is not None:
            time.sleep(self.latency(request))
        with self._lock:
            self.requests.append(request)
            self.hosts.append(request.url.host)
            for index, (matches, response) in enumerate(self._injected):
                if matches(request):
                    del self._injected[index]
                    return response
            return self._dispatch(request)

    def handle_secondary(self, request: httpx.Request) -> httpx.Response:
        if not self.secondary_enabled:
            with self._lock:
                self.requests.append(request)
                self.hosts.append(request.url.host)
            return _error(404, "ResourceNotFound")
        return self.handle(request)

    def _next_etag(self) -> str:
        self._etag += 1
        return f'"0x{self._etag:X}"'

    def _dispatch(self, request: httpx.Request) -> httpx.Response:
        parts = urlparse(str(request.url)).path.lstrip("/").split("/", 1)
        container = unquote(parts[0]) if parts[0] else None
        blob = unquote(parts[1]) if len(parts) > 1 and parts[1] else None
        params = request.url.params
        if container is None:
            if params.get("comp") == "list":
                return self._list_containers(params)
            return _error(400, "InvalidQueryParameterValue")
        if blob is None:
            return self._container_op(request, container)
        return self._blob_op(request, container, blob)

    # -- containers -------------------------------------------------------

    def _page(self, names: list[str], params) -> tuple[list[str], str | None]:
        prefix = params.get("prefix") or ""
        marker = params.get("marker")
        names = sorted(n for n in names if n.startswith(prefix))
        if marker:
            names = [n for n in names if n >= marker]
        size = int(params.get("maxresults") or 5000)
        page, rest = names[:size], names[size:]
        return page, (rest[0] if rest else None)

    def _list_containers(self, params) -> httpx.Response:
        page, next_marker = self._page(list(self.containers), params)
        root = ET.Element("EnumerationResults", ServiceEndpoint=ACCOUNT_URL + "/")
        nodes = ET.SubElement(root, "Containers")
        for name in page:
            node = ET.SubElement(nodes, "Container")
            ET.SubElement(node, "Name").text = name
            props = ET.SubElement(node, "Properties")
            ET.SubElement(props, "Etag").text = '"0x1"'
            ET.SubElement(props, "Last-Modified").text = formatdate(usegmt=True)
            if params.get("include") == "metadata":
                meta = ET.SubElement(node, "Metadata")
                for key, value in self.containers[name].metadata.items():
                    ET.SubElement(meta, key).text = value
        ET.SubElement(root, "NextMarker").text = next_marker
        return _xml(root)

    def _container_op(self, request: httpx.Request, name: str) -> httpx.Response:
        params = request.url.params
        if params.get("restype") != "container":
            return _error(400, "InvalidQueryParameterValue")
        comp = params.get("comp")
        container = self.containers.get(name)
        if request.method == "PUT" and comp is None:
            if container is not None:
                return _error(409, "ContainerAlreadyExists")
            self.containers[name] = FakeContainer(
                metadata=_metadata(request.headers),
                public_access=request.headers.get("x-ms-blob-public-access"),
            )
            return httpx.Response(201, headers={"etag": self._next_etag()})
        if container is None:
            return _error(404, "ContainerNotFound")
        if request.method == "DELETE":
            del self.containers[name]
            return httpx.Response(202)
        if request.method == "HEAD":
            headers = {"etag": '"0x1"', "last-modified": formatdate(usegmt=True)}
            headers.update({f"x-ms-meta-{k}": v for k, v in container.metadata.items()})
            if container.public_access:
                headers["x-ms-blob-public-access"] = container.public_access
            return httpx.Response(200, headers=headers)
        if request.method == "PUT" and comp == "metadata":
            container.metadata = _metadata(request.headers)
            return httpx.Response(200, headers={"etag": self._next_etag()})
        if request.method == "GET" and comp == "list":
            return self._list_blobs(container, params)
        return _error(400, "UnsupportedOperation")

    def _list_blobs(self, container: FakeContainer, params) -> httpx.Response:
        visible = [n for n, b in container.blobs.items() if b.visible]
        page, next_marker = self._page(visible, params)
        root = ET.Element("EnumerationResults")
        nodes = ET.SubElement(root, "Blobs")
        for name in page:
            blob = container.blobs[name]
            node = ET.SubElement(nodes, "Blob")
            ET.SubElement(node, "Name").text = name
            props = ET.SubElement(node, "Properties")
            ET.SubElement(props, "Content-Length").text = str(len(blob.data))
            ET.SubElement(props, "BlobType").text = blob.blob_type
            ET.SubElement(props, "Content-Type").text = blob.content_type
            ET.SubElement(props, "Etag").text = blob.etag
            if params.get("include") == "metadata":
                meta = ET.SubElement(node, "Metadata")
                for key, value in blob.metadata.items():
                    ET.SubElement(meta, key).text = value
        ET.SubElement(root, "NextMarker").text = next_marker
        return _xml(root)

    # -- blobs ------------------------------------------------------------

    def _blob_headers(self, blob: FakeBlob) -> dict[str, str]:
        headers = {
            "etag": blob.etag,
            "last-modified": formatdate(usegmt=True),
            "content-type": blob.content_type,
            "x-ms-blob-type": blob.blob_type,
            **{f"x-ms-meta-{k}": v for k, v in blob.metadata.items()},
        }
        if blob.tier:
            headers["x-ms-access-tier"] = blob.tier
        if blob.blob_type == "AppendBlob":
            headers["x-ms-blob-sealed"] = "true" if blob.sealed else "false"
        if blob.copy:
            headers.update({f"x-ms-copy-{k}": v for k, v in blob.copy.items()})
        return headers

    def _written(self, blob: FakeBlob, status: int = 201, **extra: str) -> httpx.Response:
        blob.etag = self._next_etag()
        return httpx.Response(
            status,
            headers={
                "etag": blob.etag,
                "last-modified": formatdate(usegmt=True),
                "x-ms-request-server-encrypted": "true",
                **extra,
            },
        )

    def _blob_op(self, request: httpx.Request, container_name: str, name: str) -> httpx.Response:
        container = self.containers.get(container_name)
        if container is None:
            return _error(404, "ContainerNotFound")
        params = request.url.params
        comp = params.get("comp")
        blob = container.blobs.get(name)

        if request.method == "PUT" and comp is None:
            return self._put_blob(request, container, name, blob)
        if request.method == "PUT" and comp == "block":
            blob = container.blobs.setdefault(name, FakeBlob("BlockBlob", visible=False))
            blob.staged[params["blockid"]] = request.content
            return httpx.Response(201)
        if request.method == "PUT" and comp == "blocklist":
            return self._commit(request, container, name, blob)
        if request.method == "GET" and comp == "blocklist" and blob is not None:
            return self._block_list(blob, params.get("blocklisttype", "committed"))

        if blob is None or not blob.visible:
            return _error(404, "BlobNotFound")

        if request.method == "HEAD":
            self._advance_copy(blob)
            headers = self._blob_headers(blob)
            headers["content-length"] = str(len(blob.data))
            return httpx.Response(200, headers=headers)
        if request.method == "GET" and comp is None:
            return self._download(request, blob)
        if request.method == "DELETE":
            del container.blobs[name]
            return httpx.Response(202)
        if request.method == "GET" and comp == "pagelist":
            return self._page_list(blob)
        if request.method == "PUT" and comp == "metadata":
            blob.metadata = _metadata(request.headers)
            return self._written(blob, 200)
        if request.method == "PUT" and comp == "properties":
            if "x-ms-blob-content-length" in request.headers:
                size = int(request.headers["x-ms-blob-content-length"])
                blob.data = (blob.data + bytearray(size))[:size]
            if "x-ms-blob-content-type" in request.headers:
                blob.content_type = request.headers["x-ms-blob-content-type"]
            return self._written(blob, 200)
        if request.method == "PUT" and comp == "tier":
            blob.tier = request.headers["x-ms-access-tier"]
            return httpx.Response(200)
        if request.method == "PUT" and comp == "snapshot":
            return httpx.Response(201, headers={"x-ms-snapshot": "2024-01-03T10:20:30.1234567Z"})
        if request.method == "PUT" and comp == "page":
            return self._write_pages(request, blob)
        if request.method == "PUT" and comp == "appendblock":
            return self._append(request, blob)
        if request.method == "PUT" and comp == "seal":
            blob.sealed = True
            return self._written(blob, 200)
        if request.method == "PUT" and comp == "copy":
            if not blob.copy or blob.copy.get("status") != "pending":
                return _error(409, "NoPendingCopyOperation")
            blob.copy["status"] = "aborted"
            return httpx.Response(204)
        return _error(400, "UnsupportedOperation")

    def _put_blob(self, request, container, name, blob) -> httpx.Response:
        headers = request.headers
        if headers.get("if-none-match") == "*" and blob is not None and blob.visible:
            return _error(409, "BlobAlreadyExists")
        source = headers.get("x-ms-copy-source")
        if source:
            return self._start_copy(request, container, name, source)
        blob_type = headers.get("x-ms-blob-type", "BlockBlob")
        new = FakeBlob(blob_type, metadata=_metadata(headers), tier=headers.get("x-ms-access-tier"))
        new.content_type = headers.get("x-ms-blob-content-type", new.content_type)
        if blob_type == "BlockBlob":
            new.data = bytearray(request.content)
        elif blob_type == "PageBlob":
            new.data = bytearray(int(headers["x-ms-blob-content-length"]))
        container.blobs[name] = new
        return self._written(new)

    def _commit(self, request, container, name, blob) -> httpx.Response:
        headers = request.headers
        if headers.get("if-none-match") == "*" and blob is not None and blob.visible:
            return _error(409, "BlobAlreadyExists")
        if blob is None:
            blob = container.blobs[name] = FakeBlob("BlockBlob")
        ids = [node.text or "" for node in ET.fromstring(request.content)]
        data = bytearray()
        for block_id in ids:
            if block_id not in blob.staged:
                return _error(400, "InvalidBlockList")
            data += blob.staged[block_id]
            blob.block_sizes[block_id] = len(blob.staged[block_id])
        blob.data = data
        blob.committed = ids
        blob.staged = {}
        blob.visible = True
        blob.metadata = _metadata(headers)
        blob.content_type = headers.get("x-ms-blob-content-type", blob.content_type)
        return self._written(blob)

    def _download(self, request: httpx.Request, blob: FakeBlob) -> httpx.Response:
        if_match = request.headers.get("if-match")
        if if_match and if_match != blob.etag:
            return _error(412, "ConditionNotMet")
        size = len(blob.data)
        headers = self._blob_headers(blob)
        status = 200
        start, end = 0, size - 1
        requested = request.headers.get("x-ms-range")
        if requested:
            match = _RANGE.fullmatch(requested)
            start = int(match.group(1))
            if start >= size:
                return _error(416, "InvalidRange")
            end = min(int(match.group(2)), size - 1) if match.group(2) else size - 1
            status = 206
            headers["content-range"] = f"bytes {start}-{end}/{size}"
        body = bytes(blob.data[start : end + 1])
        headers["content-length"] = str(len(body))
        if self._truncations:
            after, error = self._truncations.pop(0)
            if error:
                return httpx.Response(status, headers=headers, stream=BrokenStream(body[:after]))
            return httpx.Response(status, headers=headers, content=body[:after])
        return httpx.Response(status, headers=headers, content=body)

    def _block_list(self, blob: FakeBlob, list_type: str) -> httpx.Response:
        root = ET.Element("BlockList")
        if list_type in ("committed", "all"):
            committed = ET.SubElement(root, "CommittedBlocks")
            for block_id in blob.committed:
                node = ET.SubElement(committed, "Block")
                ET.SubElement(node, "Name").text = block_id
                ET.SubElement(node, "Size").text = str(blob.block_sizes.get(block_id, 0))
        if list_type in ("uncommitted", "all"):
            uncommitted = ET.SubElement(root, "UncommittedBlocks")
            for block_id, data in blob.staged.items():
                node = ET.SubElement(uncommitted, "Block")
                ET.SubElement(node, "Name").text = block_id
                ET.SubElement(node, "Size").text = str(len(data))
        return _xml(root)

    def _write_pages(self, request: httpx.Request, blob: FakeBlob) -> httpx.Response:
        match = _RANGE.fullmatch(request.headers["x-ms-range"])
        start, end = int(match.group(1)), int(match.group(2))
        if end >= len(blob.data):
            return _error(416, "InvalidPageRange")
        pages = range(start // 512, end // 512 + 1)
        if request.headers["x-ms-page-write"] == "update":
            blob.data[start : end + 1] = request.content
            blob.written_pages.update(pages)
        else:
            blob.data[start : end + 1] = bytes(end + 1 - start)
            blob.written_pages.difference_update(pages)
        return self._written(blob, 201, **{"x-ms-blob-sequence-number": "0"})

    def _page_list(self, blob: FakeBlob) -> httpx.Response:
        root = ET.Element("PageList")
        for page in sorted(blob.written_pages):
            node = ET.SubElement(root, "PageRange")
            ET.SubElement(node, "Start").text = str(page * 512)
            ET.SubElement(node, "End").text = str(page * 512 + 511)
        return _xml(root)

    def _append(self, request: httpx.Request, blob: FakeBlob) -> httpx.Response:
        if blob.sealed:
            return _error(409, "BlobIsSealed")
        expected = request.headers.get("x-ms-blob-condition-appendpos")
        if expected is not None and int(expected) != len(blob.data):
            return _error(412, "AppendPositionConditionNotMet")
        offset = len(blob.data)
        blob.data += request.content
        return self._written(blob, 201, **{"x-ms-blob-append-offset": str(offset)})

    def _start_copy(self, request, container, name, source: str) -> httpx.Response:
        path = urlparse(source).path.lstrip("/").split("/", 1)
        try:
            source_blob = self.blob(unquote(path[0]), unquote(path[1]))
        except (KeyError, IndexError):
            return _error(404, "CannotVerifyCopySource")
        copy_id = f"copy-{self._etag + 1}"
        new = FakeBlob(
            source_blob.blob_type,
            data=bytearray(source_blob.data),
            metadata=_metadata(request.headers) or dict(source_blob.metadata),
        )
        new.copy = {
            "id": copy_id,
            "status": "pending",
            "source": source,
            "progress": f"0/{len(source_blob.data)}",
        }
        new.copy_polls_left = self.copy_polls
        container.blobs[name] = new
        return self._written(new, 202, **{"x-ms-copy-id": copy_id, "x-ms-copy-status": "pending"})

    def _advance_copy(self, blob: FakeBlob) -> None:
        if not blob.copy or blob.copy["status"] != "pending":
            return
        blob.copy_polls_left -= 1
        if blob.copy_polls_left <= 0:
            total = len(blob.data)
            blob.copy.update(status="success", progress=f"{total}/{total}")


def _metadata(headers: httpx.Headers) -> dict[str, str]:
    return {
        key[len("x-ms-meta-") :]: value
        for key, value in headers.items()
        if key.lower().startswith("x-ms-meta-")
    }


@pytest.fixture
def blob_service() -> Iterator[FakeBlobService]:
    service = FakeBlobService()
    with respx.mock(assert_all_called=False) as router:
        router.route(host=ACCOUNT_HOST).mock(side_effect=service.handle)
        router.route(host=SECONDARY_HOST).mock(side_effect=service.handle_secondary)
        yield service


@pytest.fixture
def account_url() -> str:
    return ACCOUNT_URL
