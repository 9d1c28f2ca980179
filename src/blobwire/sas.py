"""Shared access signature builders.

The signatures are HMAC-SHA256 over the service's string-to-sign layouts for
version 2020-12-06 and later, computed with the account key of a
``SharedKeyCredential``.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, TypeVar
from urllib.parse import quote, urlencode

from ._http.config import DEFAULT_API_VERSION
from .credentials import SharedKeyCredential
from .errors import ConfigurationError

_P = TypeVar("_P", bound="_Permissions")


def _flag(char: str) -> Any:
    return field(default=False, metadata={"flag": char})


class _Permissions:
    """Boolean permission flags rendered in the service's canonical order."""

    _order: ClassVar[str]

    def __str__(self) -> str:
        flags = {f.metadata["flag"]: getattr(self, f.name) for f in dataclasses.fields(self)}  # type: ignore[arg-type]
        return "".join(char for char in self._order if flags.get(char))

    @classmethod
    def from_string(cls: type[_P], value: str) -> _P:
        by_flag = {f.metadata["flag"]: f.name for f in dataclasses.fields(cls)}  # type: ignore[arg-type]
        unknown = set(value) - set(by_flag)
        if unknown:
            raise ConfigurationError(
                f"unknown {cls.__name__} flag(s): {''.join(sorted(unknown))}"
            )
        return cls(**{by_flag[char]: True for char in value})


@dataclass(frozen=True)
class BlobSasPermissions(_Permissions):
    _order: ClassVar[str] = "racwdxytmei"

    read: bool = _flag("r")
    add: bool = _flag("a")
    create: bool = _flag("c")
    write: bool = _flag("w")
    delete: bool = _flag("d")
    delete_previous_version: bool = _flag("x")
    permanent_delete: bool = _flag("y")
    tag: bool = _flag("t")
    move: bool = _flag("m")
    execute: bool = _flag("e")
    set_immutability_policy: bool = _flag("i")


@dataclass(frozen=True)
class ContainerSasPermissions(_Permissions):
    _order: ClassVar[str] = "racwdxyltfmei"

    read: bool = _flag("r")
    add: bool = _flag("a")
    create: bool = _flag("c")
    write: bool = _flag("w")
    delete: bool = _flag("d")
    delete_previous_version: bool = _flag("x")
    permanent_delete: bool = _flag("y")
    list: bool = _flag("l")
    tag: bool = _flag("t")
    filter_by_tags: bool = _flag("f")
    move: bool = _flag("m")
    execute: bool = _flag("e")
    set_immutability_policy: bool = _flag("i")


@dataclass(frozen=True)
class AccountSasPermissions(_Permissions):
    _order: ClassVar[str] = "rwdxylacuptfi"

    read: bool = _flag("r")
    write: bool = _flag("w")
    delete: bool = _flag("d")
    delete_previous_version: bool = _flag("x")
    permanent_delete: bool = _flag("y")
    list: bool = _flag("l")
    add: bool = _flag("a")
    create: bool = _flag("c")
    update: bool = _flag("u")
    process: bool = _flag("p")
    tag: bool = _flag("t")
    filter_by_tags: bool = _flag("f")
    set_immutability_policy: bool = _flag("i")


@dataclass(frozen=True)
class ResourceTypes(_Permissions):
    _order: ClassVar[str] = "sco"

    service: bool = _flag("s")
    container: bool = _flag("c")
    object: bool = _flag("o")


def _format_time(value: datetime | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def _permission_string(permission: _Permissions | str | None) -> str:
    return "" if permission is None else str(permission)


def _check_access(permission: Any, expiry: Any, policy_id: str | None) -> None:
    if policy_id is None and (not permission or expiry is None):
        raise ConfigurationError("permission and expiry are required without a stored policy id")


def _encode(fields: list[tuple[str, str]]) -> str:
    return urlencode([(k, v) for k, v in fields if v], quote_via=quote, safe="")


def _service_sas(
    credential: SharedKeyCredential,
    *,
    canonical_resource: str,
    resource: str,
    permission: str,
    expiry: datetime | str | None,
    start: datetime | str | None,
    policy_id: str | None,
    ip: str | None,
    protocol: str | None,
    snapshot: str | None,
    encryption_scope: str | None,
    cache_control: str | None,
    content_disposition: str | None,
    content_encoding: str | None,
    content_language: str | None,
    content_type: str | None,
    version: str,
) -> str:
    st, se = _format_time(start), _format_time(expiry)
    string_to_sign = "\n".join(
        [
            permission,
            st,
            se,
            canonical_resource,
            policy_id or "",
            ip or "",
            protocol or "",
            version,
            resource,
            snapshot or "",
            encryption_scope or "",
            cache_control or "",
            content_disposition or "",
            content_encoding or "",
            content_language or "",
            content_type or "",
        ]
    )
    return _encode(
        [
            ("sv", version),
            ("sp", permission),
            ("st", st),
            ("se", se),
            ("sr", resource),
            ("sip", ip or ""),
            ("spr", protocol or ""),
            ("si", policy_id or ""),
            ("ses", encryption_scope or ""),
            ("rscc", cache_control or ""),
            ("rscd", content_disposition or ""),
            ("rsce", content_encoding or ""),
            ("rscl", content_language or ""),
            ("rsct", content_type or ""),
            ("sig", credential.compute_hmac(string_to_sign)),
        ]
    )


def generate_blob_sas(
    credential: SharedKeyCredential,
    container_name: str,
    blob_name: str,
    *,
    permission: BlobSasPermissions | str | None = None,
    expiry: datetime | str | None = None,
    start: datetime | str | None = None,
    policy_id: str | None = None,
    ip: str | None = None,
    protocol: str | None = None,
    snapshot: str | None = None,
    encryption_scope: str | None = None,
    cache_control: str | None = None,
    content_disposition: str | None = None,
    content_encoding: str | None = None,
    content_language: str | None = None,
    content_type: str | None = None,
    version: str = DEFAULT_API_VERSION,
) -> str:
    """Service SAS for one blob (``sr=b``, or ``sr=bs`` for a snapshot)."""
    _check_access(permission, expiry, policy_id)
    return _service_sas(
        credential,
        canonical_resource=f"/blob/{credential.account_name}/{container_name}/{blob_name}",
        resource="bs" if snapshot else "b",
        permission=_permission_string(permission),
        expiry=expiry,
        start=start,
        policy_id=policy_id,
        ip=ip,
        protocol=protocol,
        snapshot=snapshot,
        encryption_scope=encryption_scope,
        cache_control=cache_control,
        content_disposition=content_disposition,
        content_encoding=content_encoding,
        content_language=content_language,
        content_type=content_type,
        version=version,
    )


def generate_container_sas(
    credential: SharedKeyCredential,
    container_name: str,
    *,
    permission: ContainerSasPermissions | str | None = None,
    expiry: datetime | str | None = None,
    start: datetime | str | None = None,
    policy_id: str | None = None,
    ip: str | None = None,
    protocol: str | None = None,
    encryption_scope: str | None = None,
    cache_control: str | None = None,
    content_disposition: str | None = None,
    content_encoding: str | None = None,
    content_language: str | None = None,
    content_type: str | None = None,
    version: str = DEFAULT_API_VERSION,
) -> str:
    _check_access(permission, expiry, policy_id)
    return _service_sas(
        credential,
        canonical_resource=f"/blob/{credential.account_name}/{container_name}",
        resource="c",
        permission=_permission_string(permission),
        expiry=expiry,
        start=start,
        policy_id=policy_id,
        ip=ip,
        protocol=protocol,
        snapshot=None,
        encryption_scope=encryption_scope,
        cache_control=cache_control,
        content_disposition=content_disposition,
        content_encoding=content_encoding,
        content_language=content_language,
        content_type=content_type,
        version=version,
    )


def generate_account_sas(
    credential: SharedKeyCredential,
    *,
    resource_types: ResourceTypes | str,
    permission: AccountSasPermissions | str,
    expiry: datetime | str,
    start: datetime | str | None = None,
    ip: str | None = None,
    protocol: str | None = None,
    encryption_scope: str | None = None,
    services: str = "b",
    version: str = DEFAULT_API_VERSION,
) -> str:
    """Account SAS; ``services`` defaults to the blob service only."""
    sp, srt = str(permission), str(resource_types)
    if not sp or not srt:
        raise ConfigurationError("account SAS needs at least one permission and resource type")
    st, se = _format_time(start), _format_time(expiry)
    string_to_sign = (
        "\n".join(
            [
                credential.account_name,
                sp,
                services,
                srt,
                st,
                se,
                ip or "",
                protocol or "",
                version,
                encryption_scope or "",
            ]
        )
        + "\n"
    )
    return _encode(
        [
            ("sv", version),
            ("ss", services),
            ("srt", srt),
            ("sp", sp),
            ("st", st),
            ("se", se),
            ("sip", ip or ""),
            ("spr", protocol or ""),
            ("ses", encryption_scope or ""),
            ("sig", credential.compute_hmac(string_to_sign)),
        ]
    )


__all__ = [
    "AccountSasPermissions",
    "BlobSasPermissions",
    "ContainerSasPermissions",
    "ResourceTypes",
    "generate_account_sas",
    "generate_blob_sas",
    "generate_container_sas",
]
