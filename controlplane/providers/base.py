"""Base protocol and data classes for remote file-tree providers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx

from controlplane.exceptions import ProviderError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from contextlib import AbstractAsyncContextManager

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class Provider(StrEnum):
    """Closed set of providers whose trees can be mirrored."""

    GOOGLE_DRIVE = "google_drive"
    GITHUB = "github"
    BOX = "box"
    ONEDRIVE = "onedrive"


@dataclass
class RemoteEntry:
    """One file in a listed remote tree (a manifest entry before classification)."""

    id: str
    name: str
    path: str
    mime_type: str
    size: int
    modified_time: str | None = None
    content_fingerprint: str | None = None


@dataclass
class RemoteTree:
    """A flattened, fully paged remote tree."""

    directories: list[str] = field(default_factory=list)
    entries: list[RemoteEntry] = field(default_factory=list)


@dataclass
class RemoteContent:
    """An open byte stream for one remote file."""

    chunks: AsyncIterator[bytes]
    size: int | None
    content_type: str = DEFAULT_CONTENT_TYPE


@runtime_checkable
class ProviderAdapter(Protocol):
    """Protocol for provider-specific tree listing and content download."""

    provider: Provider
    unsupported_placeholder: str

    async def list_tree(self, root_id: str) -> RemoteTree:
        """List the whole tree under ``root_id`` breadth-first."""
        ...

    def fetch_content(
        self, root_id: str, entry_id: str
    ) -> AbstractAsyncContextManager[RemoteContent]:
        """Open a byte stream for one entry."""
        ...

    def is_unsupported(self, mime_type: str) -> bool:
        """Return True for provider-native types with no raw bytes."""
        ...


def join_path(parent: str, name: str) -> str:
    """Join a root-relative directory path and a child name."""
    if not parent:
        return name
    return f"{parent}/{name}"


def parse_size(value: object) -> int:
    """Parse a provider-reported size, treating missing or malformed values as 0."""
    if value is None:
        return 0
    try:
        size = int(str(value))
    except ValueError:
        return 0
    return max(size, 0)


def raise_for_provider_status(response: httpx.Response, action: str) -> None:
    """Raise ProviderError for a non-2xx provider response."""
    if response.is_success:
        return
    msg = f"{action} failed: HTTP {response.status_code}"
    raise ProviderError(msg, status_code=response.status_code)


def content_type_of(response: httpx.Response) -> str:
    """Return the response's content type without parameters."""
    raw = response.headers.get("content-type", "")
    media_type = raw.split(";", 1)[0].strip()
    return media_type or DEFAULT_CONTENT_TYPE


def content_length_of(response: httpx.Response) -> int | None:
    """Return the declared Content-Length, if any."""
    raw = response.headers.get("content-length")
    if raw is None or not raw.isdigit():
        return None
    return int(raw)
