"""OneDrive adapter using Microsoft Graph."""

from __future__ import annotations

import logging
from collections import deque
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from controlplane.providers.base import (
    Provider,
    RemoteContent,
    RemoteEntry,
    RemoteTree,
    content_length_of,
    content_type_of,
    join_path,
    parse_size,
    raise_for_provider_status,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    import httpx

logger = logging.getLogger(__name__)

GRAPH_API_URL = "https://graph.microsoft.com/v1.0"
ONENOTE_MIME_TYPE = "application/msonenote"
PACKAGE_MIME_TYPE = "application/vnd.ms-onedrive-package"
_SELECT = "id,name,size,lastModifiedDateTime,file,folder,package"


def _fingerprint(item: dict[str, Any]) -> str | None:
    hashes = (item.get("file") or {}).get("hashes") or {}
    for name in ("sha256Hash", "sha1Hash", "quickXorHash"):
        value = hashes.get(name)
        if value:
            return str(value)
    return None


class OneDriveAdapter:
    """List and download files below a OneDrive folder."""

    provider = Provider.ONEDRIVE
    unsupported_placeholder = "OneNote notebooks are not synced."

    def __init__(
        self,
        client: httpx.AsyncClient,
        access_token: str,
        base_url: str = GRAPH_API_URL,
    ) -> None:
        self._client = client
        self._headers = {"Authorization": f"Bearer {access_token}"}
        self._base_url = base_url.rstrip("/")

    def is_unsupported(self, mime_type: str) -> bool:
        return mime_type in (ONENOTE_MIME_TYPE, PACKAGE_MIME_TYPE)

    async def _list_children(self, item_id: str) -> list[dict[str, Any]]:
        children: list[dict[str, Any]] = []
        url: str | None = f"{self._base_url}/me/drive/items/{quote(item_id, safe='')}/children"
        params: dict[str, str] | None = {"$select": _SELECT, "$top": "1000"}
        while url:
            resp = await self._client.get(url, params=params, headers=self._headers)
            raise_for_provider_status(resp, "Listing OneDrive folder")
            data = resp.json()
            children.extend(data.get("value") or [])
            # nextLink already carries the query string
            url = data.get("@odata.nextLink")
            params = None
        return children

    async def list_tree(self, root_id: str) -> RemoteTree:
        tree = RemoteTree()
        queue: deque[tuple[str, str]] = deque([(root_id, "")])
        while queue:
            item_id, folder_path = queue.popleft()
            if folder_path:
                tree.directories.append(folder_path)
            for child in await self._list_children(item_id):
                child_path = join_path(folder_path, str(child["name"]))
                if "folder" in child:
                    queue.append((str(child["id"]), child_path))
                    continue
                if "package" in child:
                    mime_type = PACKAGE_MIME_TYPE
                else:
                    mime_type = (child.get("file") or {}).get("mimeType") or (
                        "application/octet-stream"
                    )
                tree.entries.append(
                    RemoteEntry(
                        id=str(child["id"]),
                        name=str(child["name"]),
                        path=child_path,
                        mime_type=mime_type,
                        size=parse_size(child.get("size")),
                        modified_time=child.get("lastModifiedDateTime") or None,
                        content_fingerprint=_fingerprint(child),
                    )
                )
        return tree

    @asynccontextmanager
    async def fetch_content(self, root_id: str, entry_id: str) -> AsyncIterator[RemoteContent]:
        async with self._client.stream(
            "GET",
            f"{self._base_url}/me/drive/items/{quote(entry_id, safe='')}/content",
            headers=self._headers,
            follow_redirects=True,
        ) as resp:
            raise_for_provider_status(resp, "Downloading OneDrive file")
            yield RemoteContent(
                chunks=resp.aiter_bytes(),
                size=content_length_of(resp),
                content_type=content_type_of(resp),
            )
