"""Box adapter using the Box Content API."""

from __future__ import annotations

import logging
import mimetypes
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

BOX_API_URL = "https://api.box.com/2.0"
BOX_NOTE_MIME_TYPE = "application/vnd.box-note"
BOX_WEBLINK_MIME_TYPE = "application/vnd.box-weblink"
_PAGE_LIMIT = 1000
_ITEM_FIELDS = "id,type,name,size,modified_at,sha1"


def _mime_type_for(item: dict[str, Any]) -> str:
    if item.get("type") == "web_link":
        return BOX_WEBLINK_MIME_TYPE
    name = str(item.get("name", ""))
    if name.lower().endswith(".boxnote"):
        return BOX_NOTE_MIME_TYPE
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type or "application/octet-stream"


class BoxAdapter:
    """List and download files below a Box folder."""

    provider = Provider.BOX
    unsupported_placeholder = "Box Notes and web links are not synced."

    def __init__(
        self,
        client: httpx.AsyncClient,
        access_token: str,
        base_url: str = BOX_API_URL,
    ) -> None:
        self._client = client
        self._headers = {"Authorization": f"Bearer {access_token}"}
        self._base_url = base_url.rstrip("/")

    def is_unsupported(self, mime_type: str) -> bool:
        return mime_type in (BOX_NOTE_MIME_TYPE, BOX_WEBLINK_MIME_TYPE)

    async def _list_items(self, folder_id: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        offset = 0
        while True:
            resp = await self._client.get(
                f"{self._base_url}/folders/{quote(folder_id, safe='')}/items",
                params={"fields": _ITEM_FIELDS, "limit": _PAGE_LIMIT, "offset": offset},
                headers=self._headers,
            )
            raise_for_provider_status(resp, "Listing Box folder")
            data = resp.json()
            page = data.get("entries") or []
            items.extend(page)
            offset += len(page)
            total = int(data.get("total_count", 0))
            if not page or offset >= total:
                return items

    async def list_tree(self, root_id: str) -> RemoteTree:
        tree = RemoteTree()
        queue: deque[tuple[str, str]] = deque([(root_id, "")])
        while queue:
            folder_id, folder_path = queue.popleft()
            if folder_path:
                tree.directories.append(folder_path)
            for item in await self._list_items(folder_id):
                item_path = join_path(folder_path, str(item["name"]))
                if item.get("type") == "folder":
                    queue.append((str(item["id"]), item_path))
                    continue
                tree.entries.append(
                    RemoteEntry(
                        id=str(item["id"]),
                        name=str(item["name"]),
                        path=item_path,
                        mime_type=_mime_type_for(item),
                        size=parse_size(item.get("size")),
                        modified_time=item.get("modified_at") or None,
                        content_fingerprint=item.get("sha1") or None,
                    )
                )
        return tree

    @asynccontextmanager
    async def fetch_content(self, root_id: str, entry_id: str) -> AsyncIterator[RemoteContent]:
        async with self._client.stream(
            "GET",
            f"{self._base_url}/files/{quote(entry_id, safe='')}/content",
            headers=self._headers,
            follow_redirects=True,
        ) as resp:
            raise_for_provider_status(resp, "Downloading Box file")
            yield RemoteContent(
                chunks=resp.aiter_bytes(),
                size=content_length_of(resp),
                content_type=content_type_of(resp),
            )
