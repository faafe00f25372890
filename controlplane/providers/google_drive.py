"""Google Drive adapter using the Drive v3 REST API."""

from __future__ import annotations

import logging
from collections import deque
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING
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

DRIVE_API_URL = "https://www.googleapis.com/drive/v3"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
NATIVE_MIME_PREFIX = "application/vnd.google-apps"
_LIST_FIELDS = "nextPageToken,files(id,name,mimeType,size,modifiedTime,md5Checksum)"


class GoogleDriveAdapter:
    """List and download files below a Drive folder."""

    provider = Provider.GOOGLE_DRIVE
    unsupported_placeholder = "Google Docs files are not synced yet."

    def __init__(
        self,
        client: httpx.AsyncClient,
        access_token: str,
        base_url: str = DRIVE_API_URL,
    ) -> None:
        self._client = client
        self._headers = {"Authorization": f"Bearer {access_token}"}
        self._base_url = base_url.rstrip("/")

    def is_unsupported(self, mime_type: str) -> bool:
        return mime_type.startswith(NATIVE_MIME_PREFIX)

    async def _list_children(self, folder_id: str) -> list[dict[str, str]]:
        files: list[dict[str, str]] = []
        page_token: str | None = None
        escaped_id = folder_id.replace("\\", "\\\\").replace("'", "\\'")
        while True:
            params = {
                "q": f"'{escaped_id}' in parents and trashed = false",
                "pageSize": "1000",
                "fields": _LIST_FIELDS,
                "supportsAllDrives": "true",
                "includeItemsFromAllDrives": "true",
            }
            if page_token:
                params["pageToken"] = page_token
            resp = await self._client.get(
                f"{self._base_url}/files", params=params, headers=self._headers
            )
            raise_for_provider_status(resp, "Listing Google Drive folder")
            data = resp.json()
            files.extend(data.get("files") or [])
            page_token = data.get("nextPageToken")
            if not page_token:
                return files

    async def list_tree(self, root_id: str) -> RemoteTree:
        tree = RemoteTree()
        queue: deque[tuple[str, str]] = deque([(root_id, "")])
        while queue:
            folder_id, folder_path = queue.popleft()
            if folder_path:
                tree.directories.append(folder_path)
            for child in await self._list_children(folder_id):
                child_path = join_path(folder_path, child["name"])
                if child.get("mimeType") == FOLDER_MIME_TYPE:
                    queue.append((child["id"], child_path))
                    continue
                tree.entries.append(
                    RemoteEntry(
                        id=child["id"],
                        name=child["name"],
                        path=child_path,
                        mime_type=child.get("mimeType") or "application/octet-stream",
                        size=parse_size(child.get("size")),
                        modified_time=child.get("modifiedTime") or None,
                        content_fingerprint=child.get("md5Checksum") or None,
                    )
                )
        logger.debug(
            "Listed Drive folder %s: %d files, %d folders",
            root_id,
            len(tree.entries),
            len(tree.directories),
        )
        return tree

    @asynccontextmanager
    async def fetch_content(self, root_id: str, entry_id: str) -> AsyncIterator[RemoteContent]:
        async with self._client.stream(
            "GET",
            f"{self._base_url}/files/{quote(entry_id, safe='')}",
            params={"alt": "media", "supportsAllDrives": "true"},
            headers=self._headers,
        ) as resp:
            raise_for_provider_status(resp, "Downloading Google Drive file")
            yield RemoteContent(
                chunks=resp.aiter_bytes(),
                size=content_length_of(resp),
                content_type=content_type_of(resp),
            )
