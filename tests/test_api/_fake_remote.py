"""Fake Google Drive and workspace sandbox served through one httpx MockTransport."""

from __future__ import annotations

import json
from typing import Any

import httpx

from controlplane.providers.google_drive import FOLDER_MIME_TYPE

ROOT_FOLDER = "folder-1"
BIG_FILE_SIZE = 2 * 1024 * 1024 * 1024


class FakeRemote:
    """Serves a small Drive tree plus the sandbox replication endpoint."""

    def __init__(self) -> None:
        self.folders: dict[str, list[dict[str, Any]]] = {
            ROOT_FOLDER: [
                {"id": "sub", "name": "Sub", "mimeType": FOLDER_MIME_TYPE},
                {
                    "id": "f1",
                    "name": "a.txt",
                    "mimeType": "text/plain",
                    "size": "5",
                    "md5Checksum": "m1",
                },
                {
                    "id": "doc",
                    "name": "Notes",
                    "mimeType": "application/vnd.google-apps.document",
                },
                {
                    "id": "big",
                    "name": "video.mp4",
                    "mimeType": "video/mp4",
                    "size": str(BIG_FILE_SIZE),
                    "md5Checksum": "m-big",
                },
            ],
            "sub": [
                {
                    "id": "f2",
                    "name": "b.csv",
                    "mimeType": "text/csv",
                    "size": "7",
                    "md5Checksum": "m2",
                },
            ],
        }
        self.contents: dict[str, bytes] = {
            "f1": b"hello",
            "f2": b"a,b\n1,2",
            "big": b"large-stand-in",
        }
        self.list_status = 200
        self.sandbox_status = 200
        self.sandbox_calls: list[dict[str, Any]] = []
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "sandbox.test":
            self.sandbox_calls.append(json.loads(request.content))
            return httpx.Response(self.sandbox_status)
        if request.url.path == "/drive/v3/files":
            if self.list_status != 200:
                return httpx.Response(self.list_status)
            folder_id = request.url.params["q"].split("'")[1]
            return httpx.Response(200, json={"files": self.folders.get(folder_id, [])})
        entry_id = request.url.path.rsplit("/", 1)[1]
        if entry_id not in self.contents:
            return httpx.Response(404)
        return httpx.Response(
            200,
            content=self.contents[entry_id],
            headers={"Content-Type": "text/plain"},
        )
