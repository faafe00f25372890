"""Mirror manifest: document model, cache key scheme, and persistence in the blob store."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from controlplane.services.datetime_service import format_iso, now_utc

if TYPE_CHECKING:
    from controlplane.providers.base import Provider, RemoteEntry
    from controlplane.storage.blob_store import BlobStore

logger = logging.getLogger(__name__)

MANIFEST_VERSION = 1
MANIFEST_CONTENT_TYPE = "application/json"


class CacheStatus(StrEnum):
    """Cache classification of one manifest entry."""

    CACHED = "cached"
    SKIPPED_LARGE = "skipped_large"
    SKIPPED_UNSUPPORTED = "skipped_unsupported"


@dataclass
class ManifestEntry:
    """One file of a mirrored tree, with its cache classification."""

    id: str
    name: str
    path: str
    mime_type: str
    size: int
    modified_time: str | None = None
    content_fingerprint: str | None = None
    cache_status: CacheStatus = CacheStatus.CACHED
    placeholder: str | None = None

    @classmethod
    def from_remote(cls, entry: RemoteEntry) -> ManifestEntry:
        return cls(
            id=entry.id,
            name=entry.name,
            path=entry.path,
            mime_type=entry.mime_type,
            size=entry.size,
            modified_time=entry.modified_time,
            content_fingerprint=entry.content_fingerprint,
        )

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "mimeType": self.mime_type,
            "size": self.size,
            "modifiedTime": self.modified_time,
            "contentFingerprint": self.content_fingerprint,
            "cacheStatus": str(self.cache_status),
        }
        if self.placeholder is not None:
            data["placeholder"] = self.placeholder
        return data

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> ManifestEntry:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            path=str(data.get("path", "")),
            mime_type=str(data.get("mimeType", "")),
            size=int(data.get("size", 0)),
            modified_time=data.get("modifiedTime"),
            content_fingerprint=data.get("contentFingerprint"),
            cache_status=CacheStatus(data.get("cacheStatus", CacheStatus.CACHED)),
            placeholder=data.get("placeholder"),
        )


@dataclass
class Manifest:
    """Versioned description of the last known state of one mirrored root."""

    root_id: str
    root_name: str
    root_path: str
    updated_at: str
    version: int = MANIFEST_VERSION
    directories: list[str] = field(default_factory=list)
    entries: list[ManifestEntry] = field(default_factory=list)

    def entry_map(self) -> dict[str, ManifestEntry]:
        return {entry.id: entry for entry in self.entries}

    def same_content(self, other: Manifest) -> bool:
        """Return True when both manifests differ at most in ``updated_at``."""
        return replace(self, updated_at="") == replace(other, updated_at="")

    def to_json(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "rootId": self.root_id,
            "rootName": self.root_name,
            "rootPath": self.root_path,
            "updatedAt": self.updated_at,
            "directories": list(self.directories),
            "entries": [entry.to_json() for entry in self.entries],
        }

    def dumps(self) -> bytes:
        return json.dumps(self.to_json(), ensure_ascii=False).encode("utf-8")

    @classmethod
    def loads(cls, raw: bytes) -> Manifest:
        data = json.loads(raw)
        if not isinstance(data, dict):
            msg = "Manifest document must be a JSON object"
            raise ValueError(msg)
        version = int(data.get("version", 0))
        if version != MANIFEST_VERSION:
            msg = f"Unsupported manifest version: {version}"
            raise ValueError(msg)
        return cls(
            version=version,
            root_id=str(data.get("rootId", "")),
            root_name=str(data.get("rootName", "")),
            root_path=str(data.get("rootPath", "")),
            updated_at=str(data.get("updatedAt", "")),
            directories=[str(d) for d in data.get("directories", [])],
            entries=[ManifestEntry.from_json(e) for e in data.get("entries", [])],
        )


def mirror_prefix(provider: Provider, workspace_id: str) -> str:
    """Return the blob-key prefix owned by one (provider, workspace) mirror."""
    return f"mirror/{provider.value}/{quote(workspace_id, safe='')}/"


def manifest_key(provider: Provider, workspace_id: str) -> str:
    return f"{mirror_prefix(provider, workspace_id)}manifest.json"


def file_key(provider: Provider, workspace_id: str, entry_id: str) -> str:
    return f"{mirror_prefix(provider, workspace_id)}files/{quote(entry_id, safe='')}"


def sanitize_path_segment(value: str) -> str:
    """Turn a display name into a single safe path segment."""
    trimmed = value.strip().replace("/", "-").replace("\\", "-")
    if not trimmed or trimmed in (".", ".."):
        return "Mirror"
    return trimmed


def new_manifest(provider: Provider, root_id: str, root_name: str) -> Manifest:
    """Create an empty manifest for a freshly listed root."""
    return Manifest(
        root_id=root_id,
        root_name=root_name,
        root_path=f"{provider.value}/{sanitize_path_segment(root_name)}",
        updated_at=format_iso(now_utc()),
    )


async def load_manifest(
    store: BlobStore, provider: Provider, workspace_id: str
) -> Manifest | None:
    """Load the stored manifest, or None when absent or unreadable.

    An unreadable or outdated manifest is treated as absent so the next pass
    rebuilds it from scratch.
    """
    blob = await store.get(manifest_key(provider, workspace_id))
    if blob is None:
        return None
    try:
        return Manifest.loads(blob.data)
    except (ValueError, KeyError, TypeError) as exc:
        logger.warning(
            "Ignoring unreadable manifest for %s/%s: %s", provider, workspace_id, exc
        )
        return None


async def save_manifest(
    store: BlobStore, provider: Provider, workspace_id: str, manifest: Manifest
) -> None:
    """Replace the stored manifest."""
    await store.put(manifest_key(provider, workspace_id), manifest.dumps(), MANIFEST_CONTENT_TYPE)


async def delete_mirror_blobs(store: BlobStore, provider: Provider, workspace_id: str) -> int:
    """Delete the manifest and every cached blob under the mirror's prefix.

    Returns the number of keys removed.
    """
    keys = await store.list_keys(mirror_prefix(provider, workspace_id))
    manifest = await load_manifest(store, provider, workspace_id)
    if manifest is not None:
        listed = {file_key(provider, workspace_id, entry.id) for entry in manifest.entries}
        keys = sorted(set(keys) | listed)
    deleted = 0
    for key in keys:
        await store.delete(key)
        deleted += 1
    return deleted
