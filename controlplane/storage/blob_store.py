"""Blob store backing the mirror cache: protocol plus a filesystem implementation.

Keys are ``/``-separated relative paths (``mirror/{provider}/{workspace}/...``).
The filesystem store keeps object bytes under ``objects/``, a small JSON
metadata document per object under ``meta/``, and in-flight multipart
uploads under ``multipart/{upload_id}/``.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import shutil
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

_STREAM_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class UploadedPart:
    """Identifier of one uploaded multipart part."""

    part_number: int
    etag: str


@dataclass
class BlobObject:
    """A fully read blob."""

    data: bytes
    content_type: str


@dataclass
class BlobStream:
    """A blob opened for streaming."""

    chunks: AsyncIterator[bytes]
    size: int
    content_type: str


class MultipartUpload(Protocol):
    """Handle for one in-flight multipart upload."""

    key: str

    async def upload_part(self, part_number: int, data: bytes) -> UploadedPart: ...

    async def complete(self, parts: list[UploadedPart]) -> None: ...

    async def abort(self) -> None: ...


class BlobStore(Protocol):
    """Key/value blob store used for manifests and cached file content."""

    async def get(self, key: str) -> BlobObject | None: ...

    async def open_stream(self, key: str) -> BlobStream | None: ...

    async def put(self, key: str, data: bytes, content_type: str) -> None: ...

    async def head(self, key: str) -> bool: ...

    async def create_multipart_upload(self, key: str, content_type: str) -> MultipartUpload: ...

    async def delete(self, key: str) -> None: ...

    async def list_keys(self, prefix: str) -> list[str]: ...


def validate_key(key: str) -> list[str]:
    """Split a blob key into segments, rejecting traversal and empty segments."""
    if not key or key.startswith("/") or "\\" in key or "\x00" in key:
        msg = f"Invalid blob key: {key!r}"
        raise ValueError(msg)
    parts = key.split("/")
    for part in parts:
        if part in ("", ".", ".."):
            msg = f"Invalid blob key: {key!r}"
            raise ValueError(msg)
    return parts


def _atomic_write(target: Path, data: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class LocalBlobStore:
    """Filesystem-backed blob store with atomic writes and multipart staging."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._objects = root / "objects"
        self._meta = root / "meta"
        self._multipart = root / "multipart"

    def ensure_dirs(self) -> None:
        """Create the store's directory layout."""
        for directory in (self._objects, self._meta, self._multipart):
            directory.mkdir(parents=True, exist_ok=True)

    def _object_path(self, key: str) -> Path:
        return self._objects.joinpath(*validate_key(key))

    def _meta_path(self, key: str) -> Path:
        parts = validate_key(key)
        return self._meta.joinpath(*parts[:-1], f"{parts[-1]}.json")

    def _write_meta(self, key: str, content_type: str, size: int, etag: str) -> None:
        meta = {"content_type": content_type, "size": size, "etag": etag}
        _atomic_write(self._meta_path(key), json.dumps(meta).encode())

    def _read_content_type(self, key: str) -> str:
        meta_path = self._meta_path(key)
        try:
            meta = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return "application/octet-stream"
        return str(meta.get("content_type") or "application/octet-stream")

    async def get(self, key: str) -> BlobObject | None:
        path = self._object_path(key)

        def _read() -> BlobObject | None:
            try:
                data = path.read_bytes()
            except FileNotFoundError:
                return None
            return BlobObject(data=data, content_type=self._read_content_type(key))

        return await asyncio.to_thread(_read)

    async def open_stream(self, key: str) -> BlobStream | None:
        path = self._object_path(key)

        def _stat() -> int | None:
            try:
                return path.stat().st_size
            except FileNotFoundError:
                return None

        size = await asyncio.to_thread(_stat)
        if size is None:
            return None
        content_type = await asyncio.to_thread(self._read_content_type, key)

        async def _chunks() -> AsyncIterator[bytes]:
            fh = await asyncio.to_thread(path.open, "rb")
            try:
                while True:
                    chunk = await asyncio.to_thread(fh.read, _STREAM_CHUNK_SIZE)
                    if not chunk:
                        break
                    yield chunk
            finally:
                fh.close()

        return BlobStream(chunks=_chunks(), size=size, content_type=content_type)

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        path = self._object_path(key)

        def _write() -> None:
            _atomic_write(path, data)
            self._write_meta(key, content_type, len(data), hashlib.md5(data).hexdigest())

        await asyncio.to_thread(_write)

    async def head(self, key: str) -> bool:
        return await asyncio.to_thread(self._object_path(key).is_file)

    async def create_multipart_upload(self, key: str, content_type: str) -> LocalMultipartUpload:
        validate_key(key)
        upload_id = uuid.uuid4().hex
        staging = self._multipart / upload_id
        await asyncio.to_thread(staging.mkdir, parents=True)
        logger.debug("Opened multipart upload %s for %s", upload_id, key)
        return LocalMultipartUpload(self, key, content_type, upload_id, staging)

    async def delete(self, key: str) -> None:
        path = self._object_path(key)
        meta_path = self._meta_path(key)

        def _remove() -> None:
            path.unlink(missing_ok=True)
            meta_path.unlink(missing_ok=True)

        await asyncio.to_thread(_remove)

    async def list_keys(self, prefix: str) -> list[str]:
        base = self._objects

        def _walk() -> list[str]:
            keys: list[str] = []
            if not base.exists():
                return keys
            for path in base.rglob("*"):
                if not path.is_file() or path.name.startswith(".tmp-"):
                    continue
                key = path.relative_to(base).as_posix()
                if key.startswith(prefix):
                    keys.append(key)
            return sorted(keys)

        return await asyncio.to_thread(_walk)


class LocalMultipartUpload:
    """Multipart upload staged as numbered part files, assembled on completion."""

    def __init__(
        self,
        store: LocalBlobStore,
        key: str,
        content_type: str,
        upload_id: str,
        staging: Path,
    ) -> None:
        self.key = key
        self.upload_id = upload_id
        self._store = store
        self._content_type = content_type
        self._staging = staging

    def _part_path(self, part_number: int) -> Path:
        return self._staging / f"part-{part_number:05d}"

    async def upload_part(self, part_number: int, data: bytes) -> UploadedPart:
        if part_number < 1:
            msg = f"Part numbers start at 1, got {part_number}"
            raise ValueError(msg)
        if not self._staging.is_dir():
            msg = f"Multipart upload {self.upload_id} is no longer open"
            raise RuntimeError(msg)
        path = self._part_path(part_number)
        await asyncio.to_thread(_atomic_write, path, data)
        return UploadedPart(part_number=part_number, etag=hashlib.md5(data).hexdigest())

    async def complete(self, parts: list[UploadedPart]) -> None:
        numbers = [part.part_number for part in parts]
        if numbers != list(range(1, len(parts) + 1)):
            msg = f"Multipart parts must be numbered 1..N in order, got {numbers}"
            raise ValueError(msg)
        target = self._store._object_path(self.key)

        def _assemble() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".tmp-")
            digest = hashlib.md5()
            size = 0
            try:
                with os.fdopen(fd, "wb") as out:
                    for part in parts:
                        data = self._part_path(part.part_number).read_bytes()
                        if hashlib.md5(data).hexdigest() != part.etag:
                            msg = f"ETag mismatch for part {part.part_number}"
                            raise ValueError(msg)
                        out.write(data)
                        digest.update(data)
                        size += len(data)
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
            self._store._write_meta(
                self.key, self._content_type, size, f"{digest.hexdigest()}-{len(parts)}"
            )
            shutil.rmtree(self._staging, ignore_errors=True)

        await asyncio.to_thread(_assemble)

    async def abort(self) -> None:
        await asyncio.to_thread(shutil.rmtree, self._staging, ignore_errors=True)
        logger.debug("Aborted multipart upload %s for %s", self.upload_id, self.key)
