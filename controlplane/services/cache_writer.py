"""Write remote file content into the blob cache.

Small files are buffered and stored with one put. Larger files are streamed
through a multipart upload in fixed-size parts so memory stays bounded by one
part plus one incoming chunk.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from controlplane.exceptions import CacheWriteError

if TYPE_CHECKING:
    from controlplane.providers.base import RemoteContent
    from controlplane.storage.blob_store import BlobStore, UploadedPart

logger = logging.getLogger(__name__)

BUFFER_THRESHOLD = 25 * 1024 * 1024  # 25 MiB
PART_SIZE = 8 * 1024 * 1024  # 8 MiB


async def write_content(
    store: BlobStore,
    key: str,
    content: RemoteContent,
    size: int,
    *,
    buffer_threshold: int = BUFFER_THRESHOLD,
    part_size: int = PART_SIZE,
) -> int:
    """Persist ``content`` under ``key``; return the number of bytes written.

    ``size`` is the size declared by the provider listing and selects the
    upload strategy. Raises CacheWriteError on any failure; a multipart upload
    is aborted first so nothing partial is left under ``key``.
    """
    if size <= buffer_threshold:
        return await _write_buffered(store, key, content)
    return await _write_multipart(store, key, content, part_size)


async def _write_buffered(store: BlobStore, key: str, content: RemoteContent) -> int:
    buffer = bytearray()
    try:
        async for chunk in content.chunks:
            buffer.extend(chunk)
        await store.put(key, bytes(buffer), content.content_type)
    except CacheWriteError:
        raise
    except Exception as exc:
        msg = f"Failed to cache {key}: {exc}"
        raise CacheWriteError(msg) from exc
    return len(buffer)


async def _write_multipart(
    store: BlobStore, key: str, content: RemoteContent, part_size: int
) -> int:
    try:
        upload = await store.create_multipart_upload(key, content.content_type)
    except Exception as exc:
        msg = f"Failed to open multipart upload for {key}: {exc}"
        raise CacheWriteError(msg) from exc

    parts: list[UploadedPart] = []
    buffer = bytearray()
    written = 0
    try:
        async for chunk in content.chunks:
            buffer.extend(chunk)
            while len(buffer) >= part_size:
                part = bytes(buffer[:part_size])
                del buffer[:part_size]
                parts.append(await upload.upload_part(len(parts) + 1, part))
                written += len(part)
        if buffer:
            parts.append(await upload.upload_part(len(parts) + 1, bytes(buffer)))
            written += len(buffer)
        await upload.complete(parts)
    except Exception as exc:
        try:
            await upload.abort()
        except Exception:
            logger.warning("Failed to abort multipart upload for %s", key, exc_info=True)
        msg = f"Multipart upload for {key} failed after {len(parts)} parts: {exc}"
        raise CacheWriteError(msg) from exc

    logger.debug("Cached %s in %d parts (%d bytes)", key, len(parts), written)
    return written
