"""Tests for streaming remote content into the blob cache."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from controlplane.exceptions import CacheWriteError
from controlplane.providers.base import RemoteContent
from controlplane.services.cache_writer import BUFFER_THRESHOLD, PART_SIZE, write_content
from tests.test_services._mirror_helpers import MemoryBlobStore, iter_chunks

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

MIB = 1024 * 1024


def _content(data: bytes, chunk_size: int = MIB) -> RemoteContent:
    return RemoteContent(chunks=iter_chunks(data, chunk_size), size=len(data))


async def _failing_chunks(data: bytes, fail_after: int) -> AsyncIterator[bytes]:
    yield data[:fail_after]
    msg = "connection reset"
    raise OSError(msg)


class TestBufferedWrite:
    async def test_small_file_uses_single_put(self) -> None:
        store = MemoryBlobStore()
        written = await write_content(store, "k", _content(b"hello"), 5)
        assert written == 5
        assert store.puts == ["k"]
        assert store.uploads == []
        assert store.objects["k"].data == b"hello"

    async def test_size_at_buffer_threshold_is_buffered(self) -> None:
        store = MemoryBlobStore()
        await write_content(store, "k", _content(b"abc"), BUFFER_THRESHOLD)
        assert store.puts == ["k"]
        assert store.uploads == []

    async def test_stream_error_raises_cache_write_error(self) -> None:
        store = MemoryBlobStore()
        content = RemoteContent(chunks=_failing_chunks(b"abcdef", 3), size=6)
        with pytest.raises(CacheWriteError):
            await write_content(store, "k", content, 6)
        assert "k" not in store.objects


class TestMultipartWrite:
    async def test_thirty_mib_splits_into_four_parts(self) -> None:
        store = MemoryBlobStore()
        data = bytes(range(256)) * (30 * MIB // 256)
        written = await write_content(store, "big", _content(data, chunk_size=3 * MIB), len(data))

        assert written == 30 * MIB
        assert store.puts == []
        [upload] = store.uploads
        assert sorted(upload.parts) == [1, 2, 3, 4]
        assert [len(upload.parts[n]) for n in (1, 2, 3, 4)] == [
            PART_SIZE,
            PART_SIZE,
            PART_SIZE,
            6 * MIB,
        ]
        assert upload.completed
        assert store.objects["big"].data == data

    async def test_size_just_over_threshold_uses_multipart(self) -> None:
        store = MemoryBlobStore()
        await write_content(store, "k", _content(b"abc"), BUFFER_THRESHOLD + 1)
        assert store.puts == []
        assert len(store.uploads) == 1

    async def test_part_failure_aborts_and_leaves_no_object(self) -> None:
        store = MemoryBlobStore()
        store.fail_on_part = 3
        data = b"z" * (30 * MIB)
        with pytest.raises(CacheWriteError, match="after 2 parts"):
            await write_content(store, "big", _content(data), len(data))
        [upload] = store.uploads
        assert upload.aborted
        assert not upload.completed
        assert "big" not in store.objects

    async def test_stream_failure_mid_upload_aborts(self) -> None:
        store = MemoryBlobStore()
        content = RemoteContent(chunks=_failing_chunks(b"q" * (9 * MIB), 9 * MIB), size=None)
        with pytest.raises(CacheWriteError):
            await write_content(store, "big", content, 40 * MIB)
        [upload] = store.uploads
        assert upload.aborted
        assert "big" not in store.objects

    async def test_custom_part_size(self) -> None:
        store = MemoryBlobStore()
        await write_content(
            store, "k", _content(b"0123456789", chunk_size=3), 10, buffer_threshold=4, part_size=4
        )
        [upload] = store.uploads
        assert [upload.parts[n] for n in (1, 2, 3)] == [b"0123", b"4567", b"89"]
