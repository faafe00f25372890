"""Change detection: classify listed entries against the previous manifest."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

from controlplane.services.manifest_service import CacheStatus

if TYPE_CHECKING:
    from collections.abc import Callable

    from controlplane.services.manifest_service import ManifestEntry

LARGE_FILE_THRESHOLD = 1024 * 1024 * 1024  # 1 GiB

LARGE_FILE_PLACEHOLDER = "File exceeds auto-sync limit (1GB)."
FETCH_FAILED_PLACEHOLDER = "Failed to download from provider."


class Classification(StrEnum):
    """Outcome of comparing one entry with its previous manifest state."""

    CACHED = "cached"
    NEEDS_FETCH = "needs_fetch"
    SKIPPED_LARGE = "skipped_large"
    SKIPPED_UNSUPPORTED = "skipped_unsupported"


def is_unchanged(entry: ManifestEntry, previous: ManifestEntry) -> bool:
    """Return True when the remote content cannot have changed since ``previous``.

    The content fingerprint decides whenever either side has one; the
    modification time is only consulted when neither does. With neither
    signal available the entry is treated as changed.
    """
    if entry.content_fingerprint is not None or previous.content_fingerprint is not None:
        return entry.content_fingerprint == previous.content_fingerprint
    if entry.modified_time is None and previous.modified_time is None:
        return False
    return entry.modified_time == previous.modified_time


def classify_entry(
    entry: ManifestEntry,
    previous: ManifestEntry | None,
    is_unsupported: Callable[[str], bool],
    *,
    large_file_threshold: int = LARGE_FILE_THRESHOLD,
) -> Classification:
    """Classify a freshly listed entry.

    Unsupported provider-native types are never fetched. Files at or above the
    large-file threshold are skipped even if an earlier pass cached them.
    """
    if is_unsupported(entry.mime_type):
        return Classification.SKIPPED_UNSUPPORTED
    if entry.size >= large_file_threshold:
        return Classification.SKIPPED_LARGE
    if (
        previous is not None
        and previous.cache_status == CacheStatus.CACHED
        and is_unchanged(entry, previous)
    ):
        return Classification.CACHED
    return Classification.NEEDS_FETCH
