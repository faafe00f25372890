"""Mirror synchronization: record lifecycle, sync passes, and status transitions.

One pass lists the remote tree, classifies every entry against the previous
manifest, streams changed files into the blob cache one at a time, writes the
new manifest, and hands off to the workspace replication step. Progress
counters are committed after every cached entry so clients can poll them.

A per-mirror lease (token + expiry on the record) keeps two passes for the
same (provider, workspace) from interleaving.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx
from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from controlplane.exceptions import (
    CacheWriteError,
    ManifestNotFoundError,
    MirrorChangedError,
    MirrorNotFoundError,
    ProviderError,
    SyncInProgressError,
)
from controlplane.models.mirror import MirrorRecord, MirrorStatus
from controlplane.services.cache_writer import write_content
from controlplane.services.credential_service import delete_credentials
from controlplane.services.datetime_service import format_iso, lease_expiry, now_utc
from controlplane.services.diff_service import (
    FETCH_FAILED_PLACEHOLDER,
    LARGE_FILE_PLACEHOLDER,
    Classification,
    classify_entry,
)
from controlplane.services.manifest_service import (
    CacheStatus,
    Manifest,
    ManifestEntry,
    delete_mirror_blobs,
    file_key,
    load_manifest,
    new_manifest,
    save_manifest,
)
from controlplane.services.replication_service import (
    ReplicationResult,
    get_workspace_session,
    trigger_replication,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from controlplane.config import Settings
    from controlplane.providers.base import Provider, ProviderAdapter
    from controlplane.storage.blob_store import BlobStore

logger = logging.getLogger(__name__)

REPLICATION_FAILED_MESSAGE = "Failed to start workspace sync"

_ENTRY_ERRORS = (ProviderError, CacheWriteError, httpx.HTTPError, ValueError)

# Lease held by relink and unlink while they drop the cached blobs.
MAINTENANCE_LEASE_SECONDS = 300

_TRANSITIONS: dict[MirrorStatus, frozenset[MirrorStatus]] = {
    MirrorStatus.IDLE: frozenset({MirrorStatus.SYNCING_CACHE, MirrorStatus.SYNCING_WORKSPACE}),
    # A crashed pass leaves syncing_cache behind; the next lease holder restarts it.
    MirrorStatus.SYNCING_CACHE: frozenset(
        {MirrorStatus.SYNCING_CACHE, MirrorStatus.SYNCING_WORKSPACE, MirrorStatus.ERROR}
    ),
    MirrorStatus.SYNCING_WORKSPACE: frozenset(
        {
            MirrorStatus.SYNCING_CACHE,
            MirrorStatus.SYNCING_WORKSPACE,
            MirrorStatus.READY,
            MirrorStatus.ERROR,
        }
    ),
    MirrorStatus.READY: frozenset({MirrorStatus.SYNCING_CACHE, MirrorStatus.SYNCING_WORKSPACE}),
    MirrorStatus.ERROR: frozenset({MirrorStatus.SYNCING_CACHE, MirrorStatus.SYNCING_WORKSPACE}),
}


def can_transition(current: MirrorStatus, target: MirrorStatus) -> bool:
    return target in _TRANSITIONS[current]


def transition(record: MirrorRecord, target: MirrorStatus) -> None:
    """Move ``record`` to ``target``. Raises ValueError for an illegal transition."""
    current = MirrorStatus(record.status)
    if not can_transition(current, target):
        msg = f"Illegal mirror status transition: {current} -> {target}"
        raise ValueError(msg)
    record.status = target
    record.updated_at = format_iso(now_utc())


@dataclass
class MirrorCounters:
    """Aggregate counters stored on a mirror record."""

    total_files: int = 0
    total_bytes: int = 0
    cache_synced_files: int = 0
    cache_synced_bytes: int = 0
    workspace_synced_files: int = 0
    workspace_synced_bytes: int = 0
    large_files: int = 0
    large_bytes: int = 0

    @classmethod
    def from_record(cls, record: MirrorRecord) -> MirrorCounters:
        return cls(
            total_files=record.total_files,
            total_bytes=record.total_bytes,
            cache_synced_files=record.cache_synced_files,
            cache_synced_bytes=record.cache_synced_bytes,
            workspace_synced_files=record.workspace_synced_files,
            workspace_synced_bytes=record.workspace_synced_bytes,
            large_files=record.large_files,
            large_bytes=record.large_bytes,
        )

    def apply(self, record: MirrorRecord) -> None:
        record.total_files = self.total_files
        record.total_bytes = self.total_bytes
        record.cache_synced_files = self.cache_synced_files
        record.cache_synced_bytes = self.cache_synced_bytes
        record.workspace_synced_files = self.workspace_synced_files
        record.workspace_synced_bytes = self.workspace_synced_bytes
        record.large_files = self.large_files
        record.large_bytes = self.large_bytes


@dataclass
class SyncReport:
    """Summary of one sync pass or large-file backfill."""

    status: MirrorStatus
    counters: MirrorCounters
    fetched: list[str] = field(default_factory=list)
    reused: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    manifest_written: bool = False
    replication: ReplicationResult | None = None


@dataclass
class LargeFile:
    id: str
    path: str
    size: int


@dataclass
class MirrorStatusView:
    """Mirror record plus the large files awaiting a manual backfill."""

    record: MirrorRecord
    large_file_entries: list[LargeFile]


# ── Record lifecycle ─────────────────────────────────


async def find_mirror(
    session: AsyncSession, provider: Provider, workspace_id: str
) -> MirrorRecord | None:
    stmt = select(MirrorRecord).where(
        MirrorRecord.provider == provider.value,
        MirrorRecord.workspace_id == workspace_id,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_mirror(session: AsyncSession, provider: Provider, workspace_id: str) -> MirrorRecord:
    """Return the mirror record. Raises MirrorNotFoundError when no root is linked."""
    record = await find_mirror(session, provider, workspace_id)
    if record is None:
        msg = f"No {provider.value} root linked for workspace {workspace_id}"
        raise MirrorNotFoundError(msg)
    return record


async def link_mirror(
    session: AsyncSession,
    store: BlobStore,
    provider: Provider,
    workspace_id: str,
    *,
    root_id: str,
    root_name: str,
    root_ref: str | None = None,
) -> MirrorRecord:
    """Link a remote root to a workspace, creating or replacing its mirror record.

    Relinking to a different root drops the old root's cached blobs and resets
    the record to ``idle``. It takes the sync lease to do so, so it raises
    SyncInProgressError while a pass is running; the lease is cleared in the
    same commit that switches the root.
    """
    now = format_iso(now_utc())
    record = await find_mirror(session, provider, workspace_id)
    if record is None:
        record = MirrorRecord(
            provider=provider.value,
            workspace_id=workspace_id,
            root_id=root_id,
            root_name=root_name,
            root_ref=root_ref,
            status=MirrorStatus.IDLE,
            created_at=now,
            updated_at=now,
        )
        session.add(record)
        await session.commit()
        logger.info("Linked %s root %s to workspace %s", provider, root_id, workspace_id)
        return record

    if record.root_id == root_id and record.root_ref == root_ref:
        record.root_name = root_name
        record.updated_at = now
        await session.commit()
        return record

    record_id = record.id
    token = await acquire_lease(session, record, MAINTENANCE_LEASE_SECONDS)
    try:
        deleted = await delete_mirror_blobs(store, provider, workspace_id)
        MirrorCounters().apply(record)
        record.root_id = root_id
        record.root_ref = root_ref
        record.root_name = root_name
        record.status = MirrorStatus.IDLE
        record.sync_error = None
        record.last_sync_at = None
        record.lease_token = None
        record.lease_expires_at = None
        record.updated_at = now
        await session.commit()
    except Exception:
        await release_lease(session, record_id, token)
        raise
    logger.info(
        "Relinked %s mirror for workspace %s to %s; removed %d cached blobs",
        provider,
        workspace_id,
        root_id,
        deleted,
    )
    return record


async def unlink_mirror(
    session: AsyncSession, store: BlobStore, provider: Provider, workspace_id: str
) -> None:
    """Delete a mirror record, its stored credentials, and every cached blob.

    Raises SyncInProgressError while a pass holds the lease.
    """
    record = await get_mirror(session, provider, workspace_id)
    record_id = record.id
    token = await acquire_lease(session, record, MAINTENANCE_LEASE_SECONDS)
    try:
        deleted = await delete_mirror_blobs(store, provider, workspace_id)
        await delete_credentials(session, provider, workspace_id)
        await session.delete(record)
        await session.commit()
    except Exception:
        await release_lease(session, record_id, token)
        raise
    logger.info("Unlinked %s mirror for workspace %s (%d blobs)", provider, workspace_id, deleted)


async def get_mirror_status(
    session: AsyncSession, store: BlobStore, provider: Provider, workspace_id: str
) -> MirrorStatusView:
    """Return the record and its skipped large files, largest first."""
    record = await get_mirror(session, provider, workspace_id)
    manifest = await load_manifest(store, provider, workspace_id)
    large: list[LargeFile] = []
    if manifest is not None:
        large = [
            LargeFile(id=e.id, path=e.path, size=e.size)
            for e in manifest.entries
            if e.cache_status == CacheStatus.SKIPPED_LARGE
        ]
        large.sort(key=lambda f: f.size, reverse=True)
    return MirrorStatusView(record=record, large_file_entries=large)


# ── Lease ────────────────────────────────────────────


async def acquire_lease(session: AsyncSession, record: MirrorRecord, ttl_seconds: int) -> str:
    """Take the mirror's sync lease. Raises SyncInProgressError if a live lease exists."""
    token = uuid.uuid4().hex
    now = now_utc()
    stmt = (
        update(MirrorRecord)
        .where(
            MirrorRecord.id == record.id,
            or_(
                MirrorRecord.lease_token.is_(None),
                MirrorRecord.lease_expires_at.is_(None),
                MirrorRecord.lease_expires_at <= format_iso(now),
            ),
        )
        .values(lease_token=token, lease_expires_at=lease_expiry(ttl_seconds, now=now))
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()
    if result.rowcount != 1:
        msg = f"A {record.provider} sync is already running for workspace {record.workspace_id}"
        raise SyncInProgressError(msg)
    await session.refresh(record)
    return token


async def release_lease(session: AsyncSession, record_id: int, token: str) -> None:
    """Release the lease if ``token`` still holds it.

    Whatever the session has pending is rolled back first, so a pass whose
    last commit failed still gives its lease back. The record, if it is still
    in the identity map, is reloaded.
    """
    stmt = (
        update(MirrorRecord)
        .where(MirrorRecord.id == record_id, MirrorRecord.lease_token == token)
        .values(lease_token=None, lease_expires_at=None)
        .execution_options(synchronize_session=False)
    )
    try:
        await session.rollback()
        await session.execute(stmt)
        await session.commit()
        await session.get(MirrorRecord, record_id, populate_existing=True)
    except SQLAlchemyError:
        logger.error("Failed to release mirror lease %s; it will expire", token, exc_info=True)
        await session.rollback()


async def holds_lease(
    session: AsyncSession,
    record_id: int,
    token: str,
    *,
    root_id: str | None = None,
    root_ref: str | None = None,
) -> bool:
    """Return whether ``token`` still holds the lease (and, if given, the root is unchanged)."""
    stmt = select(MirrorRecord.root_id, MirrorRecord.root_ref).where(
        MirrorRecord.id == record_id, MirrorRecord.lease_token == token
    )
    row = (await session.execute(stmt)).one_or_none()
    if row is None:
        return False
    return root_id is None or (row.root_id, row.root_ref) == (root_id, root_ref)


async def _ensure_lease(
    session: AsyncSession, record_id: int, token: str, root_id: str, root_ref: str | None
) -> None:
    if not await holds_lease(session, record_id, token, root_id=root_id, root_ref=root_ref):
        msg = f"Mirror {record_id} was relinked or unlinked while a pass was running"
        raise MirrorChangedError(msg)


async def _commit_progress(
    session: AsyncSession, record_id: int, token: str, counters: MirrorCounters
) -> None:
    """Publish cache progress, guarded by the lease so a superseded pass stops writing."""
    stmt = (
        update(MirrorRecord)
        .where(MirrorRecord.id == record_id, MirrorRecord.lease_token == token)
        .values(
            cache_synced_files=counters.cache_synced_files,
            cache_synced_bytes=counters.cache_synced_bytes,
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()
    if result.rowcount != 1:
        msg = f"Mirror {record_id} was relinked or unlinked while a pass was running"
        raise MirrorChangedError(msg)


async def _record_failure(
    session: AsyncSession,
    record_id: int,
    token: str,
    previous_counters: MirrorCounters,
    message: str,
) -> None:
    """Move the leased record to ``error`` with the previous pass's counters restored."""
    try:
        await session.rollback()
        if not await holds_lease(session, record_id, token):
            logger.warning("Mirror %s changed during a failed pass; error not recorded", record_id)
            return
        record = await session.get(MirrorRecord, record_id, populate_existing=True)
        if record is None:
            return
        previous_counters.apply(record)
        transition(record, MirrorStatus.ERROR)
        record.sync_error = message
        await session.commit()
    except SQLAlchemyError:
        logger.error("Failed to record sync error for mirror %s", record_id, exc_info=True)
        await session.rollback()


# ── Sync passes ──────────────────────────────────────


def _adapter_root(record: MirrorRecord) -> str:
    if record.root_ref:
        return f"{record.root_id}@{record.root_ref}"
    return record.root_id


async def _fetch_into_cache(
    adapter: ProviderAdapter,
    store: BlobStore,
    adapter_root: str,
    entry: ManifestEntry,
    key: str,
) -> int:
    async with adapter.fetch_content(adapter_root, entry.id) as content:
        declared = max(entry.size, content.size or 0)
        return await write_content(store, key, content, declared)


async def _replicate(
    session: AsyncSession,
    http_client: httpx.AsyncClient,
    settings: Settings,
    record: MirrorRecord,
    provider: Provider,
) -> ReplicationResult | None:
    """Hand the cache to the workspace, or finish the pass when there is none."""
    workspace_session = await get_workspace_session(session, record.workspace_id)
    if workspace_session is None:
        transition(record, MirrorStatus.READY)
        await session.commit()
        return None

    result = await trigger_replication(
        http_client,
        settings,
        workspace_session,
        provider,
        record.workspace_id,
        record.root_name,
    )
    if not result.ok:
        transition(record, MirrorStatus.ERROR)
        record.sync_error = REPLICATION_FAILED_MESSAGE
        await session.commit()
    return result


async def run_sync(
    session: AsyncSession,
    store: BlobStore,
    adapter: ProviderAdapter,
    http_client: httpx.AsyncClient,
    settings: Settings,
    workspace_id: str,
) -> SyncReport:
    """Run one full sync pass for the adapter's provider and ``workspace_id``.

    Raises MirrorNotFoundError, SyncInProgressError, or whatever aborted the
    pass (typically ProviderError from listing). An aborted pass leaves the
    record in ``error`` with the previous pass's counters restored. Raises
    MirrorChangedError, without touching the manifest, when the mirror was
    relinked or unlinked after its lease expired.
    """
    provider = adapter.provider
    record = await get_mirror(session, provider, workspace_id)
    record_id = record.id
    token = await acquire_lease(session, record, settings.mirror_lease_seconds)
    try:
        return await _run_sync_locked(
            session, store, adapter, http_client, settings, record, token
        )
    finally:
        await release_lease(session, record_id, token)


async def _run_sync_locked(
    session: AsyncSession,
    store: BlobStore,
    adapter: ProviderAdapter,
    http_client: httpx.AsyncClient,
    settings: Settings,
    record: MirrorRecord,
    token: str,
) -> SyncReport:
    provider = adapter.provider
    record_id = record.id
    workspace_id = record.workspace_id
    root_id, root_ref = record.root_id, record.root_ref
    previous_counters = MirrorCounters.from_record(record)

    transition(record, MirrorStatus.SYNCING_CACHE)
    record.sync_error = None
    counters = MirrorCounters()
    counters.apply(record)
    await session.commit()
    logger.info("Starting %s sync for workspace %s", provider, workspace_id)

    report = SyncReport(status=MirrorStatus.SYNCING_CACHE, counters=counters)
    adapter_root = _adapter_root(record)
    try:
        tree = await adapter.list_tree(adapter_root)
        previous = await load_manifest(store, provider, workspace_id)
        previous_entries = previous.entry_map() if previous is not None else {}

        manifest = new_manifest(provider, record.root_id, record.root_name)
        manifest.directories = list(tree.directories)
        seen: set[str] = set()
        for remote in tree.entries:
            if remote.id in seen:
                logger.warning("Skipping duplicate %s entry id %s", provider, remote.id)
                continue
            seen.add(remote.id)
            entry = ManifestEntry.from_remote(remote)
            counters.total_files += 1
            counters.total_bytes += entry.size
            await _sync_entry(
                session,
                store,
                adapter,
                settings,
                record,
                token,
                entry,
                previous_entries.get(entry.id),
                adapter_root,
                counters,
                report,
            )
            manifest.entries.append(entry)

        if previous is not None and manifest.same_content(previous):
            logger.info("%s mirror for %s unchanged; manifest kept", provider, workspace_id)
        else:
            await _ensure_lease(session, record_id, token, root_id, root_ref)
            await save_manifest(store, provider, workspace_id, manifest)
            report.manifest_written = True
    except Exception as exc:
        logger.error("%s sync for workspace %s failed: %s", provider, workspace_id, exc)
        await _record_failure(
            session,
            record_id,
            token,
            previous_counters,
            str(exc) or f"{provider.value} sync failed",
        )
        raise

    counters.apply(record)
    record.last_sync_at = format_iso(now_utc())
    transition(record, MirrorStatus.SYNCING_WORKSPACE)
    await session.commit()
    logger.info(
        "Cached %d/%d %s files for workspace %s (%d fetched, %d failed, %d large)",
        counters.cache_synced_files,
        counters.total_files,
        provider,
        workspace_id,
        len(report.fetched),
        len(report.failed),
        counters.large_files,
    )

    report.replication = await _replicate(session, http_client, settings, record, provider)
    report.status = MirrorStatus(record.status)
    return report


async def _sync_entry(
    session: AsyncSession,
    store: BlobStore,
    adapter: ProviderAdapter,
    settings: Settings,
    record: MirrorRecord,
    token: str,
    entry: ManifestEntry,
    previous: ManifestEntry | None,
    adapter_root: str,
    counters: MirrorCounters,
    report: SyncReport,
) -> None:
    provider = adapter.provider
    classification = classify_entry(entry, previous, adapter.is_unsupported)

    if classification == Classification.SKIPPED_UNSUPPORTED:
        entry.cache_status = CacheStatus.SKIPPED_UNSUPPORTED
        entry.placeholder = adapter.unsupported_placeholder
        return
    if classification == Classification.SKIPPED_LARGE:
        entry.cache_status = CacheStatus.SKIPPED_LARGE
        entry.placeholder = LARGE_FILE_PLACEHOLDER
        counters.large_files += 1
        counters.large_bytes += entry.size
        return

    key = file_key(provider, record.workspace_id, entry.id)
    if (
        classification == Classification.CACHED
        and settings.mirror_verify_cached_blobs
        and not await store.head(key)
    ):
        logger.info("Cached blob for %s entry %s is missing; refetching", provider, entry.id)
        classification = Classification.NEEDS_FETCH

    if classification == Classification.NEEDS_FETCH:
        try:
            await _fetch_into_cache(adapter, store, adapter_root, entry, key)
        except _ENTRY_ERRORS as exc:
            logger.warning("Failed to cache %s entry %s: %s", provider, entry.id, exc)
            # Drop any older version cached under the same key.
            await store.delete(key)
            entry.cache_status = CacheStatus.SKIPPED_UNSUPPORTED
            entry.placeholder = FETCH_FAILED_PLACEHOLDER
            report.failed.append(entry.id)
            return
        report.fetched.append(entry.id)
    else:
        report.reused.append(entry.id)

    entry.cache_status = CacheStatus.CACHED
    entry.placeholder = None
    counters.cache_synced_files += 1
    counters.cache_synced_bytes += entry.size
    try:
        await _commit_progress(session, record.id, token, counters)
    except MirrorChangedError:
        await store.delete(key)
        raise


def _count_manifest(manifest: Manifest, counters: MirrorCounters) -> None:
    counters.cache_synced_files = 0
    counters.cache_synced_bytes = 0
    counters.large_files = 0
    counters.large_bytes = 0
    for entry in manifest.entries:
        if entry.cache_status == CacheStatus.CACHED:
            counters.cache_synced_files += 1
            counters.cache_synced_bytes += entry.size
        elif entry.cache_status == CacheStatus.SKIPPED_LARGE:
            counters.large_files += 1
            counters.large_bytes += entry.size


async def sync_large_files(
    session: AsyncSession,
    store: BlobStore,
    adapter: ProviderAdapter,
    http_client: httpx.AsyncClient,
    settings: Settings,
    workspace_id: str,
    file_ids: list[str],
) -> SyncReport:
    """Cache the requested ``skipped_large`` entries and re-run workspace replication.

    Ids that are unknown or not ``skipped_large`` are ignored. Every other
    manifest entry is left as it is. Raises ManifestNotFoundError when no
    pass has written a manifest yet.
    """
    provider = adapter.provider
    record = await get_mirror(session, provider, workspace_id)
    record_id = record.id
    token = await acquire_lease(session, record, settings.mirror_lease_seconds)
    try:
        manifest = await load_manifest(store, provider, workspace_id)
        if manifest is None:
            msg = f"No {provider.value} manifest for workspace {workspace_id}; run a sync first"
            raise ManifestNotFoundError(msg)

        counters = MirrorCounters.from_record(record)
        _count_manifest(manifest, counters)
        report = SyncReport(status=MirrorStatus(record.status), counters=counters)
        entries = manifest.entry_map()
        adapter_root = _adapter_root(record)

        for file_id in dict.fromkeys(file_ids):
            entry = entries.get(file_id)
            if entry is None or entry.cache_status != CacheStatus.SKIPPED_LARGE:
                continue
            key = file_key(provider, workspace_id, entry.id)
            try:
                await _fetch_into_cache(adapter, store, adapter_root, entry, key)
            except _ENTRY_ERRORS as exc:
                logger.warning("Failed to backfill %s entry %s: %s", provider, entry.id, exc)
                report.failed.append(entry.id)
                continue
            entry.cache_status = CacheStatus.CACHED
            entry.placeholder = None
            report.fetched.append(entry.id)
            _count_manifest(manifest, counters)
            await _commit_progress(session, record_id, token, counters)

        if report.fetched:
            await _ensure_lease(session, record_id, token, record.root_id, record.root_ref)
            manifest.updated_at = format_iso(now_utc())
            await save_manifest(store, provider, workspace_id, manifest)
            report.manifest_written = True

        counters.apply(record)
        record.sync_error = None
        record.last_sync_at = format_iso(now_utc())
        transition(record, MirrorStatus.SYNCING_WORKSPACE)
        await session.commit()

        report.replication = await _replicate(session, http_client, settings, record, provider)
        report.status = MirrorStatus(record.status)
        return report
    finally:
        await release_lease(session, record_id, token)


# ── Inbound workspace progress ───────────────────────

_INBOUND_STATUSES = frozenset(
    {MirrorStatus.SYNCING_WORKSPACE, MirrorStatus.READY, MirrorStatus.ERROR}
)


async def update_workspace_progress(
    session: AsyncSession,
    provider: Provider,
    workspace_id: str,
    *,
    files_synced: int | None = None,
    bytes_synced: int | None = None,
    status: MirrorStatus | None = None,
    error: str | None = None,
) -> MirrorRecord:
    """Apply a progress report from the workspace replicating the cache.

    Status reports are only honoured while the record is in
    ``syncing_workspace``; a report arriving after a newer pass has started is
    stale and its status is ignored.
    """
    if status is not None and status not in _INBOUND_STATUSES:
        msg = f"Workspace progress cannot set status {status!r}"
        raise ValueError(msg)
    record = await get_mirror(session, provider, workspace_id)

    if files_synced is not None and bytes_synced is not None:
        record.workspace_synced_files = files_synced
        record.workspace_synced_bytes = bytes_synced
        record.updated_at = format_iso(now_utc())

    if status is not None:
        if record.status == MirrorStatus.SYNCING_WORKSPACE:
            transition(record, status)
            record.sync_error = error or None
        else:
            logger.warning(
                "Ignoring stale workspace status %s for %s/%s (currently %s)",
                status,
                provider,
                workspace_id,
                record.status,
            )
    await session.commit()
    return record
