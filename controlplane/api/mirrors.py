"""Mirror API endpoints: link roots, run sync passes, report status."""

from __future__ import annotations

import logging
from typing import Annotated

import httpx
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from controlplane.api.deps import (
    get_blob_store,
    get_http_client,
    get_provider,
    get_session,
    get_settings,
)
from controlplane.config import Settings
from controlplane.models.mirror import MirrorRecord
from controlplane.providers.base import Provider, ProviderAdapter
from controlplane.providers.registry import create_adapter
from controlplane.schemas.mirror import (
    CredentialsRequest,
    LargeFileResponse,
    LargeFileSyncRequest,
    MirrorLinkRequest,
    MirrorResponse,
    SyncResponse,
)
from controlplane.services.credential_service import get_access_token, store_access_token
from controlplane.services.datetime_service import is_expired
from controlplane.services.mirror_service import (
    LargeFile,
    SyncReport,
    get_mirror,
    get_mirror_status,
    link_mirror,
    run_sync,
    sync_large_files,
    unlink_mirror,
)
from controlplane.storage.blob_store import BlobStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/mirrors", tags=["mirrors"])


def _lease_active(record: MirrorRecord) -> bool:
    return record.lease_token is not None and not is_expired(record.lease_expires_at)


def mirror_response(
    record: MirrorRecord, large_files: list[LargeFile] | None = None
) -> MirrorResponse:
    return MirrorResponse(
        provider=record.provider,
        workspace_id=record.workspace_id,
        root_id=record.root_id,
        root_name=record.root_name,
        root_ref=record.root_ref,
        status=record.status,
        total_files=record.total_files,
        total_bytes=record.total_bytes,
        cache_synced_files=record.cache_synced_files,
        cache_synced_bytes=record.cache_synced_bytes,
        workspace_synced_files=record.workspace_synced_files,
        workspace_synced_bytes=record.workspace_synced_bytes,
        large_files=record.large_files,
        large_bytes=record.large_bytes,
        last_sync_at=record.last_sync_at,
        sync_error=record.sync_error,
        sync_in_progress=_lease_active(record),
        large_file_entries=[
            LargeFileResponse(id=f.id, path=f.path, size=f.size) for f in large_files or []
        ],
    )


def _sync_response(report: SyncReport, record: MirrorRecord) -> SyncResponse:
    return SyncResponse(
        status=report.status,
        fetched=report.fetched,
        reused=report.reused,
        failed=report.failed,
        manifest_written=report.manifest_written,
        replication=report.replication.outcome if report.replication is not None else None,
        mirror=mirror_response(record),
    )


async def _adapter_for(
    session: AsyncSession,
    provider: Provider,
    workspace_id: str,
    client: httpx.AsyncClient,
    settings: Settings,
) -> ProviderAdapter:
    # Unknown mirrors are reported before missing credentials.
    await get_mirror(session, provider, workspace_id)
    token = await get_access_token(session, provider, workspace_id, settings.secret_key)
    return create_adapter(provider, client, token, settings)


@router.put("/{provider}/{workspace_id}", response_model=MirrorResponse)
async def link_mirror_endpoint(
    provider: Annotated[Provider, Depends(get_provider)],
    workspace_id: str,
    body: MirrorLinkRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    store: Annotated[BlobStore, Depends(get_blob_store)],
) -> MirrorResponse:
    """Link a remote root folder or repository to a workspace."""
    record = await link_mirror(
        session,
        store,
        provider,
        workspace_id,
        root_id=body.root_id,
        root_name=body.root_name,
        root_ref=body.root_ref,
    )
    return mirror_response(record)


@router.get("/{provider}/{workspace_id}", response_model=MirrorResponse)
async def get_mirror_endpoint(
    provider: Annotated[Provider, Depends(get_provider)],
    workspace_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
    store: Annotated[BlobStore, Depends(get_blob_store)],
) -> MirrorResponse:
    """Return sync status, progress counters and the files skipped as too large."""
    view = await get_mirror_status(session, store, provider, workspace_id)
    return mirror_response(view.record, view.large_file_entries)


@router.delete("/{provider}/{workspace_id}", status_code=204)
async def unlink_mirror_endpoint(
    provider: Annotated[Provider, Depends(get_provider)],
    workspace_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
    store: Annotated[BlobStore, Depends(get_blob_store)],
) -> None:
    """Unlink a mirror and delete its cached content."""
    await unlink_mirror(session, store, provider, workspace_id)


@router.put("/{provider}/{workspace_id}/credentials", status_code=204)
async def store_credentials_endpoint(
    provider: Annotated[Provider, Depends(get_provider)],
    workspace_id: str,
    body: CredentialsRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> None:
    """Store the provider access token for a mirror."""
    await get_mirror(session, provider, workspace_id)
    await store_access_token(
        session, provider, workspace_id, body.access_token, settings.secret_key
    )


@router.post("/{provider}/{workspace_id}/sync", response_model=SyncResponse)
async def sync_endpoint(
    provider: Annotated[Provider, Depends(get_provider)],
    workspace_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
    store: Annotated[BlobStore, Depends(get_blob_store)],
    client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> SyncResponse:
    """Run one full sync pass."""
    adapter = await _adapter_for(session, provider, workspace_id, client, settings)
    report = await run_sync(session, store, adapter, client, settings, workspace_id)
    record = await get_mirror(session, provider, workspace_id)
    return _sync_response(report, record)


@router.post("/{provider}/{workspace_id}/sync/large-files", response_model=SyncResponse)
async def sync_large_files_endpoint(
    provider: Annotated[Provider, Depends(get_provider)],
    workspace_id: str,
    body: LargeFileSyncRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    store: Annotated[BlobStore, Depends(get_blob_store)],
    client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> SyncResponse:
    """Cache selected files previously skipped for size."""
    adapter = await _adapter_for(session, provider, workspace_id, client, settings)
    report = await sync_large_files(
        session, store, adapter, client, settings, workspace_id, body.file_ids
    )
    record = await get_mirror(session, provider, workspace_id)
    return _sync_response(report, record)
