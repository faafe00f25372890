"""Internal endpoints used by the workspace collaborator that replicates mirror caches."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from controlplane.api.deps import (
    get_blob_store,
    get_session,
    require_internal_token,
)
from controlplane.api.mirrors import mirror_response
from controlplane.models.mirror import MirrorStatus
from controlplane.providers.base import Provider
from controlplane.providers.registry import parse_provider
from controlplane.schemas.mirror import (
    MirrorResponse,
    WorkspaceProgressRequest,
    WorkspaceSessionRequest,
    WorkspaceSessionResponse,
)
from controlplane.services.manifest_service import MANIFEST_CONTENT_TYPE, file_key, manifest_key
from controlplane.services.mirror_service import get_mirror, update_workspace_progress
from controlplane.services.replication_service import (
    clear_workspace_session,
    register_workspace_session,
)
from controlplane.storage.blob_store import BlobStore

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/internal",
    tags=["internal"],
    dependencies=[Depends(require_internal_token)],
)


def _provider_param(provider: Annotated[str, Query(min_length=1)]) -> Provider:
    try:
        return parse_provider(provider)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.get("/mirror/manifest")
async def get_manifest_endpoint(
    provider: Annotated[Provider, Depends(_provider_param)],
    dashboard_id: Annotated[str, Query(min_length=1)],
    session: Annotated[AsyncSession, Depends(get_session)],
    store: Annotated[BlobStore, Depends(get_blob_store)],
) -> Response:
    """Return the stored manifest document as written by the last pass."""
    await get_mirror(session, provider, dashboard_id)
    blob = await store.get(manifest_key(provider, dashboard_id))
    if blob is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Manifest not found")
    return Response(content=blob.data, media_type=MANIFEST_CONTENT_TYPE)


@router.get("/mirror/file")
async def get_file_endpoint(
    provider: Annotated[Provider, Depends(_provider_param)],
    dashboard_id: Annotated[str, Query(min_length=1)],
    file_id: Annotated[str, Query(min_length=1)],
    session: Annotated[AsyncSession, Depends(get_session)],
    store: Annotated[BlobStore, Depends(get_blob_store)],
) -> StreamingResponse:
    """Stream one cached file."""
    await get_mirror(session, provider, dashboard_id)
    stream = await store.open_stream(file_key(provider, dashboard_id, file_id))
    if stream is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not cached")
    return StreamingResponse(
        stream.chunks,
        media_type=stream.content_type,
        headers={"Content-Length": str(stream.size)},
    )


@router.post("/mirror/sync/progress", response_model=MirrorResponse)
async def sync_progress_endpoint(
    body: WorkspaceProgressRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> MirrorResponse:
    """Record replication progress reported by the workspace."""
    provider = _provider_param(body.provider)
    record = await update_workspace_progress(
        session,
        provider,
        body.dashboard_id,
        files_synced=body.files_synced,
        bytes_synced=body.bytes_synced,
        status=MirrorStatus(body.status) if body.status is not None else None,
        error=body.error,
    )
    return mirror_response(record)


@router.put("/workspaces/{workspace_id}/session", response_model=WorkspaceSessionResponse)
async def register_session_endpoint(
    workspace_id: str,
    body: WorkspaceSessionRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> WorkspaceSessionResponse:
    """Register the downstream session that replicates this workspace's mirrors."""
    row = await register_workspace_session(
        session, workspace_id, body.session_id, body.machine_id
    )
    return WorkspaceSessionResponse(
        workspace_id=row.workspace_id,
        session_id=row.session_id,
        machine_id=row.machine_id,
        updated_at=row.updated_at,
    )


@router.delete("/workspaces/{workspace_id}/session", status_code=204)
async def clear_session_endpoint(
    workspace_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> None:
    """Forget the downstream session for a workspace."""
    if not await clear_workspace_session(session, workspace_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Workspace session not found",
        )
