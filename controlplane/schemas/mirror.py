"""Mirror API schemas."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class MirrorLinkRequest(BaseModel):
    """Request to link a remote root to a workspace."""

    root_id: str = Field(
        min_length=1,
        description="Provider-specific root id, e.g. a Drive folder id or 'owner/repo' for GitHub",
    )
    root_name: str = Field(min_length=1, description="Display name of the root folder")
    root_ref: str | None = Field(default=None, description="Branch or commit (GitHub only)")


class CredentialsRequest(BaseModel):
    """Access token handed over by the OAuth flow."""

    access_token: str = Field(min_length=1)


class LargeFileResponse(BaseModel):
    id: str
    path: str
    size: int


class MirrorResponse(BaseModel):
    """Mirror record status and progress counters."""

    provider: str
    workspace_id: str
    root_id: str
    root_name: str
    root_ref: str | None = None
    status: str
    total_files: int
    total_bytes: int
    cache_synced_files: int
    cache_synced_bytes: int
    workspace_synced_files: int
    workspace_synced_bytes: int
    large_files: int
    large_bytes: int
    last_sync_at: str | None = None
    sync_error: str | None = None
    sync_in_progress: bool = False
    large_file_entries: list[LargeFileResponse] = Field(default_factory=list)


class SyncResponse(BaseModel):
    """Outcome of a sync pass or large-file backfill."""

    status: str
    fetched: list[str]
    reused: list[str]
    failed: list[str]
    manifest_written: bool
    replication: str | None = None
    mirror: MirrorResponse


class LargeFileSyncRequest(BaseModel):
    """Request to cache selected large files."""

    file_ids: list[str] = Field(min_length=1, description="Manifest entry ids to backfill")


class WorkspaceProgressRequest(BaseModel):
    """Progress report from the workspace replicating a mirror cache."""

    provider: str = Field(min_length=1)
    dashboard_id: str = Field(min_length=1, description="Workspace id")
    files_synced: int | None = Field(default=None, ge=0)
    bytes_synced: int | None = Field(default=None, ge=0)
    status: Literal["syncing_workspace", "ready", "error"] | None = None
    error: str | None = None


class WorkspaceSessionRequest(BaseModel):
    """Downstream workspace session that replicates the mirror cache."""

    session_id: str = Field(min_length=1)
    machine_id: str | None = None


class WorkspaceSessionResponse(BaseModel):
    workspace_id: str
    session_id: str
    machine_id: str | None = None
    updated_at: str
