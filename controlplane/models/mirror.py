"""Mirror record, stored provider credentials, and workspace session models."""

from __future__ import annotations

from enum import StrEnum

from sqlalchemy import CheckConstraint, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from controlplane.models.base import Base
from controlplane.providers.base import Provider


class MirrorStatus(StrEnum):
    """Stage of a mirror's synchronization pipeline."""

    IDLE = "idle"
    SYNCING_CACHE = "syncing_cache"
    SYNCING_WORKSPACE = "syncing_workspace"
    READY = "ready"
    ERROR = "error"


_PROVIDER_VALUES = ", ".join(f"'{p.value}'" for p in Provider)
_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in MirrorStatus)


class MirrorRecord(Base):
    """Sync status and progress for one (provider, workspace) mirror."""

    __tablename__ = "mirror_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String, nullable=False)
    workspace_id: Mapped[str] = mapped_column(String, nullable=False)
    root_id: Mapped[str] = mapped_column(Text, nullable=False)
    root_name: Mapped[str] = mapped_column(Text, nullable=False)
    root_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=MirrorStatus.IDLE)

    total_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cache_synced_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cache_synced_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    workspace_synced_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    workspace_synced_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    large_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    large_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_sync_at: Mapped[str | None] = mapped_column(Text, nullable=True)
    sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    lease_token: Mapped[str | None] = mapped_column(String, nullable=True)
    lease_expires_at: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("provider", "workspace_id"),
        CheckConstraint(f"provider IN ({_PROVIDER_VALUES})", name="ck_mirror_provider"),
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_mirror_status"),
    )


class MirrorCredential(Base):
    """Encrypted provider access token used by sync passes for one mirror."""

    __tablename__ = "mirror_credentials"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String, nullable=False)
    workspace_id: Mapped[str] = mapped_column(String, nullable=False)
    credentials: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (UniqueConstraint("provider", "workspace_id"),)


class WorkspaceSession(Base):
    """Active downstream workspace session that replicates the mirror cache."""

    __tablename__ = "workspace_sessions"

    workspace_id: Mapped[str] = mapped_column(String, primary_key=True)
    session_id: Mapped[str] = mapped_column(String, nullable=False)
    machine_id: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)
