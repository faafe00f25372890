"""Signal the downstream workspace to pull the mirror cache."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING
from urllib.parse import quote

import httpx
from sqlalchemy import select

from controlplane.models.mirror import WorkspaceSession
from controlplane.services.datetime_service import format_iso, now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from controlplane.config import Settings
    from controlplane.providers.base import Provider

logger = logging.getLogger(__name__)

_TRANSIENT_STATUS_CODES = frozenset({408, 425, 429})


class ReplicationOutcome(StrEnum):
    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"


@dataclass
class ReplicationResult:
    """Outcome of one "pull mirror now" signal."""

    outcome: ReplicationOutcome
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == ReplicationOutcome.SUCCESS


async def get_workspace_session(
    session: AsyncSession, workspace_id: str
) -> WorkspaceSession | None:
    """Return the active downstream session for a workspace, if any."""
    return await session.get(WorkspaceSession, workspace_id)


async def register_workspace_session(
    session: AsyncSession,
    workspace_id: str,
    session_id: str,
    machine_id: str | None = None,
) -> WorkspaceSession:
    """Create or replace the downstream session for a workspace."""
    row = await session.get(WorkspaceSession, workspace_id)
    now = format_iso(now_utc())
    if row is None:
        row = WorkspaceSession(
            workspace_id=workspace_id,
            session_id=session_id,
            machine_id=machine_id,
            updated_at=now,
        )
        session.add(row)
    else:
        row.session_id = session_id
        row.machine_id = machine_id
        row.updated_at = now
    await session.commit()
    return row


async def clear_workspace_session(session: AsyncSession, workspace_id: str) -> bool:
    """Remove the downstream session for a workspace. Returns True if one existed."""
    result = await session.execute(
        select(WorkspaceSession).where(WorkspaceSession.workspace_id == workspace_id)
    )
    row = result.scalar_one_or_none()
    if row is None:
        return False
    await session.delete(row)
    await session.commit()
    return True


async def trigger_replication(
    client: httpx.AsyncClient,
    settings: Settings,
    workspace_session: WorkspaceSession,
    provider: Provider,
    workspace_id: str,
    root_name: str,
) -> ReplicationResult:
    """Send the "pull mirror now" signal to the workspace sandbox.

    Never raises; every failure is reported through the result. Network
    errors, timeouts, 429 and 5xx responses are transient; other non-2xx
    responses are permanent.
    """
    url = (
        f"{settings.sandbox_url.rstrip('/')}/sessions/"
        f"{quote(workspace_session.session_id, safe='')}/mirror/sync"
    )
    headers = {"X-Internal-Token": settings.sandbox_internal_token}
    if workspace_session.machine_id:
        headers["X-Sandbox-Machine-ID"] = workspace_session.machine_id
    payload = {
        "provider": provider.value,
        "dashboard_id": workspace_id,
        "folder_name": root_name,
    }
    try:
        resp = await client.post(
            url,
            json=payload,
            headers=headers,
            timeout=settings.replication_timeout_seconds,
        )
    except httpx.HTTPError as exc:
        logger.warning("Workspace sync signal for %s/%s failed: %s", provider, workspace_id, exc)
        return ReplicationResult(ReplicationOutcome.TRANSIENT_FAILURE, str(exc))

    if resp.is_success:
        logger.info("Workspace sync started for %s/%s", provider, workspace_id)
        return ReplicationResult(ReplicationOutcome.SUCCESS)

    detail = f"sandbox sync failed: {resp.status_code}"
    logger.warning("Workspace sync signal for %s/%s rejected: %s", provider, workspace_id, detail)
    if resp.status_code >= 500 or resp.status_code in _TRANSIENT_STATUS_CODES:
        return ReplicationResult(ReplicationOutcome.TRANSIENT_FAILURE, detail)
    return ReplicationResult(ReplicationOutcome.PERMANENT_FAILURE, detail)
