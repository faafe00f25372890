"""Provider access tokens handed over by the OAuth flow, encrypted at rest."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select

from controlplane.exceptions import InternalServerError, MissingCredentialsError
from controlplane.models.mirror import MirrorCredential
from controlplane.services.crypto_service import decrypt_credentials, encrypt_credentials
from controlplane.services.datetime_service import format_iso, now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from controlplane.providers.base import Provider

logger = logging.getLogger(__name__)


async def _get_row(
    session: AsyncSession, provider: Provider, workspace_id: str
) -> MirrorCredential | None:
    stmt = select(MirrorCredential).where(
        MirrorCredential.provider == provider.value,
        MirrorCredential.workspace_id == workspace_id,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def store_access_token(
    session: AsyncSession,
    provider: Provider,
    workspace_id: str,
    access_token: str,
    secret_key: str,
) -> None:
    """Create or replace the stored access token for a mirror."""
    encrypted = encrypt_credentials({"access_token": access_token}, secret_key)
    row = await _get_row(session, provider, workspace_id)
    now = format_iso(now_utc())
    if row is None:
        session.add(
            MirrorCredential(
                provider=provider.value,
                workspace_id=workspace_id,
                credentials=encrypted,
                updated_at=now,
            )
        )
    else:
        row.credentials = encrypted
        row.updated_at = now
    await session.commit()


async def get_access_token(
    session: AsyncSession,
    provider: Provider,
    workspace_id: str,
    secret_key: str,
) -> str:
    """Return the decrypted access token for a mirror.

    Raises MissingCredentialsError when none is stored, InternalServerError
    when the stored value cannot be decrypted.
    """
    row = await _get_row(session, provider, workspace_id)
    if row is None:
        msg = f"No {provider.value} credentials stored for workspace {workspace_id}"
        raise MissingCredentialsError(msg)
    try:
        credentials = decrypt_credentials(row.credentials, secret_key)
    except ValueError as exc:
        msg = f"Stored {provider.value} credentials for {workspace_id} are unreadable"
        raise InternalServerError(msg) from exc
    token = credentials.get("access_token", "")
    if not token:
        msg = f"No {provider.value} access token stored for workspace {workspace_id}"
        raise MissingCredentialsError(msg)
    return token


async def delete_credentials(session: AsyncSession, provider: Provider, workspace_id: str) -> None:
    """Remove stored credentials for a mirror. Caller must commit."""
    row = await _get_row(session, provider, workspace_id)
    if row is not None:
        await session.delete(row)
