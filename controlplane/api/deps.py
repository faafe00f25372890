"""Shared API dependencies: settings, DB session, blob store, HTTP client, internal auth."""

from __future__ import annotations

import secrets
from collections.abc import AsyncGenerator
from typing import Annotated

import httpx
from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from controlplane.config import Settings
from controlplane.providers.base import Provider
from controlplane.providers.registry import parse_provider
from controlplane.storage.blob_store import BlobStore


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_blob_store(request: Request) -> BlobStore:
    """Get the mirror blob store from app state."""
    store: BlobStore = request.app.state.blob_store
    return store


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Get the shared outbound HTTP client from app state."""
    client: httpx.AsyncClient = request.app.state.http_client
    return client


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


def get_provider(provider: str) -> Provider:
    """Resolve the ``{provider}`` path parameter. Unknown names are 404."""
    try:
        return parse_provider(provider)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


async def require_internal_token(
    settings: Annotated[Settings, Depends(get_settings)],
    x_internal_token: Annotated[str | None, Header()] = None,
) -> None:
    """Require the shared internal token. Raises 401 on mismatch."""
    expected = settings.internal_token
    if (
        not expected
        or x_internal_token is None
        or not secrets.compare_digest(x_internal_token.encode(), expected.encode())
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal token",
        )
