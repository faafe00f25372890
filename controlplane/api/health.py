"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from controlplane import __version__
from controlplane.api.deps import get_blob_store, get_session
from controlplane.storage.blob_store import BlobStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    cache: str


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    session: Annotated[AsyncSession, Depends(get_session)],
    store: Annotated[BlobStore, Depends(get_blob_store)],
) -> HealthResponse:
    """Liveness plus database and blob cache reachability."""
    db_status = "ok"
    try:
        await session.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Health check database query failed", exc_info=True)
        db_status = "error"

    cache_status = "ok"
    try:
        await store.list_keys("mirror/")
    except Exception:
        logger.warning("Health check blob store listing failed", exc_info=True)
        cache_status = "error"

    healthy = db_status == "ok" and cache_status == "ok"
    return HealthResponse(
        status="ok" if healthy else "degraded",
        version=__version__,
        database=db_status,
        cache=cache_status,
    )
