"""Database engine, session factory and schema bootstrap for mirror records."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from controlplane.models import Base

if TYPE_CHECKING:
    from controlplane.config import Settings


def sqlite_path(database_url: str) -> Path | None:
    """Return the database file of a SQLite URL, or None for in-memory and other backends."""
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite" or url.database in (None, "", ":memory:"):
        return None
    return Path(url.database)


def create_engine(
    settings: Settings,
) -> tuple[
    AsyncEngine,
    async_sessionmaker[AsyncSession],
]:
    """Create the async engine and a session factory that keeps objects loaded after commit.

    SQLite connections wait up to ``database_busy_timeout`` seconds for a
    competing writer (another pass taking or releasing a lease) instead of
    failing with "database is locked".
    """
    connect_args: dict[str, Any] = {}
    path = sqlite_path(settings.database_url)
    if make_url(settings.database_url).get_backend_name() == "sqlite":
        connect_args["timeout"] = settings.database_busy_timeout
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        connect_args=connect_args,
    )
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine, session_factory


async def create_schema(engine: AsyncEngine) -> None:
    """Create the mirror, credential and workspace-session tables if missing."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
