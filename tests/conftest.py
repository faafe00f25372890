"""Shared test fixtures for the mirror controlplane."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from controlplane.config import Settings
from controlplane.main import create_app
from controlplane.database import create_engine as create_db_engine
from controlplane.database import create_schema
from controlplane.storage.blob_store import LocalBlobStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

TEST_SECRET_KEY = "test-secret-key-with-at-least-32-characters"
TEST_INTERNAL_TOKEN = "test-internal-token-with-at-least-32-chars"
TEST_SANDBOX_URL = "http://sandbox.test"
TEST_SANDBOX_TOKEN = "sandbox-token"


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan because
    ASGITransport does not trigger it. Outbound provider and sandbox calls go
    through ``transport`` (a MockTransport in tests).
    """
    app = create_app(settings)
    settings.validate_runtime_security()

    engine, session_factory = create_db_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory

    await create_schema(engine)

    store = LocalBlobStore(settings.cache_dir)
    store.ensure_dirs()
    app.state.blob_store = store

    outbound_transport = transport or httpx.MockTransport(lambda request: httpx.Response(404))
    async with httpx.AsyncClient(transport=outbound_transport) as http_client:
        app.state.http_client = http_client
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as ac:
            yield ac

    await engine.dispose()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with temporary paths."""
    db_path = tmp_path / "test.db"
    return Settings(
        secret_key=TEST_SECRET_KEY,
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        cache_dir=tmp_path / "cache",
        internal_token=TEST_INTERNAL_TOKEN,
        sandbox_url=TEST_SANDBOX_URL,
        sandbox_internal_token=TEST_SANDBOX_TOKEN,
        google_drive_api_url="https://drive.test/drive/v3",
        github_api_url="https://github.test",
        box_api_url="https://box.test/2.0",
        onedrive_api_url="https://graph.test/v1.0",
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the schema in place."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(
    db_engine: AsyncEngine,
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def blob_store(test_settings: Settings) -> LocalBlobStore:
    """Create a filesystem blob store under the temporary cache directory."""
    store = LocalBlobStore(test_settings.cache_dir)
    store.ensure_dirs()
    return store
