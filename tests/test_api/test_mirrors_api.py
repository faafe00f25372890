"""Integration tests for the mirror API endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from controlplane.providers.base import Provider
from controlplane.services.mirror_service import acquire_lease, get_mirror
from tests.conftest import TEST_INTERNAL_TOKEN, create_test_client
from tests.test_api._fake_remote import BIG_FILE_SIZE, ROOT_FOLDER, FakeRemote

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from httpx import AsyncClient

    from controlplane.config import Settings

MIRROR_URL = "/api/mirrors/google_drive/ws-1"


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
async def client(test_settings: Settings, remote: FakeRemote) -> AsyncGenerator[AsyncClient]:
    async with create_test_client(test_settings, remote.transport) as ac:
        yield ac


async def link(client: AsyncClient) -> None:
    resp = await client.put(MIRROR_URL, json={"root_id": ROOT_FOLDER, "root_name": "Team Docs"})
    assert resp.status_code == 200


async def link_with_token(client: AsyncClient) -> None:
    await link(client)
    resp = await client.put(f"{MIRROR_URL}/credentials", json={"access_token": "drive-token"})
    assert resp.status_code == 204


class TestLinkAndStatus:
    async def test_link_creates_idle_mirror(self, client: AsyncClient) -> None:
        resp = await client.put(
            MIRROR_URL, json={"root_id": ROOT_FOLDER, "root_name": "Team Docs"}
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "idle"
        assert data["root_id"] == ROOT_FOLDER
        assert data["total_files"] == 0
        assert data["sync_in_progress"] is False

    async def test_get_status(self, client: AsyncClient) -> None:
        await link(client)
        resp = await client.get(MIRROR_URL)
        assert resp.status_code == 200
        assert resp.json()["root_name"] == "Team Docs"

    async def test_unlinked_mirror_is_404(self, client: AsyncClient) -> None:
        resp = await client.get(MIRROR_URL)
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Mirror not found"

    async def test_unknown_provider_is_404(self, client: AsyncClient) -> None:
        resp = await client.put(
            "/api/mirrors/dropbox/ws-1", json={"root_id": "x", "root_name": "X"}
        )
        assert resp.status_code == 404

    async def test_empty_root_id_rejected(self, client: AsyncClient) -> None:
        resp = await client.put(MIRROR_URL, json={"root_id": "", "root_name": "X"})
        assert resp.status_code == 422

    async def test_malformed_github_root_rejected_on_sync(self, client: AsyncClient) -> None:
        url = "/api/mirrors/github/ws-1"
        await client.put(url, json={"root_id": "not a repo", "root_name": "Repo"})
        await client.put(f"{url}/credentials", json={"access_token": "gh"})
        resp = await client.post(f"{url}/sync")
        assert resp.status_code == 422
        assert "Invalid GitHub repository id" in resp.json()["detail"]

    async def test_unlink(self, client: AsyncClient) -> None:
        await link_with_token(client)
        await client.post(f"{MIRROR_URL}/sync")
        resp = await client.delete(MIRROR_URL)
        assert resp.status_code == 204
        assert (await client.get(MIRROR_URL)).status_code == 404


class TestCredentials:
    async def test_credentials_for_unlinked_mirror(self, client: AsyncClient) -> None:
        resp = await client.put(f"{MIRROR_URL}/credentials", json={"access_token": "tok"})
        assert resp.status_code == 404

    async def test_sync_without_credentials(self, client: AsyncClient) -> None:
        await link(client)
        resp = await client.post(f"{MIRROR_URL}/sync")
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Provider credentials not configured"


class TestSync:
    async def test_full_pass_without_workspace(self, client: AsyncClient) -> None:
        await link_with_token(client)
        resp = await client.post(f"{MIRROR_URL}/sync")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ready"
        assert sorted(data["fetched"]) == ["f1", "f2"]
        assert data["failed"] == []
        assert data["manifest_written"] is True
        assert data["replication"] is None

        mirror = data["mirror"]
        assert mirror["total_files"] == 4
        assert mirror["total_bytes"] == 5 + 7 + BIG_FILE_SIZE
        assert mirror["cache_synced_files"] == 2
        assert mirror["cache_synced_bytes"] == 12
        assert mirror["large_files"] == 1
        assert mirror["large_bytes"] == BIG_FILE_SIZE
        assert mirror["last_sync_at"] is not None
        assert mirror["sync_in_progress"] is False

    async def test_status_lists_large_files(self, client: AsyncClient) -> None:
        await link_with_token(client)
        await client.post(f"{MIRROR_URL}/sync")
        resp = await client.get(MIRROR_URL)
        assert resp.json()["large_file_entries"] == [
            {"id": "big", "path": "video.mp4", "size": BIG_FILE_SIZE}
        ]

    async def test_second_pass_reuses_cache(self, client: AsyncClient) -> None:
        await link_with_token(client)
        await client.post(f"{MIRROR_URL}/sync")
        data = (await client.post(f"{MIRROR_URL}/sync")).json()
        assert data["fetched"] == []
        assert sorted(data["reused"]) == ["f1", "f2"]
        assert data["manifest_written"] is False

    async def test_listing_failure_is_502_and_recorded(
        self, client: AsyncClient, remote: FakeRemote
    ) -> None:
        await link_with_token(client)
        remote.list_status = 500
        resp = await client.post(f"{MIRROR_URL}/sync")
        assert resp.status_code == 502

        status = (await client.get(MIRROR_URL)).json()
        assert status["status"] == "error"
        assert "HTTP 500" in status["sync_error"]
        assert status["sync_in_progress"] is False

    async def test_replication_triggered_for_registered_workspace(
        self, client: AsyncClient, remote: FakeRemote
    ) -> None:
        await link_with_token(client)
        await client.put(
            "/internal/workspaces/ws-1/session",
            json={"session_id": "sess-1"},
            headers={"X-Internal-Token": TEST_INTERNAL_TOKEN},
        )
        data = (await client.post(f"{MIRROR_URL}/sync")).json()
        assert data["status"] == "syncing_workspace"
        assert data["replication"] == "success"
        assert remote.sandbox_calls == [
            {"provider": "google_drive", "dashboard_id": "ws-1", "folder_name": "Team Docs"}
        ]

    async def test_replication_failure_marks_error(
        self, client: AsyncClient, remote: FakeRemote
    ) -> None:
        await link_with_token(client)
        await client.put(
            "/internal/workspaces/ws-1/session",
            json={"session_id": "sess-1"},
            headers={"X-Internal-Token": TEST_INTERNAL_TOKEN},
        )
        remote.sandbox_status = 500
        data = (await client.post(f"{MIRROR_URL}/sync")).json()
        assert data["status"] == "error"
        assert data["replication"] == "transient_failure"
        assert data["mirror"]["sync_error"] == "Failed to start workspace sync"

    async def test_concurrent_pass_is_409(
        self, client: AsyncClient, test_settings: Settings
    ) -> None:
        await link_with_token(client)
        engine = create_async_engine(test_settings.database_url)
        try:
            factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with factory() as session:
                record = await get_mirror(session, Provider.GOOGLE_DRIVE, "ws-1")
                await acquire_lease(session, record, 600)
        finally:
            await engine.dispose()

        assert (await client.get(MIRROR_URL)).json()["sync_in_progress"] is True
        resp = await client.post(f"{MIRROR_URL}/sync")
        assert resp.status_code == 409
        assert resp.json()["detail"] == "Sync already in progress"

        resp = await client.put(MIRROR_URL, json={"root_id": "other-folder", "root_name": "Other"})
        assert resp.status_code == 409
        assert (await client.delete(MIRROR_URL)).status_code == 409
        data = (await client.get(MIRROR_URL)).json()
        assert data["root_id"] == ROOT_FOLDER


class TestLargeFileSync:
    async def test_requires_manifest(self, client: AsyncClient) -> None:
        await link_with_token(client)
        resp = await client.post(f"{MIRROR_URL}/sync/large-files", json={"file_ids": ["big"]})
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Manifest not found"

    async def test_empty_selection_rejected(self, client: AsyncClient) -> None:
        await link_with_token(client)
        resp = await client.post(f"{MIRROR_URL}/sync/large-files", json={"file_ids": []})
        assert resp.status_code == 422

    async def test_backfills_selected_file(self, client: AsyncClient) -> None:
        await link_with_token(client)
        await client.post(f"{MIRROR_URL}/sync")
        resp = await client.post(
            f"{MIRROR_URL}/sync/large-files", json={"file_ids": ["big", "unknown"]}
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["fetched"] == ["big"]
        assert data["manifest_written"] is True
        mirror = data["mirror"]
        assert mirror["large_files"] == 0
        assert mirror["cache_synced_files"] == 3

        status = (await client.get(MIRROR_URL)).json()
        assert status["large_file_entries"] == []
