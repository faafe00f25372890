"""Tests for the internal endpoints used by the workspace collaborator."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from tests.conftest import TEST_INTERNAL_TOKEN, create_test_client
from tests.test_api._fake_remote import ROOT_FOLDER, FakeRemote

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from httpx import AsyncClient

    from controlplane.config import Settings

MIRROR_URL = "/api/mirrors/google_drive/ws-1"
AUTH = {"X-Internal-Token": TEST_INTERNAL_TOKEN}
QUERY = {"provider": "google_drive", "dashboard_id": "ws-1"}


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
async def client(test_settings: Settings, remote: FakeRemote) -> AsyncGenerator[AsyncClient]:
    async with create_test_client(test_settings, remote.transport) as ac:
        yield ac


async def synced_mirror(client: AsyncClient) -> None:
    await client.put(MIRROR_URL, json={"root_id": ROOT_FOLDER, "root_name": "Team Docs"})
    await client.put(f"{MIRROR_URL}/credentials", json={"access_token": "drive-token"})
    resp = await client.post(f"{MIRROR_URL}/sync")
    assert resp.status_code == 200


async def register_session(client: AsyncClient) -> None:
    resp = await client.put(
        "/internal/workspaces/ws-1/session", json={"session_id": "sess-1"}, headers=AUTH
    )
    assert resp.status_code == 200


class TestInternalAuth:
    async def test_missing_token(self, client: AsyncClient) -> None:
        resp = await client.get("/internal/mirror/manifest", params=QUERY)
        assert resp.status_code == 401

    async def test_wrong_token(self, client: AsyncClient) -> None:
        resp = await client.get(
            "/internal/mirror/manifest", params=QUERY, headers={"X-Internal-Token": "nope"}
        )
        assert resp.status_code == 401

    async def test_unconfigured_token_rejects_everything(self, test_settings: Settings) -> None:
        test_settings.internal_token = ""
        async with create_test_client(test_settings) as ac:
            resp = await ac.get(
                "/internal/mirror/manifest", params=QUERY, headers={"X-Internal-Token": ""}
            )
        assert resp.status_code == 401


class TestManifestEndpoint:
    async def test_returns_stored_manifest(self, client: AsyncClient) -> None:
        await synced_mirror(client)
        resp = await client.get("/internal/mirror/manifest", params=QUERY, headers=AUTH)
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/json")
        doc = json.loads(resp.content)
        assert doc["version"] == 1
        assert doc["rootId"] == ROOT_FOLDER
        assert doc["rootPath"] == "google_drive/Team Docs"
        assert doc["directories"] == ["Sub"]
        statuses = {e["id"]: e["cacheStatus"] for e in doc["entries"]}
        assert statuses == {
            "f1": "cached",
            "doc": "skipped_unsupported",
            "big": "skipped_large",
            "f2": "cached",
        }

    async def test_manifest_missing_before_first_pass(self, client: AsyncClient) -> None:
        await client.put(MIRROR_URL, json={"root_id": ROOT_FOLDER, "root_name": "Team Docs"})
        resp = await client.get("/internal/mirror/manifest", params=QUERY, headers=AUTH)
        assert resp.status_code == 404

    async def test_unknown_mirror(self, client: AsyncClient) -> None:
        resp = await client.get("/internal/mirror/manifest", params=QUERY, headers=AUTH)
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Mirror not found"

    async def test_unknown_provider(self, client: AsyncClient) -> None:
        resp = await client.get(
            "/internal/mirror/manifest",
            params={"provider": "dropbox", "dashboard_id": "ws-1"},
            headers=AUTH,
        )
        assert resp.status_code == 404


class TestFileEndpoint:
    async def test_streams_cached_file(self, client: AsyncClient) -> None:
        await synced_mirror(client)
        resp = await client.get(
            "/internal/mirror/file", params={**QUERY, "file_id": "f2"}, headers=AUTH
        )
        assert resp.status_code == 200
        assert resp.content == b"a,b\n1,2"
        assert resp.headers["content-length"] == "7"

    async def test_uncached_file_is_404(self, client: AsyncClient) -> None:
        await synced_mirror(client)
        resp = await client.get(
            "/internal/mirror/file", params={**QUERY, "file_id": "big"}, headers=AUTH
        )
        assert resp.status_code == 404


class TestProgressEndpoint:
    async def test_progress_completes_replication(self, client: AsyncClient) -> None:
        await register_session(client)
        await synced_mirror(client)
        resp = await client.post(
            "/internal/mirror/sync/progress",
            json={**QUERY, "files_synced": 2, "bytes_synced": 12, "status": "ready"},
            headers=AUTH,
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ready"
        assert data["workspace_synced_files"] == 2
        assert data["workspace_synced_bytes"] == 12

    async def test_error_report_records_message(self, client: AsyncClient) -> None:
        await register_session(client)
        await synced_mirror(client)
        resp = await client.post(
            "/internal/mirror/sync/progress",
            json={**QUERY, "status": "error", "error": "disk full"},
            headers=AUTH,
        )
        data = resp.json()
        assert data["status"] == "error"
        assert data["sync_error"] == "disk full"

    async def test_stale_status_ignored_but_counters_applied(self, client: AsyncClient) -> None:
        await synced_mirror(client)
        resp = await client.post(
            "/internal/mirror/sync/progress",
            json={**QUERY, "files_synced": 1, "bytes_synced": 5, "status": "error"},
            headers=AUTH,
        )
        data = resp.json()
        assert data["status"] == "ready"
        assert data["sync_error"] is None
        assert data["workspace_synced_files"] == 1

    async def test_status_outside_workspace_phase_rejected(self, client: AsyncClient) -> None:
        await synced_mirror(client)
        resp = await client.post(
            "/internal/mirror/sync/progress", json={**QUERY, "status": "idle"}, headers=AUTH
        )
        assert resp.status_code == 422

    async def test_negative_counters_rejected(self, client: AsyncClient) -> None:
        await synced_mirror(client)
        resp = await client.post(
            "/internal/mirror/sync/progress",
            json={**QUERY, "files_synced": -1, "bytes_synced": 0},
            headers=AUTH,
        )
        assert resp.status_code == 422

    async def test_unknown_mirror(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/internal/mirror/sync/progress", json={**QUERY, "status": "ready"}, headers=AUTH
        )
        assert resp.status_code == 404


class TestWorkspaceSessionEndpoints:
    async def test_register_and_clear(self, client: AsyncClient) -> None:
        resp = await client.put(
            "/internal/workspaces/ws-1/session",
            json={"session_id": "sess-1", "machine_id": "m-1"},
            headers=AUTH,
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["session_id"] == "sess-1"
        assert data["machine_id"] == "m-1"

        resp = await client.delete("/internal/workspaces/ws-1/session", headers=AUTH)
        assert resp.status_code == 204
        resp = await client.delete("/internal/workspaces/ws-1/session", headers=AUTH)
        assert resp.status_code == 404


class TestHealth:
    async def test_health_ok(self, client: AsyncClient) -> None:
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["database"] == "ok"
        assert data["cache"] == "ok"
        assert data["version"] == "0.1.0"
