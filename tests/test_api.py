"""
Tests for the HTTP adapter and service facade.

The app is built with create_app and exercised through TestClient, which
runs the lifespan (store init, override seeding, worker start/stop).
"""

import pytest
from fastapi.testclient import TestClient

from directory_sync.main import build_service, create_app
from directory_sync.services.models import APIResponse


@pytest.fixture
def api(settings, client):
    app_settings = settings.model_copy(update={"enabled": False, "seed_overrides": True})
    app = create_app(settings=app_settings, client=client)
    with TestClient(app) as test_client:
        yield test_client


def test_health(api):
    assert api.get("/api/health").json() == {"status": "ok"}


def test_seeded_override_is_listed(api):
    body = api.get("/api/data/users").json()
    assert body["success"] is True
    assert [u["source"] for u in body["data"]] == ["override"]


def test_create_and_fetch_override(api):
    created = api.post(
        "/api/data/users/overrides",
        json={"displayName": "Bob", "mail": "bob@x.com"},
        headers={"X-User-Id": "admin-1"},
    )
    assert created.status_code == 201
    record = created.json()["data"]
    assert record["createdBy"] == "admin-1"

    fetched = api.get(f"/api/data/users/{record['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["data"]["displayName"] == "Bob"


@pytest.mark.parametrize("payload, status, error", [
    ({"mail": "nobody@x.com"}, 400, "ValidationError"),
    ({"displayName": "X", "mail": "broken"}, 400, "ValidationError"),
    ({"displayName": "Dup", "mail": "sample.user@example.com"}, 409, "ConflictError"),
])
def test_create_override_errors(api, payload, status, error):
    response = api.post("/api/data/users/overrides", json=payload)
    assert response.status_code == status
    body = response.json()
    assert body["success"] is False
    assert body["error"] == error


def test_update_and_delete_override(api):
    device = api.post("/api/data/devices/overrides", json={"displayName": "PC-9"}).json()["data"]

    updated = api.patch(f"/api/data/devices/overrides/{device['id']}", json={"operatingSystem": "Linux"})
    assert updated.json()["data"]["operatingSystem"] == "Linux"

    assert api.delete(f"/api/data/devices/overrides/{device['id']}").status_code == 200
    assert api.delete(f"/api/data/devices/overrides/{device['id']}").status_code == 404


def test_unknown_record_and_kind(api):
    assert api.get("/api/data/users/missing").status_code == 404
    response = api.get("/api/data/printers")
    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"


def test_manual_sync_then_read(api):
    synced = api.post("/api/data/sync")
    assert synced.status_code == 200
    assert synced.json()["data"]["usersCount"] == 3

    users = api.get("/api/data/users", params={"source": "synced", "department": "sales"}).json()["data"]
    assert [u["displayName"] for u in users] == ["Carol"]

    status = api.get("/api/data/sync/status").json()["data"]
    assert status["lastSync"]["success"] is True
    assert status["enabled"] is False
    assert len(api.get("/api/data/sync/history").json()["data"]) == 1

    diagnostics = api.get("/api/data/diagnostics").json()["data"]
    assert {"users", "devices", "sync_status"} <= set(diagnostics["tables"])

    stats = api.get("/api/data/stats", params={"kind": "users"}).json()["data"]
    assert stats["bySource"] == {"synced": 3, "override": 1}

    sources = api.get("/api/data/sources").json()["data"]
    assert next(s for s in sources if s["source"] == "all")["userCount"] == 4


def test_facade_wraps_unexpected_errors(settings, client):
    service = build_service(settings, client)
    service.store.init()
    service.view.get_stats = lambda kind=None: 1 / 0

    response = service.get_stats()
    assert isinstance(response, APIResponse)
    assert response.success is False
    assert response.error == "InternalServerError"


def test_clear_removes_synced_and_override_data(api):
    api.post("/api/data/sync")
    cleared = api.post("/api/data/clear")
    assert cleared.status_code == 200
    assert cleared.json()["success"] is True

    assert api.get("/api/data/users").json()["data"] == []
    assert api.get("/api/data/devices").json()["data"] == []
    tables = api.get("/api/data/diagnostics").json()["data"]["tables"]
    assert "users" not in tables
    assert "devices" not in tables
    assert len(api.get("/api/data/sync/history").json()["data"]) == 1
