"""
Shared fixtures for the directory sync test suite.

HTTP traffic is served by httpx.MockTransport; SQLite files live under
pytest's tmp_path.
"""

import time
from typing import Any, Dict, List, Optional

import httpx
import pytest
from azure.core.credentials import AccessToken

from directory_sync.adapters.graph import DirectoryClient
from directory_sync.services.combined import CombinedView
from directory_sync.services.config import SyncSettings
from directory_sync.services.database import DirectoryStore
from directory_sync.services.overrides import OverrideStore

BASE_URL = "https://directory.test"


class FakeCredential:
    """TokenCredential stand-in returning a fixed token."""

    def __init__(self, token: str = "test-token"):
        self.token = token
        self.calls = 0

    def get_token(self, *scopes, **kwargs) -> AccessToken:
        self.calls += 1
        return AccessToken(self.token, int(time.time()) + 3600)

    def close(self) -> None:
        pass


class FakeDirectory:
    """
    In-memory paged directory API.

    Serves ``/v1.0/users`` and ``/v1.0/devices`` in pages of ``page_size``
    with relative ``nextCursor`` values, and ``/v1.0/organization`` for the
    connection check. Paths listed in ``fail`` and (path, offset) pairs in
    ``fail_pages`` answer 500.
    """

    def __init__(self, users: Optional[List[Dict[str, Any]]] = None,
                 devices: Optional[List[Dict[str, Any]]] = None, page_size: int = 2):
        self.data = {"/v1.0/users": list(users or []), "/v1.0/devices": list(devices or [])}
        self.page_size = page_size
        self.fail: set = set()
        self.fail_pages: set = set()
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in self.fail:
            return httpx.Response(500, json={"error": "unavailable"})
        if path == "/v1.0/organization":
            return httpx.Response(200, json={"value": [{"id": "org-1"}]})
        records = self.data.get(path)
        if records is None:
            return httpx.Response(404, json={"error": "not found"})

        start = int(request.url.params.get("skip", "0"))
        if (path, start) in self.fail_pages:
            return httpx.Response(500, json={"error": "unavailable"})
        body: Dict[str, Any] = {"value": records[start:start + self.page_size]}
        if start + self.page_size < len(records):
            body["nextCursor"] = f"{path}?skip={start + self.page_size}"
        return httpx.Response(200, json=body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]


@pytest.fixture
def settings(tmp_path) -> SyncSettings:
    """Enabled settings with credentials and no page delay."""
    return SyncSettings(
        enabled=True,
        tenant_id="tenant",
        client_id="client",
        client_secret="secret",
        base_url=BASE_URL,
        page_delay_ms=0,
        data_dir=str(tmp_path / "data"),
        seed_overrides=False,
    )


@pytest.fixture
def store(settings):
    store = DirectoryStore(settings)
    store.init()
    yield store
    store.shutdown()


@pytest.fixture
def overrides() -> OverrideStore:
    return OverrideStore()


@pytest.fixture
def view(store, overrides) -> CombinedView:
    """Merge view wired as the override store's identity index."""
    view = CombinedView(store, overrides)
    overrides.identity_index = view
    return view


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory(
        users=[
            {"id": "u1", "displayName": "Alice", "mail": "alice@x.com",
             "userPrincipalName": "alice@x.com", "department": "IT",
             "jobTitle": None, "accountEnabled": True, "createdDateTime": "2024-01-02T03:04:05Z"},
            {"id": "u2", "displayName": "Carol", "mail": None,
             "userPrincipalName": "carol@x.com", "department": "Sales",
             "accountEnabled": False},
            {"id": "u3", "displayName": "Dave", "userPrincipalName": "dave@x.com",
             "jobTitle": "Engineer", "accountEnabled": True, "extraField": "dropped"},
        ],
        devices=[
            {"id": "d1", "displayName": "LAPTOP-1", "deviceId": "dev-1",
             "operatingSystem": "Windows", "operatingSystemVersion": "10.0",
             "trustType": "AzureAd", "accountEnabled": True},
        ],
    )


@pytest.fixture
def client(settings, directory) -> DirectoryClient:
    return DirectoryClient(settings, credential=FakeCredential(), transport=directory.transport())
