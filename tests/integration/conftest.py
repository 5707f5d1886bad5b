"""Fixtures for API tests: the full app wired to an in-memory provider."""

import pytest
from fastapi.testclient import TestClient

from fireframe.config import settings
from fireframe.main import create_app
from tests.conftest import FakeProvider

PASSWORD = "secret123"


@pytest.fixture
def app(provider: FakeProvider, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "local_storage_path", str(tmp_path / "local_storage.json"))
    provider.emit_changes = True
    provider.add_account("alice@example.com", PASSWORD, username="alice")
    return create_app(provider=provider)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def signed_in_client(client):
    response = client.post(
        "/api/v1/auth/login",
        json={"email": "alice@example.com", "password": PASSWORD},
    )
    assert response.status_code == 200
    return client
