from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from papertrail.dependencies import get_engine
from papertrail.main import app
from papertrail.routers import maintenance
from papertrail.schemas.session import FlowKind


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    with patch.object(maintenance.settings, "maintenance_token", "admin-token"):
        yield TestClient(app)
    app.dependency_overrides.clear()


class TestPurgeEndpoint:
    def test_requires_token(self, client):
        assert client.post("/maintenance/purge").status_code == 401

    def test_wrong_token(self, client):
        response = client.post("/maintenance/purge", headers={"X-Admin-Token": "nope"})
        assert response.status_code == 401

    def test_purges_expired_records(self, client, repository, deduplicator, clock):
        done = repository.create(1, 2, FlowKind.REPORT, "type")
        repository.complete(done.session_id)
        repository.create(1, 2, FlowKind.DOCUMENT, "select_type")
        deduplicator.claim("old-update")
        clock.advance(hours=25)

        response = client.post("/maintenance/purge", headers={"X-Admin-Token": "admin-token"}, json={"limit": 10})

        assert response.status_code == 200
        assert response.json() == {"success": True, "sessions": 2, "events": 1}

    def test_rejects_bad_limit(self, client):
        response = client.post("/maintenance/purge", headers={"X-Admin-Token": "admin-token"}, json={"limit": 0})
        assert response.status_code == 422


class TestPurgeWithoutToken:
    def test_unconfigured_token_is_server_error(self, engine):
        app.dependency_overrides[get_engine] = lambda: engine
        try:
            with patch.object(maintenance.settings, "maintenance_token", None):
                response = TestClient(app).post("/maintenance/purge", headers={"X-Admin-Token": "x"})
        finally:
            app.dependency_overrides.clear()
        assert response.status_code == 500
