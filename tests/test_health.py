"""
Tests for the operational endpoints and backend selection.

Tests cover:
- GET / and GET /health/live
- GET /health/ready for each backend, and 503 when the schema is missing
- GET /metrics exposition
- create_store / create_app wiring from settings
"""

import logging

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text

from geonotes.backends import IndexedBackend, ScanBackend, create_store
from geonotes.config import Settings
from geonotes.logging_utils import REQUEST_LOGGER
from geonotes.main import create_app
from geonotes.metrics import normalize_path
from geonotes.storage import Database

from conftest import TEST_AUTH_SECRET


class TestHealth:
    """Test health and root endpoints."""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json() == {"message": "geonotes API is running"}

    def test_live(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_ready(self, client, store):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"
        assert response.json()["backend"] == store.name

    def test_not_ready_without_schema(self, client, database):
        with database.engine.begin() as conn:
            conn.execute(text("DROP TABLE messages"))

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"


class TestMetrics:
    """Test the Prometheus endpoint."""

    def test_metrics_exposition(self, client, auth_headers):
        client.post("/messages", json={"content": "hi", "latitude": 1, "longitude": 1}, headers=auth_headers())
        client.get("/messages/nearby", params={"latitude": 1, "longitude": 1}, headers=auth_headers())

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "text/plain" in response.headers["content-type"]
        body = response.text
        assert 'message_operations_total{operation="create",result="created"}' in body
        assert "nearby_results_bucket" in body
        assert "http_requests_total" in body

    def test_message_paths_are_collapsed(self):
        assert normalize_path("/messages/3f2a-uuid") == "/messages/{id}"
        assert normalize_path("/messages/nearby?latitude=1") == "/messages/nearby"
        assert normalize_path("/messages/mine") == "/messages/mine"
        assert normalize_path("/messages") == "/messages"


class TestRequestLogging:
    """Test the per-request log line."""

    class _Capture(logging.Handler):
        def __init__(self):
            super().__init__()
            self.records = []

        def emit(self, record):
            self.records.append(record)

    def test_failed_lookup_logged_with_message_fields(self, client, store, auth_headers):
        capture = self._Capture()
        logging.getLogger(REQUEST_LOGGER).addHandler(capture)
        try:
            response = client.get("/messages/missing-id", headers=auth_headers())
        finally:
            logging.getLogger(REQUEST_LOGGER).removeHandler(capture)

        assert response.status_code == 404
        [record] = capture.records
        assert record.levelno == logging.WARNING
        assert record.request_id == response.headers["x-request-id"]
        assert record.path == "/messages/missing-id"
        assert record.status == 404
        assert record.backend == store.name
        assert record.message_id == "missing-id"
        assert record.result == "not_found"


class TestBackendSelection:
    """Test the backend is chosen from settings at startup."""

    @pytest.mark.parametrize("name,cls", [("scan", ScanBackend), ("indexed", IndexedBackend)])
    def test_create_store(self, tmp_path, name, cls):
        settings = Settings(
            AUTH_TOKEN_SECRET=TEST_AUTH_SECRET,
            STORE_BACKEND=name,
            RETENTION_WINDOW_SECONDS=600,
            SCAN_BUCKET_SIZE_METERS=250,
        )
        database = Database(f"sqlite:///{tmp_path / 'db.sqlite'}")

        store = create_store(settings, database)

        assert isinstance(store, cls)
        if name == "scan":
            assert store.retention_seconds == 600
            assert store.bucket_size_m == 250
        else:
            assert store.retention_seconds is None
        database.dispose()

    def test_unknown_backend_rejected_by_settings(self):
        with pytest.raises(ValueError):
            Settings(AUTH_TOKEN_SECRET=TEST_AUTH_SECRET, STORE_BACKEND="mongo")

    @pytest.mark.parametrize("name", ["scan", "indexed"])
    def test_app_builds_its_own_store(self, tmp_path, auth_headers, name):
        settings = Settings(
            AUTH_TOKEN_SECRET=TEST_AUTH_SECRET,
            DATABASE_URL=f"sqlite:///{tmp_path / 'app.sqlite'}",
            STORE_BACKEND=name,
            PURGE_INTERVAL_SECONDS=0,
        )
        app = create_app(settings=settings)

        with TestClient(app) as client:
            created = client.post(
                "/messages",
                json={"content": "hello", "latitude": 10, "longitude": 20},
                headers=auth_headers(),
            )
            found = client.get("/messages/nearby", params={"latitude": 10, "longitude": 20}, headers=auth_headers())
            ready = client.get("/health/ready")

        assert created.status_code == 201
        assert [m["id"] for m in found.json()] == [created.json()["id"]]
        assert ready.json()["backend"] == name
