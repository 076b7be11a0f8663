"""
Unit tests for the Print Queue Service API.
Tests all endpoints for correct behavior, status codes, and response formats.
"""
import pytest
from unittest.mock import Mock
from fastapi.testclient import TestClient

from print_queue_service.api.main import app, create_app, global_instances
from print_queue_service.errors import StorageFailure


@pytest.fixture
def client(sqlite_url, monkeypatch):
    """Create an isolated TestClient backed by a fresh SQLite database."""
    monkeypatch.setenv("DATABASE_URL", sqlite_url)
    monkeypatch.setenv("RECONCILER_ENABLED", "false")
    global_instances.clear()
    with TestClient(create_app()) as test_client:
        yield test_client
    global_instances.clear()


@pytest.fixture
def receipt():
    return {"device_id": "D1", "job_data": {"request": "Order #1042"}}


def submit(client, body):
    response = client.post("/print-jobs", json=body)
    assert response.status_code == 200
    return response.json()["job_id"]


def poll(client, device_id="D1"):
    response = client.get("/print-jobs", params={"device_id": device_id})
    assert response.status_code == 200
    return response.json()


def test_expected_routes_exist():
    routes = [route.path for route in app.routes if hasattr(route, 'path')]
    expected_routes = [
        '/health', '/docs', '/print-jobs', '/print-jobs/history',
        '/print-jobs/events', '/print-jobs/{job_id}/retry', '/print-jobs/reconcile',
    ]

    for route in expected_routes:
        assert route in routes, f"Route {route} not found in {routes}"


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["jobs"] == {"pending": 0, "printing": 0, "completed": 0, "failed": 0}
    assert data["reconciler_running"] is False


class TestSubmitEndpoint:
    """POST /print-jobs"""

    def test_submit(self, client, receipt):
        response = client.post("/print-jobs", json=receipt)

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["job_id"]

    @pytest.mark.parametrize("body", [
        {"job_data": {"request": "x"}},
        {"device_id": "D1"},
        {"device_id": "D1", "job_data": {}},
        {"device_id": "D1", "job_data": "not an object"},
    ])
    def test_submit_invalid(self, client, body):
        response = client.post("/print-jobs", json=body)

        assert response.status_code == 400
        assert "error" in response.json()

    def test_submit_storage_failure(self, client, receipt):
        global_instances["job_store"].create_job = Mock(side_effect=StorageFailure("database unavailable"))

        response = client.post("/print-jobs", json=receipt)

        assert response.status_code == 500
        assert response.json() == {"error": "database unavailable"}


class TestPollEndpoint:
    """GET /print-jobs"""

    def test_poll_without_device(self, client):
        response = client.get("/print-jobs")

        assert response.status_code == 400
        assert response.json() == {"error": "device_id parameter required"}

    def test_poll_no_job(self, client):
        assert poll(client) == {"jobReady": False}

    def test_poll_job(self, client, receipt):
        job_id = submit(client, receipt)

        data = poll(client)

        assert data == {
            "jobReady": True,
            "mediaTypes": ["application/vnd.star.starprnt"],
            "jobToken": job_id,
            "request": "Order #1042",
        }
        assert poll(client) == {"jobReady": False}

    def test_poll_by_mac(self, client, receipt):
        job_id = submit(client, receipt)

        response = client.get("/print-jobs", params={"mac": "D1"})

        assert response.json()["jobToken"] == job_id


class TestStatusEndpoint:
    """PUT /print-jobs"""

    def test_completed(self, client, receipt):
        job_id = submit(client, receipt)
        poll(client)

        response = client.put("/print-jobs", json={"jobToken": job_id, "status": "completed"})

        assert response.status_code == 200
        assert response.json() == {"success": True}

    def test_missing_token(self, client):
        response = client.put("/print-jobs", json={"status": "completed"})

        assert response.status_code == 400
        assert response.json() == {"error": "jobToken required"}

    def test_invalid_status(self, client, receipt):
        job_id = submit(client, receipt)
        poll(client)

        response = client.put("/print-jobs", json={"jobToken": job_id, "status": "done"})

        assert response.status_code == 400

    def test_unknown_token(self, client):
        response = client.put("/print-jobs", json={"jobToken": "missing", "status": "completed"})

        assert response.status_code == 404
        assert response.json() == {"error": "Print job missing not found"}

    def test_conflicting_report(self, client, receipt):
        job_id = submit(client, receipt)
        poll(client)
        client.put("/print-jobs", json={"jobToken": job_id, "status": "completed"})

        response = client.put("/print-jobs", json={"jobToken": job_id, "status": "failed", "error": "jam"})

        assert response.status_code == 409

    def test_duplicate_report_is_accepted(self, client, receipt):
        job_id = submit(client, receipt)
        poll(client)
        client.put("/print-jobs", json={"jobToken": job_id, "status": "completed"})

        response = client.put("/print-jobs", json={"jobToken": job_id, "status": "completed"})

        assert response.status_code == 200


class TestConfirmEndpoint:
    """DELETE /print-jobs"""

    def test_confirm(self, client, receipt):
        job_id = submit(client, receipt)
        poll(client)

        response = client.delete("/print-jobs", params={"jobToken": job_id})

        assert response.status_code == 204
        history = client.get("/print-jobs/history").json()
        assert history["jobs"][0]["status"] == "completed"

    def test_confirm_with_token_param(self, client, receipt):
        job_id = submit(client, receipt)
        poll(client)

        assert client.delete("/print-jobs", params={"token": job_id}).status_code == 204

    def test_confirm_without_token(self, client):
        assert client.delete("/print-jobs").status_code == 400

    def test_confirm_unknown(self, client):
        assert client.delete("/print-jobs", params={"jobToken": "missing"}).status_code == 404


class TestHistoryEndpoints:
    """History, events, retry and reconcile endpoints."""

    def test_history(self, client, receipt):
        job_id = submit(client, receipt)
        submit(client, {"device_id": "D2", "job_data": {"request": "Order #1043"}})

        data = client.get("/print-jobs/history", params={"device_id": "D1"}).json()

        assert [job["id"] for job in data["jobs"]] == [job_id]
        assert "payload" not in data["jobs"][0]
        assert data["counts"]["pending"] == 2
        assert data["latest_seq"] == 2

    def test_history_status_filter(self, client, receipt):
        submit(client, receipt)

        assert client.get("/print-jobs/history", params={"status": "failed"}).json()["jobs"] == []
        assert client.get("/print-jobs/history", params={"status": "lost"}).status_code == 400

    def test_events(self, client, receipt):
        job_id = submit(client, receipt)
        poll(client)

        data = client.get("/print-jobs/events", params={"since": 1}).json()

        assert len(data["events"]) == 1
        assert data["events"][0]["job_id"] == job_id
        assert data["events"][0]["new_status"] == "printing"
        assert data["latest_seq"] == 2

    def test_retry_failed_job(self, client, receipt):
        job_id = submit(client, receipt)
        poll(client)
        client.put("/print-jobs", json={"jobToken": job_id, "status": "failed", "error": "paper jam"})

        response = client.post(f"/print-jobs/{job_id}/retry")

        assert response.status_code == 200
        job = response.json()["job"]
        assert job["status"] == "pending"
        assert job["retry_count"] == 1

    def test_retry_errors(self, client, receipt):
        job_id = submit(client, receipt)

        assert client.post(f"/print-jobs/{job_id}/retry").status_code == 409
        assert client.post("/print-jobs/missing/retry").status_code == 404

    def test_reconcile(self, client):
        response = client.post("/print-jobs/reconcile")

        assert response.status_code == 200
        assert response.json() == {
            "enabled": True,
            "retried": 0,
            "skipped": 0,
            "errors": 0,
            "retried_job_ids": [],
            "skipped_job_ids": [],
        }
