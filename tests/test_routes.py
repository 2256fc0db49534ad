"""Tests for HTTP routes using FastAPI TestClient."""

import uuid
from contextlib import asynccontextmanager
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from hrnotify.audit.models import AuditLog
from hrnotify.config import settings
from hrnotify.database.base import get_db
from hrnotify.errors import TransportError
from hrnotify.queue.models import QueueEntry, QueueStatus


def _make_client(db_session, guard, dispatcher):
    from hrnotify.main import create_app

    @asynccontextmanager
    async def _test_lifespan(app):
        app.state.guard = guard
        app.state.dispatcher = dispatcher
        yield

    def _fake_db():
        yield db_session

    with patch("hrnotify.main.lifespan", _test_lifespan):
        app = create_app()
    app.dependency_overrides[get_db] = _fake_db
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def client(db_session, guard, dispatcher):
    """TestClient with patched lifespan: no migrations, fixtures for guard and dispatcher."""
    with _make_client(db_session, guard, dispatcher) as c:
        yield c


@pytest.fixture
def leave_approved(client, people, leave_payload):
    """Submit a completed leave approval through the catalog endpoint."""

    def _submit(reference_id="LV-100", **overrides):
        body = {
            "reference_id": reference_id,
            "payload": leave_payload,
            "subject_id": str(people.employee),
            "acting_user_id": str(people.manager),
            **overrides,
        }
        return client.post("/api/v1/events/kinds/leave_approved", json=body)

    return _submit


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["db"] == "ok"
        assert data["mail_transport"] == "configured"
        assert data["queue"] == {"pending": 0, "sent": 0, "failed": 0, "cancelled": 0}
        assert "version" in data
        assert "uptime_seconds" in data

    def test_security_headers(self, client):
        response = client.get("/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"

    def test_unknown_path_is_json_404(self, client):
        response = client.get("/api/v1/nope")
        assert response.status_code == 404
        assert "error" in response.json()


class TestEventRoutes:
    def test_catalog_event_enqueues(self, client, leave_approved, db_session):
        response = leave_approved()
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "enqueued"
        assert data["inapp_count"] == 1
        assert db_session.query(QueueEntry).count() == 1

    def test_partial_then_complete(self, client, leave_approved):
        assert leave_approved(is_last_expected_part=False).json()["status"] == "incomplete"
        assert leave_approved().json()["status"] == "enqueued"
        assert leave_approved().json()["status"] == "duplicate_suppressed"

    def test_unknown_kind_is_404(self, client):
        response = client.post("/api/v1/events/kinds/expense_submitted", json={"reference_id": "X-1"})
        assert response.status_code == 404
        assert "expense_submitted" in response.json()["error"]

    def test_raw_event(self, client):
        body = {
            "event": {
                "module": "system",
                "reference_id": "notice-7",
                "kind": "system_notification",
                "recipients": {"to": [{"email": "ops@example.com"}]},
                "payload": {"title": "Maintenance", "message": "Tonight"},
                "priority": "urgent",
            }
        }
        response = client.post("/api/v1/events", json=body)
        assert response.status_code == 200
        assert response.json()["status"] == "enqueued"

    def test_invalid_event_is_422(self, client):
        response = client.post("/api/v1/events", json={"event": {"module": "leave"}})
        assert response.status_code == 422
        assert response.json()["error"] == "Invalid request"

    def test_list_kinds(self, client):
        kinds = {k["kind"]: k for k in client.get("/api/v1/events/kinds").json()["kinds"]}
        assert kinds["leave_submitted"]["to_tags"] == ["manager"]
        assert kinds["kra_evaluated"]["module"] == "performance"

    def test_cancel_is_audited(self, client, leave_approved, db_session):
        leave_approved()
        response = client.post(
            "/api/v1/events/cancel",
            json={"module": "leave", "reference_id": "LV-100"},
            headers={"X-Actor": "leave-service"},
        )
        assert response.json() == {"ok": True, "cancelled": 1}
        log = db_session.query(AuditLog).one()
        assert log.action == "queue_cancel"
        assert log.actor == "leave-service"


class TestQueueRoutes:
    def test_process_sends(self, client, leave_approved, mailer):
        leave_approved()
        response = client.post("/api/v1/queue/process", json={"limit": 5})
        assert response.status_code == 200
        data = response.json()
        assert data["processed"] == 1
        assert data["outcomes"][0]["status"] == "sent"
        assert mailer.sent[0].to == ["eddie.employee@example.com"]

    def test_process_without_body(self, client):
        response = client.post("/api/v1/queue/process")
        assert response.status_code == 200
        assert response.json()["processed"] == 0

    def test_process_rejects_non_pending_filter(self, client):
        response = client.post("/api/v1/queue/process", json={"status_filter": "failed"})
        assert response.status_code == 400
        assert "pending" in response.json()["error"]

    def test_process_without_transport_is_503(self, db_session, guard):
        with _make_client(db_session, guard, None) as c:
            response = c.post("/api/v1/queue/process")
        assert response.status_code == 503

    def test_list_stats_and_detail(self, client, leave_approved):
        entry_id = leave_approved().json()["entry_id"]

        entries = client.get("/api/v1/queue", params={"status": "pending"}).json()["entries"]
        assert [e["id"] for e in entries] == [entry_id]
        assert client.get("/api/v1/queue/stats").json()["stats"]["pending"] == 1

        detail = client.get(f"/api/v1/queue/{entry_id}").json()["entry"]
        assert detail["kind"] == "leave_approved"
        assert detail["recipients"]["resolved"]["to"][0]["email"] == "eddie.employee@example.com"
        assert detail["error_history"] == []

    def test_detail_not_found(self, client):
        assert client.get(f"/api/v1/queue/{uuid.uuid4()}").status_code == 404

    def test_requeue_only_failed(self, client, leave_approved, mailer, db_session):
        entry_id = leave_approved().json()["entry_id"]
        assert client.post(f"/api/v1/queue/{entry_id}/requeue").status_code == 409

        mailer.failures = [TransportError("550 rejected", retryable=False)]
        client.post("/api/v1/queue/process")
        response = client.post(f"/api/v1/queue/{entry_id}/requeue")
        assert response.status_code == 200
        entry = db_session.get(QueueEntry, uuid.UUID(entry_id))
        assert entry.status == QueueStatus.PENDING
        assert db_session.query(AuditLog).filter(AuditLog.action == "queue_requeue").count() == 1


class TestNotificationRoutes:
    def test_inbox_flow(self, client, leave_approved, people):
        leave_approved()
        base = f"/api/v1/notifications/{people.employee}"

        inbox = client.get(base).json()
        assert inbox["unread"] == 1
        notification_id = inbox["notifications"][0]["id"]
        assert inbox["notifications"][0]["title"] == "Leave approved"

        assert client.post(f"/api/v1/notifications/{notification_id}/read").json() == {"ok": True}
        assert client.get(f"{base}/unread-count").json() == {"unread": 0}
        assert client.post(f"{base}/read-all").json() == {"ok": True, "updated": 0}
        assert client.delete(f"{base}/read").json() == {"ok": True, "deleted": 1}
        assert client.get(base).json()["notifications"] == []

    def test_read_unknown_is_404(self, client):
        assert client.post(f"/api/v1/notifications/{uuid.uuid4()}/read").status_code == 404


class TestApiToken:
    def test_token_required_when_configured(self, client):
        with patch.object(settings, "api_token", "s3cret"):
            assert client.get("/api/v1/queue/stats").status_code == 401
            ok = client.get("/api/v1/queue/stats", headers={"X-API-Token": "s3cret"})
        assert ok.status_code == 200

    def test_health_is_open(self, client):
        with patch.object(settings, "api_token", "s3cret"):
            assert client.get("/health").status_code == 200


class TestRateLimitKey:
    def test_keyed_by_actor(self):
        from hrnotify.rate_limit import _caller_key

        request = MagicMock()
        request.headers = {"X-Actor": "leave-scheduler"}
        assert _caller_key(request) == "actor:leave-scheduler"

    def test_falls_back_to_ip(self):
        from hrnotify.rate_limit import _caller_key

        request = MagicMock()
        request.headers = {"X-Forwarded-For": "10.1.2.3"}
        assert _caller_key(request) == "ip:10.1.2.3"
