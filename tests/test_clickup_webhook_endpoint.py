import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

from backoffice.core.database import db
from backoffice.main import app, scheduler_service
from backoffice.services import clickup_sync, clickup_webhooks

SECRET = "whsec_test"
WEBHOOK_PATH = "/api/integrations/clickup/webhook"


@pytest.fixture(autouse=True)
def mock_startup(monkeypatch):
    async def fake_connect():
        return None

    async def fake_disconnect():
        return None

    async def fake_run_migrations():
        return None

    async def fake_start():
        return None

    async def fake_stop():
        return None

    monkeypatch.setattr(db, "connect", fake_connect)
    monkeypatch.setattr(db, "disconnect", fake_disconnect)
    monkeypatch.setattr(db, "run_migrations", fake_run_migrations)
    monkeypatch.setattr(scheduler_service, "start", fake_start)
    monkeypatch.setattr(scheduler_service, "stop", fake_stop)


@pytest.fixture
def recorded(monkeypatch):
    calls = {"events": [], "state": [], "processed": [], "syncs": []}

    async def fake_create_event(*, event_type, payload, headers):
        calls["events"].append({"event_type": event_type, "payload": payload, "headers": headers})
        return 41

    async def fake_upsert_state(integration="clickup", **fields):
        calls["state"].append(fields)

    async def fake_mark_processed(event_id):
        calls["processed"].append(event_id)

    async def fake_sync(*, source, trigger_meta=None):
        calls["syncs"].append({"source": source, "trigger_meta": trigger_meta})
        return {
            "ok": True,
            "runId": 7,
            "counts": {"lists": 1, "tasksFetched": 2, "tasksUpserted": 2, "errors": 0},
        }

    monkeypatch.setattr(clickup_webhooks.events_repo, "create_event", fake_create_event)
    monkeypatch.setattr(clickup_webhooks.events_repo, "mark_processed", fake_mark_processed)
    monkeypatch.setattr(clickup_webhooks.state_repo, "upsert_state", fake_upsert_state)
    monkeypatch.setattr(clickup_sync, "sync_clickup_crm", fake_sync)
    return calls


@pytest.fixture
def with_secret(monkeypatch):
    monkeypatch.setenv("CLICKUP_WEBHOOK_SECRET", SECRET)


def _hmac_signature(body: bytes) -> str:
    return hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()


def test_webhook_status_route_answers_get():
    with TestClient(app) as client:
        response = client.get(WEBHOOK_PATH)

    assert response.status_code == 200
    assert response.json() == {"ok": True, "route": "clickup-webhook"}


def test_webhook_with_valid_hmac_logs_event_and_syncs(recorded, with_secret):
    body = json.dumps({"event": "taskUpdated", "task_id": "abc"}).encode()

    with TestClient(app) as client:
        response = client.post(
            WEBHOOK_PATH,
            content=body,
            headers={
                "Content-Type": "application/json",
                "X-Signature": _hmac_signature(body),
                "X-Request-Id": "req-1",
            },
        )

    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert data["synced"] is True
    assert data["result"]["runId"] == 7
    event = recorded["events"][0]
    assert event["event_type"] == "taskUpdated"
    assert event["payload"] == {"event": "taskUpdated", "task_id": "abc"}
    assert event["headers"]["x-request-id"] == "req-1"
    assert all(key.startswith("x-") for key in event["headers"])
    assert "last_webhook_at" in recorded["state"][0]
    assert recorded["syncs"] == [{"source": "webhook", "trigger_meta": {"event": "taskUpdated"}}]
    assert recorded["processed"] == [41]


def test_webhook_accepts_legacy_body_plus_secret_digest(recorded, with_secret):
    body = b'{"type": "taskCreated"}'
    signature = hashlib.sha256(body + SECRET.encode()).hexdigest()

    with TestClient(app) as client:
        response = client.post(
            WEBHOOK_PATH,
            content=body,
            headers={"X-ClickUp-Signature": signature},
        )

    assert response.status_code == 200
    assert recorded["events"][0]["event_type"] == "taskCreated"


@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"X-Signature": "0" * 64},
        {"X-Signature": hmac.new(b"other", b"{}", hashlib.sha256).hexdigest()},
    ],
)
def test_webhook_rejects_missing_or_wrong_signature(recorded, with_secret, headers):
    with TestClient(app) as client:
        response = client.post(WEBHOOK_PATH, content=b"{}", headers=headers)

    assert response.status_code == 401
    assert recorded["events"] == []
    assert recorded["syncs"] == []


def test_webhook_without_secret_accepts_unsigned_requests(recorded):
    with TestClient(app) as client:
        response = client.post(WEBHOOK_PATH, content=b"")

    assert response.status_code == 200
    assert recorded["events"][0]["event_type"] == "unknown"
    assert recorded["events"][0]["payload"] == {}


def test_webhook_rejects_invalid_json(recorded):
    with TestClient(app) as client:
        response = client.post(WEBHOOK_PATH, content=b"{not json")

    assert response.status_code == 400
    assert recorded["events"] == []


def test_webhook_returns_500_when_event_cannot_be_logged(recorded, monkeypatch):
    async def failing_create_event(**kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(clickup_webhooks.events_repo, "create_event", failing_create_event)

    with TestClient(app) as client:
        response = client.post(WEBHOOK_PATH, content=b'{"event": "taskDeleted"}')

    assert response.status_code == 500
    assert response.json()["detail"] == "disk full"
    assert recorded["syncs"] == []


def test_webhook_sync_failure_still_acknowledges(recorded, monkeypatch):
    async def failing_sync(*, source, trigger_meta=None):
        raise RuntimeError("ClickUp API 503: unavailable")

    monkeypatch.setattr(clickup_sync, "sync_clickup_crm", failing_sync)

    with TestClient(app) as client:
        response = client.post(WEBHOOK_PATH, content=b'{"event": "taskMoved"}')

    assert response.status_code == 200
    assert response.json() == {
        "ok": True,
        "synced": False,
        "warning": "ClickUp API 503: unavailable",
    }
    assert len(recorded["events"]) == 1
    assert recorded["processed"] == []
