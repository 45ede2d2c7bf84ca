"""
tests/test_main.py
Unit tests for bpm_portal/main.py — SQLite variant endpoints.
"""

import sqlite3
import threading
import time
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def client():
    from bpm_portal.main import app

    with TestClient(app) as test_client:
        yield test_client


def _create(client, **fields):
    body = {"id": "T-1", "title": "Fix login", **fields}
    response = client.post("/api/tickets", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["tickets"] == 0
    assert data["database"].endswith("portal.sqlite3")


def test_index_serves_html(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert "<html" in response.text


def test_index_read_error_returns_500(client, monkeypatch, tmp_path):
    monkeypatch.setenv("PORTAL_INDEX_PATH", str(tmp_path / "missing.html"))
    response = client.get("/")
    assert response.status_code == 500
    assert response.text == "Internal Server Error"


def test_create_ticket_applies_defaults(client):
    ticket = _create(client)
    assert ticket == {
        "id": "T-1",
        "title": "Fix login",
        "description": "",
        "type": "feature",
        "priority": "medium",
        "status": "open",
        "area": "",
        "subarea": "",
        "assignee": "",
        "files": "",
        "createdAt": ticket["createdAt"],
        "updatedAt": ticket["createdAt"],
    }


def test_create_ticket_requires_id(client):
    response = client.post("/api/tickets", json={"title": "No id"})
    assert response.status_code == 400
    assert "id" in response.json()["error"]


def test_create_ticket_requires_title(client):
    response = client.post("/api/tickets", json={"id": "T-9"})
    assert response.status_code == 400
    assert "title" in response.json()["error"]


def test_create_duplicate_ticket_returns_409(client):
    _create(client)
    response = client.post("/api/tickets", json={"id": "T-1", "title": "again"})
    assert response.status_code == 409
    assert "T-1" in response.json()["error"]


def test_create_ticket_rejects_malformed_json(client):
    response = client.post(
        "/api/tickets",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON body."}


def test_create_ticket_logs_client_activity(client):
    _create(client, _activity={"action": "created", "ticketId": "T-1", "title": "Fix login"})
    activity = client.get("/api/activity").json()
    assert len(activity) == 1
    assert activity[0]["action"] == "created"
    assert activity[0]["ticketId"] == "T-1"
    assert set(activity[0]) == {"action", "ticketId", "title", "time"}


def test_list_tickets(client):
    _create(client, createdAt="2020-01-01T00:00:00.000Z")
    _create(client, id="T-2", createdAt="2020-02-01T00:00:00.000Z")
    ids = [ticket["id"] for ticket in client.get("/api/tickets").json()]
    assert ids == ["T-2", "T-1"]


def test_update_ticket_changes_only_supplied_fields(client):
    _create(
        client,
        priority="high",
        assignee="sam",
        createdAt="2020-01-01T00:00:00.000Z",
        updatedAt="2020-01-01T00:00:00.000Z",
    )
    response = client.put("/api/tickets/T-1", json={"status": "in-progress", "title": None})
    assert response.status_code == 200
    ticket = response.json()
    assert ticket["status"] == "in-progress"
    assert ticket["title"] == "Fix login"
    assert ticket["priority"] == "high"
    assert ticket["assignee"] == "sam"
    assert ticket["createdAt"] == "2020-01-01T00:00:00.000Z"
    assert ticket["updatedAt"] != "2020-01-01T00:00:00.000Z"


def test_update_ticket_with_activity(client):
    _create(client)
    client.put("/api/tickets/T-1", json={"status": "done", "_activity": {"action": "closed"}})
    assert client.get("/api/activity").json()[0]["action"] == "closed"


def test_update_unknown_ticket_returns_404(client):
    response = client.put("/api/tickets/nope", json={"title": "x"})
    assert response.status_code == 404
    assert response.json() == {"error": "Ticket not found"}


def test_path_id_is_percent_decoded(client):
    _create(client, id="T 1")
    response = client.put("/api/tickets/T%201", json={"status": "done"})
    assert response.status_code == 200
    assert response.json()["id"] == "T 1"


def test_delete_ticket(client):
    _create(client)
    response = client.request("DELETE", "/api/tickets/T-1", json={"_activity": {"action": "deleted"}})
    assert response.status_code == 200
    assert response.json() == {"ok": True, "deleted": "T-1"}
    assert client.get("/api/tickets").json() == []
    assert client.get("/api/activity").json()[0]["action"] == "deleted"


def test_delete_tolerates_malformed_body(client):
    _create(client)
    response = client.request(
        "DELETE",
        "/api/tickets/T-1",
        content=b"{oops",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 200


def test_delete_unknown_ticket_returns_404_and_keeps_tickets(client):
    _create(client)
    response = client.delete("/api/tickets/missing")
    assert response.status_code == 404
    assert response.json() == {"error": "Ticket not found"}
    assert [ticket["id"] for ticket in client.get("/api/tickets").json()] == ["T-1"]


def test_activity_endpoint_caps_at_hundred(client):
    store = client.app.state.store
    for index in range(150):
        store.append_activity({"action": "tick", "title": f"entry-{index}"})
    activity = client.get("/api/activity").json()
    assert len(activity) == 100
    assert activity[0]["title"] == "entry-149"
    assert activity[-1]["title"] == "entry-50"


def test_full_sync_then_read_returns_snapshot(client):
    _create(client, id="OLD")
    ticket_a = {
        "id": "A",
        "title": "Alpha",
        "description": "first",
        "type": "bug",
        "priority": "high",
        "status": "open",
        "area": "web",
        "subarea": "auth",
        "assignee": "kim",
        "files": "a.py",
        "createdAt": "2026-03-02T00:00:00.000Z",
        "updatedAt": "2026-03-02T00:00:00.000Z",
    }
    ticket_b = {**ticket_a, "id": "B", "title": "Beta", "createdAt": "2026-03-01T00:00:00.000Z"}
    entry = {"action": "created", "ticketId": "A", "title": "Alpha", "time": "2026-03-02T00:00:00.000Z"}

    response = client.put("/api/data", json={"tickets": [ticket_a, ticket_b], "activity": [entry]})
    assert response.status_code == 200
    assert response.json() == {"ok": True}

    assert client.get("/api/data").json() == {
        "tickets": [ticket_a, ticket_b],
        "activity": [entry],
        "kbNotes": {},
    }


def test_full_sync_with_empty_body_clears_everything(client):
    _create(client, _activity={"action": "created"})
    assert client.put("/api/data").status_code == 200
    assert client.get("/api/data").json() == {"tickets": [], "activity": [], "kbNotes": {}}


def test_full_sync_rejects_malformed_json(client):
    _create(client)
    response = client.put(
        "/api/data", content=b"[1, 2", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400
    assert len(client.get("/api/tickets").json()) == 1


def test_settings_defaults(client):
    assert client.get("/api/settings").json() == {
        "theme": "marshmallow",
        "hasAnthropicKey": False,
        "anthropicKeyHint": "",
        "hasOpenAIKey": False,
        "openaiKeyHint": "",
    }


def test_settings_masks_keys(client):
    secret = "sk-ant-REDACTED"
    openai_secret = "sk-proj-anothersecret-1234"
    response = client.put(
        "/api/settings",
        json={"theme": "midnight", "anthropic_api_key": secret, "openai_api_key": openai_secret},
    )
    assert response.json() == {"ok": True}

    response = client.get("/api/settings")
    data = response.json()
    assert data["theme"] == "midnight"
    assert data["hasAnthropicKey"] is True
    assert data["anthropicKeyHint"] == "sk-ant-•••WXYZ"
    assert data["hasOpenAIKey"] is True
    assert data["openaiKeyHint"] == "sk-•••1234"
    assert secret not in response.text
    assert openai_secret not in response.text


def test_settings_empty_key_removes_it(client):
    client.put("/api/settings", json={"anthropic_api_key": "sk-ant-abcd", "openai_api_key": "sk-efgh"})
    client.put("/api/settings", json={"anthropic_api_key": "", "openai_api_key": None})
    data = client.get("/api/settings").json()
    assert data["hasAnthropicKey"] is False
    assert data["hasOpenAIKey"] is False


def test_settings_omitted_key_is_kept(client):
    client.put("/api/settings", json={"anthropic_api_key": "sk-ant-abcd"})
    client.put("/api/settings", json={"theme": "dark"})
    assert client.get("/api/settings").json()["hasAnthropicKey"] is True


def test_settings_hint_hides_short_keys(client):
    client.put("/api/settings", json={"anthropic_api_key": "abcd", "openai_api_key": "wxyz"})
    response = client.get("/api/settings")
    data = response.json()
    assert data["hasAnthropicKey"] is True
    assert data["anthropicKeyHint"] == "sk-ant-•••"
    assert data["openaiKeyHint"] == "sk-•••"
    assert "abcd" not in response.text
    assert "wxyz" not in response.text


def test_write_waiting_on_lock_does_not_stall_other_requests(client):
    blocker = sqlite3.connect(
        client.app.state.store.db_path, isolation_level=None, check_same_thread=False
    )
    blocker.execute("BEGIN IMMEDIATE")
    release = threading.Timer(2.0, lambda: blocker.execute("ROLLBACK"))
    responses = []
    writer = threading.Thread(
        target=lambda: responses.append(client.put("/api/settings", json={"theme": "dusk"}))
    )
    try:
        release.start()
        writer.start()
        time.sleep(0.3)
        started = time.monotonic()
        response = client.get("/api/activity")
        elapsed = time.monotonic() - started
    finally:
        release.join()
        writer.join(timeout=10)
        blocker.close()

    assert response.status_code == 200
    assert elapsed < 0.5
    assert responses[0].json() == {"ok": True}
    assert client.get("/api/settings").json()["theme"] == "dusk"


def test_cors_headers_on_responses(client):
    response = client.get("/api/tickets")
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-allow-methods"] == "GET, POST, PUT, DELETE, OPTIONS"
    assert response.headers["access-control-allow-headers"] == "Content-Type"


@pytest.mark.parametrize("path", ["/api/tickets", "/api/tickets/T-1", "/anything/else"])
def test_options_preflight_returns_204(client, path):
    response = client.options(path)
    assert response.status_code == 204
    assert response.headers["access-control-allow-origin"] == "*"


@pytest.mark.parametrize(
    ("method", "path"),
    [
        ("GET", "/api/nope"),
        ("GET", "/api/tickets/"),
        ("PATCH", "/api/tickets/T-1"),
        ("POST", "/health"),
        ("GET", "/api/tickets/T-1/extra"),
    ],
)
def test_unmatched_routes_return_not_found(client, method, path):
    response = client.request(method, path)
    assert response.status_code == 404
    assert response.json() == {"error": "Not found"}
    assert response.headers["access-control-allow-origin"] == "*"


def test_unexpected_error_returns_500_with_message(client):
    from bpm_portal.storage.sqlite_store import PortalStore

    with patch.object(PortalStore, "list_tickets", side_effect=Exception("disk on fire")):
        response = client.get("/api/tickets")
    assert response.status_code == 500
    assert response.json() == {"error": "disk on fire"}
