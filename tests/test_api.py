"""Tests for the HTTP surface."""

import logging
import time

import pytest
from fastapi.testclient import TestClient

import taskchat.api as api
from taskchat.api import app
from taskchat.config import clear_engine_config_cache
from taskchat.metrics import get_metrics_collector


@pytest.fixture
def client(monkeypatch):
    """Test client over a fresh in-memory database."""
    monkeypatch.delenv("TASKCHAT_ENABLE_METRICS", raising=False)
    api.reset_state()
    clear_engine_config_cache()
    yield TestClient(app)
    api.reset_state()
    clear_engine_config_cache()


def chat(client, text, session_id="s1", **headers):
    return client.post("/v1/chat", json={"session_id": session_id, "text": text}, headers=headers)


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_create_project(client):
    response = chat(client, "create project 'Launch'")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["intent"]["name"] == "project.create"
    assert data["intent"]["entities"]["project_name"] == "Launch"
    assert data["messages"][0]["sender"] == "assistant"
    assert 'Created project "Launch"' in data["messages"][0]["text"]
    assert len(data["suggestions"]) <= 3


def test_unmatched_text_goes_to_delegate(client):
    response = chat(client, "what should I do this weekend?")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "delegated"
    assert data["intent"] is None
    assert data["messages"][0]["sender"] == "assistant"


def test_confirmation_round_trip(client):
    chat(client, "create project 'Launch'")

    asked = chat(client, "add a goal 'MVP' to Growth").json()

    assert asked["status"] == "needs_confirmation"
    assert asked["pending_confirmation"]["token"]
    assert asked["pending_confirmation"]["intent"] == "goal.create"

    confirmed = chat(client, "yes").json()

    assert confirmed["status"] == "ok"
    assert confirmed["pending_confirmation"] is None


def test_empty_message_rejected(client):
    response = chat(client, "   ")

    assert response.status_code == 400
    assert response.json()["error"] == "empty_message"


def test_missing_session_id_rejected(client):
    response = client.post("/v1/chat", json={"text": "hello"})

    assert response.status_code == 422


def test_send_in_flight_conflict(client):
    session = api.get_command_router(api.DEFAULT_OWNER_ID).get_session("busy")
    session.is_sending = True

    response = chat(client, "create project 'Launch'", session_id="busy")

    assert response.status_code == 409
    assert response.json()["error"] == "send_in_flight"


def test_session_messages(client):
    chat(client, "create project 'Launch'")

    response = client.get("/v1/sessions/s1/messages")

    assert response.status_code == 200
    data = response.json()
    assert data["session_id"] == "s1"
    assert [m["sender"] for m in data["messages"]] == ["user", "assistant"]
    assert data["messages"][0]["text"] == "create project 'Launch'"


def test_session_messages_are_scoped_by_user(client):
    chat(client, "create project 'Launch'", **{"X-User-Id": "alice"})

    assert client.get("/v1/sessions/s1/messages", headers={"X-User-Id": "bob"}).json()["messages"] == []
    assert len(client.get("/v1/sessions/s1/messages", headers={"X-User-Id": "alice"}).json()["messages"]) == 2


@pytest.mark.parametrize("limit", [0, 1001])
def test_session_messages_invalid_limit(client, limit):
    response = client.get(f"/v1/sessions/s1/messages?limit={limit}")

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_limit"


def test_metrics_disabled(client):
    response = client.get("/v1/metrics")

    assert response.status_code == 404
    assert response.json()["error"] == "metrics_disabled"


def test_metrics_enabled(client, monkeypatch):
    monkeypatch.setenv("TASKCHAT_ENABLE_METRICS", "true")
    api.reset_state()
    get_metrics_collector().reset()

    chat(client, "create project 'Launch'")
    response = client.get("/v1/metrics")

    assert response.status_code == 200
    snapshot = response.json()
    assert snapshot["intent_counts"] == {"project.create": 1}
    assert snapshot["status_counts"] == {"ok": 1}
    assert snapshot["command_latency_ms"]["count"] == 1
    get_metrics_collector().reset()


def test_request_id_in_logs(client, caplog):
    caplog.set_level(logging.INFO)

    chat(client, "create project 'Launch'", **{"X-Request-ID": "req-abc-123"})

    messages = [record.getMessage() for record in caplog.records if "Command executed" in record.getMessage()]
    assert messages
    assert all("request_id=req-abc-123" in message for message in messages)


def test_idle_owner_routers_are_dropped(client):
    alice = {"X-User-Id": "alice"}
    chat(client, "create project 'Launch'", **alice)
    idle_router = api.get_command_router("alice")
    idle_router.clock = lambda: time.monotonic() + 100_000

    chat(client, "create project 'Hiring'", **{"X-User-Id": "bob"})

    assert "alice" not in api._routers
    assert idle_router.session_count == 0

    chat(client, "create project 'Growth'", **alice)

    session = api.get_command_router("alice").get_session("s1")
    assert [m.sender for m in session.messages] == ["user", "assistant", "user", "assistant"]
    assert session.messages[0].text == "create project 'Launch'"
