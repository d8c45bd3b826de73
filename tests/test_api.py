import threading

import pytest
from fastapi.testclient import TestClient

from chatsync.__version__ import __version__
from chatsync.main import create_app
from chatsync.routers import conversations as conversation_routes

from conftest import PHONE


@pytest.fixture
def client(engine, tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    app = create_app(engine)
    with TestClient(app) as test_client:
        yield test_client


def _webhook(client, engine, payload, **kwargs):
    resp = client.post("/api/webhooks/sandbox", json=payload, **kwargs)
    assert engine.dispatcher.wait_idle(timeout=5)
    return resp


def _inbound_payload(body="oi", message_id="m1", timestamp=1767614340):
    return {
        "phone": PHONE,
        "name": "Ana",
        "messages": [{"id": message_id, "body": body, "timestamp": timestamp}],
    }


def test_health_and_version(client):
    assert client.get("/api/health").json() == {"status": "ok"}
    data = client.get("/api/version").json()
    assert data["version"] == __version__
    assert "build_date" in data and "commit_sha" in data


def test_metrics_endpoint(client):
    client.get("/api/health")
    resp = client.get("/api/metrics")
    assert resp.status_code == 200
    assert "http_requests" in resp.text


def test_webhook_ingests_and_replies(client, engine, channel, completer):
    resp = _webhook(client, engine, _inbound_payload())

    assert resp.status_code == 202
    assert resp.json() == {"accepted": 1, "inbound_events": 1, "status_receipts": 0}
    assert channel.sent_to(PHONE) == [completer.reply]

    listing = client.get("/api/conversations").json()
    assert listing["total"] == 1
    conversation = listing["items"][0]
    assert conversation["contact"]["name"] == "Ana"

    messages = client.get(f"/api/conversations/{conversation['id']}/messages").json()
    assert [m["direction"] for m in messages["items"]] == ["inbound", "outbound"]


def test_repeated_webhook_is_idempotent(client, engine, channel):
    _webhook(client, engine, _inbound_payload())
    _webhook(client, engine, _inbound_payload())

    conversation = client.get("/api/conversations").json()["items"][0]
    detail = client.get(f"/api/conversations/{conversation['id']}").json()
    assert len([m for m in detail["messages"] if m["direction"] == "inbound"]) == 1
    assert len(channel.sent) == 1


def test_webhook_receipt_updates_status(client, engine, channel):
    _webhook(client, engine, _inbound_payload())
    _, record = channel.sent[0]

    resp = _webhook(
        client,
        engine,
        {"phone": PHONE, "receipts": [{"id": record.provider_message_id, "status": "read"}]},
    )
    assert resp.json()["status_receipts"] == 1
    assert engine.store.get_message_by_provider_id(record.provider_message_id).status.value == "read"


@pytest.mark.parametrize(
    "kwargs,status",
    [
        ({"content": b"not json", "headers": {"Content-Type": "application/json"}}, 400),
        ({"json": ["a", "list"]}, 400),
    ],
)
def test_webhook_rejects_bad_payloads(client, kwargs, status):
    assert client.post("/api/webhooks/sandbox", **kwargs).status_code == status


def test_webhook_for_unconfigured_channel(client):
    assert client.post("/api/webhooks/telegram", json={}).status_code == 404


def test_lifecycle_routes(client, engine):
    _webhook(client, engine, _inbound_payload())
    conversation_id = client.get("/api/conversations").json()["items"][0]["id"]

    assert client.post(f"/api/conversations/{conversation_id}/archive").status_code == 409
    assert client.post(f"/api/conversations/{conversation_id}/pending").json()["status"] == "pending"
    assert client.post(f"/api/conversations/{conversation_id}/resolve").json()["status"] == "resolved"
    assert client.post(f"/api/conversations/{conversation_id}/archive").json()["status"] == "archived"
    assert client.get("/api/conversations", params={"status": "archived"}).json()["total"] == 1

    resp = client.post(f"/api/conversations/{conversation_id}/assign", json={"agent": "maria"})
    assert resp.json()["assigned_agent"] == "maria"

    assert client.delete(f"/api/conversations/{conversation_id}").status_code == 204
    assert client.get(f"/api/conversations/{conversation_id}").status_code == 404


def test_unknown_conversation_is_404(client):
    assert client.post("/api/conversations/missing/resolve").status_code == 404
    assert client.get("/api/conversations/missing/messages").status_code == 404


def test_sync_route_pulls_channel_history(client, channel, make_message):
    channel.history[PHONE] = [make_message("histórico", provider_id="h1")]

    resp = client.post("/api/conversations/sync", json={"phone": "5511999999999"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["processed_messages"] == 1
    assert data["skipped_messages"] == 0
    assert data["conversation"]["contact"]["phone"] == PHONE


def test_sync_route_reports_channel_outage(client, channel):
    channel.available = False
    assert client.post("/api/conversations/sync", json={"phone": PHONE}).status_code == 503


def test_sync_route_rejects_bad_phone(client):
    assert client.post("/api/conversations/sync", json={"phone": "abc"}).status_code == 422


def test_sync_route_times_out_behind_busy_queue(client, engine, channel, make_message, monkeypatch):
    monkeypatch.setattr(conversation_routes, "SYNC_TIMEOUT_SECONDS", 0.05)
    channel.history[PHONE] = [make_message("histórico", provider_id="h1")]
    release = threading.Event()
    engine.dispatcher.submit(PHONE, release.wait, 5)
    try:
        resp = client.post("/api/conversations/sync", json={"phone": PHONE})
    finally:
        release.set()

    assert resp.status_code == 504
    assert "queued" in resp.json()["detail"]
    assert engine.dispatcher.wait_idle(timeout=5)
    assert client.get("/api/conversations").json()["total"] == 1


def test_rule_routes(client):
    payload = {
        "name": "saudação",
        "trigger": {"type": "keyword", "value": "oi,olá"},
        "action": {"type": "send_message", "value": "Olá!"},
    }
    created = client.post("/api/automation/rules", json=payload)
    assert created.status_code == 201
    rule_id = created.json()["id"]

    payload["action"]["value"] = "Olá! Tudo bem?"
    updated = client.put(f"/api/automation/rules/{rule_id}", json=payload).json()
    assert updated["action"]["value"] == "Olá! Tudo bem?"
    assert updated["ordinal"] == created.json()["ordinal"]

    assert client.get("/api/automation/rules").json()["total"] == 1
    assert client.get(f"/api/automation/rules/{rule_id}/executions").json()["total"] == 0
    assert client.delete(f"/api/automation/rules/{rule_id}").status_code == 204
    assert client.get(f"/api/automation/rules/{rule_id}").status_code == 404


def test_malformed_rule_is_rejected(client):
    payload = {
        "name": "bad",
        "trigger": {"type": "time", "value": "later"},
        "action": {"type": "add_tag", "value": "x"},
    }
    assert client.post("/api/automation/rules", json=payload).status_code == 422


def test_rule_execution_via_webhook(client, engine):
    rule = client.post(
        "/api/automation/rules",
        json={
            "name": "lead",
            "trigger": {"type": "keyword", "value": "preço"},
            "action": {"type": "add_tag", "value": "lead"},
        },
    ).json()
    _webhook(client, engine, _inbound_payload("qual o preço?"))

    executions = client.get(f"/api/automation/rules/{rule['id']}/executions").json()
    assert executions["total"] == 1
    assert executions["items"][0]["status"] == "success"
    assert client.get(f"/api/automation/rules/{rule['id']}").json()["execution_count"] == 1


def test_knowledge_routes(client):
    created = client.post(
        "/api/knowledge",
        json={"title": "Prazo de entrega", "content": "Entrega em até 5 dias úteis."},
    )
    assert created.status_code == 201
    entry = created.json()
    assert "embedding" not in entry

    hits = client.post("/api/knowledge/search", json={"query": "qual o prazo de entrega?"}).json()
    assert [h["entry"]["id"] for h in hits["items"]] == [entry["id"]]

    updated = client.put(f"/api/knowledge/{entry['id']}", json={"is_active": False}).json()
    assert updated["is_active"] is False
    assert client.get("/api/knowledge", params={"active_only": True}).json()["total"] == 0
    assert client.post("/api/knowledge/search", json={"query": "prazo de entrega"}).json()["items"] == []

    assert client.delete(f"/api/knowledge/{entry['id']}").status_code == 204
    assert client.get(f"/api/knowledge/{entry['id']}").status_code == 404


def test_lifespan_hydrates_read_model(engine, make_message, tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    engine.service.auto_reply = False
    engine.synchronizer.ingest(PHONE, [make_message("oi", provider_id="m1")])

    with TestClient(create_app(engine)):
        (conversation,) = engine.aggregate.snapshot()
        assert [m.body for m in engine.aggregate.messages(conversation.id)] == ["oi"]
