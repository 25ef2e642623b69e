import pytest
from fastapi.testclient import TestClient

from nanochat.main import create_app

from conftest import catalog_payload


@pytest.fixture
def client(app_settings, server):
    app = create_app(app_settings, transport=server.transport())
    with TestClient(app) as client:
        yield client


def test_health_endpoint(client):
    response = client.get("/health")
    data = response.json()
    assert response.status_code == 200
    assert data["status"] == "healthy"
    assert "timestamp" in data
    assert data["cached"]["conversations"] == 0
    assert response.headers["x-request-id"]


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["x-request-id"] == "req-123"


def test_refresh_then_list_conversations(client, server):
    server.add_conversation("c1")
    server.add_conversation("c2", pinned=True)

    response = client.post("/api/v1/conversations/refresh")
    assert response.status_code == 200
    assert sorted(response.json()["upserted"]) == ["c1", "c2"]

    listed = client.get("/api/v1/conversations/").json()
    assert [c["id"] for c in listed] == ["c2", "c1"]

    pinned = client.get("/api/v1/conversations/", params={"pinned": "false"}).json()
    assert [c["id"] for c in pinned] == ["c1"]


def test_pin_and_export(client, server):
    server.add_conversation("c1")
    server.add_message("m1", "c1", content="What is the capital of France?")
    server.add_message("m2", "c1", role="assistant", content="Paris.")
    client.post("/api/v1/conversations/refresh")
    client.post("/api/v1/conversations/c1/messages/refresh")

    pinned = client.post("/api/v1/conversations/c1/pin")
    assert pinned.status_code == 200
    assert pinned.json()["pinned"] is True

    exported = client.get("/api/v1/conversations/c1/export")
    assert exported.status_code == 200
    assert 'filename="conversation-c1.md"' in exported.headers["content-disposition"]
    assert exported.text.startswith("# Conversation c1")
    assert "Paris." in exported.text

    as_json = client.get("/api/v1/conversations/c1/export", params={"format": "json"}).json()
    assert [m["id"] for m in as_json["messages"]] == ["m1", "m2"]


def test_send_message(client, server):
    server.add_conversation("c1")
    client.post("/api/v1/conversations/refresh")

    response = client.post(
        "/api/v1/conversations/c1/messages",
        json={"content": "Hello", "model_id": "openai/gpt-4o"},
    )
    body = response.json()
    assert response.status_code == 200
    assert body["state"] == "confirmed"
    assert body["error"] is None

    messages = client.get("/api/v1/conversations/c1/messages").json()
    assert [m["role"] for m in messages] == ["user", "assistant"]
    assert messages[0]["id"] == body["server_id"]


def test_upload_endpoints(client, server):
    image = client.post(
        "/api/v1/uploads/images",
        files={"file": ("photo.gif", b"GIF89a" + b"\x00" * 16, "image/gif")},
    )
    assert image.status_code == 200
    assert image.json()["storage_id"] == server.uploads[0]["storage_id"]
    assert image.json()["fileName"] == "photo.gif"
    assert server.uploads[0]["content_type"] == "image/gif"

    document = client.post(
        "/api/v1/uploads/documents",
        files={"file": ("paper.pdf", b"%PDF-1.7", "application/pdf")},
    )
    assert document.status_code == 200
    assert document.json()["fileType"] == "pdf"

    empty = client.post("/api/v1/uploads/documents", files={"file": ("empty.txt", b"", "text/plain")})
    assert empty.status_code == 400
    assert empty.json()["error"]["code"] == "http_400"
    assert len(server.uploads) == 2


def test_unknown_conversation_is_404(client):
    response = client.get("/api/v1/conversations/missing")
    error = response.json()["error"]
    assert response.status_code == 404
    assert error["code"] == "not_found"
    assert error["details"]["entity_id"] == "missing"
    assert error["details"]["retryable"] is False


def test_remote_failure_maps_to_502(client, server):
    server.fail("GET", "/api/db/conversations", 500)

    response = client.post("/api/v1/conversations/refresh")
    error = response.json()["error"]
    assert response.status_code == 502
    assert error["code"] == "remote_error"
    assert error["details"]["status_code"] == 500
    assert error["details"]["retryable"] is True
    # Initial call plus two retries
    assert len(server.bodies("GET", "/api/db/conversations")) == 3


def test_validation_error_shape(client):
    response = client.get("/api/v1/conversations/", params={"limit": 0})
    error = response.json()["error"]
    assert response.status_code == 422
    assert error["code"] == "validation_error"


def test_settings_and_models(client, server):
    server.catalog = [catalog_payload("openai/gpt-4o"), catalog_payload("meta/llama", enabled=False)]

    assert client.post("/api/v1/settings/refresh").status_code == 200
    updated = client.patch("/api/v1/settings/u1", json={"theme": "dark"})
    assert updated.status_code == 200
    assert updated.json()["theme"] == "dark"

    client.post("/api/v1/models/refresh")
    enabled = client.get("/api/v1/models/", params={"enabled_only": "true"}).json()
    assert [m["modelId"] for m in enabled] == ["openai/gpt-4o"]
    groups = client.get("/api/v1/models/grouped").json()
    assert groups[0]["name"] == "nanogpt"


def test_metrics_endpoint_exposed(client):
    client.get("/health")
    response = client.get("/metrics")
    assert response.status_code == 200
    timers = response.json()["timers"]
    assert "local_api_request_ms|method=GET" in timers
