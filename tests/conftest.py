import copy
import json
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest

from nanochat.core.config import Settings
from nanochat.db.session import create_engine, init_db
from nanochat.observability.metrics import reset_metrics
from nanochat.services.api_client import NanoChatAPI
from nanochat.services.store import LocalStore
from nanochat.services.sync import SyncService

BASE_URL = "http://nanochat.test"
T0 = "2024-01-01T10:00:00.000Z"
T1 = "2024-01-01T11:00:00.000Z"
T2 = "2024-01-01T12:00:00.000Z"


def now_stamp(seconds: float = 0) -> str:
    """Current UTC time in the server's wire format, shifted by `seconds`"""
    moment = datetime.now(timezone.utc) + timedelta(seconds=seconds)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


# ----------------------------------------------------------------------
# Payload factories (server wire shapes)

def conversation_payload(id: str = "c1", **overrides: Any) -> Dict[str, Any]:
    payload = {
        "id": id,
        "title": f"Conversation {id}",
        "userId": "u1",
        "pinned": False,
        "generating": False,
        "createdAt": T0,
        "updatedAt": T1,
    }
    payload.update(overrides)
    return payload


def message_payload(id: str = "m1", conversation_id: str = "c1", **overrides: Any) -> Dict[str, Any]:
    payload = {
        "id": id,
        "conversationId": conversation_id,
        "role": "user",
        "content": f"content of {id}",
        "createdAt": T0,
    }
    payload.update(overrides)
    return payload


def image_payload(n: int = 0) -> Dict[str, Any]:
    return {"url": f"https://files.test/img{n}.png", "storage_id": f"img-{n}", "fileName": f"img{n}.png"}


def document_payload(n: int = 0) -> Dict[str, Any]:
    return {
        "url": f"https://files.test/doc{n}.pdf",
        "storage_id": f"doc-{n}",
        "fileName": f"doc{n}.pdf",
        "fileType": "pdf",
    }


def project_payload(id: str = "p1", **overrides: Any) -> Dict[str, Any]:
    payload = {"id": id, "name": f"Project {id}", "createdAt": T0, "updatedAt": T1}
    payload.update(overrides)
    return payload


def member_payload(id: str = "pm1", project_id: Optional[str] = "p1", **overrides: Any) -> Dict[str, Any]:
    payload = {
        "id": id,
        "userId": f"user-{id}",
        "role": "viewer",
        "user": {"id": f"user-{id}", "name": f"Member {id}", "email": f"{id}@example.com"},
        "createdAt": T0,
    }
    if project_id is not None:
        payload["projectId"] = project_id
    payload.update(overrides)
    return payload


def file_payload(id: str = "pf1", project_id: str = "p1", **overrides: Any) -> Dict[str, Any]:
    payload = {
        "id": id,
        "projectId": project_id,
        "storageId": f"storage-{id}",
        "fileName": f"{id}.md",
        "fileType": "markdown",
        "createdAt": T0,
    }
    payload.update(overrides)
    return payload


def assistant_payload(id: str = "a1", **overrides: Any) -> Dict[str, Any]:
    payload = {
        "id": id,
        "name": f"Assistant {id}",
        "systemPrompt": "Be helpful.",
        "isDefault": False,
        "createdAt": T0,
        "updatedAt": T1,
    }
    payload.update(overrides)
    return payload


def settings_payload(**overrides: Any) -> Dict[str, Any]:
    payload = {"id": "s1", "userId": "u1", "createdAt": T0, "updatedAt": T1}
    payload.update(overrides)
    return payload


def catalog_payload(id: str = "openai/gpt-4o", **overrides: Any) -> Dict[str, Any]:
    payload = {
        "id": id,
        "name": id.split("/")[-1].upper(),
        "description": "",
        "enabled": True,
        "pinned": False,
        "pricing": {"prompt": "0.005", "completion": "0.015"},
    }
    payload.update(overrides)
    return payload


# ----------------------------------------------------------------------
# Fake backend

class FakeServer:
    """In-memory stand-in for the NanoChat backend, served through httpx.MockTransport"""

    def __init__(self):
        self.conversations: Dict[str, Dict[str, Any]] = {}
        self.messages: Dict[str, List[Dict[str, Any]]] = {}
        self.projects: List[Dict[str, Any]] = []
        self.members: Dict[str, List[Dict[str, Any]]] = {}
        self.files: Dict[str, List[Dict[str, Any]]] = {}
        self.assistants: List[Dict[str, Any]] = []
        self.catalog: List[Dict[str, Any]] = []
        self.providers: Dict[str, Dict[str, Any]] = {}
        self.uploads: List[Dict[str, Any]] = []
        self.user_settings: Dict[str, Any] = settings_payload()
        self.requests: List[httpx.Request] = []
        # (method, path) -> status code or exception to raise
        self.failures: Dict[tuple, Any] = {}
        # Whether generated user messages echo the client correlation id
        self.echo_client_id = True
        # Polls that still report the conversation as generating
        self.generating_polls = 0
        self.reply_content = "Hello from the assistant"
        self._ids = 0

    def _next_id(self, prefix: str) -> str:
        self._ids += 1
        return f"{prefix}{self._ids}"

    def add_conversation(self, id: str = "c1", **overrides: Any) -> Dict[str, Any]:
        payload = conversation_payload(id, **overrides)
        self.conversations[id] = payload
        self.messages.setdefault(id, [])
        return payload

    def add_message(self, id: str, conversation_id: str = "c1", **overrides: Any) -> Dict[str, Any]:
        payload = message_payload(id, conversation_id, **overrides)
        self.messages.setdefault(conversation_id, []).append(payload)
        return payload

    def fail(self, method: str, path: str, outcome: Any = 500) -> None:
        self.failures[(method, path)] = outcome

    def bodies(self, method: str, path: str) -> List[Any]:
        return [
            json.loads(r.content) if r.content else None
            for r in self.requests
            if r.method == method and r.url.path == path
        ]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # Routing

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key in self.failures:
            outcome = self.failures[key]
            if isinstance(outcome, Exception):
                raise outcome
            return httpx.Response(outcome, json={"error": "injected"})

        if request.url.path == "/api/storage":
            return self._storage(request)
        body = json.loads(request.content) if request.content else {}
        params = request.url.params
        path = request.url.path

        if path == "/api/db/conversations":
            return self._conversations(request.method, body, params)
        if path == "/api/db/messages":
            return self._messages(request.method, body, params)
        if path == "/api/generate-message":
            return self._generate(body)
        if path == "/api/generate-follow-up-questions":
            return httpx.Response(200, json={"ok": True, "suggestions": ["Why?", "How?"]})
        if path == "/api/projects":
            return self._projects(request.method, body)
        if path.startswith("/api/projects/"):
            return self._project_item(request.method, path, body, params)
        if path == "/api/assistants":
            if request.method == "GET":
                return httpx.Response(200, json=self.assistants)
            created = assistant_payload(self._next_id("a"), **body)
            self.assistants.append(created)
            return httpx.Response(200, json=created)
        if path == "/api/model-providers":
            return httpx.Response(200, json=self.providers.get(params.get("modelId"), {}))
        if path == "/api/models":
            return httpx.Response(200, json=self.catalog)
        if path == "/api/db/user-models":
            return httpx.Response(200, json={"ok": True})
        if path == "/api/db/user-settings":
            if request.method == "POST":
                changes = {k: v for k, v in body.items() if k != "action"}
                self.user_settings = {**self.user_settings, **changes}
            return httpx.Response(200, json=self.user_settings)
        return httpx.Response(404, json={"error": "not found"})

    def _conversations(self, method: str, body: Dict[str, Any], params) -> httpx.Response:
        if method == "GET":
            items = list(self.conversations.values())
            if params.get("projectId"):
                items = [c for c in items if c.get("projectId") == params["projectId"]]
            if params.get("search"):
                items = [c for c in items if params["search"].lower() in c["title"].lower()]
            return httpx.Response(200, json=items)
        if method == "DELETE":
            if self.conversations.pop(params["id"], None) is None:
                return httpx.Response(404, json={"error": "not found"})
            self.messages.pop(params["id"], None)
            return httpx.Response(200, json={"ok": True})

        action = body.get("action")
        if action == "create":
            created = self.add_conversation(self._next_id("c"), title=body["title"])
            if body.get("projectId"):
                created["projectId"] = body["projectId"]
            return httpx.Response(200, json=created)
        if action == "branch":
            source = self.conversations[body["conversationId"]]
            branched = self.add_conversation(self._next_id("c"), title=f"{source['title']} (branch)")
            for message in self.messages.get(source["id"], []):
                self.add_message(self._next_id("m"), branched["id"], role=message["role"], content=message["content"])
                if message["id"] == body["fromMessageId"]:
                    break
            return httpx.Response(200, json={"conversationId": branched["id"]})

        conversation = self.conversations.get(body.get("conversationId"))
        if conversation is None:
            return httpx.Response(404, json={"error": "not found"})
        if action == "togglePin":
            conversation["pinned"] = not conversation["pinned"]
        elif action == "updateTitle":
            conversation["title"] = body["title"]
        return httpx.Response(200, json=conversation)

    def _messages(self, method: str, body: Dict[str, Any], params) -> httpx.Response:
        if method == "GET":
            conversation_id = params["conversationId"]
            if conversation_id not in self.conversations:
                return httpx.Response(404, json={"error": "not found"})
            conversation = self.conversations[conversation_id]
            if self.generating_polls > 0:
                self.generating_polls -= 1
                if self.generating_polls == 0:
                    conversation["generating"] = False
                    for message in self.messages[conversation_id]:
                        if message["role"] == "assistant" and not message["content"]:
                            message["content"] = self.reply_content
            return httpx.Response(200, json=copy.deepcopy(self.messages[conversation_id]))
        if method == "DELETE":
            for items in self.messages.values():
                for message in list(items):
                    if message["id"] == params["id"]:
                        items.remove(message)
                        return httpx.Response(200, json={"ok": True})
            return httpx.Response(404, json={"error": "not found"})
        if body.get("action") == "setStarred":
            for items in self.messages.values():
                for message in items:
                    if message["id"] == body["messageId"]:
                        message["starred"] = body["starred"]
                        return httpx.Response(200, json=message)
            return httpx.Response(404, json={"error": "not found"})
        return httpx.Response(400, json={"error": "unsupported"})

    def _storage(self, request: httpx.Request) -> httpx.Response:
        storage_id = self._next_id("st")
        self.uploads.append({
            "storage_id": storage_id,
            "filename": request.headers.get("x-filename"),
            "content_type": request.headers.get("content-type"),
            "data": request.content,
        })
        return httpx.Response(200, json={"storageId": storage_id, "url": f"https://files.test/{storage_id}"})

    def _generate(self, body: Dict[str, Any]) -> httpx.Response:
        conversation_id = body.get("conversation_id")
        if conversation_id is None:
            conversation_id = self.add_conversation(self._next_id("c"), title="New Chat")["id"]
        conversation = self.conversations[conversation_id]
        user = {"role": "user", "content": body["message"], "modelId": body["model_id"]}
        if self.echo_client_id and body.get("client_message_id"):
            user["clientMessageId"] = body["client_message_id"]
        self.add_message(self._next_id("m"), conversation_id, createdAt=now_stamp(), **user)

        if self.generating_polls > 0:
            conversation["generating"] = True
            content = ""
        else:
            content = self.reply_content
        self.add_message(
            self._next_id("m"), conversation_id, role="assistant", content=content, modelId=body["model_id"], createdAt=now_stamp(1)
        )
        return httpx.Response(200, json={"ok": True, "conversation_id": conversation_id})

    def _projects(self, method: str, body: Dict[str, Any]) -> httpx.Response:
        if method == "GET":
            return httpx.Response(200, json=self.projects)
        created = project_payload(self._next_id("p"), **body)
        self.projects.append(created)
        return httpx.Response(200, json=created)

    def _project_item(self, method: str, path: str, body: Dict[str, Any], params) -> httpx.Response:
        parts = path.split("/")
        project_id = parts[3]
        if len(parts) == 4:
            project = next((p for p in self.projects if p["id"] == project_id), None)
            if project is None:
                return httpx.Response(404, json={"error": "not found"})
            if method == "DELETE":
                self.projects.remove(project)
                return httpx.Response(200, json={"ok": True})
            project.update(body)
            return httpx.Response(200, json=project)
        if parts[4] == "members":
            members = self.members.setdefault(project_id, [])
            if method == "GET":
                return httpx.Response(200, json=members)
            if method == "DELETE":
                self.members[project_id] = [m for m in members if m["userId"] != params["userId"]]
                return httpx.Response(200, json={"ok": True})
            added = member_payload(self._next_id("pm"), project_id=None, role=body["role"])
            added["user"]["email"] = body["email"]
            members.append({**added, "projectId": project_id})
            return httpx.Response(200, json=added)
        if parts[4] == "files":
            files = self.files.setdefault(project_id, [])
            if method == "GET":
                return httpx.Response(200, json=files)
            self.files[project_id] = [f for f in files if f["id"] != parts[5]]
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(404, json={"error": "not found"})


# ----------------------------------------------------------------------
# Fixtures

@pytest.fixture(autouse=True)
def _clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def app_settings(tmp_path):
    return Settings(
        API_BASE_URL=BASE_URL,
        API_KEY="test-key",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'nanochat.db'}",
        GENERATION_POLL_INTERVAL=0,
        GENERATION_POLL_ATTEMPTS=5,
        LOG_LEVEL="INFO",
    )


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def store_factory(app_settings):
    """Opens a LocalStore on a fresh file-backed database inside the running loop"""

    @asynccontextmanager
    async def open_store():
        engine = create_engine(app_settings)
        await init_db(engine)
        try:
            yield LocalStore.from_engine(engine)
        finally:
            await engine.dispose()

    return open_store


@pytest.fixture
def sync_factory(app_settings, server, store_factory):
    """Opens a SyncService wired to the fake backend"""

    @asynccontextmanager
    async def open_sync():
        async with store_factory() as store:
            api = NanoChatAPI(app_settings, transport=server.transport())
            try:
                yield SyncService(api, store, app_settings=app_settings)
            finally:
                await api.aclose()

    return open_sync
