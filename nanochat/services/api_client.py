"""
NanoChat remote API client
HTTP+JSON transport to the backend. Returns raw JSON for the decoder and
maps transport failures onto the sync error hierarchy.
"""
import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from nanochat.core.config import Settings, settings as default_settings
from nanochat.core.exceptions import (
    NetworkTimeout,
    NetworkUnavailable,
    NotFound,
    RemoteAPIError,
    SchemaViolation,
)
from nanochat.observability.context import request_id_ctx
from nanochat.observability.metrics import inc_counter, observe_ms
from nanochat.schemas import (
    BranchConversationRequest,
    CreateAssistantRequest,
    CreateConversationRequest,
    CreateMessageRequest,
    CreateProjectRequest,
    AddProjectMemberRequest,
    DocumentAttachment,
    FollowUpQuestionsRequest,
    GenerateMessageRequest,
    ImageAttachment,
    JSONValue,
    UpdateMessageContentRequest,
    UpdateProjectRequest,
    UpdateUserSettingsRequest,
)

logger = logging.getLogger(__name__)


class NanoChatAPI:
    """Async client for the NanoChat backend"""

    def __init__(self, app_settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = app_settings or default_settings
        self.base_url = self.settings.base_url
        self.timeout = httpx.Timeout(self.settings.REQUEST_TIMEOUT, connect=10.0)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Content-Type": "application/json", **self.settings.auth_headers()},
            transport=transport,
        )
        logger.info(f"NanoChatAPI initialized: {self.base_url}")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "NanoChatAPI":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Transport

    async def request(
            self,
            method: str,
            endpoint: str,
            *,
            json: Any = None,
            content: Optional[bytes] = None,
            params: Optional[Dict[str, Any]] = None,
            headers: Optional[Dict[str, str]] = None,
            entity_kind: Optional[str] = None,
            entity_id: Optional[str] = None
    ) -> Any:
        """Send one request; returns the decoded JSON body (None when empty)"""
        query = {k: v for k, v in (params or {}).items() if v is not None}
        headers = dict(headers or {})
        request_id = request_id_ctx.get()
        if request_id:
            headers["X-Request-ID"] = request_id
        context = {"entity_kind": entity_kind, "entity_id": entity_id}

        started = time.perf_counter()
        try:
            response = await self._client.request(
                method, endpoint, json=json, content=content, params=query or None, headers=headers
            )
        except httpx.TimeoutException as e:
            inc_counter("api_errors_total", error="timeout")
            logger.warning(f"{method} {endpoint} timed out: {e}")
            raise NetworkTimeout(f"{method} {endpoint} timed out", **context) from e
        except httpx.TransportError as e:
            inc_counter("api_errors_total", error="unavailable")
            logger.warning(f"{method} {endpoint} failed: {type(e).__name__}: {e}")
            raise NetworkUnavailable(f"{method} {endpoint} failed: {e}", **context) from e
        finally:
            observe_ms("api_request_ms", (time.perf_counter() - started) * 1000.0, method=method, endpoint=endpoint)

        if response.status_code == 404:
            inc_counter("api_errors_total", error="not_found")
            raise NotFound(f"{method} {endpoint} returned 404", **context)
        if not response.is_success:
            inc_counter("api_errors_total", error=str(response.status_code))
            logger.error(f"{method} {endpoint} HTTP error: {response.status_code} - {response.text[:200]}")
            raise RemoteAPIError(response.status_code, f"HTTP error: {response.status_code}", **context)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise SchemaViolation(f"Invalid JSON body from {endpoint}", **context) from e

    async def fetch(self, endpoint: str, params: Optional[Dict[str, Any]] = None, **context: Any) -> Any:
        return await self.request("GET", endpoint, params=params, **context)

    # ------------------------------------------------------------------
    # Conversations

    async def get_conversations(self, project_id: Optional[str] = None, search: Optional[str] = None) -> Any:
        return await self.fetch(
            "/api/db/conversations",
            {"projectId": project_id, "search": search},
            entity_kind="conversation",
        )

    async def create_conversation(self, title: str, project_id: Optional[str] = None) -> Any:
        body = CreateConversationRequest(title=title, project_id=project_id)
        return await self.request("POST", "/api/db/conversations", json=body.to_wire(), entity_kind="conversation")

    async def branch_conversation(self, conversation_id: str, from_message_id: str) -> Any:
        body = BranchConversationRequest(conversation_id=conversation_id, from_message_id=from_message_id)
        return await self.request(
            "POST", "/api/db/conversations", json=body.to_wire(),
            entity_kind="conversation", entity_id=conversation_id,
        )

    async def toggle_conversation_pin(self, conversation_id: str) -> Any:
        return await self.request(
            "POST", "/api/db/conversations",
            json={"action": "togglePin", "conversationId": conversation_id},
            entity_kind="conversation", entity_id=conversation_id,
        )

    async def update_conversation_title(self, conversation_id: str, title: str) -> Any:
        return await self.request(
            "POST", "/api/db/conversations",
            json={"action": "updateTitle", "conversationId": conversation_id, "title": title},
            entity_kind="conversation", entity_id=conversation_id,
        )

    async def delete_conversation(self, conversation_id: str) -> Any:
        return await self.request(
            "DELETE", "/api/db/conversations", params={"id": conversation_id},
            entity_kind="conversation", entity_id=conversation_id,
        )

    # ------------------------------------------------------------------
    # Messages

    async def get_messages(self, conversation_id: str) -> Any:
        return await self.fetch(
            "/api/db/messages", {"conversationId": conversation_id},
            entity_kind="conversation", entity_id=conversation_id,
        )

    async def create_message(self, conversation_id: str, role: str, content: str, content_html: str = "") -> Any:
        body = CreateMessageRequest(conversation_id=conversation_id, role=role, content=content, content_html=content_html)
        return await self.request("POST", "/api/db/messages", json=body.to_wire(), entity_kind="message")

    async def update_message_content(
            self,
            message_id: str,
            content: str,
            content_html: Optional[str] = None,
            reasoning: Optional[str] = None
    ) -> Any:
        body = UpdateMessageContentRequest(
            message_id=message_id, content=content, content_html=content_html, reasoning=reasoning
        )
        return await self.request(
            "POST", "/api/db/messages", json=body.to_wire(), entity_kind="message", entity_id=message_id
        )

    async def set_message_starred(self, message_id: str, starred: bool) -> Any:
        return await self.request(
            "POST", "/api/db/messages",
            json={"action": "setStarred", "messageId": message_id, "starred": starred},
            entity_kind="message", entity_id=message_id,
        )

    async def delete_message(self, message_id: str) -> Any:
        return await self.request(
            "DELETE", "/api/db/messages", params={"id": message_id}, entity_kind="message", entity_id=message_id
        )

    async def generate_message(
            self,
            message: str,
            model_id: str,
            conversation_id: Optional[str] = None,
            assistant_id: Optional[str] = None,
            project_id: Optional[str] = None,
            web_search_enabled: bool = False,
            web_search_mode: Optional[str] = None,
            web_search_provider: Optional[str] = None,
            provider_id: Optional[str] = None,
            client_message_id: Optional[str] = None,
            images: Optional[List[ImageAttachment]] = None,
            documents: Optional[List[DocumentAttachment]] = None,
            image_params: Optional[Dict[str, JSONValue]] = None,
            video_params: Optional[Dict[str, JSONValue]] = None
    ) -> Any:
        body = GenerateMessageRequest(
            message=message,
            model_id=model_id,
            conversation_id=conversation_id,
            assistant_id=assistant_id,
            project_id=project_id,
            web_search_enabled=web_search_enabled,
            web_search_mode=web_search_mode,
            web_search_provider=web_search_provider,
            provider_id=provider_id,
            client_message_id=client_message_id,
            images=images,
            documents=documents,
            image_params=image_params,
            video_params=video_params,
        )
        logger.info(f"Sending generate request: model={model_id}, conversation={conversation_id}")
        return await self.request(
            "POST", "/api/generate-message", json=body.to_wire(),
            entity_kind="conversation", entity_id=conversation_id,
        )

    async def generate_follow_up_questions(self, conversation_id: str, message_id: str) -> Any:
        body = FollowUpQuestionsRequest(conversation_id=conversation_id, message_id=message_id)
        return await self.request(
            "POST", "/api/generate-follow-up-questions", json=body.to_wire(),
            entity_kind="message", entity_id=message_id,
        )

    # ------------------------------------------------------------------
    # Storage

    async def upload_file(self, data: bytes, filename: str, mime_type: str) -> Any:
        """Upload raw bytes; the server answers with a storage id and URL"""
        logger.info(f"Uploading {filename} ({mime_type}, {len(data)} bytes)")
        return await self.request(
            "POST", "/api/storage", content=data,
            headers={"Content-Type": mime_type, "x-filename": filename},
            entity_kind="storage_upload",
        )

    # ------------------------------------------------------------------
    # Projects

    async def get_projects(self) -> Any:
        return await self.fetch("/api/projects", entity_kind="project")

    async def create_project(self, name: str, **fields: Any) -> Any:
        body = CreateProjectRequest(name=name, **fields)
        return await self.request("POST", "/api/projects", json=body.to_wire(), entity_kind="project")

    async def update_project(self, project_id: str, **fields: Any) -> Any:
        body = UpdateProjectRequest(**fields)
        return await self.request(
            "PATCH", f"/api/projects/{quote(project_id, safe='')}", json=body.to_wire(),
            entity_kind="project", entity_id=project_id,
        )

    async def delete_project(self, project_id: str) -> Any:
        return await self.request(
            "DELETE", f"/api/projects/{quote(project_id, safe='')}", entity_kind="project", entity_id=project_id
        )

    async def get_project_members(self, project_id: str) -> Any:
        return await self.fetch(
            f"/api/projects/{quote(project_id, safe='')}/members",
            entity_kind="project_member", entity_id=project_id,
        )

    async def add_project_member(self, project_id: str, email: str, role: str = "viewer") -> Any:
        body = AddProjectMemberRequest(email=email, role=role)
        return await self.request(
            "POST", f"/api/projects/{quote(project_id, safe='')}/members", json=body.to_wire(),
            entity_kind="project_member", entity_id=project_id,
        )

    async def remove_project_member(self, project_id: str, user_id: str) -> Any:
        return await self.request(
            "DELETE", f"/api/projects/{quote(project_id, safe='')}/members",
            params={"userId": user_id}, entity_kind="project_member", entity_id=user_id,
        )

    async def get_project_files(self, project_id: str) -> Any:
        return await self.fetch(
            f"/api/projects/{quote(project_id, safe='')}/files",
            entity_kind="project_file", entity_id=project_id,
        )

    async def delete_project_file(self, project_id: str, file_id: str) -> Any:
        return await self.request(
            "DELETE", f"/api/projects/{quote(project_id, safe='')}/files/{quote(file_id, safe='')}",
            entity_kind="project_file", entity_id=file_id,
        )

    # ------------------------------------------------------------------
    # Assistants

    async def get_assistants(self) -> Any:
        return await self.fetch("/api/assistants", entity_kind="assistant")

    async def create_assistant(self, name: str, system_prompt: str, **fields: Any) -> Any:
        body = CreateAssistantRequest(name=name, system_prompt=system_prompt, **fields)
        return await self.request("POST", "/api/assistants", json=body.to_wire(), entity_kind="assistant")

    # ------------------------------------------------------------------
    # Model catalog

    async def get_user_models(self) -> Any:
        return await self.fetch("/api/models", entity_kind="catalog_model")

    async def set_model_enabled(self, model_id: str, enabled: bool, provider: str = "nanogpt") -> Any:
        return await self.request(
            "POST", "/api/db/user-models",
            json={"action": "set", "provider": provider, "modelId": model_id, "enabled": enabled},
            entity_kind="user_model", entity_id=model_id,
        )

    async def set_model_pinned(self, model_id: str, pinned: bool, provider: str = "nanogpt") -> Any:
        return await self.request(
            "POST", "/api/db/user-models",
            json={"action": "setPinned", "provider": provider, "modelId": model_id, "pinned": pinned},
            entity_kind="user_model", entity_id=model_id,
        )

    async def fetch_model_providers(self, model_id: str) -> Any:
        return await self.fetch(
            "/api/model-providers", {"modelId": model_id}, entity_kind="model_providers", entity_id=model_id
        )

    async def fetch_model_info(self, model_id: str) -> Any:
        # Model ids contain "/", which must stay inside one path segment
        encoded = quote(model_id, safe="")
        return await self.fetch(f"/api/models/{encoded}/info", entity_kind="model_info", entity_id=model_id)

    # ------------------------------------------------------------------
    # User settings

    async def get_user_settings(self) -> Any:
        return await self.fetch("/api/db/user-settings", entity_kind="user_settings")

    async def update_user_settings(self, **changes: Any) -> Any:
        body = UpdateUserSettingsRequest(**changes)
        return await self.request(
            "POST", "/api/db/user-settings", json=body.to_wire(), entity_kind="user_settings"
        )
