"""
Sync service: typed accessors over the local store, refreshes from the
remote API and optimistic mutations with server confirmation.

Reads never touch the network. Refreshes fetch, decode and reconcile under a
generation token, so a newer refresh of the same scope (or an explicit
cancel) voids an older one before it commits.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from nanochat.core.config import Settings, settings as default_settings
from nanochat.core.exceptions import NetworkError, NotFound, StaleReconciliation, SyncError
from nanochat.observability.context import conversation_id_ctx
from nanochat.schemas import (
    AssistantResponse,
    DecodeFailure,
    DocumentAttachment,
    ImageAttachment,
    JSONValue,
    ModelGroup,
    ModelInfoResponse,
    ModelProvidersResponse,
    ProjectFileResponse,
    ProjectMemberResponse,
    ProjectResponse,
    StorageUploadResponse,
    UpdateUserSettingsRequest,
    UserModel,
    UserSettings,
    group_by_provider,
)
from nanochat.schemas.records import ConversationFilter, ConversationRecord, MessageRecord, MessageSearch
from nanochat.services.api_client import NanoChatAPI
from nanochat.services.decoder import EntityKind, decode, decode_catalog, decode_list
from nanochat.services.pending import PendingChannel, PendingOperation, PendingQueue
from nanochat.services.reconciliation import ReconcileReport, Reconciler
from nanochat.services.store import LocalStore
from nanochat.utils.async_helpers import GenerationToken
from nanochat.utils.media import detect_image_mime_type, document_type, image_extension

logger = logging.getLogger(__name__)

# Conversations are refreshed on every third poll while a reply generates
CONVERSATION_POLL_EVERY = 3


@dataclass
class RefreshResult:
    report: ReconcileReport
    failures: List[DecodeFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class SyncService:
    """Outbound accessors consumed by the presentation layer"""

    def __init__(
            self,
            api: NanoChatAPI,
            store: LocalStore,
            reconciler: Optional[Reconciler] = None,
            app_settings: Optional[Settings] = None
    ):
        self.api = api
        self.store = store
        self.settings = app_settings or default_settings
        self.pending = PendingQueue()
        self.channel = PendingChannel(self.pending)
        self.reconciler = reconciler or Reconciler(store)
        self.reconciler.channel = self.channel

    # ------------------------------------------------------------------
    # Local reads

    async def get_conversation(self, conversation_id: str) -> ConversationRecord:
        return await self.reconciler.require_conversation(conversation_id)

    async def list_conversations(self, filters: Optional[ConversationFilter] = None, **criteria: Any) -> List[ConversationRecord]:
        return await self.store.list_conversations(filters or ConversationFilter(**criteria))

    async def get_messages(self, conversation_id: str, limit: Optional[int] = None) -> List[MessageRecord]:
        return await self.store.list_messages(conversation_id, limit=limit)

    async def list_starred_messages(self) -> List[MessageRecord]:
        return await self.store.list_starred_messages()

    async def search_messages(self, criteria: Optional[MessageSearch] = None, **fields: Any) -> List[MessageRecord]:
        return await self.store.search_messages(criteria or MessageSearch(**fields))

    async def get_project(self, project_id: str) -> ProjectResponse:
        project = await self.store.get_project(project_id)
        if project is None:
            raise NotFound(entity_kind="project", entity_id=project_id)
        return project

    async def list_projects(self) -> List[ProjectResponse]:
        return await self.store.list_projects()

    async def list_project_members(self, project_id: str) -> List[ProjectMemberResponse]:
        return await self.store.list_project_members(project_id)

    async def list_project_files(self, project_id: str) -> List[ProjectFileResponse]:
        return await self.store.list_project_files(project_id)

    async def list_assistants(self) -> List[AssistantResponse]:
        return await self.store.list_assistants()

    async def get_default_assistant(self) -> Optional[AssistantResponse]:
        return await self.store.get_default_assistant()

    async def get_user_settings(self, user_id: str) -> UserSettings:
        found = await self.store.get_user_settings(user_id)
        if found is None:
            raise NotFound(entity_kind="user_settings", entity_id=user_id)
        return found

    async def list_models(self, enabled_only: bool = False, provider: Optional[str] = None) -> List[UserModel]:
        return await self.store.list_models(provider=provider, enabled_only=enabled_only)

    async def list_model_groups(self, enabled_only: bool = True) -> List[ModelGroup]:
        return group_by_provider(await self.list_models(enabled_only=enabled_only))

    # ------------------------------------------------------------------
    # Server-driven writes

    async def upsert_from_server(self, dto: Any) -> Any:
        return await self.reconciler.upsert_from_server(dto)

    async def delete_cascade(self, conversation_id: str) -> Dict[str, int]:
        """Delete remotely, then drop the conversation and everything it owns locally"""
        try:
            await self.api.delete_conversation(conversation_id)
        except NotFound:
            logger.info(f"Conversation {conversation_id} already gone remotely; pruning local copy")
        return await self.reconciler.delete_conversation(conversation_id)

    # ------------------------------------------------------------------
    # Refreshes

    def cancel_refresh(self, kind: EntityKind, scope_id: Optional[str] = None) -> None:
        self.reconciler.cancel(kind, scope_id)

    async def _refresh_list(
            self,
            kind: EntityKind,
            fetch: Callable[[], Awaitable[Any]],
            *,
            scope_id: Optional[str] = None,
            paginated: bool = False,
            token: Optional[GenerationToken] = None
    ) -> RefreshResult:
        token = token or self.reconciler.begin(kind, scope_id)
        try:
            raw = await fetch()
            if kind is EntityKind.USER_MODEL:
                decoded = decode_catalog(raw)
            else:
                decoded = decode_list(kind, raw)
            retain = [f.entity_id for f in decoded.failures if f.entity_id]
            report = await self.reconciler.reconcile_list(
                kind, decoded.items, scope_id=scope_id, paginated=paginated, token=token, retain=retain
            )
        finally:
            self.reconciler.generations.finish(token)
        return RefreshResult(report=report, failures=decoded.failures)

    async def refresh_conversations(
            self,
            project_id: Optional[str] = None,
            search: Optional[str] = None,
            token: Optional[GenerationToken] = None
    ) -> RefreshResult:
        # Search results are a partial view: upsert only
        return await self._refresh_list(
            EntityKind.CONVERSATION,
            lambda: self.api.get_conversations(project_id=project_id, search=search),
            scope_id=project_id,
            paginated=bool(search),
            token=token,
        )

    async def refresh_messages(self, conversation_id: str, token: Optional[GenerationToken] = None) -> RefreshResult:
        conversation_id_ctx.set(conversation_id)
        try:
            return await self._refresh_list(
                EntityKind.MESSAGE,
                lambda: self.api.get_messages(conversation_id),
                scope_id=conversation_id,
                token=token,
            )
        except NotFound:
            logger.info(f"Conversation {conversation_id} not found remotely; pruning local copy")
            await self.reconciler.delete_conversation(conversation_id)
            raise

    async def refresh_projects(self, token: Optional[GenerationToken] = None) -> RefreshResult:
        return await self._refresh_list(EntityKind.PROJECT, self.api.get_projects, token=token)

    async def refresh_project_members(self, project_id: str, token: Optional[GenerationToken] = None) -> RefreshResult:
        return await self._refresh_list(
            EntityKind.PROJECT_MEMBER,
            lambda: self.api.get_project_members(project_id),
            scope_id=project_id,
            token=token,
        )

    async def refresh_project_files(self, project_id: str, token: Optional[GenerationToken] = None) -> RefreshResult:
        return await self._refresh_list(
            EntityKind.PROJECT_FILE,
            lambda: self.api.get_project_files(project_id),
            scope_id=project_id,
            token=token,
        )

    async def refresh_assistants(self, token: Optional[GenerationToken] = None) -> RefreshResult:
        return await self._refresh_list(EntityKind.ASSISTANT, self.api.get_assistants, token=token)

    async def refresh_models(self, token: Optional[GenerationToken] = None) -> RefreshResult:
        return await self._refresh_list(EntityKind.USER_MODEL, self.api.get_user_models, token=token)

    async def refresh_user_settings(self, token: Optional[GenerationToken] = None) -> UserSettings:
        token = token or self.reconciler.begin(EntityKind.USER_SETTINGS)
        try:
            found = decode(EntityKind.USER_SETTINGS, await self.api.get_user_settings())
            await self.reconciler.upsert_from_server(found, token=token)
        finally:
            self.reconciler.generations.finish(token)
        return found

    # ------------------------------------------------------------------
    # Optimistic mutations

    async def toggle_pinned(self, conversation_id: str) -> ConversationRecord:
        current = await self.get_conversation(conversation_id)
        record = await self.reconciler.set_conversation_pinned(conversation_id, not current.pinned)
        try:
            await self.api.toggle_conversation_pin(conversation_id)
        except SyncError:
            await self.reconciler.set_conversation_pinned(conversation_id, current.pinned)
            raise
        return record

    async def rename_conversation(self, conversation_id: str, title: str) -> ConversationRecord:
        current = await self.get_conversation(conversation_id)
        record = await self.reconciler.set_conversation_title(conversation_id, title)
        try:
            await self.api.update_conversation_title(conversation_id, title)
        except SyncError:
            await self.reconciler.set_conversation_title(conversation_id, current.title)
            raise
        return record

    async def set_starred(self, message_id: str, starred: bool) -> MessageRecord:
        current = await self.store.get_message(message_id)
        if current is None:
            raise NotFound(entity_kind="message", entity_id=message_id)
        record = await self.reconciler.set_message_starred(message_id, starred)
        try:
            await self.api.set_message_starred(message_id, starred)
        except SyncError:
            await self.reconciler.set_message_starred(message_id, current.starred)
            raise
        return record

    async def set_model_enabled(self, model_id: str, enabled: bool) -> UserModel:
        current = await self._require_model(model_id)
        model = await self.store.set_model_flags(model_id, enabled=enabled)
        try:
            await self.api.set_model_enabled(model_id, enabled, provider=current.provider)
        except SyncError:
            await self.store.set_model_flags(model_id, enabled=current.enabled)
            raise
        return model

    async def set_model_pinned(self, model_id: str, pinned: bool) -> UserModel:
        current = await self._require_model(model_id)
        model = await self.store.set_model_flags(model_id, pinned=pinned)
        try:
            await self.api.set_model_pinned(model_id, pinned, provider=current.provider)
        except SyncError:
            await self.store.set_model_flags(model_id, pinned=current.pinned)
            raise
        return model

    async def _require_model(self, model_id: str) -> UserModel:
        for model in await self.store.list_models():
            if model.model_id == model_id:
                return model
        raise NotFound(entity_kind="user_model", entity_id=model_id)

    async def update_user_settings(self, user_id: str, **changes: Any) -> UserSettings:
        """Apply a partial settings change locally, then confirm it with the server"""
        unknown = set(changes) - set(UpdateUserSettingsRequest.model_fields) - {"action"}
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        changes = {k: v for k, v in changes.items() if v is not None}

        current = await self.get_user_settings(user_id)
        await self.store.upsert(current.model_copy(update=changes))
        try:
            raw = await self.api.update_user_settings(**changes)
            confirmed = decode(EntityKind.USER_SETTINGS, raw)
        except SyncError:
            await self.store.upsert(current)
            raise
        await self.reconciler.upsert_from_server(confirmed)
        return confirmed

    # ------------------------------------------------------------------
    # Sending

    async def _set_generating(self, conversation_id: str, generating: bool) -> None:
        try:
            await self.reconciler.set_conversation_generating(conversation_id, generating)
        except NotFound:
            logger.debug(f"Conversation {conversation_id} not cached; no generating overlay")

    def _settle(self) -> Dict[str, PendingOperation]:
        """Apply queued outcomes to their pending operations"""
        return self.channel.drain()

    async def _cleanup_failed(self, touched: Dict[str, PendingOperation]) -> None:
        for op in touched.values():
            if op.error is None:
                continue
            await self.store.remove_placeholder(op.correlation_id)
            if op.conversation_id:
                await self._set_generating(op.conversation_id, False)
            logger.warning(f"Send {op.correlation_id} failed: {op.error}")

    async def _generation_finished(self, op: PendingOperation, conversation_id: str) -> bool:
        """The sent message is confirmed and an assistant reply with content follows it"""
        if op.is_pending or op.server_id is None:
            return False
        messages = await self.store.list_messages(conversation_id)
        ids = [m.id for m in messages]
        if op.server_id not in ids:
            return False
        replies = messages[ids.index(op.server_id) + 1:]
        if not replies or replies[-1].role != "assistant" or not replies[-1].content:
            return False
        conversation = await self.store.get_conversation(conversation_id)
        return conversation is None or not conversation.generating

    async def _poll_generation(self, op: PendingOperation, conversation_id: str) -> None:
        for attempt in range(self.settings.GENERATION_POLL_ATTEMPTS):
            await asyncio.sleep(self.settings.GENERATION_POLL_INTERVAL)
            try:
                if attempt % CONVERSATION_POLL_EVERY == 0:
                    await self.refresh_conversations()
                await self.refresh_messages(conversation_id)
            except (NetworkError, StaleReconciliation) as e:
                logger.warning(f"Poll {attempt + 1} for {conversation_id} skipped: {e}")
                continue
            self._settle()
            if await self._generation_finished(op, conversation_id):
                logger.info(f"Reply for {conversation_id} complete after {attempt + 1} poll(s)")
                return
        logger.warning(f"Reply for {conversation_id} still incomplete after {self.settings.GENERATION_POLL_ATTEMPTS} poll(s)")

    async def send_message(
            self,
            conversation_id: Optional[str],
            content: str,
            model_id: str,
            *,
            assistant_id: Optional[str] = None,
            project_id: Optional[str] = None,
            web_search_enabled: bool = False,
            web_search_mode: Optional[str] = None,
            web_search_provider: Optional[str] = None,
            provider_id: Optional[str] = None,
            images: Optional[List[ImageAttachment]] = None,
            documents: Optional[List[DocumentAttachment]] = None,
            image_params: Optional[Dict[str, JSONValue]] = None,
            video_params: Optional[Dict[str, JSONValue]] = None
    ) -> PendingOperation:
        """Send a user message and wait for the reply.

        A local-only placeholder shows the message at once. It is replaced by
        the server record when a refresh returns it, or removed if the send
        fails. The returned operation ends CONFIRMED or FAILED.
        """
        if not content and not images and not documents:
            raise ValueError("Nothing to send")

        op = self.pending.open(conversation_id)
        if conversation_id is not None:
            conversation_id_ctx.set(conversation_id)
            await self.store.insert_placeholder(
                correlation_id=op.correlation_id, conversation_id=conversation_id, content=content, model_id=model_id
            )
            await self._set_generating(conversation_id, True)

        try:
            raw = await self.api.generate_message(
                content,
                model_id,
                conversation_id=conversation_id,
                assistant_id=assistant_id,
                project_id=project_id,
                web_search_enabled=web_search_enabled,
                web_search_mode=web_search_mode,
                web_search_provider=web_search_provider,
                provider_id=provider_id,
                client_message_id=op.correlation_id,
                images=images,
                documents=documents,
                image_params=image_params,
                video_params=video_params,
            )
            reply = decode(EntityKind.GENERATE_MESSAGE, raw)
            target = conversation_id or reply.conversation_id
            if conversation_id is None:
                op.conversation_id = target
                await self.store.insert_placeholder(
                    correlation_id=op.correlation_id, conversation_id=target, content=content, model_id=model_id
                )
            await self._poll_generation(op, target)
            self._settle()
            if op.is_pending:
                self.channel.failed(
                    op.correlation_id,
                    NetworkError("Server never confirmed the message", entity_kind="message", entity_id=op.correlation_id),
                )
        except asyncio.CancelledError:
            self.channel.failed(op.correlation_id, StaleReconciliation("Send cancelled", entity_id=op.correlation_id))
            await self._cleanup_failed(self._settle())
            raise
        except SyncError as e:
            self.channel.failed(op.correlation_id, e)

        await self._cleanup_failed(self._settle())
        self.pending.prune()
        return op

    # ------------------------------------------------------------------
    # Attachments

    async def _upload(self, data: bytes, filename: str, mime_type: str) -> StorageUploadResponse:
        if not data:
            raise ValueError(f"{filename} is empty")
        raw = await self.api.upload_file(data, filename, mime_type)
        return decode(EntityKind.STORAGE_UPLOAD, raw)

    async def upload_image(self, data: bytes, filename: Optional[str] = None) -> ImageAttachment:
        """Upload an image for a later send; the type is sniffed from its bytes"""
        mime_type = detect_image_mime_type(data) or "image/jpeg"
        filename = filename or f"image-{int(time.time())}.{image_extension(mime_type)}"
        stored = await self._upload(data, filename, mime_type)
        return ImageAttachment(url=stored.url, storage_id=stored.storage_id, file_name=filename)

    async def upload_document(self, data: bytes, filename: str) -> DocumentAttachment:
        """Upload a document for a later send; the type follows the file extension"""
        mime_type, file_type = document_type(filename)
        stored = await self._upload(data, filename, mime_type)
        return DocumentAttachment(url=stored.url, storage_id=stored.storage_id, file_name=filename, file_type=file_type)

    # ------------------------------------------------------------------
    # Other remote operations

    async def create_conversation(self, title: str = "New Chat", project_id: Optional[str] = None) -> ConversationRecord:
        dto = decode(EntityKind.CONVERSATION, await self.api.create_conversation(title, project_id))
        await self.reconciler.upsert_from_server(dto)
        return await self.get_conversation(dto.id)

    async def branch_conversation(self, conversation_id: str, from_message_id: str) -> ConversationRecord:
        raw = await self.api.branch_conversation(conversation_id, from_message_id)
        branched = decode(EntityKind.BRANCH_CONVERSATION, raw)
        await self.refresh_conversations()
        await self.refresh_messages(branched.conversation_id)
        return await self.get_conversation(branched.conversation_id)

    async def create_project(self, name: str, **fields: Any) -> ProjectResponse:
        dto = decode(EntityKind.PROJECT, await self.api.create_project(name, **fields))
        await self.reconciler.upsert_from_server(dto)
        return dto

    async def update_project(self, project_id: str, **fields: Any) -> ProjectResponse:
        dto = decode(EntityKind.PROJECT, await self.api.update_project(project_id, **fields))
        await self.reconciler.upsert_from_server(dto)
        return dto

    async def delete_project(self, project_id: str) -> Dict[str, int]:
        try:
            await self.api.delete_project(project_id)
        except NotFound:
            logger.info(f"Project {project_id} already gone remotely; pruning local copy")
        return await self.reconciler.delete_project(project_id)

    async def add_project_member(self, project_id: str, email: str, role: str = "viewer") -> ProjectMemberResponse:
        dto = decode(EntityKind.PROJECT_MEMBER, await self.api.add_project_member(project_id, email, role))
        if dto.project_id is None:
            dto = dto.model_copy(update={"project_id": project_id})
        await self.reconciler.upsert_from_server(dto)
        return dto

    async def remove_project_member(self, project_id: str, user_id: str) -> RefreshResult:
        await self.api.remove_project_member(project_id, user_id)
        return await self.refresh_project_members(project_id)

    async def delete_project_file(self, project_id: str, file_id: str) -> RefreshResult:
        try:
            await self.api.delete_project_file(project_id, file_id)
        except NotFound:
            logger.info(f"Project file {file_id} already gone remotely")
        return await self.refresh_project_files(project_id)

    async def delete_message(self, message_id: str) -> int:
        try:
            await self.api.delete_message(message_id)
        except NotFound:
            logger.info(f"Message {message_id} already gone remotely; pruning local copy")
        return await self.reconciler.delete_message(message_id)

    async def create_assistant(self, name: str, system_prompt: str, **fields: Any) -> AssistantResponse:
        dto = decode(EntityKind.ASSISTANT, await self.api.create_assistant(name, system_prompt, **fields))
        await self.reconciler.upsert_from_server(dto)
        return dto

    async def fetch_follow_up_questions(self, conversation_id: str, message_id: str) -> List[str]:
        raw = await self.api.generate_follow_up_questions(conversation_id, message_id)
        suggestions = decode(EntityKind.FOLLOW_UP_QUESTIONS, raw).suggestions
        try:
            await self.reconciler.set_follow_up_suggestions(message_id, suggestions)
        except NotFound:
            logger.debug(f"Message {message_id} not cached; follow-up suggestions not stored")
        return suggestions

    async def fetch_model_info(self, model_id: str) -> ModelInfoResponse:
        return decode(EntityKind.MODEL_INFO, await self.api.fetch_model_info(model_id))

    async def fetch_model_providers(self, model_id: str) -> ModelProvidersResponse:
        """Provider choices for a model, unavailable providers dropped"""
        response = decode(EntityKind.MODEL_PROVIDERS, await self.api.fetch_model_providers(model_id))
        return response.model_copy(update={"providers": response.available_providers()})
