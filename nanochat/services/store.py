"""
Local entity store.

Flat tables keyed by server id, read through frozen snapshots. Every public
call runs in exactly one transaction so readers never observe a partially
applied write; medium failures surface as StoreIOError.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from nanochat.core.exceptions import NotFound, StoreIOError
from nanochat.crud import (
    crud_assistant,
    crud_catalog,
    crud_conversation,
    crud_message,
    crud_message_document,
    crud_message_image,
    crud_project,
    crud_project_file,
    crud_project_member,
    crud_user_settings,
)
from nanochat.crud.conversation import ANY
from nanochat.crud.message import placeholder_id
from nanochat.db.models import Message
from nanochat.db.session import create_session_factory
from nanochat.observability.metrics import inc_counter
from nanochat.schemas import (
    AssistantResponse,
    ConversationResponse,
    MessageResponse,
    ProjectFileResponse,
    ProjectMemberResponse,
    ProjectResponse,
    UserModel,
    UserSettings,
)
from nanochat.schemas.common import utcnow
from nanochat.schemas.records import ConversationFilter, ConversationRecord, MessageRecord, MessageSearch

logger = logging.getLogger(__name__)


class LocalStore:
    """Durable cache of conversations, messages, projects, assistants and settings"""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @classmethod
    def from_engine(cls, engine: AsyncEngine) -> "LocalStore":
        return cls(create_session_factory(engine))

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """One atomic unit of work; commits on success, rolls back on any error"""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except (SQLAlchemyError, OSError) as e:
            inc_counter("store_errors_total", error=type(e).__name__)
            logger.error(f"Local store failure: {e}")
            raise StoreIOError(str(e)) from e

    # ------------------------------------------------------------------
    # Snapshots

    @staticmethod
    def _conversation(row) -> ConversationRecord:
        return ConversationRecord.model_validate(row, from_attributes=True)

    async def _messages(self, db: AsyncSession, rows: Sequence[Message]) -> List[MessageRecord]:
        attachments = await crud_message.attachments_for(db, [row.id for row in rows])
        records = []
        for row in rows:
            found = attachments.get(row.id, {})
            images = [
                {"url": i.url, "storage_id": i.storage_id, "file_name": i.file_name}
                for i in found.get("images", [])
            ]
            documents = [
                {"url": d.url, "storage_id": d.storage_id, "file_name": d.file_name, "file_type": d.file_type}
                for d in found.get("documents", [])
            ]
            records.append(MessageRecord.model_validate({
                "id": row.id,
                "conversation_id": row.conversation_id,
                "role": row.role,
                "content": row.content,
                "content_html": row.content_html,
                "model_id": row.model_id,
                "reasoning": row.reasoning,
                "starred": row.starred,
                "images": images or None,
                "documents": documents or None,
                "created_at": row.created_at,
                "updated_at": row.updated_at,
                "follow_up_suggestions": row.follow_up_suggestions,
                "sequence": row.sequence,
                "local_only": row.local_only,
                "correlation_id": row.correlation_id,
            }))
        return records

    # ------------------------------------------------------------------
    # Reads

    async def get_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        async with self.transaction() as db:
            row = await crud_conversation.get(db, conversation_id)
            return self._conversation(row) if row else None

    async def list_conversations(self, filters: Optional[ConversationFilter] = None) -> List[ConversationRecord]:
        filters = filters or ConversationFilter()
        if filters.without_project:
            project_id = None
        elif filters.project_id is not None:
            project_id = filters.project_id
        else:
            project_id = ANY
        async with self.transaction() as db:
            rows = await crud_conversation.get_filtered(
                db,
                user_id=filters.user_id,
                project_id=project_id,
                pinned=filters.pinned,
                search=filters.search,
                skip=filters.skip,
                limit=filters.limit,
            )
            return [self._conversation(row) for row in rows]

    async def get_message(self, message_id: str) -> Optional[MessageRecord]:
        async with self.transaction() as db:
            row = await crud_message.get(db, message_id)
            if row is None:
                return None
            return (await self._messages(db, [row]))[0]

    async def list_messages(self, conversation_id: str, *, limit: Optional[int] = None) -> List[MessageRecord]:
        async with self.transaction() as db:
            rows = await crud_message.get_conversation_messages(db, conversation_id=conversation_id, limit=limit)
            return await self._messages(db, rows)

    async def list_starred_messages(self) -> List[MessageRecord]:
        async with self.transaction() as db:
            rows = await crud_message.get_starred(db)
            return await self._messages(db, rows)

    async def search_messages(self, criteria: MessageSearch) -> List[MessageRecord]:
        async with self.transaction() as db:
            conversation_ids = None
            if criteria.conversation_id is not None:
                conversation_ids = [criteria.conversation_id]
            if criteria.project_id is not None:
                in_project = await crud_conversation.ids_in_scope(db, project_id=criteria.project_id)
                if conversation_ids is None:
                    conversation_ids = in_project
                else:
                    conversation_ids = [c for c in conversation_ids if c in in_project]
            rows = await crud_message.search(
                db,
                text=criteria.text,
                conversation_ids=conversation_ids,
                role=criteria.role,
                model_id=criteria.model_id,
                starred=criteria.starred,
                has_attachments=criteria.has_attachments,
                since=criteria.since,
                until=criteria.until,
                limit=criteria.limit,
            )
            return await self._messages(db, rows)

    async def get_project(self, project_id: str) -> Optional[ProjectResponse]:
        async with self.transaction() as db:
            row = await crud_project.get(db, project_id)
            return ProjectResponse.model_validate(row, from_attributes=True) if row else None

    async def list_projects(self) -> List[ProjectResponse]:
        async with self.transaction() as db:
            rows = await crud_project.get_all(db)
            return [ProjectResponse.model_validate(row, from_attributes=True) for row in rows]

    async def list_project_members(self, project_id: str) -> List[ProjectMemberResponse]:
        async with self.transaction() as db:
            rows = await crud_project_member.get_for_project(db, project_id=project_id)
            return [ProjectMemberResponse.model_validate(row, from_attributes=True) for row in rows]

    async def list_project_files(self, project_id: str) -> List[ProjectFileResponse]:
        async with self.transaction() as db:
            rows = await crud_project_file.get_for_project(db, project_id=project_id)
            return [ProjectFileResponse.model_validate(row, from_attributes=True) for row in rows]

    async def list_assistants(self) -> List[AssistantResponse]:
        async with self.transaction() as db:
            rows = await crud_assistant.get_all(db)
            return [AssistantResponse.model_validate(row, from_attributes=True) for row in rows]

    async def get_default_assistant(self) -> Optional[AssistantResponse]:
        async with self.transaction() as db:
            row = await crud_assistant.get_default(db)
            return AssistantResponse.model_validate(row, from_attributes=True) if row else None

    async def get_user_settings(self, user_id: str) -> Optional[UserSettings]:
        async with self.transaction() as db:
            row = await crud_user_settings.get_by_user(db, user_id=user_id)
            return UserSettings.model_validate(row, from_attributes=True) if row else None

    async def list_models(self, *, provider: Optional[str] = None, enabled_only: bool = False) -> List[UserModel]:
        async with self.transaction() as db:
            rows = await crud_catalog.get_filtered(db, provider=provider, enabled_only=enabled_only)
            return [UserModel.model_validate(row.payload) for row in rows]

    async def counts(self) -> Dict[str, int]:
        """Row count per table"""
        tables = {
            "conversations": crud_conversation,
            "messages": crud_message,
            "message_images": crud_message_image,
            "message_documents": crud_message_document,
            "projects": crud_project,
            "project_members": crud_project_member,
            "project_files": crud_project_file,
            "assistants": crud_assistant,
            "user_settings": crud_user_settings,
            "model_catalog": crud_catalog,
        }
        async with self.transaction() as db:
            return {name: await crud.count(db) for name, crud in tables.items()}

    # ------------------------------------------------------------------
    # Writes inside a caller's transaction

    async def apply(self, db: AsyncSession, dto: Any, **kwargs: Any) -> Any:
        """Upsert one server DTO; dispatches on its type"""
        if isinstance(dto, ConversationResponse):
            row = await crud_conversation.upsert_dto(db, dto)
        elif isinstance(dto, MessageResponse):
            row = await crud_message.upsert_dto(db, dto, **kwargs)
        elif isinstance(dto, ProjectResponse):
            row = await crud_project.upsert_dto(db, dto)
        elif isinstance(dto, ProjectMemberResponse):
            row = await crud_project_member.upsert_dto(db, dto, **kwargs)
        elif isinstance(dto, ProjectFileResponse):
            row = await crud_project_file.upsert_dto(db, dto)
        elif isinstance(dto, AssistantResponse):
            row = await crud_assistant.upsert_dto(db, dto)
        elif isinstance(dto, UserSettings):
            row = await crud_user_settings.upsert_dto(db, dto)
        elif isinstance(dto, UserModel):
            row = await crud_catalog.upsert_model(db, dto, **kwargs)
        else:
            raise TypeError(f"No store table for {type(dto).__name__}")
        inc_counter("sync_upserts_total", kind=type(dto).__name__)
        return row

    # ------------------------------------------------------------------
    # Writes, one transaction each

    async def upsert(self, dto: Any) -> Any:
        async with self.transaction() as db:
            await self.apply(db, dto)
        return dto

    async def delete_conversation_cascade(self, conversation_id: str) -> Dict[str, int]:
        """Remove a conversation with all its messages and their attachments"""
        async with self.transaction() as db:
            removed = await crud_conversation.remove_cascade(db, [conversation_id])
        inc_counter("sync_deletes_total", kind="conversation")
        logger.info(
            f"Deleted conversation {conversation_id}: {removed['messages']} message(s), "
            f"{removed['attachments']} attachment(s)"
        )
        return removed

    async def delete_message_cascade(self, message_id: str) -> int:
        async with self.transaction() as db:
            removed = await crud_message.remove_cascade(db, [message_id])
        inc_counter("sync_deletes_total", kind="message")
        return removed

    async def delete_project_cascade(self, project_id: str) -> Dict[str, int]:
        """Remove a project with its members and files; its conversations stay, detached"""
        async with self.transaction() as db:
            removed = await crud_project.remove_cascade(db, [project_id])
            await crud_conversation.detach_project(db, project_id=project_id)
        inc_counter("sync_deletes_total", kind="project")
        return removed

    async def delete_assistant(self, assistant_id: str) -> bool:
        async with self.transaction() as db:
            return await crud_assistant.remove(db, id=assistant_id)

    async def set_conversation_flags(self, conversation_id: str, **values: Any) -> ConversationRecord:
        async with self.transaction() as db:
            row = await crud_conversation.set_flag(db, conversation_id=conversation_id, **values)
            if row is None:
                raise NotFound(entity_kind="conversation", entity_id=conversation_id)
            return self._conversation(row)

    async def set_message_fields(self, message_id: str, **values: Any) -> MessageRecord:
        async with self.transaction() as db:
            row = await crud_message.get(db, message_id)
            if row is None:
                raise NotFound(entity_kind="message", entity_id=message_id)
            for field, value in values.items():
                setattr(row, field, value)
            await db.flush()
            return (await self._messages(db, [row]))[0]

    async def set_model_flags(self, model_id: str, **flags: bool) -> UserModel:
        async with self.transaction() as db:
            row = await crud_catalog.set_flags(db, model_id=model_id, **flags)
            if row is None:
                raise NotFound(entity_kind="user_model", entity_id=model_id)
            return UserModel.model_validate(row.payload)

    async def insert_placeholder(
            self,
            *,
            correlation_id: str,
            conversation_id: str,
            content: str,
            role: str = "user",
            model_id: Optional[str] = None,
            created_at: Optional[datetime] = None
    ) -> MessageRecord:
        """Insert a local-only message standing in for one the server has not confirmed yet"""
        async with self.transaction() as db:
            row = Message(
                id=placeholder_id(correlation_id),
                conversation_id=conversation_id,
                role=role,
                content=content,
                model_id=model_id,
                starred=False,
                created_at=created_at or utcnow(),
                sequence=await crud_message.next_sequence(db, conversation_id),
                local_only=True,
                correlation_id=correlation_id,
            )
            db.add(row)
            await db.flush()
            return (await self._messages(db, [row]))[0]

    async def remove_placeholder(self, correlation_id: str) -> bool:
        async with self.transaction() as db:
            row = await crud_message.get_by_correlation(db, correlation_id)
            if row is None or not row.local_only:
                return False
            await crud_message.remove_cascade(db, [row.id])
            return True
