# nanochat/crud/conversation.py
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from nanochat.crud.base import CRUDBase
from nanochat.db.models.conversation import Conversation
from nanochat.db.models.message import Message, MessageDocument, MessageImage
from nanochat.schemas.conversation import ConversationResponse

# Distinguishes "any project" from "no project" in filters
ANY = object()


class CRUDConversation(CRUDBase[Conversation]):
    @staticmethod
    def columns_from_dto(dto: ConversationResponse) -> Dict[str, Any]:
        data = dto.model_dump(exclude={"is_public"})
        data["is_public"] = dto.public
        return data

    async def upsert_dto(self, db: AsyncSession, dto: ConversationResponse) -> Conversation:
        return await self.upsert(db, obj_in=self.columns_from_dto(dto))

    async def get_filtered(
            self,
            db: AsyncSession,
            *,
            user_id: Optional[str] = None,
            project_id: Any = ANY,
            pinned: Optional[bool] = None,
            search: Optional[str] = None,
            skip: int = 0,
            limit: Optional[int] = None
    ) -> List[Conversation]:
        """Conversations matching the filters, pinned first then most recently updated"""
        query = select(Conversation)
        if user_id is not None:
            query = query.where(Conversation.user_id == user_id)
        if project_id is not ANY:
            query = query.where(Conversation.project_id == project_id if project_id is not None
                                else Conversation.project_id.is_(None))
        if pinned is not None:
            query = query.where(Conversation.pinned == pinned)
        if search:
            query = query.where(Conversation.title.ilike(f"%{search}%"))

        query = query.order_by(Conversation.pinned.desc(), Conversation.updated_at.desc(), Conversation.id)
        query = query.offset(skip)
        if limit is not None:
            query = query.limit(limit)

        result = await db.execute(query)
        return list(result.scalars().all())

    async def ids_in_scope(self, db: AsyncSession, *, project_id: Optional[str] = None) -> List[str]:
        if project_id is None:
            return await self.ids(db)
        return await self.ids(db, Conversation.project_id == project_id)

    async def set_flag(self, db: AsyncSession, *, conversation_id: str, **values: Any) -> Optional[Conversation]:
        conversation = await self.get(db, conversation_id)
        if conversation is None:
            return None
        for field, value in values.items():
            setattr(conversation, field, value)
        await db.flush()
        return conversation

    async def remove_cascade(self, db: AsyncSession, ids: Sequence[str]) -> Dict[str, int]:
        """Delete conversations with their messages and attachments"""
        if not ids:
            return {"conversations": 0, "messages": 0, "attachments": 0}
        ids = list(ids)
        message_ids = select(Message.id).where(Message.conversation_id.in_(ids)).scalar_subquery()

        images = await db.execute(
            delete(MessageImage).where(MessageImage.message_id.in_(message_ids))
            .execution_options(synchronize_session="fetch")
        )
        documents = await db.execute(
            delete(MessageDocument).where(MessageDocument.message_id.in_(message_ids))
            .execution_options(synchronize_session="fetch")
        )
        messages = await db.execute(
            delete(Message).where(Message.conversation_id.in_(ids))
            .execution_options(synchronize_session="fetch")
        )
        conversations = await db.execute(
            delete(Conversation).where(Conversation.id.in_(ids))
            .execution_options(synchronize_session="fetch")
        )
        return {
            "conversations": conversations.rowcount or 0,
            "messages": messages.rowcount or 0,
            "attachments": (images.rowcount or 0) + (documents.rowcount or 0),
        }

    async def detach_project(self, db: AsyncSession, *, project_id: str) -> None:
        await db.execute(
            update(Conversation).where(Conversation.project_id == project_id)
            .values(project_id=None)
            .execution_options(synchronize_session="fetch")
        )


# Create instance
crud_conversation = CRUDConversation(Conversation)
