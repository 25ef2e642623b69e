# nanochat/crud/message.py
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, exists, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from nanochat.crud.base import CRUDBase
from nanochat.db.models.message import Message, MessageDocument, MessageImage
from nanochat.schemas.message import MessageResponse

PLACEHOLDER_PREFIX = "local:"


def image_id(message_id: str, position: int) -> str:
    return f"{message_id}:image:{position}"


def document_id(message_id: str, position: int) -> str:
    return f"{message_id}:document:{position}"


def placeholder_id(correlation_id: str) -> str:
    return f"{PLACEHOLDER_PREFIX}{correlation_id}"


class CRUDMessage(CRUDBase[Message]):
    @staticmethod
    def columns_from_dto(dto: MessageResponse) -> Dict[str, Any]:
        return dto.model_dump(exclude={"images", "documents", "client_message_id"})

    async def next_sequence(self, db: AsyncSession, conversation_id: str) -> int:
        result = await db.execute(
            select(func.max(Message.sequence)).where(Message.conversation_id == conversation_id)
        )
        current = result.scalar()
        return 0 if current is None else current + 1

    async def upsert_dto(
            self,
            db: AsyncSession,
            dto: MessageResponse,
            *,
            sequence: Optional[int] = None
    ) -> Message:
        """Upsert a server message and replace its attachments"""
        data = self.columns_from_dto(dto)
        existing = await self.get(db, dto.id)
        if existing is not None and existing.conversation_id == dto.conversation_id:
            data["sequence"] = existing.sequence if sequence is None else sequence
        else:
            data["sequence"] = sequence if sequence is not None else await self.next_sequence(db, dto.conversation_id)
        data["local_only"] = False
        data["correlation_id"] = None
        message = await self.upsert(db, obj_in=data)
        await self.replace_attachments(db, dto)
        return message

    async def replace_attachments(self, db: AsyncSession, dto: MessageResponse) -> None:
        images = dto.images or []
        documents = dto.documents or []

        keep_images = []
        for position, image in enumerate(images):
            row_id = image_id(dto.id, position)
            keep_images.append(row_id)
            await crud_message_image.upsert(db, obj_in={
                "id": row_id,
                "message_id": dto.id,
                "position": position,
                "url": image.url,
                "storage_id": image.storage_id,
                "file_name": image.file_name,
            })

        keep_documents = []
        for position, document in enumerate(documents):
            row_id = document_id(dto.id, position)
            keep_documents.append(row_id)
            await crud_message_document.upsert(db, obj_in={
                "id": row_id,
                "message_id": dto.id,
                "position": position,
                "url": document.url,
                "storage_id": document.storage_id,
                "file_name": document.file_name,
                "file_type": document.file_type,
            })

        await db.execute(
            delete(MessageImage)
            .where(MessageImage.message_id == dto.id, MessageImage.id.notin_(keep_images))
            .execution_options(synchronize_session="fetch")
        )
        await db.execute(
            delete(MessageDocument)
            .where(MessageDocument.message_id == dto.id, MessageDocument.id.notin_(keep_documents))
            .execution_options(synchronize_session="fetch")
        )

    async def get_conversation_messages(
            self,
            db: AsyncSession,
            *,
            conversation_id: str,
            limit: Optional[int] = None
    ) -> List[Message]:
        """Messages in insertion order; `limit` keeps the last N"""
        query = select(Message).where(Message.conversation_id == conversation_id)
        if limit is not None:
            query = query.order_by(Message.sequence.desc()).limit(limit)
            result = await db.execute(query)
            return list(reversed(result.scalars().all()))
        query = query.order_by(Message.sequence)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def get_starred(self, db: AsyncSession) -> List[Message]:
        query = select(Message).where(Message.starred.is_(True)).order_by(Message.created_at.desc())
        result = await db.execute(query)
        return list(result.scalars().all())

    async def search(
            self,
            db: AsyncSession,
            *,
            text: Optional[str] = None,
            conversation_ids: Optional[Sequence[str]] = None,
            role: Optional[str] = None,
            model_id: Optional[str] = None,
            starred: Optional[bool] = None,
            has_attachments: Optional[bool] = None,
            since: Optional[datetime] = None,
            until: Optional[datetime] = None,
            limit: Optional[int] = None
    ) -> List[Message]:
        """Newest-first message search over the local store"""
        query = select(Message).where(Message.local_only.is_(False))
        if text:
            pattern = f"%{text}%"
            query = query.where(or_(Message.content.ilike(pattern), Message.reasoning.ilike(pattern)))
        if conversation_ids is not None:
            query = query.where(Message.conversation_id.in_(list(conversation_ids)))
        if role is not None:
            query = query.where(Message.role == role)
        if model_id is not None:
            query = query.where(Message.model_id == model_id)
        if starred is not None:
            query = query.where(Message.starred == starred)
        if has_attachments is not None:
            attached = or_(
                exists().where(MessageImage.message_id == Message.id),
                exists().where(MessageDocument.message_id == Message.id),
            )
            query = query.where(attached if has_attachments else ~attached)
        if since is not None:
            query = query.where(Message.created_at >= since)
        if until is not None:
            query = query.where(Message.created_at <= until)

        query = query.order_by(Message.created_at.desc(), Message.id)
        if limit is not None:
            query = query.limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def attachments_for(
            self,
            db: AsyncSession,
            message_ids: Sequence[str]
    ) -> Dict[str, Dict[str, list]]:
        """Images and documents per message id, in position order"""
        grouped: Dict[str, Dict[str, list]] = {}
        if not message_ids:
            return grouped
        ids = list(message_ids)
        images = await db.execute(
            select(MessageImage).where(MessageImage.message_id.in_(ids)).order_by(MessageImage.position)
        )
        for image in images.scalars():
            grouped.setdefault(image.message_id, {"images": [], "documents": []})["images"].append(image)
        documents = await db.execute(
            select(MessageDocument).where(MessageDocument.message_id.in_(ids)).order_by(MessageDocument.position)
        )
        for document in documents.scalars():
            grouped.setdefault(document.message_id, {"images": [], "documents": []})["documents"].append(document)
        return grouped

    async def ids_in_conversation(self, db: AsyncSession, conversation_id: str) -> List[str]:
        """Server-confirmed message ids; placeholders are excluded"""
        return await self.ids(db, Message.conversation_id == conversation_id, Message.local_only.is_(False))

    async def get_placeholders(self, db: AsyncSession, conversation_id: str) -> List[Message]:
        """Local-only placeholders of a conversation, oldest first"""
        query = (
            select(Message)
            .where(Message.conversation_id == conversation_id, Message.local_only.is_(True))
            .order_by(Message.sequence)
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    async def resequence(self, db: AsyncSession, conversation_id: str, ordered_ids: Sequence[str]) -> None:
        """Renumber a conversation to follow `ordered_ids`; rows not listed keep their relative order after them"""
        rows = await self.get_conversation_messages(db, conversation_id=conversation_id)
        rank = {id: position for position, id in enumerate(ordered_ids)}
        listed = sorted((row for row in rows if row.id in rank), key=lambda row: rank[row.id])
        rest = [row for row in rows if row.id not in rank]
        for sequence, row in enumerate(listed + rest):
            row.sequence = sequence
        await db.flush()

    async def get_by_correlation(self, db: AsyncSession, correlation_id: str) -> Optional[Message]:
        result = await db.execute(select(Message).where(Message.correlation_id == correlation_id))
        return result.scalar_one_or_none()

    async def remove_cascade(self, db: AsyncSession, ids: Sequence[str]) -> int:
        """Delete messages and their attachments"""
        if not ids:
            return 0
        ids = list(ids)
        await db.execute(
            delete(MessageImage).where(MessageImage.message_id.in_(ids))
            .execution_options(synchronize_session="fetch")
        )
        await db.execute(
            delete(MessageDocument).where(MessageDocument.message_id.in_(ids))
            .execution_options(synchronize_session="fetch")
        )
        result = await db.execute(
            delete(Message).where(Message.id.in_(ids))
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0


# Create instances
crud_message = CRUDMessage(Message)
crud_message_image = CRUDBase(MessageImage)
crud_message_document = CRUDBase(MessageDocument)
