# nanochat/crud/assistant.py
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from nanochat.crud.base import CRUDBase
from nanochat.db.models.assistant import Assistant
from nanochat.schemas.assistant import AssistantResponse


class CRUDAssistant(CRUDBase[Assistant]):
    async def upsert_dto(self, db: AsyncSession, dto: AssistantResponse) -> Assistant:
        return await self.upsert(db, obj_in=dto.model_dump())

    async def get_all(self, db: AsyncSession) -> List[Assistant]:
        result = await db.execute(select(Assistant).order_by(Assistant.name, Assistant.id))
        return list(result.scalars().all())

    async def get_default(self, db: AsyncSession) -> Optional[Assistant]:
        """First flagged assistant by id; several may carry the flag"""
        result = await db.execute(
            select(Assistant).where(Assistant.is_default.is_(True)).order_by(Assistant.id).limit(1)
        )
        return result.scalar_one_or_none()


crud_assistant = CRUDAssistant(Assistant)
