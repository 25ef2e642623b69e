# nanochat/crud/user_settings.py
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from nanochat.crud.base import CRUDBase
from nanochat.db.models.user_settings import UserSettingsRow
from nanochat.schemas.user_settings import UserSettings


class CRUDUserSettings(CRUDBase[UserSettingsRow]):
    async def get_by_user(self, db: AsyncSession, *, user_id: str) -> Optional[UserSettingsRow]:
        result = await db.execute(select(UserSettingsRow).where(UserSettingsRow.user_id == user_id))
        return result.scalar_one_or_none()

    async def upsert_dto(self, db: AsyncSession, dto: UserSettings) -> UserSettingsRow:
        # One row per user: a new server id for the same user replaces the old row
        await db.execute(
            delete(UserSettingsRow)
            .where(UserSettingsRow.user_id == dto.user_id, UserSettingsRow.id != dto.id)
            .execution_options(synchronize_session="fetch")
        )
        return await self.upsert(db, obj_in=dto.model_dump())


crud_user_settings = CRUDUserSettings(UserSettingsRow)
