# nanochat/crud/model_catalog.py
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from nanochat.crud.base import CRUDBase
from nanochat.db.models.model_catalog import CatalogModel
from nanochat.schemas.model_catalog import UserModel


class CRUDCatalog(CRUDBase[CatalogModel]):
    async def upsert_model(self, db: AsyncSession, model: UserModel, *, position: int = 0) -> CatalogModel:
        return await self.upsert(db, obj_in={
            "model_id": model.model_id,
            "provider": model.provider,
            "enabled": model.enabled,
            "pinned": model.pinned,
            "position": position,
            "payload": model.to_wire(),
        })

    async def get_filtered(
            self,
            db: AsyncSession,
            *,
            provider: Optional[str] = None,
            enabled_only: bool = False
    ) -> List[CatalogModel]:
        query = select(CatalogModel)
        if provider is not None:
            query = query.where(CatalogModel.provider == provider)
        if enabled_only:
            query = query.where(CatalogModel.enabled.is_(True))
        query = query.order_by(CatalogModel.position, CatalogModel.model_id)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def set_flags(self, db: AsyncSession, *, model_id: str, **flags: bool) -> Optional[CatalogModel]:
        row = await self.get(db, model_id)
        if row is None:
            return None
        payload = dict(row.payload)
        for name, value in flags.items():
            setattr(row, name, value)
            payload[name] = value
        # JSON columns are not mutation-tracked; assign a new dict
        row.payload = payload
        await db.flush()
        return row


crud_catalog = CRUDCatalog(CatalogModel)
