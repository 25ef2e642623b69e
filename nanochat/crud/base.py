# nanochat/crud/base.py
from typing import Any, Dict, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from nanochat.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class CRUDBase(Generic[ModelType]):
    """Id-keyed access to one table. Methods flush; the caller owns the transaction."""

    def __init__(self, model: Type[ModelType]):
        self.model = model

    @property
    def pk(self):
        return self.model.__mapper__.primary_key[0]

    async def get(self, db: AsyncSession, id: Any) -> Optional[ModelType]:
        return await db.get(self.model, id)

    async def get_multi(
            self,
            db: AsyncSession,
            *,
            skip: int = 0,
            limit: Optional[int] = None
    ) -> List[ModelType]:
        query = select(self.model).order_by(self.pk).offset(skip)
        if limit is not None:
            query = query.limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def ids(self, db: AsyncSession, *criteria) -> List[str]:
        query = select(self.pk)
        if criteria:
            query = query.where(*criteria)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def upsert(self, db: AsyncSession, *, obj_in: Dict[str, Any]) -> ModelType:
        """Insert if absent, else overwrite the given columns"""
        key = obj_in[self.pk.key]
        db_obj = await db.get(self.model, key)
        if db_obj is None:
            db_obj = self.model(**obj_in)
            db.add(db_obj)
        else:
            for field, value in obj_in.items():
                setattr(db_obj, field, value)
        await db.flush()
        return db_obj

    async def remove(self, db: AsyncSession, *, id: Any) -> bool:
        db_obj = await db.get(self.model, id)
        if db_obj is None:
            return False
        await db.delete(db_obj)
        await db.flush()
        return True

    async def remove_many(self, db: AsyncSession, ids: Sequence[Any]) -> int:
        if not ids:
            return 0
        result = await db.execute(
            delete(self.model)
            .where(self.pk.in_(list(ids)))
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    async def count(self, db: AsyncSession) -> int:
        result = await db.execute(select(func.count()).select_from(self.model))
        return int(result.scalar() or 0)
