# nanochat/crud/project.py
from typing import Any, Dict, List

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from nanochat.crud.base import CRUDBase
from nanochat.db.models.project import Project, ProjectFile, ProjectMember
from nanochat.schemas.project import ProjectFileResponse, ProjectMemberResponse, ProjectResponse


class CRUDProject(CRUDBase[Project]):
    async def upsert_dto(self, db: AsyncSession, dto: ProjectResponse) -> Project:
        return await self.upsert(db, obj_in=dto.model_dump())

    async def get_all(self, db: AsyncSession) -> List[Project]:
        result = await db.execute(select(Project).order_by(Project.updated_at.desc(), Project.id))
        return list(result.scalars().all())

    async def remove_cascade(self, db: AsyncSession, ids: List[str]) -> Dict[str, int]:
        """Delete projects with their members and files"""
        if not ids:
            return {"projects": 0, "members": 0, "files": 0}
        members = await db.execute(
            delete(ProjectMember).where(ProjectMember.project_id.in_(ids))
            .execution_options(synchronize_session="fetch")
        )
        files = await db.execute(
            delete(ProjectFile).where(ProjectFile.project_id.in_(ids))
            .execution_options(synchronize_session="fetch")
        )
        projects = await db.execute(
            delete(Project).where(Project.id.in_(ids))
            .execution_options(synchronize_session="fetch")
        )
        return {
            "projects": projects.rowcount or 0,
            "members": members.rowcount or 0,
            "files": files.rowcount or 0,
        }


class CRUDProjectMember(CRUDBase[ProjectMember]):
    @staticmethod
    def columns_from_dto(dto: ProjectMemberResponse, project_id: str = None) -> Dict[str, Any]:
        data = dto.model_dump(exclude={"user"})
        # Members listed under a project inherit its id when the payload omits it
        if data.get("project_id") is None:
            data["project_id"] = project_id
        data["user"] = dto.user.model_dump(exclude_none=True)
        return data

    async def upsert_dto(self, db: AsyncSession, dto: ProjectMemberResponse, *, project_id: str = None) -> ProjectMember:
        return await self.upsert(db, obj_in=self.columns_from_dto(dto, project_id))

    async def get_for_project(self, db: AsyncSession, *, project_id: str) -> List[ProjectMember]:
        result = await db.execute(
            select(ProjectMember).where(ProjectMember.project_id == project_id).order_by(ProjectMember.id)
        )
        return list(result.scalars().all())

    async def ids_for_project(self, db: AsyncSession, *, project_id: str) -> List[str]:
        return await self.ids(db, ProjectMember.project_id == project_id)


class CRUDProjectFile(CRUDBase[ProjectFile]):
    @staticmethod
    def columns_from_dto(dto: ProjectFileResponse) -> Dict[str, Any]:
        data = dto.model_dump(exclude={"storage"})
        data["storage"] = dto.storage.model_dump(exclude_none=True) if dto.storage else None
        return data

    async def upsert_dto(self, db: AsyncSession, dto: ProjectFileResponse) -> ProjectFile:
        return await self.upsert(db, obj_in=self.columns_from_dto(dto))

    async def get_for_project(self, db: AsyncSession, *, project_id: str) -> List[ProjectFile]:
        result = await db.execute(
            select(ProjectFile).where(ProjectFile.project_id == project_id)
            .order_by(ProjectFile.created_at, ProjectFile.id)
        )
        return list(result.scalars().all())

    async def ids_for_project(self, db: AsyncSession, *, project_id: str) -> List[str]:
        return await self.ids(db, ProjectFile.project_id == project_id)


# Create instances
crud_project = CRUDProject(Project)
crud_project_member = CRUDProjectMember(ProjectMember)
crud_project_file = CRUDProjectFile(ProjectFile)
