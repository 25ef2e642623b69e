# nanochat/api/v1/endpoints/projects.py
from typing import List

from fastapi import APIRouter, Depends

from nanochat.api.dependencies import get_sync
from nanochat.api.v1.endpoints.conversations import _refresh_summary
from nanochat.schemas import ProjectFileResponse, ProjectMemberResponse, ProjectResponse
from nanochat.services.sync import SyncService

router = APIRouter()


@router.get("/", response_model=List[ProjectResponse])
async def list_projects(sync: SyncService = Depends(get_sync)):
    return await sync.list_projects()


@router.post("/refresh")
async def refresh_projects(sync: SyncService = Depends(get_sync)):
    return _refresh_summary(await sync.refresh_projects())


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: str, sync: SyncService = Depends(get_sync)):
    return await sync.get_project(project_id)


@router.get("/{project_id}/members", response_model=List[ProjectMemberResponse])
async def list_members(project_id: str, sync: SyncService = Depends(get_sync)):
    return await sync.list_project_members(project_id)


@router.get("/{project_id}/files", response_model=List[ProjectFileResponse])
async def list_files(project_id: str, sync: SyncService = Depends(get_sync)):
    return await sync.list_project_files(project_id)
