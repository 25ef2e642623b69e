# nanochat/api/v1/endpoints/models.py
from typing import List

from fastapi import APIRouter, Depends

from nanochat.api.dependencies import get_sync
from nanochat.api.v1.endpoints.conversations import _refresh_summary
from nanochat.schemas import ModelGroup, UserModel
from nanochat.services.sync import SyncService

router = APIRouter()


@router.get("/", response_model=List[UserModel])
async def list_models(enabled_only: bool = False, sync: SyncService = Depends(get_sync)):
    return await sync.list_models(enabled_only=enabled_only)


@router.get("/grouped", response_model=List[ModelGroup])
async def grouped_models(sync: SyncService = Depends(get_sync)):
    """Enabled models grouped by provider, pinned first"""
    return await sync.list_model_groups(enabled_only=True)


@router.post("/refresh")
async def refresh_models(sync: SyncService = Depends(get_sync)):
    return _refresh_summary(await sync.refresh_models())
