# nanochat/api/v1/endpoints/assistants.py
from typing import List

from fastapi import APIRouter, Depends

from nanochat.api.dependencies import get_sync
from nanochat.api.v1.endpoints.conversations import _refresh_summary
from nanochat.schemas import AssistantResponse
from nanochat.services.sync import SyncService

router = APIRouter()


@router.get("/", response_model=List[AssistantResponse])
async def list_assistants(sync: SyncService = Depends(get_sync)):
    return await sync.list_assistants()


@router.post("/refresh")
async def refresh_assistants(sync: SyncService = Depends(get_sync)):
    return _refresh_summary(await sync.refresh_assistants())
