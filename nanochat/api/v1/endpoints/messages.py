# nanochat/api/v1/endpoints/messages.py
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from nanochat.api.dependencies import get_sync
from nanochat.schemas.records import MessageRecord, MessageSearch
from nanochat.services.sync import SyncService

router = APIRouter()


class StarRequest(BaseModel):
    starred: bool = True


@router.get("/starred", response_model=List[MessageRecord])
async def starred_messages(sync: SyncService = Depends(get_sync)):
    return await sync.list_starred_messages()


@router.post("/search", response_model=List[MessageRecord])
async def search_messages(criteria: MessageSearch, sync: SyncService = Depends(get_sync)):
    return await sync.search_messages(criteria)


@router.post("/{message_id}/star", response_model=MessageRecord)
async def star_message(message_id: str, body: StarRequest, sync: SyncService = Depends(get_sync)):
    """Optimistically set the starred flag, then confirm with the server"""
    return await sync.set_starred(message_id, body.starred)
