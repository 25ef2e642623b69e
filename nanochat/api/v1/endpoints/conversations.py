# nanochat/api/v1/endpoints/conversations.py
import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel

from nanochat.api.dependencies import get_sync
from nanochat.schemas import DocumentAttachment, ImageAttachment
from nanochat.schemas.records import ConversationFilter, ConversationRecord, MessageRecord
from nanochat.services import export
from nanochat.services.sync import SyncService
from nanochat.utils.retry import async_retry

logger = logging.getLogger(__name__)

router = APIRouter()


def _refresh_summary(result) -> dict:
    return {
        "upserted": result.report.upserted,
        "deleted": result.report.deleted,
        "confirmed": result.report.confirmed,
        "failures": [
            {"index": f.index, "id": f.entity_id, "error": str(f.error)}
            for f in result.failures
        ],
    }


@router.get("/", response_model=List[ConversationRecord])
async def list_conversations(
        project_id: Optional[str] = None,
        pinned: Optional[bool] = None,
        search: Optional[str] = None,
        skip: int = Query(0, ge=0),
        limit: Optional[int] = Query(None, ge=1, le=500),
        sync: SyncService = Depends(get_sync)
):
    """Cached conversations"""
    return await sync.list_conversations(
        ConversationFilter(project_id=project_id, pinned=pinned, search=search, skip=skip, limit=limit)
    )


@router.post("/refresh")
async def refresh_conversations(
        project_id: Optional[str] = None,
        search: Optional[str] = None,
        sync: SyncService = Depends(get_sync)
):
    """Fetch conversations from the server and reconcile the cache"""
    result = await async_retry(lambda: sync.refresh_conversations(project_id=project_id, search=search))
    return _refresh_summary(result)


@router.get("/{conversation_id}", response_model=ConversationRecord)
async def get_conversation(conversation_id: str, sync: SyncService = Depends(get_sync)):
    return await sync.get_conversation(conversation_id)


@router.delete("/{conversation_id}")
async def delete_conversation(conversation_id: str, sync: SyncService = Depends(get_sync)):
    """Delete remotely and cascade locally"""
    removed = await sync.delete_cascade(conversation_id)
    logger.info(f"Conversation {conversation_id} deleted")
    return {"deleted": conversation_id, "removed": removed}


@router.post("/{conversation_id}/pin", response_model=ConversationRecord)
async def toggle_pin(conversation_id: str, sync: SyncService = Depends(get_sync)):
    return await sync.toggle_pinned(conversation_id)


@router.get("/{conversation_id}/messages", response_model=List[MessageRecord])
async def get_messages(
        conversation_id: str,
        limit: Optional[int] = Query(None, ge=1),
        sync: SyncService = Depends(get_sync)
):
    return await sync.get_messages(conversation_id, limit=limit)


@router.post("/{conversation_id}/messages/refresh")
async def refresh_messages(conversation_id: str, sync: SyncService = Depends(get_sync)):
    result = await async_retry(lambda: sync.refresh_messages(conversation_id))
    return _refresh_summary(result)


@router.get("/{conversation_id}/export")
async def export_conversation(
        conversation_id: str,
        format: Literal["markdown", "text", "json"] = "markdown",
        sync: SyncService = Depends(get_sync)
) -> Response:
    conversation = await sync.get_conversation(conversation_id)
    messages = [m for m in await sync.get_messages(conversation_id) if not m.local_only]
    body = export.render(format, conversation, messages)
    _, media_type = export.FORMATS[format]
    filename = export.export_filename(conversation.title, format)
    return PlainTextResponse(
        body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


class SendRequest(BaseModel):
    content: str
    model_id: str
    assistant_id: Optional[str] = None
    web_search_enabled: bool = False
    images: List[ImageAttachment] = []
    documents: List[DocumentAttachment] = []


@router.post("/{conversation_id}/messages")
async def send_message(conversation_id: str, body: SendRequest, sync: SyncService = Depends(get_sync)):
    """Send a message and wait for the reply; the placeholder is removed on failure"""
    op = await sync.send_message(
        conversation_id,
        body.content,
        body.model_id,
        assistant_id=body.assistant_id,
        web_search_enabled=body.web_search_enabled,
        images=body.images or None,
        documents=body.documents or None,
    )
    return {
        "correlation_id": op.correlation_id,
        "conversation_id": op.conversation_id,
        "state": op.state.value,
        "server_id": op.server_id,
        "error": str(op.error) if op.error else None,
    }
