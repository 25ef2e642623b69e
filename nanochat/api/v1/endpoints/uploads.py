# nanochat/api/v1/endpoints/uploads.py
import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from nanochat.api.dependencies import get_sync
from nanochat.schemas import DocumentAttachment, ImageAttachment
from nanochat.services.sync import SyncService

logger = logging.getLogger(__name__)
router = APIRouter()


async def _read(file: UploadFile) -> bytes:
    data = await file.read()
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{file.filename or 'Upload'} is empty")
    return data


@router.post("/images", response_model=ImageAttachment)
async def upload_image(file: UploadFile = File(...), sync: SyncService = Depends(get_sync)):
    """Store an image remotely; the result can be passed to a send"""
    return await sync.upload_image(await _read(file), file.filename or None)


@router.post("/documents", response_model=DocumentAttachment)
async def upload_document(file: UploadFile = File(...), sync: SyncService = Depends(get_sync)):
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Documents need a file name")
    return await sync.upload_document(await _read(file), file.filename)
