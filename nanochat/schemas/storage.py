# nanochat/schemas/storage.py
from pydantic import StrictStr

from nanochat.schemas.common import WireModel


class StorageUploadResponse(WireModel):
    """Body returned by /api/storage for an uploaded file"""
    storage_id: StrictStr
    url: StrictStr
