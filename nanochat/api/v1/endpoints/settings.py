# nanochat/api/v1/endpoints/settings.py
from fastapi import APIRouter, Depends

from nanochat.api.dependencies import get_sync
from nanochat.schemas import UpdateUserSettingsRequest, UserSettings
from nanochat.services.sync import SyncService

router = APIRouter()


@router.post("/refresh", response_model=UserSettings)
async def refresh_settings(sync: SyncService = Depends(get_sync)):
    return await sync.refresh_user_settings()


@router.get("/{user_id}", response_model=UserSettings)
async def get_settings(user_id: str, sync: SyncService = Depends(get_sync)):
    return await sync.get_user_settings(user_id)


@router.patch("/{user_id}", response_model=UserSettings)
async def update_settings(user_id: str, changes: UpdateUserSettingsRequest, sync: SyncService = Depends(get_sync)):
    """Partial update; the local value is restored if the server rejects it"""
    return await sync.update_user_settings(user_id, **changes.model_dump(exclude={"action"}, exclude_none=True))
