# nanochat/api/dependencies.py
from fastapi import Request

from nanochat.services.sync import SyncService


def get_sync(request: Request) -> SyncService:
    """SyncService created by the application lifespan"""
    return request.app.state.sync
