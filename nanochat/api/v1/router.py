# nanochat/api/v1/router.py
from fastapi import APIRouter

from nanochat.api.v1.endpoints import (
    assistants,
    conversations,
    messages,
    models,
    projects,
    settings,
    uploads
)

api_router = APIRouter()

# Include all routers
api_router.include_router(conversations.router, prefix="/conversations", tags=["Conversations"])
api_router.include_router(messages.router, prefix="/messages", tags=["Messages"])
api_router.include_router(projects.router, prefix="/projects", tags=["Projects"])
api_router.include_router(assistants.router, prefix="/assistants", tags=["Assistants"])
api_router.include_router(settings.router, prefix="/settings", tags=["Settings"])
api_router.include_router(models.router, prefix="/models", tags=["Models"])
api_router.include_router(uploads.router, prefix="/uploads", tags=["Uploads"])
