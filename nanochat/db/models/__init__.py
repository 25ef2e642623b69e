# nanochat/db/models/__init__.py
"""Database models"""
from nanochat.db.base import Base
from nanochat.db.models.conversation import Conversation
from nanochat.db.models.message import Message, MessageImage, MessageDocument
from nanochat.db.models.project import Project, ProjectMember, ProjectFile
from nanochat.db.models.assistant import Assistant
from nanochat.db.models.user_settings import UserSettingsRow
from nanochat.db.models.model_catalog import CatalogModel


# Export all models
__all__ = [
    "Base",
    "Conversation",
    "Message",
    "MessageImage",
    "MessageDocument",
    "Project",
    "ProjectMember",
    "ProjectFile",
    "Assistant",
    "UserSettingsRow",
    "CatalogModel",
]
