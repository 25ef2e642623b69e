# nanochat/crud/__init__.py
from nanochat.crud.conversation import crud_conversation
from nanochat.crud.message import crud_message, crud_message_image, crud_message_document
from nanochat.crud.project import crud_project, crud_project_member, crud_project_file
from nanochat.crud.assistant import crud_assistant
from nanochat.crud.user_settings import crud_user_settings
from nanochat.crud.model_catalog import crud_catalog

__all__ = [
    "crud_conversation",
    "crud_message",
    "crud_message_image",
    "crud_message_document",
    "crud_project",
    "crud_project_member",
    "crud_project_file",
    "crud_assistant",
    "crud_user_settings",
    "crud_catalog",
]
