# nanochat/schemas/records.py
"""
Snapshots of stored entities handed out by the local store, plus the
filter objects accepted by its list accessors.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, StrictBool

from nanochat.schemas.conversation import ConversationResponse
from nanochat.schemas.message import MessageResponse


class ConversationRecord(ConversationResponse):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    is_public: StrictBool = False


class MessageRecord(MessageResponse):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    sequence: int = 0
    local_only: bool = False
    correlation_id: Optional[str] = None

    @property
    def is_placeholder(self) -> bool:
        return self.local_only


class ConversationFilter(BaseModel):
    """Filter for listing conversations; unset fields do not constrain"""
    user_id: Optional[str] = None
    project_id: Optional[str] = None
    # True restricts to conversations outside any project
    without_project: bool = False
    pinned: Optional[bool] = None
    search: Optional[str] = None
    skip: int = 0
    limit: Optional[int] = None


class MessageSearch(BaseModel):
    """Local message search criteria"""
    text: Optional[str] = None
    conversation_id: Optional[str] = None
    project_id: Optional[str] = None
    role: Optional[str] = None
    model_id: Optional[str] = None
    starred: Optional[bool] = None
    has_attachments: Optional[bool] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: Optional[int] = 100
