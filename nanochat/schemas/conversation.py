# nanochat/schemas/conversation.py
from typing import Optional

from pydantic import StrictBool, StrictStr

from nanochat.schemas.common import JSONNumber, Timestamp, WireModel


class ConversationResponse(WireModel):
    id: StrictStr
    title: StrictStr
    user_id: StrictStr
    project_id: Optional[StrictStr] = None
    pinned: StrictBool
    generating: StrictBool
    cost_usd: Optional[JSONNumber] = None
    created_at: Timestamp
    updated_at: Timestamp
    is_public: Optional[StrictBool] = None

    @property
    def public(self) -> bool:
        """isPublic with its documented fallback"""
        return bool(self.is_public)


class CreateConversationRequest(WireModel):
    action: str = "create"
    title: str
    project_id: Optional[str] = None


class BranchConversationRequest(WireModel):
    action: str = "branch"
    conversation_id: str
    from_message_id: str


class BranchConversationResponse(WireModel):
    conversation_id: StrictStr
