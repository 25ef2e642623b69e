# nanochat/schemas/message.py
from typing import Dict, List, Literal, Optional

from pydantic import Field, StrictBool, StrictStr

from nanochat.schemas.common import Timestamp, WireModel
from nanochat.schemas.json_value import JSONValue

MessageRole = Literal["user", "assistant", "system"]
DocumentFileType = Literal["pdf", "markdown", "text", "epub"]


class MessageImageResponse(WireModel):
    url: StrictStr
    storage_id: StrictStr = Field(alias="storage_id")
    file_name: Optional[StrictStr] = None


class MessageDocumentResponse(WireModel):
    url: StrictStr
    storage_id: StrictStr = Field(alias="storage_id")
    file_name: Optional[StrictStr] = None
    file_type: StrictStr


class MessageResponse(WireModel):
    id: StrictStr
    conversation_id: StrictStr
    role: MessageRole
    content: StrictStr
    content_html: Optional[StrictStr] = None
    model_id: Optional[StrictStr] = None
    reasoning: Optional[StrictStr] = None
    starred: StrictBool = False
    images: Optional[List[MessageImageResponse]] = None
    documents: Optional[List[MessageDocumentResponse]] = None
    created_at: Timestamp
    updated_at: Optional[Timestamp] = None
    follow_up_suggestions: Optional[List[StrictStr]] = None
    # Echo of the client correlation id, when the server provides one
    client_message_id: Optional[StrictStr] = None

    @property
    def has_attachments(self) -> bool:
        return bool(self.images) or bool(self.documents)


class CreateMessageRequest(WireModel):
    action: str = "create"
    conversation_id: str
    role: MessageRole
    content: str
    content_html: str


class UpdateMessageContentRequest(WireModel):
    action: str = "updateContent"
    message_id: str
    content: str
    content_html: Optional[str] = None
    reasoning: Optional[str] = None


class ImageAttachment(WireModel):
    url: str
    storage_id: str = Field(alias="storage_id")
    file_name: Optional[str] = None


class DocumentAttachment(WireModel):
    url: str
    storage_id: str = Field(alias="storage_id")
    file_name: Optional[str] = None
    file_type: DocumentFileType


class GenerateMessageRequest(WireModel):
    """Body of /api/generate-message; this endpoint speaks snake_case"""
    message: str
    model_id: str = Field(alias="model_id")
    conversation_id: Optional[str] = Field(None, alias="conversation_id")
    assistant_id: Optional[str] = Field(None, alias="assistant_id")
    project_id: Optional[str] = Field(None, alias="project_id")
    web_search_enabled: bool = Field(False, alias="web_search_enabled")
    web_search_mode: Optional[str] = Field(None, alias="web_search_mode")
    web_search_provider: Optional[str] = Field(None, alias="web_search_provider")
    provider_id: Optional[str] = Field(None, alias="provider_id")
    client_message_id: Optional[str] = Field(None, alias="client_message_id")
    images: Optional[List[ImageAttachment]] = None
    documents: Optional[List[DocumentAttachment]] = None
    image_params: Optional[Dict[str, JSONValue]] = Field(None, alias="image_params")
    video_params: Optional[Dict[str, JSONValue]] = Field(None, alias="video_params")


class GenerateMessageResponse(WireModel):
    ok: StrictBool
    conversation_id: StrictStr = Field(alias="conversation_id")


class FollowUpQuestionsRequest(WireModel):
    conversation_id: str
    message_id: str


class FollowUpQuestionsResponse(WireModel):
    ok: StrictBool = True
    suggestions: List[StrictStr] = Field(default_factory=list)
