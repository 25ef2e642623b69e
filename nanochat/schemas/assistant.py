# nanochat/schemas/assistant.py
from typing import Optional

from pydantic import StrictBool, StrictStr

from nanochat.schemas.common import Timestamp, WireModel


class AssistantResponse(WireModel):
    id: StrictStr
    name: StrictStr
    description: Optional[StrictStr] = None
    system_prompt: StrictStr
    is_default: StrictBool
    default_model_id: Optional[StrictStr] = None
    default_web_search_mode: Optional[StrictStr] = None
    created_at: Timestamp
    updated_at: Timestamp


class CreateAssistantRequest(WireModel):
    name: str
    system_prompt: str
    default_model_id: Optional[str] = None
    default_web_search_mode: Optional[str] = None
    default_web_search_provider: Optional[str] = None
