# nanochat/schemas/user_settings.py
from typing import Optional

from pydantic import Field, StrictBool, StrictInt, StrictStr

from nanochat.schemas.common import LenientTimestamp, WireModel, utcnow

FEATURE_FLAGS = (
    "privacy_mode",
    "context_memory_enabled",
    "persistent_memory_enabled",
    "youtube_transcripts_enabled",
    "web_scraping_enabled",
    "mcp_enabled",
    "follow_up_questions_enabled",
)


class UserSettings(WireModel):
    """Per-user settings; every flag and counter defaults when absent"""
    id: StrictStr
    user_id: StrictStr
    privacy_mode: StrictBool = False
    context_memory_enabled: StrictBool = False
    persistent_memory_enabled: StrictBool = False
    youtube_transcripts_enabled: StrictBool = False
    web_scraping_enabled: StrictBool = False
    mcp_enabled: StrictBool = False
    follow_up_questions_enabled: StrictBool = True
    free_messages_used: StrictInt = 0
    daily_messages_used: StrictInt = 0
    # Plain date string; never parsed
    last_message_date: Optional[StrictStr] = None
    karakeep_url: Optional[StrictStr] = None
    karakeep_api_key: Optional[StrictStr] = None
    theme: Optional[StrictStr] = None
    title_model_id: Optional[StrictStr] = None
    follow_up_model_id: Optional[StrictStr] = None
    created_at: LenientTimestamp = Field(default_factory=utcnow)
    updated_at: LenientTimestamp = Field(default_factory=utcnow)


class UpdateUserSettingsRequest(WireModel):
    """Partial update; only keys that are set go on the wire"""
    action: str = "update"
    privacy_mode: Optional[bool] = None
    context_memory_enabled: Optional[bool] = None
    persistent_memory_enabled: Optional[bool] = None
    youtube_transcripts_enabled: Optional[bool] = None
    web_scraping_enabled: Optional[bool] = None
    mcp_enabled: Optional[bool] = None
    follow_up_questions_enabled: Optional[bool] = None
    karakeep_url: Optional[str] = None
    karakeep_api_key: Optional[str] = None
    theme: Optional[str] = None
    title_model_id: Optional[str] = None
    follow_up_model_id: Optional[str] = None
