# nanochat/db/models/user_settings.py
from sqlalchemy import Column, String, Boolean, Integer, Text

from nanochat.db.base import Base, UTCDateTime, utcnow


class UserSettingsRow(Base):
    __tablename__ = "user_settings"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, unique=True, index=True)

    # Feature toggles
    privacy_mode = Column(Boolean, nullable=False, default=False)
    context_memory_enabled = Column(Boolean, nullable=False, default=False)
    persistent_memory_enabled = Column(Boolean, nullable=False, default=False)
    youtube_transcripts_enabled = Column(Boolean, nullable=False, default=False)
    web_scraping_enabled = Column(Boolean, nullable=False, default=False)
    mcp_enabled = Column(Boolean, nullable=False, default=False)
    follow_up_questions_enabled = Column(Boolean, nullable=False, default=True)

    # Usage counters
    free_messages_used = Column(Integer, nullable=False, default=0)
    daily_messages_used = Column(Integer, nullable=False, default=0)
    last_message_date = Column(String(32), nullable=True)

    # Integrations and overrides
    karakeep_url = Column(Text, nullable=True)
    karakeep_api_key = Column(Text, nullable=True)
    theme = Column(String(64), nullable=True)
    title_model_id = Column(String(200), nullable=True)
    follow_up_model_id = Column(String(200), nullable=True)

    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    synced_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)
