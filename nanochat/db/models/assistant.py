# nanochat/db/models/assistant.py
from sqlalchemy import Column, String, Boolean, Text

from nanochat.db.base import Base, UTCDateTime, utcnow


class Assistant(Base):
    __tablename__ = "assistants"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    system_prompt = Column(Text, nullable=False)
    # Uniqueness is the server's business; several rows may carry the flag
    is_default = Column(Boolean, nullable=False, default=False)
    default_model_id = Column(String(200), nullable=True)
    default_web_search_mode = Column(String(50), nullable=True)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    synced_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)
