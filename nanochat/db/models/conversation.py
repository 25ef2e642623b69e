# nanochat/db/models/conversation.py
from sqlalchemy import Column, String, Boolean, Float

from nanochat.db.base import Base, UTCDateTime, utcnow


class Conversation(Base):
    __tablename__ = "conversations"

    # Server-issued id
    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    project_id = Column(String(64), nullable=True, index=True)
    title = Column(String(500), nullable=False)
    pinned = Column(Boolean, default=False, nullable=False)
    # Server-confirmed status; set locally only as a short-lived overlay
    generating = Column(Boolean, default=False, nullable=False)
    cost_usd = Column(Float, nullable=True)
    is_public = Column(Boolean, default=False, nullable=False)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    # Local bookkeeping
    synced_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)
