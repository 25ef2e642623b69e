# nanochat/db/models/message.py
from sqlalchemy import Column, String, Boolean, Integer, Text, JSON, Index

from nanochat.db.base import Base, UTCDateTime, utcnow


class Message(Base):
    __tablename__ = "messages"

    # Server id, or "local:<correlation id>" for an unconfirmed placeholder
    id = Column(String(128), primary_key=True)
    # No foreign key: a message may arrive before its conversation
    conversation_id = Column(String(64), nullable=False, index=True)
    role = Column(String(20), nullable=False)  # user, assistant, system
    content = Column(Text, nullable=False, default="")
    content_html = Column(Text, nullable=True)
    model_id = Column(String(200), nullable=True)
    reasoning = Column(Text, nullable=True)
    starred = Column(Boolean, default=False, nullable=False)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=True)
    follow_up_suggestions = Column(JSON, nullable=True)

    # Insertion order inside the conversation
    sequence = Column(Integer, nullable=False, default=0)

    # Optimistic overlay
    local_only = Column(Boolean, default=False, nullable=False)
    correlation_id = Column(String(64), nullable=True, unique=True)

    synced_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_messages_conversation_sequence", "conversation_id", "sequence"),
    )


class MessageImage(Base):
    __tablename__ = "message_images"

    # "<message id>:image:<position>"
    id = Column(String(160), primary_key=True)
    message_id = Column(String(128), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    url = Column(Text, nullable=False)
    storage_id = Column(String(200), nullable=False)
    file_name = Column(String(500), nullable=True)


class MessageDocument(Base):
    __tablename__ = "message_documents"

    # "<message id>:document:<position>"
    id = Column(String(160), primary_key=True)
    message_id = Column(String(128), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    url = Column(Text, nullable=False)
    storage_id = Column(String(200), nullable=False)
    file_name = Column(String(500), nullable=True)
    file_type = Column(String(50), nullable=False)  # pdf, markdown, text, epub
