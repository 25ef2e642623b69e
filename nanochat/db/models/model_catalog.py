# nanochat/db/models/model_catalog.py
from sqlalchemy import Column, String, Boolean, Integer, JSON

from nanochat.db.base import Base, UTCDateTime, utcnow


class CatalogModel(Base):
    """Read-through cache of the user's model list"""
    __tablename__ = "model_catalog"

    model_id = Column(String(200), primary_key=True)
    provider = Column(String(100), nullable=False, index=True)
    enabled = Column(Boolean, nullable=False, default=False)
    pinned = Column(Boolean, nullable=False, default=False)
    # Position in the last fetched listing
    position = Column(Integer, nullable=False, default=0)
    # Full UserModel wire payload
    payload = Column(JSON, nullable=False)

    synced_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)
