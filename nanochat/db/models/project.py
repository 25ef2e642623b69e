# nanochat/db/models/project.py
from sqlalchemy import Column, String, Boolean, Text, JSON

from nanochat.db.base import Base, UTCDateTime, utcnow


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    system_prompt = Column(Text, nullable=True)
    color = Column(String(32), nullable=True)
    role = Column(String(20), nullable=False, default="owner")  # owner, editor, viewer
    is_shared = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    synced_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)


class ProjectMember(Base):
    __tablename__ = "project_members"

    id = Column(String(64), primary_key=True)
    project_id = Column(String(64), nullable=True, index=True)
    user_id = Column(String(64), nullable=False)
    role = Column(String(20), nullable=False)
    # Embedded user summary as sent by the server
    user = Column(JSON, nullable=False, default=dict)
    created_at = Column(UTCDateTime, nullable=True)


class ProjectFile(Base):
    __tablename__ = "project_files"

    id = Column(String(64), primary_key=True)
    project_id = Column(String(64), nullable=False, index=True)
    storage_id = Column(String(200), nullable=False)
    file_name = Column(String(500), nullable=False)
    file_type = Column(String(50), nullable=False)
    extracted_content = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False)
    storage = Column(JSON, nullable=True)
