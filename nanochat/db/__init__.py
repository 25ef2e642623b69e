# nanochat/db/__init__.py
from nanochat.db.base import Base
from nanochat.db.session import create_engine, create_session_factory, init_db
from nanochat.db.models import *

__all__ = [
    "Base",
    "create_engine",
    "create_session_factory",
    "init_db",
]
