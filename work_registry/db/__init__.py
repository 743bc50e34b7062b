"""
Database package for the Work Registry.
"""

from .base import Base, get_db, get_engine, get_session_local, init_database
from .models import AgentModel, ChecksumQueueModel, WorkModel
from .services import AgentService, UpsertResult, WorkCatalogStore

__all__ = [
    "Base",
    "get_db",
    "get_engine",
    "get_session_local",
    "init_database",
    "AgentModel",
    "WorkModel",
    "ChecksumQueueModel",
    "AgentService",
    "WorkCatalogStore",
    "UpsertResult",
]
