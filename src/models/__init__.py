from .database import Base, DEFAULT_DATABASE_URL, make_engine, make_session_factory
from .synced_record import SyncedRecord

__all__ = [
    "Base",
    "DEFAULT_DATABASE_URL",
    "make_engine",
    "make_session_factory",
    "SyncedRecord",
]
