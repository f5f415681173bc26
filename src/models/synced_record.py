# src/models/synced_record.py
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Text

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncedRecord(Base):
    """One telemetry record as stored by the last successful sync of its partition"""
    __tablename__ = "synced_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    partition = Column(String(64), nullable=False, index=True)
    record_json = Column(Text, nullable=False)
    synced_at = Column(DateTime, nullable=False, default=_utcnow)
