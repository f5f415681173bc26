# src/integrations/storage.py
"""
SQLAlchemy Storage Sink

Local store for synced telemetry. Each successful sync replaces the rows of
its partition in one transaction. Session work is blocking, so it runs in a
worker thread via asyncio.to_thread.
"""

import asyncio
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.engine import Engine

from src.models import Base, SyncedRecord, make_engine, make_session_factory

logger = logging.getLogger("castquest.integrations.storage")


class SqlAlchemyStorageSink:
    """Pass `sink.store` to OracleSyncEngine"""

    def __init__(self, database_url: Optional[str] = None, engine: Optional[Engine] = None, create_schema: bool = True):
        self.engine = engine or make_engine(database_url)
        self.SessionLocal = make_session_factory(self.engine)
        # SQLite allows a single writer
        self._write_lock = threading.Lock()
        if create_schema:
            Base.metadata.create_all(self.engine)

        logger.info(f"SqlAlchemyStorageSink initialized: url={self.engine.url.render_as_string(hide_password=True)}")

    async def store(self, partition: str, records: Sequence[Mapping[str, Any]]) -> None:
        await asyncio.to_thread(self._replace_partition, partition, list(records))

    async def load(self, partition: str) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._load_partition, partition)

    async def count(self, partition: Optional[str] = None) -> int:
        return await asyncio.to_thread(self._count, partition)

    def close(self) -> None:
        self.engine.dispose()

    def _replace_partition(self, partition: str, records: List[Mapping[str, Any]]) -> None:
        synced_at = datetime.now(timezone.utc)
        rows = [
            SyncedRecord(
                partition=partition,
                record_json=json.dumps(record, default=str),
                synced_at=synced_at,
            )
            for record in records
        ]
        with self._write_lock, self.SessionLocal() as session, session.begin():
            session.execute(delete(SyncedRecord).where(SyncedRecord.partition == partition))
            session.add_all(rows)
        logger.debug(f"Stored partition | partition={partition} | rows={len(rows)}")

    def _load_partition(self, partition: str) -> List[Dict[str, Any]]:
        with self.SessionLocal() as session:
            rows = session.execute(
                select(SyncedRecord.record_json)
                .where(SyncedRecord.partition == partition)
                .order_by(SyncedRecord.id)
            ).scalars().all()
        return [json.loads(row) for row in rows]

    def _count(self, partition: Optional[str]) -> int:
        query = select(func.count(SyncedRecord.id))
        if partition is not None:
            query = query.where(SyncedRecord.partition == partition)
        with self.SessionLocal() as session:
            return session.execute(query).scalar_one()
