# src/oracle_sync/models.py
"""Sync status records"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

DEFAULT_PARTITIONS = (
    "frames",
    "quests",
    "mints",
    "workers",
    "brain_events",
    "brain_suggestions",
    "user_permissions",
    "system_health",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncState(str, Enum):
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


class EnrichmentMode(str, Enum):
    """How fetched records are processed before storage"""
    NONE = "none"            # Store as fetched
    DEEP = "deep"            # Pattern analysis per batch through the decision engine
    PARALLEL = "parallel"    # Concurrent batch transform, records marked processed


@dataclass
class SyncStatus:
    """Outcome of the latest cycle for one partition"""
    partition_name: str
    status: SyncState = SyncState.SYNCING
    last_sync_at: Optional[datetime] = None
    records_processed: int = 0
    errors: List[str] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == SyncState.SUCCESS

    def copy(self) -> "SyncStatus":
        return SyncStatus(
            partition_name=self.partition_name,
            status=self.status,
            last_sync_at=self.last_sync_at,
            records_processed=self.records_processed,
            errors=list(self.errors),
            duration_ms=self.duration_ms,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "partition_name": self.partition_name,
            "status": self.status.value,
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
            "records_processed": self.records_processed,
            "errors": list(self.errors),
            "duration_ms": self.duration_ms,
        }
