"""
Telemetry Sync Engine ("Oracle Sync")
Parallel partition sync with decision-engine enrichment.
"""

from .models import DEFAULT_PARTITIONS, EnrichmentMode, SyncState, SyncStatus
from .engine import OracleSyncEngine, DEFAULT_BATCH_SIZE, DEFAULT_INTERVAL_SECONDS

__all__ = [
    "OracleSyncEngine",
    "EnrichmentMode",
    "SyncState",
    "SyncStatus",
    "DEFAULT_PARTITIONS",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_INTERVAL_SECONDS",
]
