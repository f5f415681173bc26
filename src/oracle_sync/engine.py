# src/oracle_sync/engine.py
"""
Telemetry Sync Engine ("Oracle Sync")

Periodically pulls every telemetry partition from the external source,
optionally enriches the records through the decision engine and hands
them to local storage. Partitions sync in parallel and fail independently.

Usage:
    sync = OracleSyncEngine(fetch=source.fetch, store=sink.store, brain=brain)
    statuses = await sync.sync_once()
    sync.start(interval=5)
    ...
    await sync.stop()
"""

import asyncio
import inspect
import logging
import time
from collections import Counter
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

from src.brain import DecisionEngine, Pattern
from src.errors import ConfigurationError, DecisionEngineError, PartitionSyncError
from src.events import EventStream, EventType
from src.oracle_sync.models import (
    DEFAULT_PARTITIONS,
    EnrichmentMode,
    SyncState,
    SyncStatus,
    utcnow,
)

logger = logging.getLogger("castquest.oracle_sync")

DEFAULT_BATCH_SIZE = 100
DEFAULT_INTERVAL_SECONDS = 5.0

Record = Mapping[str, Any]
FetchFn = Callable[[str], Union[Awaitable[Sequence[Record]], Sequence[Record]]]
StoreFn = Callable[[str, List[Record]], Union[Awaitable[None], None]]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class OracleSyncEngine:
    """
    Parallel partition sync with decision-engine enrichment.

    Per partition: syncing → fetch → enrich → store → success | error.
    A failing partition never affects its siblings or the cycle.
    """

    def __init__(
        self,
        fetch: FetchFn,
        store: StoreFn,
        partitions: Sequence[str] = DEFAULT_PARTITIONS,
        brain: Optional[DecisionEngine] = None,
        enrichment_mode: Union[EnrichmentMode, str] = EnrichmentMode.DEEP,
        batch_size: int = DEFAULT_BATCH_SIZE,
        events: Optional[EventStream] = None,
    ):
        partitions = list(partitions)
        if not partitions:
            raise ConfigurationError("At least one partition is required")
        duplicates = sorted({p for p in partitions if partitions.count(p) > 1})
        if duplicates:
            raise ConfigurationError("Duplicate partition names", duplicates=duplicates)
        if batch_size < 1:
            raise ConfigurationError("batch_size must be at least 1", batch_size=batch_size)
        try:
            mode = EnrichmentMode(enrichment_mode)
        except ValueError:
            raise ConfigurationError(
                f"Unknown enrichment mode '{enrichment_mode}'",
                allowed=[m.value for m in EnrichmentMode],
            ) from None
        if mode == EnrichmentMode.DEEP and brain is None:
            raise ConfigurationError("Deep enrichment requires a decision engine")

        self.fetch = fetch
        self.store = store
        self.partitions = partitions
        self.brain = brain
        self.enrichment_mode = mode
        self.batch_size = batch_size
        self.events = events or EventStream("oracle_sync")

        self._status: Dict[str, SyncStatus] = {}
        self._record_states: Dict[str, Counter] = {}
        self._cycle_lock = asyncio.Lock()
        self._loop_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

        self.cycles_run = 0
        self.total_records_processed = 0
        self.last_cycle_at = None
        self.last_cycle_duration_ms = 0.0

        logger.info(
            f"OracleSyncEngine initialized | partitions={len(partitions)} | "
            f"mode={mode.value} | batch_size={batch_size}"
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self, interval: float = DEFAULT_INTERVAL_SECONDS) -> None:
        """Run one cycle now, then one every `interval` seconds until stop()"""
        if interval <= 0:
            raise ConfigurationError("Sync interval must be positive", interval=interval)
        if self.is_running:
            logger.warning("Sync loop already running")
            return

        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.get_running_loop().create_task(
            self._sync_loop(interval), name="oracle-sync"
        )
        logger.info(f"Sync loop started | interval={interval}s")

    async def stop(self) -> None:
        """Stop the loop, letting any in-flight cycle finish"""
        if self._loop_task is None:
            return
        self._stop_event.set()
        await self._loop_task
        self._loop_task = None
        logger.info(f"Sync loop stopped | cycles={self.cycles_run}")

    async def _sync_loop(self, interval: float) -> None:
        while not self._stop_event.is_set():
            try:
                await self.sync_once()
            except Exception as e:
                logger.error(f"Sync cycle error: {e}")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    # =========================================================================
    # Cycle
    # =========================================================================

    async def sync_once(self) -> Dict[str, SyncStatus]:
        """Sync every partition in parallel and return their statuses"""
        async with self._cycle_lock:
            started = time.perf_counter()
            self.events.emit(EventType.SYNC_STARTED, partitions=list(self.partitions))
            logger.info(f"Sync cycle started | partitions={len(self.partitions)}")

            results = await asyncio.gather(*(self._sync_partition(p) for p in self.partitions))
            statuses = {status.partition_name: status.copy() for status in results}

            self.cycles_run += 1
            self.last_cycle_at = utcnow()
            self.last_cycle_duration_ms = (time.perf_counter() - started) * 1000
            failed = [name for name, s in statuses.items() if s.status == SyncState.ERROR]

            logger.info(
                f"Sync cycle completed | succeeded={len(statuses) - len(failed)} | "
                f"failed={len(failed)} | time_ms={self.last_cycle_duration_ms:.1f}"
            )
            self.events.emit(
                EventType.SYNC_COMPLETED,
                results={name: s.to_dict() for name, s in statuses.items()},
                failed=failed,
                duration_ms=self.last_cycle_duration_ms,
            )
            return statuses

    async def _sync_partition(self, name: str) -> SyncStatus:
        started = time.perf_counter()
        previous = self._status.get(name)
        self._status[name] = SyncStatus(
            partition_name=name,
            status=SyncState.SYNCING,
            last_sync_at=previous.last_sync_at if previous else None,
        )

        stage = "fetch"
        try:
            records = list(await _maybe_await(self.fetch(name)))
            stage = "enrich"
            records = await self._enrich(name, records)
            stage = "store"
            await _maybe_await(self.store(name, records))
        except Exception as e:
            error = PartitionSyncError(name, stage, original_error=e)
            logger.error(f"Partition sync failed | partition={name} | stage={stage} | error={e}")
            status = SyncStatus(
                partition_name=name,
                status=SyncState.ERROR,
                last_sync_at=utcnow(),
                records_processed=0,
                errors=[error.message],
                duration_ms=(time.perf_counter() - started) * 1000,
            )
        else:
            status = SyncStatus(
                partition_name=name,
                status=SyncState.SUCCESS,
                last_sync_at=utcnow(),
                records_processed=len(records),
                duration_ms=(time.perf_counter() - started) * 1000,
            )
            self.total_records_processed += len(records)
            self._record_states[name] = Counter(
                str(r.get("status", "unknown")) for r in records if isinstance(r, Mapping)
            )
            logger.debug(f"Partition synced | partition={name} | records={len(records)}")
            self.events.emit(EventType.STORAGE_UPDATED, partition=name, record_count=len(records))

        self._status[name] = status
        return status

    # =========================================================================
    # Enrichment
    # =========================================================================

    def _batches(self, records: List[Any]) -> List[List[Any]]:
        return [records[i:i + self.batch_size] for i in range(0, len(records), self.batch_size)]

    async def _enrich(self, name: str, records: List[Any]) -> List[Any]:
        if not records or self.enrichment_mode == EnrichmentMode.NONE:
            return records
        if self.enrichment_mode == EnrichmentMode.DEEP:
            return await self._deep_enrich(name, records)
        return await self._parallel_enrich(records)

    async def _deep_enrich(self, name: str, records: List[Any]) -> List[Any]:
        batches = self._batches(records)
        try:
            analyses = await asyncio.gather(*(self.brain.analyze(batch) for batch in batches))
        except DecisionEngineError as e:
            logger.warning(f"Brain analysis unavailable, storing raw records | partition={name} | error={e.message}")
            return records

        enriched: List[Any] = []
        pattern_count = 0
        for batch, patterns in zip(batches, analyses):
            analysis = self._analysis_entry(patterns)
            pattern_count += len(patterns)
            enriched.extend({**record, "brain_analysis": analysis} for record in batch)

        self.events.emit(
            EventType.BRAIN_ANALYSIS_COMPLETED,
            partition=name,
            records_analyzed=len(enriched),
            patterns=pattern_count,
        )
        return enriched

    @staticmethod
    def _analysis_entry(patterns: List[Pattern]) -> Dict[str, Any]:
        confidence = sum(p.confidence for p in patterns) / len(patterns) if patterns else 0.0
        return {
            "patterns": [p.to_dict() for p in patterns],
            "confidence": confidence,
            "analyzed_at": utcnow().isoformat(),
        }

    async def _parallel_enrich(self, records: List[Any]) -> List[Any]:
        processed = await asyncio.gather(*(self._mark_batch(b) for b in self._batches(records)))
        return [record for batch in processed for record in batch]

    @staticmethod
    async def _mark_batch(batch: List[Record]) -> List[Dict[str, Any]]:
        processed_at = utcnow().isoformat()
        return [{**record, "processed": True, "processed_at": processed_at} for record in batch]

    # =========================================================================
    # Introspection
    # =========================================================================

    def get_sync_status(self) -> Dict[str, SyncStatus]:
        """Copy of the latest status of every partition"""
        return {name: status.copy() for name, status in self._status.items()}

    def get_stats(self) -> Dict[str, Any]:
        statuses = list(self._status.values())
        return {
            "partitions": len(self.partitions),
            "succeeded": sum(1 for s in statuses if s.status == SyncState.SUCCESS),
            "failed": sum(1 for s in statuses if s.status == SyncState.ERROR),
            "syncing": sum(1 for s in statuses if s.status == SyncState.SYNCING),
            "records_processed": sum(s.records_processed for s in statuses),
            "total_records_processed": self.total_records_processed,
            "cycles_run": self.cycles_run,
            "last_cycle_at": self.last_cycle_at.isoformat() if self.last_cycle_at else None,
            "last_cycle_duration_ms": self.last_cycle_duration_ms,
            "enrichment_mode": self.enrichment_mode.value,
            "running": self.is_running,
            "by_partition": self.get_partition_stats(),
        }

    def get_partition_stats(self) -> Dict[str, Dict[str, Any]]:
        """
        Per-partition view of the latest cycle: sync state, record total and
        record counts grouped by their own ``status`` field (active, pending,
        completed, ...). Counts are from the last successful sync.
        """
        stats: Dict[str, Dict[str, Any]] = {}
        for name in self.partitions:
            status = self._status.get(name)
            states = self._record_states.get(name, Counter())
            stats[name] = {
                "state": status.status.value if status else None,
                "total": sum(states.values()),
                "by_status": dict(states),
            }
        return stats
