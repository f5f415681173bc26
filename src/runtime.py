# src/runtime.py
"""
CastQuest Coordination Runtime

Composition root: wires the decision engine, the telemetry sync engine and
the worker coordinator from Settings, attaches the Redis adapters when
enabled and runs the service.

    python -m src.runtime
"""

import asyncio
import inspect
import logging
import signal
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from src.brain import DecisionEngine
from src.config import Settings, get_settings
from src.coordination import TaskHandler, TaskHandlerRegistry, WorkerCoordinator
from src.events import EventStream
from src.integrations import (
    HttpTelemetrySource,
    RedisEscalationNotifier,
    RedisEventForwarder,
    SqlAlchemyStorageSink,
)
from src.observability import configure_logging
from src.oracle_sync import OracleSyncEngine

logger = logging.getLogger("castquest.runtime")

DATA_SYNC_KIND = "data_sync"

Closer = Callable[[], Union[Awaitable[None], None]]


def make_data_sync_handler(sync: OracleSyncEngine) -> TaskHandler:
    """Task handler running one sync cycle on demand"""

    async def run_data_sync(payload: Any) -> Dict[str, Any]:
        statuses = await sync.sync_once()
        return {name: status.to_dict() for name, status in statuses.items()}

    return run_data_sync


class CoordinationRuntime:
    """Owns the three core components and the resources they were built with"""

    def __init__(
        self,
        settings: Settings,
        brain: DecisionEngine,
        sync: OracleSyncEngine,
        scheduler: WorkerCoordinator,
        closers: Optional[List[Closer]] = None,
    ):
        self.settings = settings
        self.brain = brain
        self.sync = sync
        self.scheduler = scheduler
        self._closers = list(closers or [])
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        if self.settings.SYNC_ENABLED:
            self.sync.start(self.settings.SYNC_INTERVAL_SECONDS)
        self._started = True
        logger.info(
            f"Runtime started | env={self.settings.ENVIRONMENT} | "
            f"workers={len(self.scheduler.workers)} | sync={self.settings.SYNC_ENABLED}"
        )

    async def stop(self) -> None:
        """Stop the sync loop, drain running tasks, release resources"""
        if not self._started:
            return
        await self.sync.stop()
        await self.scheduler.shutdown(wait=True)
        for close in reversed(self._closers):
            try:
                outcome = close()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error(f"Error releasing runtime resource: {e}")
        self._closers.clear()
        self._started = False
        logger.info("Runtime stopped")

    async def __aenter__(self) -> "CoordinationRuntime":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    def get_status(self) -> Dict[str, Any]:
        """Combined status for health reporting"""
        return {
            "running": self._started,
            "scheduler": self.scheduler.system_status().to_dict(),
            "sync": self.sync.get_stats(),
            "brain": self.brain.get_metrics(),
        }


def build_runtime(
    settings: Optional[Settings] = None,
    handlers: Optional[Mapping[str, TaskHandler]] = None,
    fetch: Optional[Callable] = None,
    store: Optional[Callable] = None,
    notify: Optional[Callable] = None,
) -> CoordinationRuntime:
    """
    Build a runtime from settings.

    Collaborators that are not passed in are created from settings:
    HttpTelemetrySource for fetch, SqlAlchemyStorageSink for store and,
    when NOTIFICATIONS_ENABLED, RedisEscalationNotifier for notify.
    """
    settings = settings or get_settings()
    closers: List[Closer] = []

    brain = DecisionEngine(
        history_limit=settings.BRAIN_HISTORY_LIMIT,
        events=EventStream("brain", settings.EVENT_BUFFER_SIZE),
    )

    if fetch is None:
        source = HttpTelemetrySource(settings.TELEMETRY_SOURCE_URL, timeout=settings.TELEMETRY_TIMEOUT)
        fetch = source.fetch
        closers.append(source.close)
    if store is None:
        sink = SqlAlchemyStorageSink(settings.DATABASE_URL)
        store = sink.store
        closers.append(sink.close)

    sync = OracleSyncEngine(
        fetch=fetch,
        store=store,
        partitions=settings.SYNC_PARTITIONS,
        brain=brain,
        enrichment_mode=settings.SYNC_ENRICHMENT_MODE,
        batch_size=settings.SYNC_BATCH_SIZE,
        events=EventStream("oracle_sync", settings.EVENT_BUFFER_SIZE),
    )
    brain.bind_telemetry(sync.get_sync_status)

    registry = TaskHandlerRegistry(dict(handlers or {}))
    if DATA_SYNC_KIND not in registry:
        registry.register(DATA_SYNC_KIND, make_data_sync_handler(sync))

    if notify is None and settings.NOTIFICATIONS_ENABLED:
        notifier = RedisEscalationNotifier(settings.REDIS_URL)
        notify = notifier
        closers.append(notifier.close)

    scheduler = WorkerCoordinator(
        brain=brain,
        handlers=registry,
        pool_size=settings.WORKER_POOL_SIZE,
        notify=notify,
        task_timeout=settings.task_timeout,
        max_attempts=settings.max_attempts,
        default_priority=settings.DEFAULT_TASK_PRIORITY,
        priority_scale=settings.PRIORITY_SCALE,
        history_limit=settings.TASK_HISTORY_LIMIT,
        events=EventStream("scheduler", settings.EVENT_BUFFER_SIZE),
    )

    if settings.EVENT_FORWARDING_ENABLED:
        forwarder = RedisEventForwarder(settings.REDIS_URL)
        forwarder.attach(brain.events, sync.events, scheduler.events)
        closers.append(forwarder.close)

    logger.info(
        f"Runtime built | handlers={','.join(registry.kinds())} | "
        f"partitions={len(sync.partitions)} | notifications={notify is not None}"
    )
    return CoordinationRuntime(settings, brain, sync, scheduler, closers)


async def run_forever(settings: Optional[Settings] = None) -> None:
    """Run until SIGINT or SIGTERM"""
    settings = settings or get_settings()
    configure_logging(settings)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    async with build_runtime(settings):
        await stop_event.wait()
        logger.info("Shutdown signal received")


def main() -> None:
    asyncio.run(run_forever())


if __name__ == "__main__":
    main()
