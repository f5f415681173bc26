# src/events.py
"""
Component Event Streams

Each core component (scheduler, decision engine, sync engine) owns one
EventStream and exposes it as `component.events`. External logging or
telemetry systems subscribe to it; there is no process-wide bus.

Delivery is best-effort and never blocks the emitter:
  - emit() only appends to a bounded buffer and returns
  - a dispatcher task drains the buffer on the running event loop
  - on overflow the oldest buffered event is dropped and counted
  - subscriber exceptions are logged, never propagated
"""

import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger("castquest.events")

DEFAULT_BUFFER_SIZE = 1000


class EventType(str, Enum):
    """Structured events emitted by the core"""
    # Scheduler
    TASK_SUBMITTED = "taskSubmitted"
    TASK_STARTED = "taskStarted"
    TASK_COMPLETED = "taskCompleted"
    TASK_FAILED = "taskFailed"
    TASK_RETRIED = "taskRetried"
    TASK_DROPPED = "taskDropped"
    TASK_ESCALATED = "taskEscalated"
    SYSTEM_PAUSED = "systemPaused"
    SYSTEM_RESUMED = "systemResumed"
    # Decision engine
    DECISION_MADE = "decisionMade"
    PATTERNS_DISCOVERED = "patternsDiscovered"
    THINKING_COMPLETED = "thinkingCompleted"
    # Sync engine
    SYNC_STARTED = "syncStarted"
    SYNC_COMPLETED = "syncCompleted"
    BRAIN_ANALYSIS_COMPLETED = "brainAnalysisCompleted"
    STORAGE_UPDATED = "storageUpdated"


@dataclass(frozen=True)
class CoreEvent:
    """A single emitted event"""
    type: EventType
    source: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "source": self.source,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


EventCallback = Callable[[CoreEvent], Any]


class EventStream:
    """
    Typed, non-blocking event stream owned by one component.

    Subscribers may be plain callables or coroutine functions; both receive
    the CoreEvent.
    """

    def __init__(self, source: str, buffer_size: int = DEFAULT_BUFFER_SIZE):
        self.source = source
        self.buffer_size = buffer_size
        self._subscribers: List[EventCallback] = []
        self._pending: Deque[CoreEvent] = deque()
        self._dispatcher: Optional[asyncio.Task] = None

        # Metrics
        self.emitted: int = 0
        self.delivered: int = 0
        self.dropped: int = 0

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register a subscriber; returns a function that unsubscribes it"""
        self._subscribers.append(callback)
        logger.debug(f"Subscribed to {self.source} events: {getattr(callback, '__name__', callback)!r}")

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def emit(self, event_type: EventType, **data: Any) -> None:
        """Queue an event for delivery. Never blocks and never raises."""
        self.emitted += 1
        if not self._subscribers:
            return

        if len(self._pending) >= self.buffer_size:
            self._pending.popleft()
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning(f"Event buffer full for {self.source} | dropped={self.dropped}")

        self._pending.append(CoreEvent(type=event_type, source=self.source, data=data))
        self._ensure_dispatcher()

    def _ensure_dispatcher(self) -> None:
        if self._dispatcher is not None and not self._dispatcher.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet: events stay buffered until the next emit or flush inside a loop
            return
        self._dispatcher = loop.create_task(self._dispatch())

    async def _dispatch(self) -> None:
        while self._pending:
            event = self._pending.popleft()
            for callback in list(self._subscribers):
                try:
                    result = callback(event)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error(f"Event subscriber error on {self.source}/{event.type.value}: {e}")
            self.delivered += 1

    async def flush(self) -> None:
        """Wait until every buffered event has been delivered"""
        while self._pending or (self._dispatcher is not None and not self._dispatcher.done()):
            self._ensure_dispatcher()
            if self._dispatcher is None:
                break
            await self._dispatcher

    def get_status(self) -> Dict[str, Any]:
        """Get delivery counters for health reporting"""
        return {
            "source": self.source,
            "subscribers": len(self._subscribers),
            "pending": len(self._pending),
            "emitted": self.emitted,
            "delivered": self.delivered,
            "dropped": self.dropped,
        }
