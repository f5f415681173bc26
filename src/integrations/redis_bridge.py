# src/integrations/redis_bridge.py
"""
Redis Pub/Sub adapters

RedisEscalationNotifier  - notification sink for escalated tasks
RedisEventForwarder      - EventStream subscriber mirroring core events

Channels:
    castquest:task_escalated
    castquest:events:<eventType>
"""

import json
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

import redis.asyncio as aioredis

from src.brain import Decision
from src.coordination import Task
from src.events import CoreEvent, EventStream

logger = logging.getLogger("castquest.integrations.redis")

ESCALATION_CHANNEL = "castquest:task_escalated"
EVENT_CHANNEL_PREFIX = "castquest:events:"
DEFAULT_REDIS_URL = "redis://localhost:6379/0"


class _RedisPublisher:
    """Lazily connected publisher shared by both adapters"""

    def __init__(self, redis_url: Optional[str] = None, client: Optional[aioredis.Redis] = None):
        self.redis_url = redis_url or DEFAULT_REDIS_URL
        self._redis = client
        self._owns_client = client is None
        self.published = 0

    async def _get_client(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(self.redis_url, decode_responses=True)
            self._owns_client = True
            logger.info(f"Redis publisher connecting: {self.redis_url.rsplit('@', 1)[-1]}")
        return self._redis

    async def _publish(self, channel: str, message: dict) -> int:
        client = await self._get_client()
        receivers = await client.publish(channel, json.dumps(message, default=str))
        self.published += 1
        return receivers

    async def close(self) -> None:
        if self._redis is not None and self._owns_client:
            await self._redis.aclose()
        self._redis = None


class RedisEscalationNotifier(_RedisPublisher):
    """Notification sink: `WorkerCoordinator(notify=RedisEscalationNotifier(...))`"""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        client: Optional[aioredis.Redis] = None,
        channel: str = ESCALATION_CHANNEL,
    ):
        super().__init__(redis_url, client)
        self.channel = channel

    async def __call__(self, task: Task, decision: Optional[Decision]) -> None:
        message = {
            "type": "task_escalated",
            "task": task.to_dict(),
            "decision": decision.to_dict() if decision else None,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        receivers = await self._publish(self.channel, message)
        logger.info(f"Escalation published | task_id={task.id} | channel={self.channel} | receivers={receivers}")


class RedisEventForwarder(_RedisPublisher):
    """Publishes every event of the attached streams to castquest:events:<type>"""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        client: Optional[aioredis.Redis] = None,
        prefix: str = EVENT_CHANNEL_PREFIX,
    ):
        super().__init__(redis_url, client)
        self.prefix = prefix
        self._unsubscribers: List[Callable[[], None]] = []

    def attach(self, *streams: EventStream) -> None:
        for stream in streams:
            self._unsubscribers.append(stream.subscribe(self))

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    async def __call__(self, event: CoreEvent) -> None:
        await self._publish(f"{self.prefix}{event.type.value}", event.to_dict())

    async def close(self) -> None:
        self.detach()
        await super().close()
