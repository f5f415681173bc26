"""CastQuest External Integrations"""

from .telemetry_source import HttpTelemetrySource, PartitionResponse
from .storage import SqlAlchemyStorageSink
from .redis_bridge import (
    ESCALATION_CHANNEL,
    EVENT_CHANNEL_PREFIX,
    RedisEscalationNotifier,
    RedisEventForwarder,
)

__all__ = [
    "HttpTelemetrySource",
    "PartitionResponse",
    "SqlAlchemyStorageSink",
    "RedisEscalationNotifier",
    "RedisEventForwarder",
    "ESCALATION_CHANNEL",
    "EVENT_CHANNEL_PREFIX",
]
