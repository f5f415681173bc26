# src/brain/models.py
"""
Decision Engine records: decisions, patterns, synthesized recommendations
and deep-think results. All records are immutable once created.
"""

from dataclasses import dataclass, field, asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

# Only patterns strictly above this confidence are retained
PATTERN_CONFIDENCE_THRESHOLD = 0.7


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_jsonable(value: Any) -> Any:
    """Best-effort conversion of option payloads for logging and events"""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


class PatternCategory(str, Enum):
    """Dimensions analyzed by Analyze()"""
    TEMPORAL = "temporal"
    BEHAVIORAL = "behavioral"
    STRUCTURAL = "structural"
    PERFORMANCE = "performance"
    ANOMALY = "anomaly"


@dataclass(frozen=True)
class Decision:
    """
    Outcome of a policy evaluation.

    `chosen` is always one of `options`; `scores` holds the overall score of
    every option in option order.
    """
    id: str
    context: str
    options: Tuple[Any, ...]
    chosen: Any
    reasoning: Tuple[str, ...]
    confidence: float
    scores: Tuple[float, ...] = ()
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "context": self.context,
            "options": to_jsonable(list(self.options)),
            "chosen": to_jsonable(self.chosen),
            "reasoning": list(self.reasoning),
            "confidence": self.confidence,
            "scores": list(self.scores),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class PatternFinding:
    """Raw analyzer output before the confidence threshold is applied"""
    confidence: float
    frequency: float = 0.0
    implications: Tuple[str, ...] = ()
    recommendations: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Pattern:
    """A retained regularity discovered in telemetry data"""
    id: str
    category: str
    confidence: float
    frequency: float = 0.0
    implications: Tuple[str, ...] = ()
    recommendations: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "confidence": self.confidence,
            "frequency": self.frequency,
            "implications": list(self.implications),
            "recommendations": list(self.recommendations),
        }


@dataclass(frozen=True)
class Recommendations:
    """Combined output of Synthesize()"""
    recommendations: Tuple[str, ...]
    insights: Dict[str, Any]
    confidence: float
    pattern_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommendations": list(self.recommendations),
            "insights": to_jsonable(self.insights),
            "confidence": self.confidence,
            "pattern_count": self.pattern_count,
        }


@dataclass(frozen=True)
class ThoughtProcess:
    """Result of one deep-think pass"""
    id: str
    context: str
    output: Recommendations
    confidence: float
    processing_time_ms: float
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "context": self.context,
            "output": self.output.to_dict(),
            "confidence": self.confidence,
            "processing_time_ms": self.processing_time_ms,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class BrainMetrics:
    """Running counters for introspection"""
    thoughts_processed: int = 0
    patterns_discovered: int = 0
    decisions_made: int = 0
    average_confidence: float = 0.0
    telemetry_queries: int = 0
    last_decision_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "thoughts_processed": self.thoughts_processed,
            "patterns_discovered": self.patterns_discovered,
            "decisions_made": self.decisions_made,
            "average_confidence": self.average_confidence,
            "telemetry_queries": self.telemetry_queries,
            "last_decision_at": self.last_decision_at.isoformat() if self.last_decision_at else None,
        }
