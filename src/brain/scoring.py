# src/brain/scoring.py
"""
Option scoring for the Decision Engine

Every option is scored per criterion on [0, 1] where higher is always
better: a high `cost` score means cheap, a high `risk` score means safe.

The engine only depends on the ScoringStrategy protocol, so tests and
deployments can swap in their own scorer. HeuristicScorer is the default:
deterministic, driven by the task's attempt count and by the health of the
latest telemetry sync.
"""

from typing import Any, Callable, Dict, Mapping, Optional, Protocol

CRITERIA = ("efficiency", "reliability", "scalability", "cost", "risk")
DEFAULT_WEIGHTS: Dict[str, float] = {criterion: 1.0 for criterion in CRITERIA}
NEUTRAL_SCORE = 0.5

# Recovery actions offered by the scheduler for failed tasks
ACTION_PROFILES: Dict[str, Dict[str, float]] = {
    "retry":    {"efficiency": 0.70, "reliability": 0.80, "scalability": 0.70, "cost": 0.70, "risk": 0.70},
    "skip":     {"efficiency": 0.85, "reliability": 0.30, "scalability": 0.80, "cost": 0.85, "risk": 0.35},
    "escalate": {"efficiency": 0.40, "reliability": 0.80, "scalability": 0.50, "cost": 0.45, "risk": 0.75},
}

# Task kinds known to the surrounding application, used for prioritization
KIND_PROFILES: Dict[str, Dict[str, float]] = {
    "mint_distribution": {"efficiency": 0.90, "reliability": 0.90, "scalability": 0.70, "cost": 0.60, "risk": 0.80},
    "quest_validation":  {"efficiency": 0.80, "reliability": 0.80, "scalability": 0.80, "cost": 0.70, "risk": 0.70},
    "frame_processing":  {"efficiency": 0.70, "reliability": 0.70, "scalability": 0.80, "cost": 0.80, "risk": 0.70},
    "data_sync":         {"efficiency": 0.60, "reliability": 0.80, "scalability": 0.90, "cost": 0.70, "risk": 0.80},
}

RETRY_DECAY_PER_ATTEMPT = 0.15
ESCALATE_RELIABILITY_GAIN = 0.15
ESCALATE_RISK_GAIN = 0.05
URGENCY_SWING = 0.3


class ScoringStrategy(Protocol):
    """Scores one option on one criterion, returning a float in [0, 1]"""

    def score(self, criterion: str, option: Any) -> float:
        ...


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


class HeuristicScorer:
    """
    Default telemetry-aware scorer.

    Recovery options:
      - retry loses reliability and risk score with every attempt already made
      - escalate gains reliability and risk score with every attempt
      - a high share of failing sync partitions makes retry less reliable

    Prioritization options ({"kind", "payload"}):
      - per-kind profile, nudged by an optional payload["urgency"] in [0, 1]
    """

    def __init__(self, telemetry: Optional[Callable[[], Mapping[str, Any]]] = None):
        self.telemetry = telemetry

    def score(self, criterion: str, option: Any) -> float:
        if isinstance(option, Mapping):
            action = option.get("action")
            if action in ACTION_PROFILES:
                return self._score_action(criterion, action, option.get("task"))
            if "kind" in option:
                return self._score_kind(criterion, option.get("kind"), option.get("payload"))
        return NEUTRAL_SCORE

    def telemetry_error_ratio(self) -> float:
        """Share of sync partitions whose last cycle ended in error"""
        if self.telemetry is None:
            return 0.0
        statuses = self.telemetry() or {}
        if not statuses:
            return 0.0
        failing = sum(1 for status in statuses.values() if _field(status, "status") == "error")
        return failing / len(statuses)

    def _score_action(self, criterion: str, action: str, task: Any) -> float:
        value = ACTION_PROFILES[action].get(criterion, NEUTRAL_SCORE)
        attempt = _field(task, "attempt", 1) or 1
        extra_attempts = max(0, int(attempt) - 1)

        if action == "retry":
            if criterion in ("reliability", "risk"):
                value -= RETRY_DECAY_PER_ATTEMPT * extra_attempts
            if criterion == "reliability":
                value -= 0.3 * self.telemetry_error_ratio()
        elif action == "escalate":
            if criterion == "reliability":
                value += ESCALATE_RELIABILITY_GAIN * extra_attempts
            if criterion == "risk":
                value += ESCALATE_RISK_GAIN * extra_attempts

        return clamp(value)

    def _score_kind(self, criterion: str, kind: Any, payload: Any) -> float:
        profile = KIND_PROFILES.get(str(kind))
        value = profile.get(criterion, NEUTRAL_SCORE) if profile else NEUTRAL_SCORE

        urgency = _field(payload, "urgency") if payload is not None else None
        if isinstance(urgency, (int, float)) and not isinstance(urgency, bool):
            value += (clamp(float(urgency)) - 0.5) * URGENCY_SWING

        return clamp(value)
