# src/brain/engine.py
"""
Decision Engine ("Brain")

Scores alternatives for the scheduler and the sync engine, discovers
patterns in telemetry data and combines them into recommendations.

Usage:
    brain = DecisionEngine()
    decision = await brain.decide("error_recovery", [
        {"action": "retry", "task": task},
        {"action": "skip", "task": task},
    ])
    patterns = await brain.analyze(records)
"""

import asyncio
import inspect
import logging
import math
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Sequence

from src.brain.analyzers import DEFAULT_ANALYZERS, Analyzer
from src.brain.models import (
    PATTERN_CONFIDENCE_THRESHOLD,
    BrainMetrics,
    Decision,
    Pattern,
    PatternFinding,
    Recommendations,
    ThoughtProcess,
    utcnow,
)
from src.brain.scoring import CRITERIA, DEFAULT_WEIGHTS, HeuristicScorer, ScoringStrategy
from src.errors import ConfigurationError, DecisionEngineError
from src.events import EventStream, EventType

logger = logging.getLogger("castquest.brain")

DEFAULT_HISTORY_LIMIT = 1000
CONFIDENCE_WINDOW = 100
FAILURE_STATUSES = ("failed", "error")

TelemetryProvider = Callable[[], Mapping[str, Any]]


@dataclass
class OptionEvaluation:
    """Per-option scoring result"""
    score: float
    criteria: Dict[str, float]
    reasoning: List[str]


def _describe(option: Any) -> str:
    if isinstance(option, Mapping):
        for key in ("action", "kind"):
            if key in option:
                return f"{key}={option[key]}"
    return repr(option)[:60]


class DecisionEngine:
    """
    Telemetry-aware decision engine.

    Features:
    - Weighted multi-criteria scoring through a pluggable ScoringStrategy
    - Concurrent pattern analysis with a 0.7 confidence floor
    - Deep-think passes combining patterns, predictions and optimizations
    - Bounded decision, pattern and thought history
    """

    def __init__(
        self,
        scorer: Optional[ScoringStrategy] = None,
        analyzers: Optional[Mapping[str, Analyzer]] = None,
        weights: Optional[Mapping[str, float]] = None,
        telemetry: Optional[TelemetryProvider] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        events: Optional[EventStream] = None,
    ):
        if history_limit < 1:
            raise ConfigurationError("history_limit must be at least 1", history_limit=history_limit)

        self.weights = self._validate_weights(weights)
        self.scorer: ScoringStrategy = scorer or HeuristicScorer(telemetry=self.read_telemetry)
        self.analyzers: Dict[str, Analyzer] = dict(analyzers if analyzers is not None else DEFAULT_ANALYZERS)
        self.events = events or EventStream("brain")
        self._telemetry = telemetry

        self._decisions: Deque[Decision] = deque(maxlen=history_limit)
        self._patterns: Deque[Pattern] = deque(maxlen=history_limit)
        self._thoughts: Deque[ThoughtProcess] = deque(maxlen=history_limit)
        self._metrics = BrainMetrics()

        logger.info(
            f"DecisionEngine initialized | scorer={type(self.scorer).__name__} | "
            f"analyzers={','.join(self.analyzers)}"
        )

    @staticmethod
    def _validate_weights(weights: Optional[Mapping[str, float]]) -> Dict[str, float]:
        merged = dict(DEFAULT_WEIGHTS)
        if weights:
            unknown = set(weights) - set(CRITERIA)
            if unknown:
                raise ConfigurationError("Unknown scoring criteria", criteria=sorted(unknown))
            merged.update(weights)
        if any(w < 0 for w in merged.values()) or sum(merged.values()) <= 0:
            raise ConfigurationError("Criterion weights must be non-negative with a positive sum", weights=merged)
        return merged

    # =========================================================================
    # Telemetry
    # =========================================================================

    def bind_telemetry(self, provider: Optional[TelemetryProvider]) -> None:
        """Attach the sync engine's status map as a scoring input"""
        self._telemetry = provider

    def read_telemetry(self) -> Mapping[str, Any]:
        if self._telemetry is None:
            return {}
        try:
            return self._telemetry() or {}
        except Exception as e:
            logger.warning(f"Telemetry provider failed, scoring without it: {e}")
            return {}

    # =========================================================================
    # Decisions
    # =========================================================================

    async def decide(self, context: str, options: Sequence[Any]) -> Decision:
        """
        Choose the best option for a context.

        Raises:
            DecisionEngineError: no options, or the scorer misbehaved
        """
        options = tuple(options)
        if not options:
            raise DecisionEngineError("Cannot decide between zero options", context)

        evaluations = [self._evaluate(context, option) for option in options]

        # Strict comparison: the first maximum wins
        best = 0
        for index, evaluation in enumerate(evaluations):
            if evaluation.score > evaluations[best].score:
                best = index

        winner = evaluations[best]
        decision = Decision(
            id=f"decision_{uuid.uuid4().hex[:12]}",
            context=context,
            options=options,
            chosen=options[best],
            reasoning=tuple(winner.reasoning),
            confidence=winner.score,
            scores=tuple(e.score for e in evaluations),
        )

        self._decisions.append(decision)
        self._record_decision_metrics(decision)

        logger.info(
            f"Decision made | context={context} | chosen={_describe(decision.chosen)} | "
            f"confidence={decision.confidence:.2f} | options={len(options)}"
        )
        self.events.emit(EventType.DECISION_MADE, decision=decision.to_dict())
        return decision

    def _evaluate(self, context: str, option: Any) -> OptionEvaluation:
        criteria: Dict[str, float] = {}
        for criterion in CRITERIA:
            try:
                value = self.scorer.score(criterion, option)
            except Exception as e:
                raise DecisionEngineError(
                    f"Scorer failed on criterion '{criterion}': {e}", context, original_error=e
                ) from e
            criteria[criterion] = self._validate_score(context, criterion, value)

        total_weight = sum(self.weights.values())
        score = sum(criteria[c] * self.weights[c] for c in CRITERIA) / total_weight

        strongest = max(CRITERIA, key=lambda c: criteria[c])
        weakest = min(CRITERIA, key=lambda c: criteria[c])
        reasoning = [
            f"Scored {score * 100:.1f}% across {len(CRITERIA)} criteria",
            f"Strongest in: {strongest} ({criteria[strongest]:.2f})",
            f"Weakest in: {weakest} ({criteria[weakest]:.2f})",
        ]
        return OptionEvaluation(score=score, criteria=criteria, reasoning=reasoning)

    @staticmethod
    def _validate_score(context: str, criterion: str, value: Any) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise DecisionEngineError(
                f"Score for '{criterion}' is not numeric: {value!r}", context
            )
        value = float(value)
        if math.isnan(value) or not 0.0 <= value <= 1.0:
            raise DecisionEngineError(
                f"Score for '{criterion}' outside [0, 1]: {value!r}", context
            )
        return value

    def _record_decision_metrics(self, decision: Decision) -> None:
        self._metrics.decisions_made += 1
        self._metrics.last_decision_at = decision.timestamp
        recent = list(self._decisions)[-CONFIDENCE_WINDOW:]
        self._metrics.average_confidence = sum(d.confidence for d in recent) / len(recent)

    # =========================================================================
    # Pattern analysis
    # =========================================================================

    async def analyze(self, data: Any) -> List[Pattern]:
        """
        Run every category analyzer concurrently and keep patterns whose
        confidence is above 0.7.

        Raises:
            DecisionEngineError: data is not a record or a sequence of records
        """
        records = self._coerce_records(data)
        categories = list(self.analyzers.items())

        findings = await asyncio.gather(
            *(self._run_analyzer(category, analyzer, records) for category, analyzer in categories)
        )

        patterns: List[Pattern] = []
        for (category, _), finding in zip(categories, findings):
            if finding is None:
                continue
            if finding.confidence <= PATTERN_CONFIDENCE_THRESHOLD:
                logger.debug(f"Discarded {category} pattern | confidence={finding.confidence:.2f}")
                continue
            pattern = Pattern(
                id=f"pattern_{category}_{uuid.uuid4().hex[:8]}",
                category=category,
                confidence=finding.confidence,
                frequency=finding.frequency,
                implications=tuple(finding.implications),
                recommendations=tuple(finding.recommendations),
            )
            self._patterns.append(pattern)
            patterns.append(pattern)

        self._metrics.patterns_discovered += len(patterns)
        if patterns:
            logger.info(
                f"Patterns discovered | count={len(patterns)} | "
                f"categories={','.join(p.category for p in patterns)}"
            )
            self.events.emit(EventType.PATTERNS_DISCOVERED, patterns=[p.to_dict() for p in patterns])
        return patterns

    @staticmethod
    def _coerce_records(data: Any) -> List[Mapping[str, Any]]:
        if isinstance(data, Mapping):
            return [data]
        if isinstance(data, (str, bytes)) or not isinstance(data, (list, tuple, deque)):
            raise DecisionEngineError(f"Cannot analyze data of type {type(data).__name__}", "analyze")
        records = [r for r in data if isinstance(r, Mapping)]
        if len(records) != len(data):
            raise DecisionEngineError("Every analyzed record must be a mapping", "analyze")
        return records

    async def _run_analyzer(
        self, category: str, analyzer: Analyzer, records: List[Mapping[str, Any]]
    ) -> Optional[PatternFinding]:
        try:
            if inspect.iscoroutinefunction(analyzer):
                finding = await analyzer(records)
            else:
                finding = await asyncio.to_thread(analyzer, records)
                if inspect.isawaitable(finding):
                    finding = await finding
        except Exception as e:
            logger.warning(f"Analyzer failed | category={category} | error={e}")
            return None

        if finding is None:
            return None
        confidence = getattr(finding, "confidence", None)
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or math.isnan(confidence):
            logger.warning(f"Analyzer returned no usable confidence | category={category}")
            return None
        if not 0.0 <= confidence <= 1.0:
            logger.warning(f"Analyzer confidence outside [0, 1] | category={category} | confidence={confidence!r}")
            return None
        return finding

    # =========================================================================
    # Synthesis
    # =========================================================================

    def synthesize(
        self,
        patterns: Sequence[Pattern],
        predictions: Optional[Mapping[str, Any]] = None,
        optimizations: Optional[Mapping[str, Any]] = None,
        telemetry_insights: Optional[Mapping[str, Any]] = None,
    ) -> Recommendations:
        """Combine the four inputs into ordered recommendations. Pure."""
        predictions = dict(predictions or {})
        optimizations = dict(optimizations or {})
        telemetry_insights = dict(telemetry_insights or {})

        ordered: List[str] = []
        for pattern in sorted(patterns, key=lambda p: p.confidence, reverse=True):
            ordered.extend(pattern.recommendations)
        ordered.extend(optimizations.get("optimizations", []))
        for partition in telemetry_insights.get("failing_partitions", []):
            ordered.append(f"Investigate failing telemetry partition '{partition}'")

        recommendations = tuple(dict.fromkeys(ordered))

        if patterns:
            confidence = sum(p.confidence for p in patterns) / len(patterns)
        else:
            confidence = float(predictions.get("confidence", 0.0))

        return Recommendations(
            recommendations=recommendations,
            insights={
                "patterns": [p.to_dict() for p in patterns],
                "predictions": predictions,
                "optimizations": optimizations,
                "telemetry": telemetry_insights,
            },
            confidence=max(0.0, min(1.0, confidence)),
            pattern_count=len(patterns),
        )

    # =========================================================================
    # Deep thinking
    # =========================================================================

    async def deep_think(self, context: str, data: Any) -> ThoughtProcess:
        """Analyze, predict, optimize and query telemetry concurrently, then synthesize"""
        start = time.perf_counter()
        records = self._coerce_records(data)

        patterns, predictions, optimizations, insights = await asyncio.gather(
            self.analyze(records),
            self._predict_outcomes(records),
            self._optimize_strategy(records),
            self._query_telemetry_insights(),
        )
        output = self.synthesize(patterns, predictions, optimizations, insights)

        thought = ThoughtProcess(
            id=f"thought_{uuid.uuid4().hex[:12]}",
            context=context,
            output=output,
            confidence=output.confidence,
            processing_time_ms=(time.perf_counter() - start) * 1000,
        )
        self._thoughts.append(thought)
        self._metrics.thoughts_processed += 1

        logger.info(
            f"Deep think completed | context={context} | confidence={thought.confidence:.2f} | "
            f"recommendations={len(output.recommendations)} | time_ms={thought.processing_time_ms:.1f}"
        )
        self.events.emit(EventType.THINKING_COMPLETED, thought=thought.to_dict())
        return thought

    @staticmethod
    def _failure_rate(records: List[Mapping[str, Any]]) -> float:
        if not records:
            return 0.0
        failures = sum(1 for r in records if str(r.get("status", "")).lower() in FAILURE_STATUSES)
        return failures / len(records)

    async def _predict_outcomes(self, records: List[Mapping[str, Any]]) -> Dict[str, Any]:
        failure_rate = self._failure_rate(records)
        sample_weight = min(len(records), 100) / 100
        return {
            "time_horizon": "24h",
            "observed_records": len(records),
            "expected_failure_rate": failure_rate,
            "predictions": [f"Failure rate expected to stay near {failure_rate:.0%}"] if records else [],
            "confidence": 0.5 + 0.4 * sample_weight,
        }

    async def _optimize_strategy(self, records: List[Mapping[str, Any]]) -> Dict[str, Any]:
        suggestions: List[str] = []
        failure_rate = self._failure_rate(records)
        if failure_rate > 0.2:
            suggestions.append("Reduce retry pressure on failing task kinds")
        if len(records) > 100:
            suggestions.append("Process telemetry in batches of 100 records")
        return {"optimizations": suggestions, "confidence": 0.8}

    async def _query_telemetry_insights(self) -> Dict[str, Any]:
        self._metrics.telemetry_queries += 1
        statuses = self.read_telemetry()
        failing = [
            name for name, status in statuses.items()
            if getattr(status, "status", None) == "error"
        ]
        return {
            "partitions": len(statuses),
            "healthy_partitions": len(statuses) - len(failing),
            "failing_partitions": failing,
            "records_processed": sum(getattr(s, "records_processed", 0) for s in statuses.values()),
        }

    # =========================================================================
    # Introspection
    # =========================================================================

    def get_decisions(self, limit: Optional[int] = None) -> List[Decision]:
        decisions = list(self._decisions)
        return decisions[-limit:] if limit else decisions

    def get_patterns(self, category: Optional[str] = None) -> List[Pattern]:
        return [p for p in self._patterns if category is None or p.category == category]

    def get_thoughts(self, limit: int = 10) -> List[ThoughtProcess]:
        return list(self._thoughts)[-limit:]

    def get_metrics(self) -> Dict[str, Any]:
        return self._metrics.to_dict()

    def get_status(self) -> Dict[str, Any]:
        """Get engine status for health reporting"""
        return {
            "scorer": type(self.scorer).__name__,
            "analyzers": list(self.analyzers),
            "weights": dict(self.weights),
            "history": {
                "decisions": len(self._decisions),
                "patterns": len(self._patterns),
                "thoughts": len(self._thoughts),
            },
            "metrics": self._metrics.to_dict(),
            "events": self.events.get_status(),
            "timestamp": utcnow().isoformat(),
        }
