"""
Decision Engine ("Brain")
Multi-criteria decisions, pattern discovery and recommendation synthesis.
"""

from .models import (
    PATTERN_CONFIDENCE_THRESHOLD,
    BrainMetrics,
    Decision,
    Pattern,
    PatternCategory,
    PatternFinding,
    Recommendations,
    ThoughtProcess,
)
from .scoring import (
    ACTION_PROFILES,
    CRITERIA,
    DEFAULT_WEIGHTS,
    KIND_PROFILES,
    HeuristicScorer,
    ScoringStrategy,
)
from .analyzers import DEFAULT_ANALYZERS
from .engine import DecisionEngine

__all__ = [
    # Engine
    "DecisionEngine",
    # Scoring
    "ScoringStrategy",
    "HeuristicScorer",
    "CRITERIA",
    "DEFAULT_WEIGHTS",
    "ACTION_PROFILES",
    "KIND_PROFILES",
    # Analysis
    "DEFAULT_ANALYZERS",
    "PATTERN_CONFIDENCE_THRESHOLD",
    # Records
    "Decision",
    "Pattern",
    "PatternCategory",
    "PatternFinding",
    "Recommendations",
    "ThoughtProcess",
    "BrainMetrics",
]
