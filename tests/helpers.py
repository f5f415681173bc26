# tests/helpers.py
"""Shared test doubles and polling helpers"""

import asyncio
import math
from typing import Any, Callable, Dict, Mapping, Optional, Union

from src.brain import PatternFinding


class FixedScorer:
    """
    Deterministic scorer keyed by the option's action or kind.

    Table values are either a float (same score on every criterion) or a
    mapping criterion -> float.
    """

    def __init__(self, table: Dict[str, Union[float, Mapping[str, float]]], default: float = 0.5):
        self.table = table
        self.default = default
        self.calls = 0

    def score(self, criterion: str, option: Any) -> float:
        self.calls += 1
        key = option
        if isinstance(option, Mapping):
            key = option.get("action", option.get("kind"))
        value = self.table.get(key, self.default)
        if isinstance(value, Mapping):
            return value.get(criterion, self.default)
        return value


class RaisingScorer:
    """Scorer that fails on every call"""

    def score(self, criterion: str, option: Any) -> float:
        raise RuntimeError("scorer offline")


class NaNScorer:
    def score(self, criterion: str, option: Any) -> float:
        return math.nan


def fixed_analyzer(confidence: Optional[float], recommendation: str = "do something"):
    """Analyzer returning one finding with the given confidence (None: no finding)"""

    def analyzer(records):
        if confidence is None:
            return None
        return PatternFinding(
            confidence=confidence,
            frequency=1.0,
            implications=(f"confidence {confidence}",),
            recommendations=(recommendation,),
        )

    return analyzer


async def wait_for_condition(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.005) -> None:
    """Poll until predicate() is true or fail the test"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met within timeout")
        await asyncio.sleep(interval)
