"""
pytest configuration for the CastQuest coordination core test suite
"""

import pytest

from src.brain import DecisionEngine

from helpers import FixedScorer


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "asyncio: mark test as async")


@pytest.fixture
def retry_brain():
    """Decision engine that always chooses retry"""
    return DecisionEngine(scorer=FixedScorer({"retry": 0.9, "skip": 0.2, "escalate": 0.1}))


@pytest.fixture
def skip_brain():
    """Decision engine that always chooses skip"""
    return DecisionEngine(scorer=FixedScorer({"retry": 0.1, "skip": 0.9, "escalate": 0.2}))


@pytest.fixture
def escalate_brain():
    """Decision engine that always chooses escalate"""
    return DecisionEngine(scorer=FixedScorer({"retry": 0.1, "skip": 0.2, "escalate": 0.9}))
