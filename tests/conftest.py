"""
Shared fixtures for engine, venue and session tests.
"""

import pytest

from src.engine.config import EngineConfig
from src.engine.models import Observation


@pytest.fixture
def make_ticks():
    """
    Factory building observations whose last digit is given explicitly.

    ``make_ticks([1, 4, 7])`` yields prices 100.01, 100.04, 100.07 with
    sequence ids 1, 2, 3.
    """
    def _make(digits, start=1, base="100.0"):
        return [
            Observation.from_price(start + i, f"{base}{digit}")
            for i, digit in enumerate(digits)
        ]
    return _make


@pytest.fixture
def make_price_ticks():
    """Factory building observations from explicit prices."""
    def _make(prices, start=1):
        return [Observation.from_price(start + i, price) for i, price in enumerate(prices)]
    return _make


@pytest.fixture
def engine_config():
    """Engine configuration with exploration disabled."""
    return EngineConfig(epsilon=0.0)
