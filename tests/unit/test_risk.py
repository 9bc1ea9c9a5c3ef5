"""
Unit tests for stake sizing and strategy selection.
"""

import pytest

from src.engine.learning import MetaQTable, meta_bucket, update_meta_q
from src.engine.models import Strategy
from src.engine.risk import (
    MAX_STAKE_MULTIPLE,
    compute_stake,
    select_strategy,
    strategy_multiplier,
)


# ============================================================================
# Stake Tests
# ============================================================================

@pytest.mark.unit
def test_stake_without_losses():
    """Test the base stake is used after a win."""
    assert compute_stake(1.0, 2.0, 0, Strategy.BALANCED, 0.6) == 1.0


@pytest.mark.unit
def test_stake_martingale_growth():
    """Test stake doubles per consecutive loss."""
    assert compute_stake(1.0, 2.0, 1, Strategy.BALANCED, 0.6) == 2.0
    assert compute_stake(1.0, 2.0, 3, Strategy.BALANCED, 0.6) == 8.0


@pytest.mark.unit
@pytest.mark.parametrize("losses", [4, 10, 1000, 10 ** 6])
def test_stake_never_exceeds_cap(losses):
    """Test stake is capped at 10x base for any losing streak."""
    stake = compute_stake(0.35, 2.0, losses, Strategy.AGGRESSIVE, 0.9)

    assert stake <= 0.35 * MAX_STAKE_MULTIPLE
    assert stake == pytest.approx(3.5)


@pytest.mark.unit
def test_stake_rounded_to_cents():
    """Test stake is rounded to 2 decimals."""
    assert compute_stake(0.35, 1.5, 1, Strategy.CONSERVATIVE, 0.6) == 0.39


@pytest.mark.unit
def test_aggressive_needs_confidence():
    """Test the aggressive multiplier applies only above 0.65 confidence."""
    assert strategy_multiplier(Strategy.AGGRESSIVE, 0.65) == 1.0
    assert strategy_multiplier(Strategy.AGGRESSIVE, 0.7) == 1.25
    assert strategy_multiplier(Strategy.CONSERVATIVE, 0.9) == 0.75


# ============================================================================
# Strategy Selection Tests
# ============================================================================

@pytest.mark.unit
def test_select_strategy_uses_meta_bucket():
    """Test the learned strategy of the current bucket is selected."""
    table = MetaQTable()
    update_meta_q(table, meta_bucket(0.1, 0.95), Strategy.CONSERVATIVE, 1.0)

    assert select_strategy(table, 0.1, 0.95) is Strategy.CONSERVATIVE
    assert select_strategy(table, 0.8, 0.5) is Strategy.BALANCED
