"""
Risk sizing: meta-strategy selection and stake computation.
"""

from .learning import MetaQTable, meta_bucket
from .models import Strategy

MAX_STAKE_MULTIPLE = 10
AGGRESSIVE_MIN_CONFIDENCE = 0.65

STRATEGY_MULTIPLIERS = {
    Strategy.CONSERVATIVE: 0.75,
    Strategy.BALANCED: 1.0,
    Strategy.AGGRESSIVE: 1.25,
}


def select_strategy(meta_table: MetaQTable, volatility: float, entropy: float) -> Strategy:
    """Best learned strategy for the (volatility, entropy) bucket."""
    return meta_table.best_strategy(meta_bucket(volatility, entropy))


def strategy_multiplier(strategy: Strategy, confidence: float) -> float:
    """Aggressive sizing only applies above 65% confidence."""
    if strategy is Strategy.AGGRESSIVE and confidence <= AGGRESSIVE_MIN_CONFIDENCE:
        return 1.0
    return STRATEGY_MULTIPLIERS[strategy]


def compute_stake(
    base_stake: float,
    martingale_multiplier: float,
    consecutive_losses: int,
    strategy: Strategy,
    confidence: float
) -> float:
    """
    stake = base * martingale^losses * strategyMultiplier

    Rounded to 2 decimals and never above 10x the base stake, whatever
    the size of the losing streak.
    """
    max_stake = base_stake * MAX_STAKE_MULTIPLE

    try:
        growth = martingale_multiplier ** consecutive_losses
    except OverflowError:
        growth = float("inf")

    stake = min(base_stake * growth * strategy_multiplier(strategy, confidence), max_stake)
    return min(round(stake, 2), max_stake)
