"""
Learning tables and their update rules.

The shallow table is keyed by the class of the last observation. The deep
and meta tables cover closed state spaces (3x3x3 and 3x3 buckets) and are
stored as fixed-size arenas indexed by an enumerated bucket tuple.

Persisted form keeps human-readable labels, e.g. ``low_bullish_short``.
"""

from typing import Any, Dict, List, Optional, Tuple

from .models import DigitClass, ProbabilityPair, Strategy, STRATEGIES


ACTIONS: Tuple[DigitClass, ...] = (DigitClass.ODD, DigitClass.EVEN)
DEFAULT_VALUE = 0.5
MIN_LEARNING_RATE = 0.01

VOLATILITY_LEVELS = ("low", "medium", "high")
TREND_LEVELS = ("bullish", "neutral", "bearish")
STREAK_LEVELS = ("short", "medium", "long")
ENTROPY_LEVELS = ("low", "medium", "high")

DEEP_BUCKETS = len(VOLATILITY_LEVELS) * len(TREND_LEVELS) * len(STREAK_LEVELS)
META_BUCKETS = len(VOLATILITY_LEVELS) * len(ENTROPY_LEVELS)

META_ALPHA = 0.1
META_GAMMA = 0.9


# ============================================================================
# Bucketing
# ============================================================================

def volatility_level(volatility: float) -> int:
    if volatility < 0.3:
        return 0
    if volatility < 0.7:
        return 1
    return 2


def trend_level(trend_strength: float) -> int:
    if trend_strength > 0.05:
        return 0
    if trend_strength < -0.05:
        return 2
    return 1


def streak_level(streak_length: int) -> int:
    if streak_length < 3:
        return 0
    if streak_length < 6:
        return 1
    return 2


def entropy_level(entropy: float) -> int:
    if entropy < 0.7:
        return 0
    if entropy < 0.9:
        return 1
    return 2


def deep_bucket(volatility: float, trend_strength: float, streak_length: int) -> int:
    """Index of the (volatility, trend, streak) bucket in the deep table."""
    return (
        volatility_level(volatility) * 9
        + trend_level(trend_strength) * 3
        + streak_level(streak_length)
    )


def meta_bucket(volatility: float, entropy: float) -> int:
    """Index of the (volatility, entropy) bucket in the meta table."""
    return volatility_level(volatility) * 3 + entropy_level(entropy)


def deep_bucket_label(index: int) -> str:
    vol, rest = divmod(index, 9)
    trend_idx, streak_idx = divmod(rest, 3)
    return f"{VOLATILITY_LEVELS[vol]}_{TREND_LEVELS[trend_idx]}_{STREAK_LEVELS[streak_idx]}"


def meta_bucket_label(index: int) -> str:
    vol, ent = divmod(index, 3)
    return f"{VOLATILITY_LEVELS[vol]}_{ENTROPY_LEVELS[ent]}"


def _action_index(action: DigitClass) -> int:
    return 0 if action is DigitClass.ODD else 1


def _read_float(value: Any, default: float = DEFAULT_VALUE) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


# ============================================================================
# Tables
# ============================================================================

class QTable:
    """
    Shallow Q-table: last observed class -> value per action.

    Values are updated with an unclamped rule and can leave [0, 1];
    callers clamp at the point of use.
    """

    def __init__(self, values: Optional[List[List[float]]] = None):
        self.values = values or [[DEFAULT_VALUE, DEFAULT_VALUE] for _ in ACTIONS]

    def get(self, state: DigitClass, action: DigitClass) -> float:
        return self.values[_action_index(state)][_action_index(action)]

    def set(self, state: DigitClass, action: DigitClass, value: float) -> None:
        self.values[_action_index(state)][_action_index(action)] = value

    def pair(self, state: DigitClass) -> ProbabilityPair:
        row = self.values[_action_index(state)]
        return ProbabilityPair(row[0], row[1])

    def to_dict(self) -> Dict[str, Dict[str, float]]:
        return {
            state.value: {action.value: self.get(state, action) for action in ACTIONS}
            for state in ACTIONS
        }

    @classmethod
    def from_dict(cls, data: Any) -> "QTable":
        table = cls()
        if not isinstance(data, dict):
            return table
        for state in ACTIONS:
            row = data.get(state.value)
            if isinstance(row, dict):
                for action in ACTIONS:
                    table.set(state, action, _read_float(row.get(action.value)))
        return table


class DeepQTable:
    """Contextual Q-table over 27 (volatility, trend, streak) buckets."""

    def __init__(self, values: Optional[List[List[float]]] = None):
        self.values = values or [[DEFAULT_VALUE, DEFAULT_VALUE] for _ in range(DEEP_BUCKETS)]

    def get(self, bucket: int, action: DigitClass) -> float:
        return self.values[bucket][_action_index(action)]

    def set(self, bucket: int, action: DigitClass, value: float) -> None:
        self.values[bucket][_action_index(action)] = value

    def pair(self, bucket: int) -> ProbabilityPair:
        row = self.values[bucket]
        return ProbabilityPair(row[0], row[1])

    def best_value(self, bucket: int) -> float:
        return max(self.values[bucket])

    def to_dict(self) -> Dict[str, Dict[str, float]]:
        return {
            deep_bucket_label(index): {action.value: self.get(index, action) for action in ACTIONS}
            for index in range(DEEP_BUCKETS)
        }

    @classmethod
    def from_dict(cls, data: Any) -> "DeepQTable":
        table = cls()
        if not isinstance(data, dict):
            return table
        for index in range(DEEP_BUCKETS):
            row = data.get(deep_bucket_label(index))
            if isinstance(row, dict):
                for action in ACTIONS:
                    table.set(index, action, _read_float(row.get(action.value)))
        return table


class MetaQTable:
    """Meta-strategy Q-table over 9 (volatility, entropy) buckets."""

    def __init__(self, values: Optional[List[List[float]]] = None):
        self.values = values or [[DEFAULT_VALUE] * len(STRATEGIES) for _ in range(META_BUCKETS)]

    def get(self, bucket: int, strategy: Strategy) -> float:
        return self.values[bucket][STRATEGIES.index(strategy)]

    def set(self, bucket: int, strategy: Strategy, value: float) -> None:
        self.values[bucket][STRATEGIES.index(strategy)] = value

    def best_value(self, bucket: int) -> float:
        return max(self.values[bucket])

    def best_strategy(self, bucket: int) -> Strategy:
        """
        Strategy with the highest learned value.

        Balanced wins any tie it is part of, so an untouched bucket
        selects balanced.
        """
        row = self.values[bucket]
        best = max(row)
        if row[STRATEGIES.index(Strategy.BALANCED)] == best:
            return Strategy.BALANCED
        return STRATEGIES[row.index(best)]

    def to_dict(self) -> Dict[str, Dict[str, float]]:
        return {
            meta_bucket_label(index): {s.value: self.get(index, s) for s in STRATEGIES}
            for index in range(META_BUCKETS)
        }

    @classmethod
    def from_dict(cls, data: Any) -> "MetaQTable":
        table = cls()
        if not isinstance(data, dict):
            return table
        for index in range(META_BUCKETS):
            row = data.get(meta_bucket_label(index))
            if isinstance(row, dict):
                for strategy in STRATEGIES:
                    table.set(index, strategy, _read_float(row.get(strategy.value)))
        return table


# ============================================================================
# Update rules
# ============================================================================

def update_shallow_q(
    table: QTable,
    state: DigitClass,
    action: DigitClass,
    reward: float,
    learning_rate: float
) -> float:
    """Q[s][a] += lr * (reward - Q[s][a]). Returns the new value."""
    current = table.get(state, action)
    value = current + learning_rate * (reward - current)
    table.set(state, action, value)
    return value


def update_deep_q(
    table: DeepQTable,
    bucket: int,
    action: DigitClass,
    reward: float,
    learning_rate: float,
    discount_factor: float
) -> float:
    """Q[b][a] += lr * (reward + gamma * max(Q[b]) - Q[b][a]). Returns the new value."""
    current = table.get(bucket, action)
    target = reward + discount_factor * table.best_value(bucket)
    value = current + learning_rate * (target - current)
    table.set(bucket, action, value)
    return value


def update_meta_q(
    table: MetaQTable,
    bucket: int,
    strategy: Strategy,
    reward: float,
    alpha: float = META_ALPHA,
    gamma: float = META_GAMMA
) -> float:
    """Q[b][s] += alpha * (reward + gamma * max(Q[b]) - Q[b][s]). Returns the new value."""
    current = table.get(bucket, strategy)
    target = reward + gamma * table.best_value(bucket)
    value = current + alpha * (target - current)
    table.set(bucket, strategy, value)
    return value


def decay_learning_rate(learning_rate: float, decay: float) -> float:
    return max(MIN_LEARNING_RATE, learning_rate * decay)
