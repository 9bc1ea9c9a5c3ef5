"""
The eight prediction models.

Each model returns a ProbabilityPair over {odd, even} that sums to 1.
Every model falls back to a neutral 0.5/0.5 output when it lacks history.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

import structlog

from .learning import DeepQTable, QTable
from .memory import PatternMemory
from .models import DigitClass, FeatureSnapshot, Observation, ProbabilityPair

logger = structlog.get_logger(__name__)


MEAN_REVERSION_DEVIATION = 0.15
MEAN_REVERSION_FACTOR = 0.1
SHALLOW_Q_WEIGHT = 0.4
DEEP_Q_WEIGHT = 0.6
PATTERN_MIN_HISTORY = 10
CYCLE_MIN_STRENGTH = 0.7


@dataclass
class ModelOutputs:
    """Probability pairs and discrete votes of all models for one analysis."""
    probabilities: Dict[str, ProbabilityPair] = field(default_factory=dict)
    votes: Dict[str, DigitClass] = field(default_factory=dict)

    def add(self, name: str, probability: ProbabilityPair, vote: Optional[DigitClass] = None) -> None:
        self.probabilities[name] = probability
        self.votes[name] = vote if vote is not None else probability.vote


def statistical_model(ticks: Sequence[Observation]) -> ProbabilityPair:
    """Class frequency with a mean-reversion pull past 15% deviation."""
    if not ticks:
        return ProbabilityPair.neutral()

    odd_count = sum(1 for tick in ticks if tick.digit_class is DigitClass.ODD)
    odd_prob = odd_count / len(ticks)

    if abs(odd_prob - 0.5) > MEAN_REVERSION_DEVIATION:
        odd_prob += MEAN_REVERSION_FACTOR if odd_prob < 0.5 else -MEAN_REVERSION_FACTOR

    return ProbabilityPair(odd_prob, 1 - odd_prob)


def markov_model(ticks: Sequence[Observation], state: DigitClass) -> ProbabilityPair:
    """First-order transition frequencies conditioned on the current class."""
    if len(ticks) < 3:
        return ProbabilityPair.neutral()

    from_state = 0
    to_odd = 0
    for prev, curr in zip(ticks, ticks[1:]):
        if prev.digit_class is state:
            from_state += 1
            if curr.digit_class is DigitClass.ODD:
                to_odd += 1

    if from_state == 0:
        return ProbabilityPair.neutral()

    odd_prob = to_odd / from_state
    return ProbabilityPair(odd_prob, 1 - odd_prob)


def volatility_adjustment(volatility: float) -> float:
    if volatility > 0.6:
        return -0.08
    if volatility < 0.3:
        return 0.05
    return 0.0


def trend_model(trend_score: float, volatility: float):
    """
    Trend estimate ``0.5 + score + volatilityAdjustment``.

    Returns:
        (normalized pair, vote)
    """
    adjustment = volatility_adjustment(volatility)
    odd = 0.5 + trend_score + adjustment
    even = 0.5 - trend_score + adjustment
    vote = DigitClass.ODD if odd > 0.5 else DigitClass.EVEN
    return ProbabilityPair(odd, even).normalized(), vote


def qlearning_model(q_table: QTable, deep_table: DeepQTable, state: DigitClass, bucket: int):
    """
    Blend of shallow (40%) and deep (60%) table values.

    Table values are not true probabilities; they are clamped and
    normalized here, while the vote uses the raw blend.

    Returns:
        (normalized pair, vote)
    """
    shallow = q_table.pair(state)
    deep = deep_table.pair(bucket)
    blended = ProbabilityPair(
        shallow.odd * SHALLOW_Q_WEIGHT + deep.odd * DEEP_Q_WEIGHT,
        shallow.even * SHALLOW_Q_WEIGHT + deep.even * DEEP_Q_WEIGHT
    )
    return blended.clipped().normalized(), blended.vote


def streak_model(length: int, streak_class: DigitClass, momentum: float) -> ProbabilityPair:
    """Penalize long runs, offset by momentum."""
    if length <= 3 or streak_class is None:
        return ProbabilityPair.neutral()

    penalty = math.log(length - 2) * 0.12
    bonus = momentum * 0.08
    return ProbabilityPair.favoring(streak_class, 0.5 - penalty + bonus)


def pattern_model(ticks: Sequence[Observation], memory: PatternMemory) -> ProbabilityPair:
    """Outcome of the best-matching stored pattern."""
    if len(ticks) < PATTERN_MIN_HISTORY or len(memory) == 0:
        return ProbabilityPair.neutral()

    current = [tick.digit_class.bit for tick in ticks[len(ticks) - memory.pattern_length:]]
    match = memory.best_match(current)
    if match is None:
        return ProbabilityPair.neutral()

    entry, similarity = match
    confidence = similarity * entry.success_rate
    logger.debug(
        "Pattern match",
        similarity=round(similarity, 3),
        success_rate=round(entry.success_rate, 3)
    )
    return ProbabilityPair.favoring(entry.predicted_outcome, 0.5 + confidence * 0.3)


def entropy_model(entropy: float, state: DigitClass) -> ProbabilityPair:
    """Anti-persistence in noisy markets, persistence in ordered ones."""
    if entropy > 0.9:
        return ProbabilityPair.favoring(state, 0.5 - 0.05)
    if entropy < 0.7:
        return ProbabilityPair.favoring(state, 0.5 + 0.08)
    return ProbabilityPair.neutral()


def cyclic_model(
    ticks: Sequence[Observation],
    has_cycle: bool,
    period: int,
    strength: float
) -> ProbabilityPair:
    """Repeat the class observed one period back when the cycle is strong."""
    if not has_cycle or strength <= CYCLE_MIN_STRENGTH or period <= 0 or len(ticks) < period:
        return ProbabilityPair.neutral()

    side = ticks[-period].digit_class
    logger.debug("Cyclic pattern", period=period, strength=round(strength, 3))
    return ProbabilityPair.favoring(side, 0.5 + strength * 0.2)


def run_models(
    ticks: Sequence[Observation],
    features: FeatureSnapshot,
    q_table: QTable,
    deep_table: DeepQTable,
    bucket: int,
    pattern_memory: PatternMemory
) -> ModelOutputs:
    """
    Evaluate all eight models on one analysis window.

    Returns:
        ModelOutputs keyed by model name, in MODEL_NAMES order
    """
    outputs = ModelOutputs()
    state = features.state

    outputs.add("stat", statistical_model(ticks))
    outputs.add("markov", markov_model(ticks, state))
    outputs.add("trend", *trend_model(features.trend_score, features.volatility))
    outputs.add("qlearning", *qlearning_model(q_table, deep_table, state, bucket))
    outputs.add("streak", streak_model(features.streak_length, features.streak_class, features.momentum))
    outputs.add("pattern", pattern_model(ticks, pattern_memory))
    outputs.add("entropy", entropy_model(features.entropy, state))
    outputs.add("cycle", cyclic_model(
        ticks,
        features.has_cycle,
        features.cycle_period,
        features.cycle_strength
    ))

    return outputs
