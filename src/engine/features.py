"""
Feature extractors.

Pure functions of a window of observations: exponential moving averages,
volatility, trend, streak/momentum, digit entropy and periodicity.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence

from .models import DigitClass, FeatureSnapshot, Observation


SHORT_EMA_WINDOW = 10
LONG_EMA_WINDOW = 50
MOMENTUM_WINDOW = 10
CYCLE_THRESHOLD = 0.65


@dataclass(frozen=True)
class TrendInfo:
    ema_short: float
    ema_long: float
    strength: float
    score: float


@dataclass(frozen=True)
class StreakInfo:
    length: int
    digit_class: Optional[DigitClass]
    momentum: float


@dataclass(frozen=True)
class CycleInfo:
    has_cycle: bool
    period: int
    strength: float


def ema(ticks: Sequence[Observation], window: int, alpha: Optional[float] = None) -> float:
    """
    Exponential moving average of the last ``window`` prices.

    Seeded with the price ``window`` observations back.
    Returns 0 if there are fewer than ``window`` observations.
    """
    if len(ticks) < window:
        return 0.0
    if not alpha:
        alpha = 2 / (window + 1)

    start = len(ticks) - window
    value = ticks[start].price
    for i in range(start + 1, len(ticks)):
        value = alpha * ticks[i].price + (1 - alpha) * value
    return value


def volatility(ticks: Sequence[Observation], window: int) -> float:
    """
    Exponentially-weighted standard deviation of price around the EMA.

    The most recent observation has weight 1, older ones decay by
    exp(-0.1) per step. Returns 0 if there are fewer than ``window``
    observations.
    """
    if len(ticks) < window:
        return 0.0

    center = ema(ticks, window)
    recent = ticks[len(ticks) - window:]
    variance = sum(
        math.exp(-0.1 * (window - idx - 1)) * (tick.price - center) ** 2
        for idx, tick in enumerate(recent)
    ) / window

    return math.sqrt(variance)


def trend(ticks: Sequence[Observation]) -> TrendInfo:
    """Short (10) vs long (50) EMA trend, compressed through tanh."""
    ema_short = ema(ticks, SHORT_EMA_WINDOW)
    ema_long = ema(ticks, LONG_EMA_WINDOW)
    strength = (ema_short - ema_long) / ema_long if ema_long else 0.0
    score = math.tanh(strength * 10) * 0.1
    return TrendInfo(ema_short=ema_short, ema_long=ema_long, strength=strength, score=score)


def streak(ticks: Sequence[Observation]) -> StreakInfo:
    """
    Current run of identical class at the tail, with momentum.

    Momentum is the share of the streak's class in the last 10
    observations minus 0.5.
    """
    if len(ticks) < 2:
        return StreakInfo(length=0, digit_class=None, momentum=0.0)

    last_class = ticks[-1].digit_class
    length = 1
    for i in range(len(ticks) - 2, -1, -1):
        if ticks[i].digit_class is not last_class:
            break
        length += 1

    momentum = 0.0
    if len(ticks) >= MOMENTUM_WINDOW:
        recent = ticks[len(ticks) - MOMENTUM_WINDOW:]
        same = sum(1 for tick in recent if tick.digit_class is last_class)
        momentum = same / MOMENTUM_WINDOW - 0.5

    return StreakInfo(length=length, digit_class=last_class, momentum=momentum)


def entropy(ticks: Sequence[Observation], window: int = 20) -> float:
    """
    Shannon entropy of the 10-way digit distribution, normalized to [0, 1].

    Returns 0 if there are fewer than ``window`` observations.
    """
    if len(ticks) < window:
        return 0.0

    counts = [0] * 10
    for tick in ticks[len(ticks) - window:]:
        counts[tick.digit] += 1

    value = 0.0
    for count in counts:
        if count > 0:
            p = count / window
            value -= p * math.log2(p)

    return value / math.log2(10)


def detect_cycle(ticks: Sequence[Observation], max_period: int = 20) -> CycleInfo:
    """
    Find the best repeating period of the class sequence.

    Scores each period in [2, max_period] over the trailing
    3 * max_period observations. A cycle is declared when the best
    score exceeds 0.65.
    """
    if len(ticks) < max_period * 2:
        return CycleInfo(has_cycle=False, period=0, strength=0.0)

    bits = [tick.digit_class.bit for tick in ticks[max(0, len(ticks) - max_period * 3):]]
    best_period = 0
    best_score = 0.0

    for period in range(2, max_period + 1):
        total = len(bits) - period
        if total <= 0:
            continue
        matches = sum(1 for i in range(period, len(bits)) if bits[i] == bits[i - period])
        score = matches / total
        if score > best_score:
            best_score = score
            best_period = period

    return CycleInfo(
        has_cycle=best_score > CYCLE_THRESHOLD,
        period=best_period,
        strength=best_score
    )


def extract_features(
    ticks: Sequence[Observation],
    volatility_window: int = 50,
    entropy_window: int = 50,
    max_period: int = 20
) -> FeatureSnapshot:
    """
    Compute every feature used by the prediction models.

    Args:
        ticks: Analysis window (must not be empty)
        volatility_window: Window for volatility
        entropy_window: Window for entropy
        max_period: Longest period considered by the cycle detector

    Returns:
        FeatureSnapshot
    """
    trend_info = trend(ticks)
    streak_info = streak(ticks)
    cycle_info = detect_cycle(ticks, max_period)

    return FeatureSnapshot(
        state=ticks[-1].digit_class,
        volatility=volatility(ticks, volatility_window),
        trend_strength=trend_info.strength,
        trend_score=trend_info.score,
        streak_length=streak_info.length,
        streak_class=streak_info.digit_class,
        momentum=streak_info.momentum,
        entropy=entropy(ticks, entropy_window),
        cycle_period=cycle_info.period,
        cycle_strength=cycle_info.strength,
        has_cycle=cycle_info.has_cycle
    )
