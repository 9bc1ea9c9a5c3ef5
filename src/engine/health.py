"""
Reasoning health, adaptive thresholds and the mode controller.

Self-monitoring functions that tune the decision gate from observed
performance: health score, adaptive confidence threshold, learning-rate
auto-tuning, operating mode, forced cooldowns and data integrity.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from .learning import MIN_LEARNING_RATE
from .models import DataIntegrity, Mode, TradeRecord


HEALTH_WINDOW = 20
HEALTH_MIN_SAMPLES = 10
HEALTH_FLOOR = 0.3
LOW_HEALTH = 0.6
HIGH_HEALTH = 0.85

THRESHOLD_MIN = 0.52
THRESHOLD_MAX = 0.75

HIGH_ENTROPY = 0.9
LOW_ENTROPY = 0.7
EXPLORATION_EPSILON = 0.1

COOLDOWN_MIN_LOSSES = 3
COOLDOWN_BASE_TICKS = 5

ANOMALY_VOLATILITY_MULTIPLE = 5
INTEGRITY_FLOOR = 0.5
INTEGRITY_DECAY = 0.95
INTEGRITY_RECOVERY = 0.01


@dataclass(frozen=True)
class HealthReport:
    score: float
    confidence_variance: float = 0.0
    recent_win_rate: float = 0.0
    model_disagreement: float = 0.0
    samples: int = 0


def _recent_resolved(records: Sequence[TradeRecord], window: int = HEALTH_WINDOW):
    resolved = [record for record in records if record.resolved]
    return resolved[-window:]


def health_score(records: Sequence[TradeRecord]) -> HealthReport:
    """
    Self-diagnostic from the most recent 20 resolved trades.

    score = max(0.3, 1 - 2*confidenceVariance - 1.5*|winRate - 0.5|
                     - 0.5*avgWeightSpread)

    Returns a perfect score when fewer than 10 resolved trades exist.
    """
    recent = _recent_resolved(records)
    if len(recent) < HEALTH_MIN_SAMPLES:
        return HealthReport(score=1.0, samples=len(recent))

    confidences = [record.raw_confidence for record in recent]
    mean = sum(confidences) / len(confidences)
    variance = sum((c - mean) ** 2 for c in confidences) / len(confidences)

    win_rate = sum(1 for record in recent if record.won) / len(recent)

    spreads = [
        max(record.weights.values()) - min(record.weights.values()) if record.weights else 0.0
        for record in recent
    ]
    disagreement = sum(spreads) / len(spreads)

    score = max(
        HEALTH_FLOOR,
        1.0 - variance * 2 - abs(win_rate - 0.5) * 1.5 - disagreement * 0.5
    )

    return HealthReport(
        score=score,
        confidence_variance=variance,
        recent_win_rate=win_rate,
        model_disagreement=disagreement,
        samples=len(recent)
    )


def adaptive_threshold(base_threshold: float, health: float, entropy: float) -> float:
    """Confidence threshold adjusted by health and entropy, clamped to [0.52, 0.75]."""
    threshold = base_threshold
    if health < LOW_HEALTH:
        threshold += 0.08
    elif health > HIGH_HEALTH:
        threshold -= 0.03

    if entropy > HIGH_ENTROPY:
        threshold += 0.05

    return min(THRESHOLD_MAX, max(THRESHOLD_MIN, threshold))


def recent_win_rate(records: Sequence[TradeRecord]) -> Optional[float]:
    """Win rate over the last 20 resolved trades, None below 10 samples."""
    recent = _recent_resolved(records)
    if len(recent) < HEALTH_MIN_SAMPLES:
        return None
    return sum(1 for record in recent if record.won) / len(recent)


def tune_learning_rate(
    current: float,
    base: float,
    decay: float,
    win_rate: Optional[float]
) -> float:
    """
    Periodic learning-rate adjustment.

    Losing streaks raise the rate by 5% up to 1.2x base; winning streaks
    decay it (floor 0.01).
    """
    if win_rate is None:
        return current
    if win_rate < 0.45:
        return min(base * 1.2, current * 1.05)
    if win_rate > 0.55:
        return max(MIN_LEARNING_RATE, current * decay)
    return current


def select_mode(entropy: float) -> Mode:
    if entropy > HIGH_ENTROPY:
        return Mode.EXPLORATION
    if entropy < LOW_ENTROPY:
        return Mode.PRECISION
    return Mode.BALANCED


def mode_epsilon(mode: Mode, base_epsilon: float) -> float:
    if mode is Mode.EXPLORATION:
        return EXPLORATION_EPSILON
    if mode is Mode.PRECISION:
        return 0.0
    return base_epsilon


def cooldown_ticks(consecutive_losses: int, recent_entropy: float) -> int:
    """Observations to sit out after a losing streak in a noisy market (0 = none)."""
    if consecutive_losses >= COOLDOWN_MIN_LOSSES and recent_entropy > HIGH_ENTROPY:
        return COOLDOWN_BASE_TICKS + consecutive_losses
    return 0


def check_integrity(
    integrity: DataIntegrity,
    price_change: float,
    recent_volatility: float
) -> bool:
    """
    Flag a price jump larger than 5x recent volatility.

    Anomalies decay the integrity score (floor 0.5); clean observations
    recover it by 0.01 while anomalies are still being worked off.

    Returns:
        True if the observation is clean
    """
    threshold = recent_volatility * ANOMALY_VOLATILITY_MULTIPLE
    if price_change > threshold:
        integrity.recent_anomalies += 1
        integrity.score = max(INTEGRITY_FLOOR, integrity.score * INTEGRITY_DECAY)
        return False

    if integrity.recent_anomalies > 0:
        integrity.recent_anomalies = max(0.0, integrity.recent_anomalies - 0.1)
        integrity.score = min(1.0, integrity.score + INTEGRITY_RECOVERY)

    return True
