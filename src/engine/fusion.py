"""
Adaptive weighting and Bayesian fusion of model outputs.
"""

from dataclasses import dataclass
from typing import Dict, Mapping

from .models import DigitClass, ModelState, ProbabilityPair

MIN_WEIGHT = 0.05
CONSENSUS_THRESHOLD = 0.6
CYCLE_BLEND = 0.15
INTEGRITY_THRESHOLD = 0.9


@dataclass(frozen=True)
class Consensus:
    agreement: float
    prediction: DigitClass
    has_consensus: bool


@dataclass(frozen=True)
class FusionResult:
    """Final probabilities and the intermediate terms that produced them."""
    probabilities: ProbabilityPair
    bayesian: ProbabilityPair
    context_bias: float
    consensus: Consensus


def adaptive_weights(performance: Mapping[str, ModelState]) -> Dict[str, float]:
    """
    Per-model weights from squared accuracy.

    Weights sum to 1 and each is at least 0.05: models that would fall
    below the floor are pinned to it and the remaining mass is shared
    among the others in proportion to their squared accuracy.

    Args:
        performance: Model name -> accuracy counters

    Returns:
        Model name -> weight
    """
    raw = {name: state.accuracy ** 2 for name, state in performance.items()}
    if not raw:
        return {}

    floored = set()
    weights: Dict[str, float] = {}
    while True:
        free = [name for name in raw if name not in floored]
        remaining = 1.0 - MIN_WEIGHT * len(floored)
        total_free = sum(raw[name] for name in free)

        weights = {name: MIN_WEIGHT for name in floored}
        for name in free:
            share = raw[name] / total_free if total_free > 0 else 1.0 / len(free)
            weights[name] = remaining * share

        newly_floored = {name for name in free if weights[name] < MIN_WEIGHT}
        if not newly_floored:
            break
        floored |= newly_floored

    return {name: weights[name] for name in raw}


def bayesian_fusion(
    probabilities: Mapping[str, ProbabilityPair],
    weights: Mapping[str, float]
) -> ProbabilityPair:
    """posterior(c) = 0.5 + sum(weight_m * p_m(c)), normalized."""
    default_weight = 1.0 / len(probabilities) if probabilities else 0.0
    posterior_odd = 0.5
    posterior_even = 0.5
    for name, pair in probabilities.items():
        weight = weights.get(name, default_weight)
        posterior_odd += weight * pair.odd
        posterior_even += weight * pair.even

    return ProbabilityPair(posterior_odd, posterior_even).normalized()


def check_consensus(votes: Mapping[str, DigitClass]) -> Consensus:
    """Fraction of votes agreeing with the majority (ties resolve to even)."""
    if not votes:
        return Consensus(agreement=0.5, prediction=DigitClass.EVEN, has_consensus=False)

    odd_count = sum(1 for vote in votes.values() if vote is DigitClass.ODD)
    even_count = len(votes) - odd_count
    agreement = max(odd_count, even_count) / len(votes)

    return Consensus(
        agreement=agreement,
        prediction=DigitClass.ODD if odd_count > even_count else DigitClass.EVEN,
        has_consensus=agreement >= CONSENSUS_THRESHOLD
    )


def fuse(
    probabilities: Mapping[str, ProbabilityPair],
    votes: Mapping[str, DigitClass],
    weights: Mapping[str, float],
    context_bias: float,
    has_cycle: bool,
    cycle_probability: ProbabilityPair,
    integrity_score: float
) -> FusionResult:
    """
    Combine model outputs into one probability pair.

    Order: Bayesian fusion, context-memory bias, cycle blend (85/15),
    data-integrity pull toward 0.5, clip to [0, 1], normalize.
    """
    bayesian = bayesian_fusion(probabilities, weights)

    odd = bayesian.odd + context_bias
    even = bayesian.even - context_bias

    if has_cycle:
        odd = odd * (1 - CYCLE_BLEND) + cycle_probability.odd * CYCLE_BLEND
        even = even * (1 - CYCLE_BLEND) + cycle_probability.even * CYCLE_BLEND

    if integrity_score < INTEGRITY_THRESHOLD:
        odd = odd * integrity_score + 0.5 * (1 - integrity_score)
        even = even * integrity_score + 0.5 * (1 - integrity_score)

    final = ProbabilityPair(odd, even).clipped().normalized()

    return FusionResult(
        probabilities=final,
        bayesian=bayesian,
        context_bias=context_bias,
        consensus=check_consensus(votes)
    )
