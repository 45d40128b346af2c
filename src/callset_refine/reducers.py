"""Reduction of (weight, probability) observations to a single site-level probability."""

from __future__ import annotations

from typing import Iterable, List, NamedTuple, Tuple, Union


class ArtifactObservation(NamedTuple):
    """One probability estimate with the read support behind it."""
    support_weight: float
    probability: float


ObservationLike = Union[ArtifactObservation, Tuple[float, float]]


def _as_observations(observations: Iterable[ObservationLike]) -> List[ArtifactObservation]:
    result = []
    for weight, probability in observations:
        if weight < 0:
            raise ValueError(f"support weight must be non-negative, got {weight}")
        result.append(ArtifactObservation(float(weight), float(probability)))
    return result


def weighted_median(observations: Iterable[ObservationLike], inclusive: bool = False) -> float:
    """Weighted median of the observed probabilities.

    Observations are stably sorted by probability and the probability of the
    first one whose cumulative weight passes half of the total is returned.

    Args:
        observations: ``(support_weight, probability)`` pairs
        inclusive: Stop at exactly half of the total weight instead of strictly above it

    Returns:
        The weighted median, or 0.0 for empty input or zero total weight

    Raises:
        ValueError: If any weight is negative
    """
    ordered = sorted(_as_observations(observations), key=lambda obs: obs.probability)
    total = sum(obs.support_weight for obs in ordered)
    if not ordered or total <= 0:
        return 0.0

    half = total / 2.0
    cumulative = 0.0
    for obs in ordered:
        cumulative += obs.support_weight
        if cumulative > half or (inclusive and cumulative >= half):
            return obs.probability
    return ordered[-1].probability


class WeightedMedianReducer:
    """Support-weighted median across samples."""

    def __init__(self, inclusive: bool = False):
        self.inclusive = inclusive

    def reduce(self, observations: Iterable[ObservationLike]) -> float:
        return weighted_median(observations, self.inclusive)


class MaxReducer:
    """Largest observed probability, ignoring weights."""

    def reduce(self, observations: Iterable[ObservationLike]) -> float:
        values = [obs.probability for obs in _as_observations(observations)]
        return max(values) if values else 0.0
