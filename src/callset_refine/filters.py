"""
Filtering strategies for the two-phase filtering engine.

This module provides:
- The ``FilterStrategy`` contract with no-op learning hooks
- Artifact posterior filtering from per-sample probabilities
- A learned beta-binomial background error filter
- A site-level quality filter
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np
from scipy import stats

from .config import SAMPLE_REDUCTIONS
from .exceptions import MissingAnnotationError
from .reducers import MaxReducer, WeightedMedianReducer
from .variants import Site, phred_to_probability

logger = logging.getLogger(__name__)

ALLELE_DEPTH_KEY = "AD"
QUALITY_KEY = "QUAL"
ARTIFACT_PROBABILITY_KEY = "ARTIFACT_PROB"
MISSING_VALUE = "."


class ErrorType(Enum):
    """Category of error a filter guards against."""
    ARTIFACT = "artifact"
    NON_SOMATIC = "non_somatic"
    SEQUENCING = "sequencing"
    QUALITY = "quality"


class FilterStrategy(ABC):
    """Abstract base class for all filtering strategies.

    Strategies that learn from the data override the accumulation and
    learning hooks; all others inherit the no-op defaults.
    """

    filter_name: str = ""
    error_type: ErrorType = ErrorType.ARTIFACT
    posterior_annotation_name: Optional[str] = None
    required_annotations: Tuple[str, ...] = ()
    strict_annotations: bool = False

    def missing_annotations(self, site: Site) -> List[str]:
        """Required annotations absent from ``site`` or set to the missing marker."""
        return [key for key in self.required_annotations if _is_missing(site.info.get(key))]

    def accumulate(self, site: Site, error_estimate: Sequence[float]) -> None:
        """Record data from one site during the learning pass."""
        pass

    def learn_parameters(self) -> None:
        pass

    def clear_accumulated_data(self) -> None:
        pass

    def learn_parameters_and_clear(self) -> None:
        self.learn_parameters()
        self.clear_accumulated_data()

    @abstractmethod
    def error_probabilities(self, site: Site) -> List[float]:
        """
        Probability that each alternate allele is an error of this filter's type.

        Returns:
            One probability per alternate allele, in the site's allele order.
        """
        raise NotImplementedError


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() in ("", MISSING_VALUE))


def _as_float(value: Any) -> Optional[float]:
    """``value`` as a float, or None when it is absent, the ``.`` marker or not numeric."""
    if _is_missing(value):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return None if np.isnan(result) else result


def _per_alt(value: Any, n_alts: int) -> Optional[List[float]]:
    if _is_missing(value):
        return None
    if isinstance(value, (list, tuple, np.ndarray)):
        values = [_as_float(v) for v in value]
        if len(values) != n_alts or any(v is None for v in values):
            return None
        return values
    scalar = _as_float(value)
    return None if scalar is None else [scalar] * n_alts


class ArtifactPosteriorFilter(FilterStrategy):
    """Reduces per-sample artifact probabilities across samples.

    The default reduction is the alt-depth-weighted median; ``max`` takes the
    most pessimistic sample instead.
    """

    error_type = ErrorType.ARTIFACT

    def __init__(
        self,
        attribute: str = ARTIFACT_PROBABILITY_KEY,
        filter_name: str = "artifact_posterior",
        inclusive_median: bool = False,
        sample_reduction: str = "median",
    ):
        if sample_reduction not in SAMPLE_REDUCTIONS:
            raise ValueError(f"sample_reduction must be one of {SAMPLE_REDUCTIONS}, got {sample_reduction!r}")
        self.attribute = attribute
        self.filter_name = filter_name
        self.posterior_annotation_name = f"{attribute}_PHRED"
        self.required_annotations = (attribute,)
        self.sample_reduction = sample_reduction
        if sample_reduction == "max":
            self.reducer = MaxReducer()
        else:
            self.reducer = WeightedMedianReducer(inclusive_median)

    def missing_annotations(self, site: Site) -> List[str]:
        n_alts = len(site.alts)
        if any(_per_alt(g.attributes.get(self.attribute), n_alts) is not None for g in site.genotypes):
            return []
        return [self.attribute]

    def error_probabilities(self, site: Site) -> List[float]:
        n_alts = len(site.alts)
        observations: List[List[Tuple[float, float]]] = [[] for _ in range(n_alts)]
        for genotype in site.genotypes:
            probabilities = _per_alt(genotype.attributes.get(self.attribute), n_alts)
            if probabilities is None:
                continue
            depths = genotype.allele_depths
            for i, probability in enumerate(probabilities):
                if depths is not None and len(depths) > i + 1:
                    weight = float(depths[i + 1])
                else:
                    weight = 1.0
                observations[i].append((weight, probability))
        return [self.reducer.reduce(obs) for obs in observations]


class BackgroundErrorFilter(FilterStrategy):
    """Posterior probability that the alt reads are background sequencing error.

    The background model is a beta-binomial over the alt read count, fitted
    by the method of moments to low allele-fraction observations seen during
    the learning pass. The competing model draws the allele fraction
    uniformly, so each count in ``0..depth`` is equally likely.
    """

    error_type = ErrorType.SEQUENCING
    required_annotations = (ALLELE_DEPTH_KEY,)

    def __init__(
        self,
        filter_name: str = "background_error",
        alpha_prior: float = 1.0,
        beta_prior: float = 1000.0,
        prior_error_probability: float = 0.5,
        max_learning_fraction: float = 0.05,
        min_learning_observations: int = 10,
    ):
        if not 0.0 < prior_error_probability < 1.0:
            raise ValueError("prior_error_probability must be strictly between 0 and 1")
        self.filter_name = filter_name
        self.alpha_prior = alpha_prior
        self.beta_prior = beta_prior
        self.prior_error_probability = prior_error_probability
        self.max_learning_fraction = max_learning_fraction
        self.min_learning_observations = min_learning_observations

        self.alpha = alpha_prior
        self.beta = beta_prior
        self._fractions: List[float] = []

    def missing_annotations(self, site: Site) -> List[str]:
        if any(g.allele_depths is not None for g in site.genotypes):
            return []
        return [ALLELE_DEPTH_KEY]

    @property
    def n_accumulated(self) -> int:
        return len(self._fractions)

    def accumulate(self, site: Site, error_estimate: Sequence[float]) -> None:
        for genotype in site.genotypes:
            depths = genotype.allele_depths
            if depths is None:
                continue
            total = sum(depths)
            if total <= 0:
                continue
            for alt_depth in depths[1:]:
                fraction = alt_depth / total
                if fraction <= self.max_learning_fraction:
                    self._fractions.append(fraction)

    def learn_parameters(self) -> None:
        """Method-of-moments beta fit, falling back to the priors on degenerate data."""
        if len(self._fractions) < self.min_learning_observations:
            logger.info(
                f"{self.filter_name}: {len(self._fractions)} learning observations, keeping prior "
                f"alpha={self.alpha_prior}, beta={self.beta_prior}"
            )
            self.alpha, self.beta = self.alpha_prior, self.beta_prior
            return

        fractions = np.asarray(self._fractions, dtype=float)
        mean = fractions.mean()
        var = fractions.var(ddof=1)

        if var <= 0 or mean <= 0:
            alpha, beta = self.alpha_prior, self.beta_prior
        else:
            common = mean * (1 - mean) / var - 1
            if common <= 0:
                alpha, beta = self.alpha_prior, self.beta_prior
            else:
                alpha = max(mean * common, self.alpha_prior)
                beta = max((1 - mean) * common, self.beta_prior)

        self.alpha, self.beta = float(alpha), float(beta)
        logger.info(
            f"{self.filter_name}: learned alpha={self.alpha:.4g}, beta={self.beta:.4g} "
            f"from {len(fractions)} observations (mean error {mean:.3g})"
        )

    def clear_accumulated_data(self) -> None:
        self._fractions = []

    def error_probabilities(self, site: Site) -> List[float]:
        n_alts = len(site.alts)
        alt_counts = np.zeros(n_alts)
        total_depth = 0
        for genotype in site.genotypes:
            depths = genotype.allele_depths
            if depths is None:
                continue
            total_depth += sum(depths)
            for i, depth in enumerate(depths[1:n_alts + 1]):
                alt_counts[i] += depth

        if total_depth <= 0:
            return [self.prior_error_probability] * n_alts

        log_error = stats.betabinom.logpmf(alt_counts, total_depth, self.alpha, self.beta)
        log_real = np.full(n_alts, -np.log(total_depth + 1.0))
        log_error = log_error + np.log(self.prior_error_probability)
        log_real = log_real + np.log1p(-self.prior_error_probability)
        posterior = np.exp(log_error - np.logaddexp(log_error, log_real))
        return [float(p) for p in posterior]


class LowQualityFilter(FilterStrategy):
    """Site-level error probability from the phred-scaled QUAL annotation."""

    filter_name = "low_quality"
    error_type = ErrorType.QUALITY
    required_annotations = (QUALITY_KEY,)
    strict_annotations = True

    def missing_annotations(self, site: Site) -> List[str]:
        if _as_float(site.info.get(QUALITY_KEY)) is None:
            return [QUALITY_KEY]
        return []

    def error_probabilities(self, site: Site) -> List[float]:
        quality = _as_float(site.info.get(QUALITY_KEY))
        if quality is None:
            raise MissingAnnotationError(self.filter_name, QUALITY_KEY, site.site_id)
        quality = max(quality, 0.0)
        return [min(phred_to_probability(quality), 1.0)] * len(site.alts)
