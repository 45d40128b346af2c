"""
Population genotype priors.

This module provides:
- Allele count resolution from panel records (MLEAC, AC or genotypes)
- Discovered allele counts from the callset itself
- Dirichlet pseudocount + Hardy-Weinberg genotype priors
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from math import factorial
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .config import PriorOptions
from .exceptions import InvalidConfigurationError
from .variants import (
    PanelRecord,
    PopulationObservation,
    Site,
    enumerate_genotypes,
    enumerate_ploidy_genotypes,
    genotype_count,
    phred_scale,
)

logger = logging.getLogger(__name__)

MLE_ALLELE_COUNT_KEY = "MLEAC"
ALLELE_COUNT_KEY = "AC"
ALLELE_NUMBER_KEY = "AN"

# Discovered counts are only trusted with this many called samples.
MIN_CALLED_SAMPLES_FOR_DISCOVERED_COUNTS = 10


@dataclass
class PriorDistribution:
    """Prior probability of every unordered genotype at a site (diploid unless built for another ploidy)."""
    probabilities: np.ndarray
    allele_counts: Optional[np.ndarray] = None
    is_flat: bool = False

    @classmethod
    def flat(cls, n_alleles: int, ploidy: int = 2) -> "PriorDistribution":
        n_genotypes = genotype_count(n_alleles, ploidy)
        return cls(np.full(n_genotypes, 1.0 / n_genotypes), None, True)

    def for_ploidy(self, n_alleles: int, ploidy: int) -> "PriorDistribution":
        """The same allele frequencies spread over genotypes of another ploidy.

        Priors without allele counts (flat or hand-built) become flat.
        """
        if ploidy == 2:
            return self
        if self.is_flat or self.allele_counts is None:
            return PriorDistribution.flat(n_alleles, ploidy)
        probabilities = hardy_weinberg_prior(self.allele_counts, ploidy)
        if probabilities is None:
            return PriorDistribution.flat(n_alleles, ploidy)
        return PriorDistribution(probabilities, self.allele_counts, False)

    @property
    def n_genotypes(self) -> int:
        return len(self.probabilities)

    @property
    def log10(self) -> np.ndarray:
        with np.errstate(divide="ignore"):
            return np.log10(self.probabilities)

    @property
    def phred(self) -> List[int]:
        return phred_scale(self.probabilities)


def _multinomial_coefficient(genotype: Tuple[int, ...]) -> int:
    coefficient = factorial(len(genotype))
    for multiplicity in Counter(genotype).values():
        coefficient //= factorial(multiplicity)
    return coefficient


def hardy_weinberg_prior(allele_counts: Sequence[float], ploidy: int = 2) -> Optional[np.ndarray]:
    """Genotype frequencies implied by the expected allele frequencies ``count_i / total``.

    Diploid genotypes get ``f_i^2`` and ``2*f_i*f_j``; other ploidies use the
    multinomial generalization over the genotype's allele multiset.

    Returns ``None`` when the counts carry no mass.
    """
    counts = np.asarray(allele_counts, dtype=float)
    total = counts.sum()
    if total <= 0:
        return None

    freqs = counts / total
    if ploidy == 2:
        priors = np.array([
            freqs[j] * freqs[k] * (1.0 if j == k else 2.0)
            for j, k in enumerate_genotypes(len(counts))
        ])
    else:
        priors = np.array([
            _multinomial_coefficient(genotype) * float(np.prod(freqs[list(genotype)]))
            for genotype in enumerate_ploidy_genotypes(len(counts), ploidy)
        ])
    return priors / priors.sum()


def _as_list(value: Any) -> List[int]:
    if isinstance(value, (list, tuple)):
        return [int(v) for v in value]
    return [int(value)]


def _resolve_counts(
    info: Mapping[str, Any],
    n_alleles: int,
    called_genotypes: Iterable[Tuple[int, ...]],
    prefer_ac: bool,
) -> Optional[Tuple[List[int], int, str]]:
    """Counts per allele (reference first), allele number and the field they came from."""
    called = [gt for gt in called_genotypes if all(a >= 0 for a in gt)]
    order = [ALLELE_COUNT_KEY, MLE_ALLELE_COUNT_KEY] if prefer_ac else [MLE_ALLELE_COUNT_KEY, ALLELE_COUNT_KEY]

    for key in order:
        if key not in info or info[key] is None:
            continue
        alt_counts = _as_list(info[key])
        if len(alt_counts) != n_alleles - 1:
            logger.debug(f"Ignoring {key} with {len(alt_counts)} values for {n_alleles - 1} alternate alleles")
            continue
        if ALLELE_NUMBER_KEY in info and info[ALLELE_NUMBER_KEY] is not None:
            allele_number = int(info[ALLELE_NUMBER_KEY])
        elif called:
            allele_number = sum(len(gt) for gt in called)
        else:
            continue
        ref_count = max(allele_number - sum(alt_counts), 0)
        return [ref_count] + alt_counts, allele_number, key

    if called:
        counts = [0] * n_alleles
        for gt in called:
            for allele in gt:
                if allele < n_alleles:
                    counts[allele] += 1
        return counts, sum(counts), "GT"

    return None


def resolve_population_observation(
    record: PanelRecord,
    site: Site,
    prefer_ac: bool = False,
) -> PopulationObservation:
    """Project a panel record's allele counts onto the site's alleles.

    Panel alleles absent from the site are dropped.
    """
    resolved = _resolve_counts(record.info, len(record.alleles), record.genotypes, prefer_ac)
    if resolved is None:
        return PopulationObservation.absent(site.n_alleles)

    record_counts, allele_number, source = resolved
    site_index = {allele: i for i, allele in enumerate(site.alleles)}
    counts = [0] * site.n_alleles
    for allele, count in zip(record.alleles, record_counts):
        if allele in site_index:
            counts[site_index[allele]] += count
    return PopulationObservation(tuple(counts), allele_number, source)


def discovered_allele_counts(site: Site, prefer_ac: bool = False) -> PopulationObservation:
    """Allele counts of the callset under refinement at this site."""
    resolved = _resolve_counts(
        site.info,
        site.n_alleles,
        (g.alleles for g in site.called_genotypes()),
        prefer_ac,
    )
    if resolved is None:
        return PopulationObservation.absent(site.n_alleles)
    counts, allele_number, source = resolved
    return PopulationObservation(tuple(counts), allele_number, source)


def count_called_samples(site: Site) -> int:
    return sum(1 for _ in site.called_genotypes())


def compute_prior(
    site: Site,
    population_observations: Sequence[PopulationObservation],
    discovered_counts: Optional[PopulationObservation],
    options: PriorOptions,
    n_called_samples: Optional[int] = None,
    panel_records: Sequence[PanelRecord] = (),
) -> PriorDistribution:
    """Combine the global Dirichlet prior with panel and discovered allele counts.

    Args:
        site: Site under refinement
        population_observations: Observations from panel records matching the site position
        discovered_counts: Allele counts of the callset itself, or None
        options: Prior options
        n_called_samples: Number of called samples (computed from the site when omitted)
        panel_records: The raw matching panel records, used for the indel flat-prior rule

    Returns:
        Prior distribution over the site's genotypes

    Raises:
        InvalidConfigurationError: If the pseudocount mass is negative
    """
    mass = options.global_prior_snp if site.is_snp else options.global_prior_indel
    if mass < 0:
        raise InvalidConfigurationError(
            "Dirichlet pseudocount mass must be non-negative", {"pseudocount": mass}
        )
    if options.pseudocount_if_absent_from_panel < 0:
        raise InvalidConfigurationError(
            "pseudocount_if_absent_from_panel must be non-negative",
            {"pseudocount_if_absent_from_panel": options.pseudocount_if_absent_from_panel},
        )

    n_alleles = site.n_alleles
    if options.use_flat_prior_for_indels:
        if not site.is_snp or any(not record.is_snp for record in panel_records):
            return PriorDistribution.flat(n_alleles)

    counts = np.full(n_alleles, mass / n_alleles)

    matched = [obs for obs in population_observations if not obs.is_absent]
    for obs in matched:
        if len(obs.allele_counts) != n_alleles:
            msg = f"population observation has {len(obs.allele_counts)} counts for {n_alleles} alleles"
            raise ValueError(msg)
        counts += np.asarray(obs.allele_counts, dtype=float)

    if options.use_discovered_counts and discovered_counts is not None and not discovered_counts.is_absent:
        if n_called_samples is None:
            n_called_samples = count_called_samples(site)
        enough_samples = (
            n_called_samples >= MIN_CALLED_SAMPLES_FOR_DISCOVERED_COUNTS
            or options.pseudocount_if_absent_from_panel > 0
        )
        suppressed = options.ignore_missing_panel_sites and not matched
        if enough_samples and not suppressed:
            counts += np.asarray(discovered_counts.allele_counts, dtype=float)

    if not matched and options.pseudocount_if_absent_from_panel > 0:
        counts[0] += 2 * options.pseudocount_if_absent_from_panel

    priors = hardy_weinberg_prior(counts)
    if priors is None:
        return PriorDistribution.flat(n_alleles)
    return PriorDistribution(priors, counts, False)


class PriorCombiner:
    """Computes per-site genotype priors for a fixed set of options."""

    def __init__(self, options: Optional[PriorOptions] = None):
        self.options = options or PriorOptions()
        self.options.validate()

    def compute_prior(
        self,
        site: Site,
        population_observations: Sequence[PopulationObservation] = (),
        discovered_counts: Optional[PopulationObservation] = None,
        panel_records: Sequence[PanelRecord] = (),
    ) -> PriorDistribution:
        return compute_prior(
            site,
            population_observations,
            discovered_counts,
            self.options,
            panel_records=panel_records,
        )

    def prior_for_site(self, site: Site, panel_records: Sequence[PanelRecord] = ()) -> PriorDistribution:
        """Resolve panel and discovered counts for ``site`` and compute its prior."""
        prefer_ac = self.options.prefer_discovered_over_mle
        observations = [resolve_population_observation(r, site, prefer_ac) for r in panel_records]
        discovered = discovered_allele_counts(site, prefer_ac) if self.options.use_discovered_counts else None
        return self.compute_prior(site, observations, discovered, panel_records)
