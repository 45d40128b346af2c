"""Genotype posterior synthesis: new calls, GQ and PP/PG annotations."""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional

import numpy as np

from .config import PosteriorOptions
from .family import TrioMembership
from .priors import PriorDistribution
from .variants import (
    SampleGenotype,
    Site,
    enumerate_ploidy_genotypes,
    genotype_alleles,
    normalize_log10,
    phred_scale,
)

logger = logging.getLogger(__name__)

PHRED_SCALED_POSTERIORS_KEY = "PP"
GENOTYPE_PRIOR_KEY = "PG"
JOINT_LIKELIHOOD_KEY = "JL"
JOINT_POSTERIOR_KEY = "JP"


def genotype_posteriors(
    genotype: SampleGenotype,
    prior: Optional[PriorDistribution],
    membership: Optional[TrioMembership] = None,
) -> np.ndarray:
    """Posterior distribution over the site's genotypes for one sample.

    A refined trio marginal already carries the likelihoods and parental
    priors, so it replaces the population posterior rather than multiplying it.
    """
    if membership is not None:
        posterior = np.asarray(membership.marginal, dtype=float)
        return posterior / posterior.sum()

    log_posterior = np.asarray(genotype.log10_likelihoods, dtype=float)
    if prior is not None:
        log_posterior = log_posterior + prior.log10
    return normalize_log10(log_posterior)


def genotype_quality(posterior: np.ndarray, cap: int = 99) -> int:
    """Phred-scaled ratio of the best to the second-best posterior, capped."""
    if posterior.size < 2:
        return cap
    ordered = np.sort(posterior)[::-1]
    best, second = ordered[0], ordered[1]
    if second <= 0:
        return cap
    ratio = 10.0 * (np.log10(best) - np.log10(second))
    if not np.isfinite(ratio):
        return cap
    gq = int(round(ratio))
    return min(max(gq, 0), cap)


def chromosome_counts(site: Site) -> Dict[str, object]:
    """AC (per alt), AN and AF from the called genotypes."""
    allele_counts = [0] * len(site.alts)
    allele_number = 0
    for g in site.called_genotypes():
        allele_number += len(g.alleles)
        for allele in g.alleles:
            if 0 < allele <= len(site.alts):
                allele_counts[allele - 1] += 1
    freqs = [c / allele_number if allele_number else 0.0 for c in allele_counts]
    return {"AC": allele_counts, "AN": allele_number, "AF": freqs}


class PosteriorSynthesizer:
    """Merges population priors and trio posteriors into final genotype calls."""

    def __init__(self, options: Optional[PosteriorOptions] = None):
        self.options = options or PosteriorOptions()

    def _call(
        self,
        genotype: SampleGenotype,
        posterior: np.ndarray,
        membership: Optional[TrioMembership],
        n_alleles: int,
    ) -> SampleGenotype:
        best = int(np.argmax(posterior))
        if genotype.ploidy == 2:
            alleles = genotype_alleles(best)
        else:
            alleles = enumerate_ploidy_genotypes(n_alleles, genotype.ploidy)[best]
        attributes = dict(genotype.attributes)
        attributes[PHRED_SCALED_POSTERIORS_KEY] = phred_scale(posterior)
        if membership is not None:
            attributes[JOINT_LIKELIHOOD_KEY] = membership.posterior.joint_likelihood_phred
            attributes[JOINT_POSTERIOR_KEY] = int(round(membership.posterior.joint_posterior_phred))
        return genotype.replace(
            alleles=alleles,
            quality=genotype_quality(posterior, self.options.max_genotype_quality),
            attributes=attributes,
        )

    def synthesize(
        self,
        site: Site,
        population_prior: Optional[PriorDistribution] = None,
        trio_posteriors: Optional[Mapping[str, TrioMembership]] = None,
    ) -> Site:
        """Annotated copy of ``site`` with posterior-based calls.

        Samples of any ploidy are called from their likelihoods and the
        population allele frequencies; only diploid samples take trio marginals.

        Args:
            site: Input site; never mutated
            population_prior: Site prior from the prior combiner (flat when None)
            trio_posteriors: Sample id to refined trio membership

        Returns:
            New site with updated GT, GQ, PP (and JL/JP for trio members), PG
            (unless population priors are skipped) and AC/AN/AF

        Raises:
            MalformedGenotypeLikelihoodError: If a sample's likelihoods do not fit the site
        """
        options = self.options
        trio_posteriors = trio_posteriors or {}
        n_alleles = site.n_alleles
        if population_prior is None or options.skip_population_priors:
            prior = PriorDistribution.flat(n_alleles)
        else:
            prior = population_prior

        genotypes: List[SampleGenotype] = []
        for genotype in site.genotypes:
            if not genotype.has_likelihoods or genotype.ploidy < 1:
                genotypes.append(genotype)
                continue
            genotype.check_likelihoods(n_alleles)

            if genotype.ploidy == 2:
                sample_prior = prior
                membership = None if options.skip_family_priors else trio_posteriors.get(genotype.sample_id)
            else:
                logger.debug(f"Calling ploidy-{genotype.ploidy} sample {genotype.sample_id} at {site.site_id}")
                sample_prior = prior.for_ploidy(n_alleles, genotype.ploidy)
                membership = None
            posterior = genotype_posteriors(genotype, sample_prior, membership)
            genotypes.append(self._call(genotype, posterior, membership, n_alleles))

        annotated = site.with_genotypes(genotypes)
        info = chromosome_counts(annotated)
        if not options.skip_population_priors:
            info[GENOTYPE_PRIOR_KEY] = prior.phred
        return annotated.with_info(**info)


def synthesize(
    site: Site,
    population_prior: Optional[PriorDistribution] = None,
    trio_posteriors: Optional[Mapping[str, TrioMembership]] = None,
    options: Optional[PosteriorOptions] = None,
) -> Site:
    """Functional form of :meth:`PosteriorSynthesizer.synthesize`."""
    return PosteriorSynthesizer(options).synthesize(site, population_prior, trio_posteriors)
