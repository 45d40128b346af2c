"""
Trio-based genotype refinement.

Every (mother, father, child) genotype combination is weighted by the
parents' population priors, all three members' likelihoods and a
transmission probability that is 1 for Mendelian-consistent combinations
and decays with the number of de novo alleles otherwise. The computation
is carried out in log10 space over a ``G x G x G`` array.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np
from scipy.special import logsumexp

from .config import DE_NOVO_SCALINGS
from .exceptions import (
    InvalidConfigurationError,
    InvalidPloidyError,
    MalformedGenotypeLikelihoodError,
)
from .pedigree import PedigreeTrio
from .priors import PriorDistribution
from .variants import LN10, SampleGenotype, Site, enumerate_genotypes, genotype_count

logger = logging.getLogger(__name__)

ROLES = ("mother", "father", "child")


def _unexplained(allele: int, parent: Tuple[int, int]) -> int:
    return 0 if allele in parent else 1


@lru_cache(maxsize=32)
def mendelian_violation_table(n_alleles: int) -> np.ndarray:
    """Minimum number of de novo alleles for each (mother, father, child) genotype triple.

    The child's alleles are assigned one per parent, trying both assignments.
    """
    genotypes = enumerate_genotypes(n_alleles)
    n = len(genotypes)
    table = np.zeros((n, n, n), dtype=np.int8)
    for mi, mother in enumerate(genotypes):
        for fi, father in enumerate(genotypes):
            for ci, (c1, c2) in enumerate(genotypes):
                table[mi, fi, ci] = min(
                    _unexplained(c1, mother) + _unexplained(c2, father),
                    _unexplained(c2, mother) + _unexplained(c1, father),
                )
    table.setflags(write=False)
    return table


@lru_cache(maxsize=64)
def log10_transmission_table(n_alleles: int, de_novo_rate: float, scaling: str = "power") -> np.ndarray:
    """log10 transmission probability for each genotype triple.

    ``power`` scaling gives ``rate ** violations`` and ``linear`` gives
    ``rate * violations`` (capped at 1).
    """
    if scaling not in DE_NOVO_SCALINGS:
        raise InvalidConfigurationError(f"Unknown de novo scaling: {scaling}", {"de_novo_scaling": scaling})
    violations = mendelian_violation_table(n_alleles).astype(float)
    if scaling == "power":
        transmission = np.where(violations == 0, 1.0, np.power(de_novo_rate, violations))
    else:
        transmission = np.where(violations == 0, 1.0, np.minimum(de_novo_rate * violations, 1.0))
    with np.errstate(divide="ignore"):
        table = np.log10(transmission)
    table.setflags(write=False)
    return table


@dataclass
class TrioPosterior:
    """Joint and per-member posteriors for one trio at one site."""
    trio: PedigreeTrio
    joint: np.ndarray
    mother: np.ndarray
    father: np.ndarray
    child: np.ndarray
    joint_log10_likelihood: float
    joint_posterior_phred: float
    best_configuration: Tuple[int, int, int]

    def marginal(self, role: str) -> np.ndarray:
        if role not in ROLES:
            raise ValueError(f"unknown trio role: {role}")
        return getattr(self, role)

    @property
    def joint_likelihood_phred(self) -> int:
        return int(round(-10.0 * self.joint_log10_likelihood))


@dataclass
class TrioMembership:
    """A sample's place in a refined trio."""
    posterior: TrioPosterior
    role: str

    @property
    def marginal(self) -> np.ndarray:
        return self.posterior.marginal(self.role)


def _member_log10(genotype: Optional[SampleGenotype], sample_id: str, n_alleles: int) -> np.ndarray:
    if genotype is None:
        raise MalformedGenotypeLikelihoodError(
            f"trio member {sample_id} has no genotype at this site", {"sample_id": sample_id}
        )
    if genotype.ploidy != 2:
        raise InvalidPloidyError(sample_id, genotype.ploidy)
    genotype.check_likelihoods(n_alleles)
    values = np.asarray(genotype.log10_likelihoods, dtype=float)
    # PL-style scaling, best genotype at 0
    finite = values[np.isfinite(values)]
    return values - finite.max() if finite.size else values


def refine_trio(
    trio: PedigreeTrio,
    site_genotypes: Mapping[str, SampleGenotype],
    prior: Optional[PriorDistribution],
    de_novo_rate: float,
    scaling: str = "power",
    n_alleles: Optional[int] = None,
) -> Optional[TrioPosterior]:
    """Compute joint and per-member genotype posteriors for a trio.

    Args:
        trio: The trio to refine
        site_genotypes: Sample id to genotype at the site
        prior: Population prior applied to both parents (flat when None)
        de_novo_rate: Probability of a single de novo allele
        scaling: How the rate scales with the number of de novo alleles
        n_alleles: Allele count at the site (inferred from the likelihoods when omitted)

    Returns:
        The trio posterior, or None when every combination has zero weight

    Raises:
        InvalidPloidyError: If a member is not diploid
        MalformedGenotypeLikelihoodError: If a member lacks likelihoods sized for the site
    """
    if n_alleles is None:
        first = site_genotypes.get(trio.mother)
        if first is None or not first.has_likelihoods:
            raise MalformedGenotypeLikelihoodError(
                f"trio member {trio.mother} has no genotype likelihoods", {"sample_id": trio.mother}
            )
        n_alleles = 1
        while genotype_count(n_alleles) < len(first.log10_likelihoods):
            n_alleles += 1

    log_mother, log_father, log_child = (
        _member_log10(site_genotypes.get(sample), sample, n_alleles) for sample in trio.members
    )

    if prior is None:
        prior = PriorDistribution.flat(n_alleles)
    if prior.n_genotypes != len(log_mother):
        raise MalformedGenotypeLikelihoodError(
            f"prior has {prior.n_genotypes} genotypes, likelihoods have {len(log_mother)}"
        )
    log_prior = prior.log10

    log_weight = (
        (log_prior + log_mother)[:, None, None]
        + (log_prior + log_father)[None, :, None]
        + log_child[None, None, :]
        + log10_transmission_table(n_alleles, float(de_novo_rate), scaling)
    )

    log_total = logsumexp(log_weight * LN10) / LN10
    if not np.isfinite(log_total):
        return None

    joint = np.power(10.0, log_weight - log_total)
    joint /= joint.sum()
    best = np.unravel_index(int(np.argmax(log_weight)), log_weight.shape)
    best_log10 = float(log_weight[best])

    return TrioPosterior(
        trio=trio,
        joint=joint,
        mother=joint.sum(axis=(1, 2)),
        father=joint.sum(axis=(0, 2)),
        child=joint.sum(axis=(0, 1)),
        joint_log10_likelihood=best_log10,
        joint_posterior_phred=float(-10.0 * (best_log10 - log_total)),
        best_configuration=tuple(int(i) for i in best),
    )


class FamilyRefiner:
    """Applies trio refinement to every eligible trio at a site."""

    def __init__(
        self,
        trios: Iterable[PedigreeTrio],
        de_novo_rate: float,
        scaling: str = "power",
        biallelic_only: bool = True,
    ):
        if not 0.0 <= de_novo_rate <= 1.0:
            raise InvalidConfigurationError("de_novo_rate must be between 0 and 1", {"de_novo_rate": de_novo_rate})
        if scaling not in DE_NOVO_SCALINGS:
            raise InvalidConfigurationError(f"Unknown de novo scaling: {scaling}", {"de_novo_scaling": scaling})

        self.de_novo_rate = de_novo_rate
        self.scaling = scaling
        self.biallelic_only = biallelic_only
        self.trios: List[PedigreeTrio] = []

        children = set()
        for trio in trios:
            if not trio.is_valid:
                continue
            if trio.child in children:
                logger.warning(f"Sample {trio.child} is the child of more than one trio; keeping the first")
                continue
            children.add(trio.child)
            self.trios.append(trio)

    def __bool__(self) -> bool:
        return bool(self.trios)

    def is_eligible(self, trio: PedigreeTrio, site: Site, genotypes: Mapping[str, SampleGenotype]) -> bool:
        """All members present, diploid and carrying likelihoods."""
        if self.biallelic_only and not site.is_biallelic:
            return False
        for sample in trio.members:
            genotype = genotypes.get(sample)
            if genotype is None or genotype.ploidy != 2 or not genotype.has_likelihoods:
                return False
        return True

    def refine_site(self, site: Site, prior: Optional[PriorDistribution] = None) -> Dict[str, TrioMembership]:
        """Trio memberships by sample id for all refined trios at ``site``.

        A sample that is a child in one trio takes that trio's marginal; a
        sample that is only a parent takes the first trio it appears in.
        """
        genotypes = site.genotype_map()
        memberships: Dict[str, TrioMembership] = {}
        for trio in self.trios:
            if not self.is_eligible(trio, site, genotypes):
                logger.debug(f"Skipping trio {trio.members} at {site.site_id}")
                continue

            posterior = refine_trio(
                trio, genotypes, prior, self.de_novo_rate, self.scaling, n_alleles=site.n_alleles
            )
            if posterior is None:
                logger.warning(f"Trio {trio.members} has no admissible configuration at {site.site_id}")
                continue

            for role, sample in zip(ROLES, trio.members):
                current = memberships.get(sample)
                if current is None or (role == "child" and current.role != "child"):
                    memberships[sample] = TrioMembership(posterior, role)
        return memberships
