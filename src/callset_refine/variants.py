"""
Site and genotype data model.

This module provides:
- Immutable ``Site`` and ``SampleGenotype`` records
- Standard genotype enumeration helpers (diploid and general ploidy)
- Panel records and resolved population observations
- Log10/phred conversions shared by the prior and posterior code
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from functools import lru_cache
from math import comb
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from scipy.special import logsumexp

from .exceptions import MalformedGenotypeLikelihoodError

LN10 = np.log(10.0)
MISSING_ALLELE_SPANNING = "*"


def genotype_count(n_alleles: int, ploidy: int = 2) -> int:
    """Number of unordered genotypes for ``n_alleles`` at the given ploidy."""
    if ploidy != 2:
        return comb(n_alleles + ploidy - 1, ploidy)
    return n_alleles * (n_alleles + 1) // 2


def genotype_index(allele1: int, allele2: int) -> int:
    """Index of the diploid genotype ``allele1/allele2`` in the standard ordering."""
    j, k = sorted((allele1, allele2))
    return k * (k + 1) // 2 + j


@lru_cache(maxsize=64)
def enumerate_genotypes(n_alleles: int) -> Tuple[Tuple[int, int], ...]:
    """All diploid genotypes for ``n_alleles`` in standard order: 0/0, 0/1, 1/1, 0/2, 1/2, 2/2, ..."""
    return tuple((j, k) for k in range(n_alleles) for j in range(k + 1))


@lru_cache(maxsize=64)
def enumerate_ploidy_genotypes(n_alleles: int, ploidy: int) -> Tuple[Tuple[int, ...], ...]:
    """Genotypes of any ploidy as sorted allele tuples, in likelihood order.

    Genotypes are ordered by their largest allele, then recursively by the
    remaining ones, so ploidy 2 matches :func:`enumerate_genotypes` and
    ploidy 1 is simply ``(0,), (1,), ...``.
    """
    if ploidy < 0:
        raise ValueError(f"ploidy must be non-negative, got {ploidy}")
    if ploidy == 0:
        return ((),)
    return tuple(
        rest + (last,)
        for last in range(n_alleles)
        for rest in enumerate_ploidy_genotypes(last + 1, ploidy - 1)
    )


def genotype_alleles(index: int) -> Tuple[int, int]:
    """Inverse of :func:`genotype_index`."""
    if index < 0:
        raise ValueError(f"genotype index must be non-negative, got {index}")
    k = int((np.sqrt(8 * index + 1) - 1) // 2)
    while k * (k + 1) // 2 > index:
        k -= 1
    while (k + 1) * (k + 2) // 2 <= index:
        k += 1
    return index - k * (k + 1) // 2, k


def normalize_log10(log10_values: Sequence[float]) -> np.ndarray:
    """Normalize log10-scaled weights into linear probabilities.

    All-``-inf`` input resolves to the uniform distribution.
    """
    values = np.asarray(log10_values, dtype=float)
    if values.size == 0:
        return values
    if not np.isfinite(values).any():
        return np.full(values.shape, 1.0 / values.size)
    natural = values * LN10
    probs = np.exp(natural - logsumexp(natural))
    return probs / probs.sum()


def log10_normalize(log10_values: Sequence[float]) -> np.ndarray:
    """Shift log10 weights so that they sum to 1 in linear space."""
    values = np.asarray(log10_values, dtype=float)
    if not np.isfinite(values).any():
        return np.full(values.shape, -np.log10(values.size))
    return values - logsumexp(values * LN10) / LN10


def phred_scale(probabilities: Sequence[float]) -> List[int]:
    """Phred-scale probabilities relative to the most likely entry (best entry is 0)."""
    probs = np.asarray(probabilities, dtype=float)
    with np.errstate(divide="ignore"):
        log10p = np.log10(probs)
    best = np.max(log10p)
    if not np.isfinite(best):
        return [0] * probs.size
    phred = np.round(-10.0 * (log10p - best))
    phred = np.where(np.isfinite(phred), phred, np.iinfo(np.int32).max)
    return [int(p) for p in phred]


def probability_to_phred(probability: float) -> float:
    """Transform ``p -> -10*log10(p)``."""
    if probability <= 0:
        return float("inf")
    return -10.0 * float(np.log10(probability))


def phred_to_probability(phred: float) -> float:
    return float(10.0 ** (-phred / 10.0))


@dataclass(frozen=True)
class SampleGenotype:
    """Per-sample genotype record at one site."""
    sample_id: str
    ploidy: int = 2
    log10_likelihoods: Optional[Tuple[float, ...]] = None
    alleles: Optional[Tuple[int, ...]] = None
    quality: Optional[int] = None
    allele_depths: Optional[Tuple[int, ...]] = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_pls(
        cls,
        sample_id: str,
        pls: Sequence[int],
        alleles: Optional[Sequence[int]] = None,
        **kwargs: Any,
    ) -> "SampleGenotype":
        """Build a genotype from phred-scaled likelihoods (``PL``)."""
        log10 = tuple(-float(pl) / 10.0 for pl in pls)
        return cls(
            sample_id=sample_id,
            log10_likelihoods=log10,
            alleles=tuple(alleles) if alleles is not None else None,
            **kwargs,
        )

    @property
    def has_likelihoods(self) -> bool:
        return self.log10_likelihoods is not None and len(self.log10_likelihoods) > 0

    @property
    def is_called(self) -> bool:
        return self.alleles is not None and all(a >= 0 for a in self.alleles)

    @property
    def pls(self) -> Optional[List[int]]:
        if not self.has_likelihoods:
            return None
        return phred_scale(normalize_log10(self.log10_likelihoods))

    def check_likelihoods(self, n_alleles: int) -> None:
        """Raise ``MalformedGenotypeLikelihoodError`` if the likelihoods do not fit the site."""
        if not self.has_likelihoods:
            msg = f"sample {self.sample_id} has no genotype likelihoods"
            raise MalformedGenotypeLikelihoodError(msg, {"sample_id": self.sample_id})
        expected = genotype_count(n_alleles, self.ploidy)
        if len(self.log10_likelihoods) != expected:
            msg = (
                f"sample {self.sample_id} has {len(self.log10_likelihoods)} likelihoods, "
                f"expected {expected} for {n_alleles} alleles at ploidy {self.ploidy}"
            )
            raise MalformedGenotypeLikelihoodError(
                msg,
                {"sample_id": self.sample_id, "observed": len(self.log10_likelihoods), "expected": expected},
            )

    def replace(self, **changes: Any) -> "SampleGenotype":
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True)
class Site:
    """A candidate variant site with its per-sample genotypes."""
    contig: str
    position: int
    ref: str
    alts: Tuple[str, ...]
    genotypes: Tuple[SampleGenotype, ...] = ()
    info: Mapping[str, Any] = field(default_factory=dict)

    @property
    def alleles(self) -> Tuple[str, ...]:
        return (self.ref,) + tuple(self.alts)

    @property
    def n_alleles(self) -> int:
        return 1 + len(self.alts)

    @property
    def n_genotypes(self) -> int:
        return genotype_count(self.n_alleles)

    @property
    def is_biallelic(self) -> bool:
        return len(self.alts) == 1

    @property
    def is_snp(self) -> bool:
        if not self.alts or len(self.ref) != 1:
            return False
        return all(len(alt) == 1 and alt != MISSING_ALLELE_SPANNING for alt in self.alts)

    @property
    def site_id(self) -> str:
        return f"{self.contig}:{self.position}:{self.ref}>{','.join(self.alts)}"

    @property
    def sample_ids(self) -> List[str]:
        return [g.sample_id for g in self.genotypes]

    def genotype(self, sample_id: str) -> Optional[SampleGenotype]:
        for g in self.genotypes:
            if g.sample_id == sample_id:
                return g
        return None

    def genotype_map(self) -> Dict[str, SampleGenotype]:
        return {g.sample_id: g for g in self.genotypes}

    def called_genotypes(self) -> Iterator[SampleGenotype]:
        return (g for g in self.genotypes if g.is_called)

    def alt_depths(self) -> Optional[List[int]]:
        """Alt-allele read depth summed across samples, ``None`` when no sample carries AD."""
        depths = [0] * len(self.alts)
        seen = False
        for g in self.genotypes:
            if g.allele_depths is None:
                continue
            seen = True
            for i, depth in enumerate(g.allele_depths[1:len(self.alts) + 1]):
                depths[i] += max(int(depth), 0)
        return depths if seen else None

    def with_genotypes(self, genotypes: Sequence[SampleGenotype]) -> "Site":
        return dataclasses.replace(self, genotypes=tuple(genotypes))

    def with_info(self, **updates: Any) -> "Site":
        info = dict(self.info)
        info.update(updates)
        return dataclasses.replace(self, info=info)


@dataclass(frozen=True)
class PanelRecord:
    """A record from a supporting population panel."""
    contig: str
    position: int
    ref: str
    alts: Tuple[str, ...]
    info: Mapping[str, Any] = field(default_factory=dict)
    genotypes: Tuple[Tuple[int, ...], ...] = ()

    @property
    def alleles(self) -> Tuple[str, ...]:
        return (self.ref,) + tuple(self.alts)

    @property
    def is_snp(self) -> bool:
        if not self.alts or len(self.ref) != 1:
            return False
        return all(len(alt) == 1 and alt != MISSING_ALLELE_SPANNING for alt in self.alts)


@dataclass(frozen=True)
class PopulationObservation:
    """Allele counts aligned with a site's alleles (reference first)."""
    allele_counts: Tuple[int, ...]
    allele_number: int
    source: str = "absent"

    def __post_init__(self):
        if any(c < 0 for c in self.allele_counts):
            raise ValueError(f"allele counts must be non-negative: {self.allele_counts}")
        if sum(self.allele_counts) > self.allele_number:
            raise ValueError(
                f"allele counts {self.allele_counts} exceed allele number {self.allele_number}"
            )

    @classmethod
    def absent(cls, n_alleles: int) -> "PopulationObservation":
        return cls(allele_counts=(0,) * n_alleles, allele_number=0, source="absent")

    @property
    def is_absent(self) -> bool:
        return self.source == "absent"
