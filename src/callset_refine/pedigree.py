"""
Pedigree handling.

This module provides:
- PED file loading (six whitespace-delimited columns)
- Trio extraction with validity against the callset samples
- Family groupings restricted to the callset
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Set

import pandas as pd

from .exceptions import PedigreeError

logger = logging.getLogger(__name__)

PED_COLUMNS = ["family_id", "individual_id", "father_id", "mother_id", "sex", "phenotype"]
MISSING_PARENT = {"0", ".", ""}


@dataclass(frozen=True)
class PedigreeMember:
    """One row of a PED file."""
    family_id: str
    individual_id: str
    father_id: Optional[str] = None
    mother_id: Optional[str] = None
    sex: int = 0
    phenotype: str = "0"


@dataclass(frozen=True)
class PedigreeTrio:
    """Mother/father/child grouping used for Mendelian reasoning."""
    mother: str
    father: str
    child: str
    family_id: Optional[str] = None
    is_valid: bool = True

    @property
    def members(self) -> tuple:
        return self.mother, self.father, self.child

    def role_of(self, sample_id: str) -> Optional[str]:
        for role, member in zip(("mother", "father", "child"), self.members):
            if member == sample_id:
                return role
        return None


class Pedigree:
    """Collection of pedigree members keyed by individual id."""

    def __init__(self, members: Iterable[PedigreeMember] = ()):
        self.members: Dict[str, PedigreeMember] = {}
        for member in members:
            if member.individual_id in self.members:
                raise PedigreeError(
                    f"Individual {member.individual_id} appears more than once in the pedigree",
                    {"individual_id": member.individual_id},
                )
            self.members[member.individual_id] = member

    def __len__(self) -> int:
        return len(self.members)

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> "Pedigree":
        missing = [col for col in PED_COLUMNS if col not in frame.columns]
        if missing:
            raise PedigreeError(f"Pedigree table is missing columns: {missing}")

        members = []
        for row in frame.itertuples(index=False):
            father = str(row.father_id).strip()
            mother = str(row.mother_id).strip()
            try:
                sex = int(row.sex)
            except (TypeError, ValueError):
                sex = 0
            members.append(PedigreeMember(
                family_id=str(row.family_id),
                individual_id=str(row.individual_id),
                father_id=None if father in MISSING_PARENT else father,
                mother_id=None if mother in MISSING_PARENT else mother,
                sex=sex,
                phenotype=str(row.phenotype),
            ))
        return cls(members)

    @classmethod
    def from_ped(cls, path: str | Path) -> "Pedigree":
        """Load a PED file."""
        path = Path(path)
        if not path.exists():
            raise PedigreeError(f"Pedigree file not found: {path}")
        try:
            frame = pd.read_csv(
                path,
                sep=r"\s+",
                header=None,
                comment="#",
                dtype=str,
                engine="python",
            )
        except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise PedigreeError(f"Cannot parse pedigree file {path}: {e}") from e

        if frame.shape[1] < len(PED_COLUMNS):
            raise PedigreeError(
                f"Pedigree file {path} has {frame.shape[1]} columns, expected {len(PED_COLUMNS)}"
            )
        frame = frame.iloc[:, :len(PED_COLUMNS)]
        frame.columns = PED_COLUMNS
        return cls.from_frame(frame)

    def trios(
        self,
        samples: Iterable[str],
        ploidies: Optional[Mapping[str, int]] = None,
    ) -> List[PedigreeTrio]:
        """All complete trios in the pedigree, flagged valid when usable with the callset.

        A trio is valid when mother, father and child are all callset samples and
        all have ploidy 2 (samples missing from ``ploidies`` are taken as diploid).
        """
        sample_set = set(samples)
        ploidies = ploidies or {}
        trios = []
        for member in self.members.values():
            if member.father_id is None or member.mother_id is None:
                continue
            ids = (member.mother_id, member.father_id, member.individual_id)
            present = all(s in sample_set for s in ids)
            diploid = all(ploidies.get(s, 2) == 2 for s in ids)
            trios.append(PedigreeTrio(
                mother=member.mother_id,
                father=member.father_id,
                child=member.individual_id,
                family_id=member.family_id,
                is_valid=present and diploid,
            ))
        return trios

    def valid_trios(
        self,
        samples: Iterable[str],
        ploidies: Optional[Mapping[str, int]] = None,
    ) -> List[PedigreeTrio]:
        trios = self.trios(samples, ploidies)
        valid = [t for t in trios if t.is_valid]
        if len(valid) < len(trios):
            logger.info(f"Skipping {len(trios) - len(valid)} trios not fully present as diploid samples in the callset")
        return valid

    def families(self, samples: Iterable[str]) -> Dict[str, Set[str]]:
        """Family id to the set of its members present in the callset."""
        sample_set = set(samples)
        families: Dict[str, Set[str]] = defaultdict(set)
        for member in self.members.values():
            if member.individual_id in sample_set:
                families[member.family_id].add(member.individual_id)
        return dict(families)
