"""
Test configuration and fixtures for callset-refine tests.
"""

import logging

import pytest

from callset_refine.logging_config import LOGGER_NAME
from callset_refine.pedigree import PedigreeTrio
from callset_refine.variants import SampleGenotype, Site


def make_site(genotypes=(), alts=("T",), ref="A", position=1000, contig="chr1", **info):
    """Build a site from ``SampleGenotype`` records."""
    return Site(
        contig=contig,
        position=position,
        ref=ref,
        alts=tuple(alts),
        genotypes=tuple(genotypes),
        info=dict(info),
    )


def hom_ref(sample_id, **kwargs):
    return SampleGenotype.from_pls(sample_id, [0, 30, 300], alleles=(0, 0), **kwargs)


def het(sample_id, **kwargs):
    return SampleGenotype.from_pls(sample_id, [30, 0, 300], alleles=(0, 1), **kwargs)


def hom_alt(sample_id, **kwargs):
    return SampleGenotype.from_pls(sample_id, [300, 30, 0], alleles=(1, 1), **kwargs)


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo ``setup_logging`` side effects so caplog keeps seeing package records."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def trio():
    return PedigreeTrio(mother="mom", father="dad", child="kid", family_id="fam1")


@pytest.fixture
def biallelic_site():
    """Three unrelated samples with confident calls."""
    return make_site([hom_ref("s1"), het("s2"), hom_alt("s3")])


@pytest.fixture
def trio_site():
    """Hom-ref parents with a child whose reads lean weakly towards het."""
    return make_site([
        hom_ref("mom"),
        hom_ref("dad"),
        SampleGenotype.from_pls("kid", [20, 0, 200], alleles=(0, 1)),
    ])


@pytest.fixture
def multiallelic_site():
    return make_site(
        [
            SampleGenotype.from_pls("s1", [0, 20, 200, 20, 200, 200], alleles=(0, 0)),
            SampleGenotype.from_pls("s2", [40, 0, 40, 40, 40, 400], alleles=(0, 1)),
        ],
        alts=("T", "G"),
    )
