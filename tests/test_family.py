"""
Tests for trio-based genotype refinement.
"""

import numpy as np
import pytest

from callset_refine.exceptions import (
    InvalidConfigurationError,
    InvalidPloidyError,
    MalformedGenotypeLikelihoodError,
)
from callset_refine.family import (
    FamilyRefiner,
    log10_transmission_table,
    mendelian_violation_table,
    refine_trio,
)
from callset_refine.pedigree import PedigreeTrio
from callset_refine.priors import PriorDistribution
from callset_refine.variants import SampleGenotype, normalize_log10

from conftest import het, hom_ref, make_site

HOM_REF, HET, HOM_ALT = 0, 1, 2


class TestMendelianTables:
    """Test de novo counting and transmission probabilities."""

    def test_violation_counts(self):
        table = mendelian_violation_table(2)
        assert table.shape == (3, 3, 3)
        assert table[HOM_REF, HOM_REF, HOM_REF] == 0
        assert table[HOM_REF, HOM_REF, HET] == 1
        assert table[HOM_REF, HOM_REF, HOM_ALT] == 2
        assert table[HET, HET, HOM_ALT] == 0
        assert table[HOM_ALT, HOM_REF, HET] == 0
        assert table[HOM_ALT, HOM_ALT, HOM_REF] == 2
        assert table[HET, HOM_REF, HOM_ALT] == 1

    def test_violation_table_is_read_only(self):
        with pytest.raises(ValueError):
            mendelian_violation_table(2)[0, 0, 0] = 5

    def test_multiallelic_table(self):
        table = mendelian_violation_table(3)
        assert table.shape == (6, 6, 6)
        # 0/1 x 0/2 -> 1/2 is consistent
        assert table[1, 3, 4] == 0

    def test_power_scaling(self):
        table = log10_transmission_table(2, 1e-2, "power")
        assert table[HOM_REF, HOM_REF, HOM_REF] == 0.0
        assert table[HOM_REF, HOM_REF, HET] == pytest.approx(-2.0)
        assert table[HOM_REF, HOM_REF, HOM_ALT] == pytest.approx(-4.0)

    def test_linear_scaling(self):
        table = log10_transmission_table(2, 1e-2, "linear")
        assert table[HOM_REF, HOM_REF, HET] == pytest.approx(-2.0)
        assert table[HOM_REF, HOM_REF, HOM_ALT] == pytest.approx(np.log10(2e-2))

    def test_zero_rate_forbids_violations(self):
        table = log10_transmission_table(2, 0.0, "power")
        assert np.isneginf(table[HOM_REF, HOM_REF, HET])
        assert table[HET, HOM_REF, HET] == 0.0

    def test_unknown_scaling(self):
        with pytest.raises(InvalidConfigurationError):
            log10_transmission_table(2, 1e-6, "quadratic")


class TestRefineTrio:
    """Test joint trio posteriors."""

    def test_posteriors_sum_to_one(self, trio, trio_site):
        posterior = refine_trio(trio, trio_site.genotype_map(), None, 1e-6)
        assert posterior.joint.shape == (3, 3, 3)
        assert posterior.joint.sum() == pytest.approx(1.0, abs=1e-9)
        for role in ("mother", "father", "child"):
            assert posterior.marginal(role).sum() == pytest.approx(1.0, abs=1e-9)

    def test_parents_pull_child_towards_consistent_genotype(self, trio, trio_site):
        posterior = refine_trio(trio, trio_site.genotype_map(), PriorDistribution.flat(2), 1e-6)
        likelihood_only = normalize_log10(trio_site.genotype("kid").log10_likelihoods)
        assert likelihood_only[HOM_REF] < 0.05
        assert posterior.child[HOM_REF] > 0.5
        assert posterior.child[HOM_REF] > likelihood_only[HOM_REF]

    def test_de_novo_mass_vanishes_at_zero_rate(self, trio, trio_site):
        violations = mendelian_violation_table(2) > 0
        with_rate = refine_trio(trio, trio_site.genotype_map(), None, 1e-6)
        without_rate = refine_trio(trio, trio_site.genotype_map(), None, 0.0)
        assert with_rate.joint[violations].sum() > 0.0
        assert without_rate.joint[violations].sum() == 0.0
        assert without_rate.child[HET] < with_rate.child[HET]

    def test_best_configuration_and_annotations(self, trio, trio_site):
        posterior = refine_trio(trio, trio_site.genotype_map(), None, 1e-6)
        assert posterior.best_configuration == (HOM_REF, HOM_REF, HOM_REF)
        assert posterior.joint_posterior_phred >= 0.0
        assert isinstance(posterior.joint_likelihood_phred, int)

    def test_degenerate_trio_returns_none(self, trio):
        genotypes = {
            "mom": SampleGenotype("mom", log10_likelihoods=(0.0, -np.inf, -np.inf)),
            "dad": SampleGenotype("dad", log10_likelihoods=(0.0, -np.inf, -np.inf)),
            "kid": SampleGenotype("kid", log10_likelihoods=(-np.inf, -np.inf, 0.0)),
        }
        assert refine_trio(trio, genotypes, None, 0.0) is None

    def test_non_diploid_member(self, trio, trio_site):
        genotypes = trio_site.genotype_map()
        genotypes["mom"] = SampleGenotype("mom", ploidy=1, log10_likelihoods=(0.0, -3.0))
        with pytest.raises(InvalidPloidyError):
            refine_trio(trio, genotypes, None, 1e-6, n_alleles=2)

    def test_missing_member(self, trio, trio_site):
        genotypes = trio_site.genotype_map()
        del genotypes["dad"]
        with pytest.raises(MalformedGenotypeLikelihoodError):
            refine_trio(trio, genotypes, None, 1e-6, n_alleles=2)

    def test_wrong_likelihood_length(self, trio, trio_site):
        genotypes = trio_site.genotype_map()
        genotypes["kid"] = SampleGenotype.from_pls("kid", [0, 10])
        with pytest.raises(MalformedGenotypeLikelihoodError):
            refine_trio(trio, genotypes, None, 1e-6, n_alleles=2)

    def test_unknown_role(self, trio, trio_site):
        posterior = refine_trio(trio, trio_site.genotype_map(), None, 1e-6)
        with pytest.raises(ValueError):
            posterior.marginal("uncle")


class TestFamilyRefiner:
    """Test per-site trio refinement."""

    def test_invalid_rate(self, trio):
        with pytest.raises(InvalidConfigurationError):
            FamilyRefiner([trio], de_novo_rate=1.5)

    def test_invalid_scaling(self, trio):
        with pytest.raises(InvalidConfigurationError):
            FamilyRefiner([trio], de_novo_rate=1e-6, scaling="cubic")

    def test_invalid_trios_dropped(self, trio):
        invalid = PedigreeTrio("a", "b", "c", is_valid=False)
        refiner = FamilyRefiner([trio, invalid], 1e-6)
        assert refiner.trios == [trio]
        assert not FamilyRefiner([invalid], 1e-6)

    def test_duplicate_child_keeps_first(self, trio):
        other = PedigreeTrio("mom2", "dad2", "kid")
        refiner = FamilyRefiner([trio, other], 1e-6)
        assert refiner.trios == [trio]

    def test_refine_site_roles(self, trio, trio_site):
        memberships = FamilyRefiner([trio], 1e-6).refine_site(trio_site)
        assert set(memberships) == {"mom", "dad", "kid"}
        assert memberships["kid"].role == "child"
        assert memberships["mom"].role == "mother"
        assert memberships["dad"].role == "father"
        assert memberships["kid"].marginal.sum() == pytest.approx(1.0)

    def test_child_role_takes_precedence(self):
        # "kid" is a child in one trio and a parent in another
        site = make_site([hom_ref("mom"), hom_ref("dad"), het("kid"), hom_ref("partner"), het("grandkid")])
        first = PedigreeTrio("kid", "partner", "grandkid")
        second = PedigreeTrio("mom", "dad", "kid")
        memberships = FamilyRefiner([first, second], 1e-6).refine_site(site)
        assert memberships["kid"].role == "child"
        assert memberships["kid"].posterior.trio == second

    def test_multiallelic_site_skipped_by_default(self, trio):
        genotypes = [
            SampleGenotype.from_pls(sample, [0, 30, 300, 30, 300, 300], alleles=(0, 0))
            for sample in ("mom", "dad", "kid")
        ]
        site = make_site(genotypes, alts=("T", "G"))
        assert FamilyRefiner([trio], 1e-6).refine_site(site) == {}

        memberships = FamilyRefiner([trio], 1e-6, biallelic_only=False).refine_site(site)
        assert memberships["kid"].marginal.shape == (6,)

    def test_ineligible_trio_skipped(self, trio):
        site = make_site([hom_ref("mom"), hom_ref("dad"), SampleGenotype("kid")])
        assert FamilyRefiner([trio], 1e-6).refine_site(site) == {}
