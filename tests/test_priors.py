"""
Tests for population genotype priors.
"""

import numpy as np
import pytest

from callset_refine.config import PriorOptions
from callset_refine.exceptions import InvalidConfigurationError
from callset_refine.priors import (
    PriorCombiner,
    PriorDistribution,
    compute_prior,
    discovered_allele_counts,
    hardy_weinberg_prior,
    resolve_population_observation,
)
from callset_refine.variants import PanelRecord, PopulationObservation, SampleGenotype

from conftest import hom_alt, hom_ref, make_site


def called_samples(n, factory=hom_alt):
    return [factory(f"s{i}") for i in range(n)]


class TestHardyWeinberg:
    """Test genotype frequencies from allele counts."""

    def test_equal_counts(self):
        np.testing.assert_allclose(hardy_weinberg_prior([1, 1]), [0.25, 0.5, 0.25])

    def test_skewed_counts(self):
        np.testing.assert_allclose(hardy_weinberg_prior([9, 1]), [0.81, 0.18, 0.01])

    def test_multiallelic(self):
        prior = hardy_weinberg_prior([2, 1, 1])
        assert len(prior) == 6
        assert prior.sum() == pytest.approx(1.0)
        # 0/0 = 0.5^2, 1/2 = 2 * 0.25 * 0.25
        assert prior[0] == pytest.approx(0.25)
        assert prior[4] == pytest.approx(0.125)

    def test_no_mass(self):
        assert hardy_weinberg_prior([0, 0]) is None

    def test_haploid_is_allele_frequencies(self):
        np.testing.assert_allclose(hardy_weinberg_prior([3, 1], ploidy=1), [0.75, 0.25])

    def test_triploid_is_binomial(self):
        # 0/0/0, 0/0/1, 0/1/1, 1/1/1 with f = (0.9, 0.1)
        expected = [0.9 ** 3, 3 * 0.9 ** 2 * 0.1, 3 * 0.9 * 0.1 ** 2, 0.1 ** 3]
        np.testing.assert_allclose(hardy_weinberg_prior([9, 1], ploidy=3), expected)


class TestPriorDistribution:
    """Test prior container helpers."""

    def test_flat(self):
        prior = PriorDistribution.flat(3)
        assert prior.is_flat
        assert prior.n_genotypes == 6
        np.testing.assert_allclose(prior.probabilities, np.full(6, 1 / 6))
        assert prior.phred == [0] * 6

    def test_log10_of_zero(self):
        prior = PriorDistribution(np.array([1.0, 0.0, 0.0]))
        assert prior.log10[0] == 0.0
        assert np.isneginf(prior.log10[1])

    def test_flat_haploid(self):
        prior = PriorDistribution.flat(2, ploidy=1)
        np.testing.assert_allclose(prior.probabilities, [0.5, 0.5])

    def test_for_ploidy_uses_allele_counts(self):
        counts = np.array([9.0, 1.0])
        prior = PriorDistribution(hardy_weinberg_prior(counts), counts)
        haploid = prior.for_ploidy(2, 1)
        np.testing.assert_allclose(haploid.probabilities, [0.9, 0.1])
        assert not haploid.is_flat
        assert prior.for_ploidy(2, 2) is prior

    def test_for_ploidy_without_counts_is_flat(self):
        prior = PriorDistribution(hardy_weinberg_prior([9, 1]))
        triploid = prior.for_ploidy(2, 3)
        assert triploid.is_flat
        assert triploid.n_genotypes == 4


class TestPanelResolution:
    """Test allele count resolution from panel records."""

    def test_mleac_preferred(self):
        site = make_site()
        record = PanelRecord("chr1", 1000, "A", ("T",), {"MLEAC": [10], "AC": [20], "AN": 100})
        observation = resolve_population_observation(record, site)
        assert observation.allele_counts == (90, 10)
        assert observation.allele_number == 100
        assert observation.source == "MLEAC"

    def test_ac_preferred_when_requested(self):
        site = make_site()
        record = PanelRecord("chr1", 1000, "A", ("T",), {"MLEAC": [10], "AC": [20], "AN": 100})
        observation = resolve_population_observation(record, site, prefer_ac=True)
        assert observation.allele_counts == (80, 20)
        assert observation.source == "AC"

    def test_scalar_counts(self):
        site = make_site()
        record = PanelRecord("chr1", 1000, "A", ("T",), {"AC": 4, "AN": 10})
        assert resolve_population_observation(record, site).allele_counts == (6, 4)

    def test_unmatched_alt_is_dropped(self):
        site = make_site(alts=("T",))
        record = PanelRecord("chr1", 1000, "A", ("G",), {"AC": [30], "AN": 100})
        observation = resolve_population_observation(record, site)
        assert observation.allele_counts == (70, 0)

    def test_alleles_mapped_by_string(self):
        site = make_site(alts=("T", "G"))
        record = PanelRecord("chr1", 1000, "A", ("G", "T"), {"AC": [5, 15], "AN": 100})
        observation = resolve_population_observation(record, site)
        assert observation.allele_counts == (80, 15, 5)

    def test_counts_from_genotypes(self):
        site = make_site()
        record = PanelRecord("chr1", 1000, "A", ("T",), genotypes=((0, 1), (1, 1)))
        observation = resolve_population_observation(record, site)
        assert observation.allele_counts == (1, 3)
        assert observation.source == "GT"

    def test_record_without_counts_is_absent(self):
        site = make_site()
        record = PanelRecord("chr1", 1000, "A", ("T",))
        assert resolve_population_observation(record, site).is_absent


class TestDiscoveredCounts:
    """Test allele counts from the callset itself."""

    def test_counts_from_calls(self):
        site = make_site([hom_ref("a"), hom_alt("b"), SampleGenotype("c")])
        observation = discovered_allele_counts(site)
        assert observation.allele_counts == (2, 2)
        assert observation.allele_number == 4

    def test_counts_from_info(self):
        site = make_site([hom_ref("a")], AC=[3], AN=10)
        assert discovered_allele_counts(site).allele_counts == (7, 3)

    def test_no_calls(self):
        assert discovered_allele_counts(make_site([SampleGenotype("a")])).is_absent


class TestComputePrior:
    """Test combination of pseudocounts, panel and discovered counts."""

    def setup_method(self):
        self.options = PriorOptions()

    def test_no_observations_equals_pseudocount_prior(self):
        site = make_site()
        prior = compute_prior(site, [], None, self.options)
        expected = hardy_weinberg_prior(np.full(2, self.options.global_prior_snp / 2))
        np.testing.assert_allclose(prior.probabilities, expected)
        assert not prior.is_flat

    def test_zero_mass_without_observations_is_flat(self):
        options = PriorOptions(global_prior_snp=0.0)
        prior = compute_prior(make_site(), [], None, options)
        assert prior.is_flat

    def test_panel_counts_dominate(self):
        site = make_site()
        observation = PopulationObservation((900, 100), 1000, "AC")
        prior = compute_prior(site, [observation], None, self.options)
        np.testing.assert_allclose(prior.probabilities, [0.81, 0.18, 0.01], atol=1e-5)

    def test_discovered_counts_need_enough_samples(self):
        few = make_site(called_samples(3))
        prior = compute_prior(few, [], discovered_allele_counts(few), self.options)
        np.testing.assert_allclose(prior.probabilities, [0.25, 0.5, 0.25])

        many = make_site(called_samples(10))
        prior = compute_prior(many, [], discovered_allele_counts(many), self.options)
        assert prior.probabilities[2] > 0.99

    def test_discovered_counts_disabled(self):
        site = make_site(called_samples(10))
        options = PriorOptions(use_discovered_counts=False)
        prior = compute_prior(site, [], discovered_allele_counts(site), options)
        np.testing.assert_allclose(prior.probabilities, [0.25, 0.5, 0.25])

    def test_ignore_missing_panel_sites(self):
        site = make_site(called_samples(10))
        options = PriorOptions(ignore_missing_panel_sites=True)
        prior = compute_prior(site, [], discovered_allele_counts(site), options)
        np.testing.assert_allclose(prior.probabilities, [0.25, 0.5, 0.25])

    def test_pseudocount_if_absent_from_panel(self):
        site = make_site([SampleGenotype("a")])
        options = PriorOptions(pseudocount_if_absent_from_panel=5)
        prior = compute_prior(site, [], None, options)
        # 10 extra reference alleles
        np.testing.assert_allclose(prior.allele_counts, [10.0005, 0.0005])
        assert prior.probabilities[0] > 0.99

    def test_pseudocount_not_applied_when_panel_matches(self):
        site = make_site()
        options = PriorOptions(pseudocount_if_absent_from_panel=5)
        observation = PopulationObservation((50, 50), 100, "AC")
        prior = compute_prior(site, [observation], None, options)
        np.testing.assert_allclose(prior.allele_counts, [50.0005, 50.0005])

    def test_flat_prior_for_indels(self):
        indel = make_site(alts=("AT",))
        options = PriorOptions(use_flat_prior_for_indels=True)
        observation = PopulationObservation((900, 100), 1000, "AC")
        assert compute_prior(indel, [observation], None, options).is_flat

    def test_flat_prior_for_indel_panel_record(self):
        site = make_site()
        options = PriorOptions(use_flat_prior_for_indels=True)
        record = PanelRecord("chr1", 1000, "A", ("T", "TA"), {"AC": [1, 1], "AN": 10})
        assert compute_prior(site, [], None, options, panel_records=[record]).is_flat

    def test_indel_uses_indel_mass(self):
        indel = make_site(alts=("AT",))
        options = PriorOptions(global_prior_snp=0.0, global_prior_indel=2.0)
        prior = compute_prior(indel, [], None, options)
        np.testing.assert_allclose(prior.allele_counts, [1.0, 1.0])

    def test_negative_mass_rejected(self):
        options = PriorOptions(global_prior_snp=-1.0)
        with pytest.raises(InvalidConfigurationError):
            compute_prior(make_site(), [], None, options)

    def test_observation_length_mismatch(self):
        observation = PopulationObservation((1, 1, 1), 3, "AC")
        with pytest.raises(ValueError):
            compute_prior(make_site(), [observation], None, self.options)


class TestPriorCombiner:
    """Test the per-site prior entry point."""

    def test_invalid_options_rejected(self):
        with pytest.raises(InvalidConfigurationError):
            PriorCombiner(PriorOptions(de_novo_rate=2.0))

    def test_prior_for_site_with_panel(self):
        combiner = PriorCombiner()
        site = make_site()
        record = PanelRecord("chr1", 1000, "A", ("T",), {"AC": [100], "AN": 1000})
        prior = combiner.prior_for_site(site, [record])
        np.testing.assert_allclose(prior.probabilities, [0.81, 0.18, 0.01], atol=1e-5)

    def test_prior_for_multiallelic_site(self, multiallelic_site):
        prior = PriorCombiner().prior_for_site(multiallelic_site)
        assert prior.n_genotypes == 6
        assert prior.probabilities.sum() == pytest.approx(1.0)
