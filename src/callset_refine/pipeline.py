"""
Site-by-site posterior refinement pipeline.

Each site gets a population prior from the panel and the callset's own
allele counts, trio refinement for eligible families and finally new
posterior-based genotype calls.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from .config import PosteriorOptions, PriorOptions, RefinementConfig
from .exceptions import MalformedGenotypeLikelihoodError
from .family import FamilyRefiner, TrioMembership
from .io import PopulationPanel
from .logging_config import StageTimer
from .parallel import bounded_map
from .pedigree import PedigreeTrio
from .posteriors import PosteriorSynthesizer
from .priors import PriorCombiner, PriorDistribution
from .variants import Site

logger = logging.getLogger(__name__)

REFINEMENT_SKIPPED_KEY = "REFINEMENT_SKIPPED"


class PosteriorPipeline:
    """Combines the prior, family and posterior stages over a stream of sites."""

    def __init__(
        self,
        options: Optional[PosteriorOptions] = None,
        prior_options: Optional[PriorOptions] = None,
        panel: Optional[PopulationPanel] = None,
        trios: Sequence[PedigreeTrio] = (),
    ):
        self.options = options or PosteriorOptions()
        self.options.validate()
        self.prior_combiner = PriorCombiner(prior_options)
        self.panel = panel
        self.family_refiner = FamilyRefiner(
            trios,
            self.prior_combiner.options.de_novo_rate,
            self.prior_combiner.options.de_novo_scaling,
            self.options.family_biallelic_only,
        )
        if not self.family_refiner and not self.options.skip_family_priors:
            logger.warning("No pedigree passed or no non-skipped trios found. Skipping family priors.")
        self.synthesizer = PosteriorSynthesizer(self.options)
        self.n_processed = 0
        self.n_skipped = 0

    @classmethod
    def from_config(
        cls,
        config: RefinementConfig,
        panel: Optional[PopulationPanel] = None,
        trios: Sequence[PedigreeTrio] = (),
    ) -> "PosteriorPipeline":
        return cls(config.posteriors, config.priors, panel, trios)

    def _population_prior(self, site: Site) -> PriorDistribution:
        if self.options.skip_population_priors:
            return PriorDistribution.flat(site.n_alleles)
        panel_records = self.panel.records_at(site) if self.panel is not None else []
        return self.prior_combiner.prior_for_site(site, panel_records)

    def refine(self, site: Site) -> Site:
        """Refine one site, propagating ``MalformedGenotypeLikelihoodError``."""
        prior = self._population_prior(site)
        memberships: Dict[str, TrioMembership] = {}
        if self.family_refiner and not self.options.skip_family_priors:
            memberships = self.family_refiner.refine_site(site, prior)
        return self.synthesizer.synthesize(site, prior, memberships)

    def process_site(self, site: Site) -> Site:
        """Refine one site, or flag it and pass it through when its likelihoods are malformed.

        Raises:
            MalformedGenotypeLikelihoodError: Only when ``strict`` is set
        """
        try:
            return self.refine(site)
        except MalformedGenotypeLikelihoodError as e:
            if self.options.strict:
                raise
            logger.warning(f"Skipping refinement of {site.site_id}: {e}")
            return site.with_info(**{REFINEMENT_SKIPPED_KEY: True})

    def iter_sites(self, sites: Iterable[Site]) -> Iterator[Site]:
        """Refined sites in input order, read from ``sites`` a bounded window ahead."""
        for refined in bounded_map(self.process_site, sites, self.options.workers):
            yield self._count(refined)

    def _count(self, site: Site) -> Site:
        self.n_processed += 1
        if site.info.get(REFINEMENT_SKIPPED_KEY):
            self.n_skipped += 1
        return site

    def run(self, sites: Iterable[Site], sink=None) -> List[Site]:
        """Refine every site, handing each to ``sink`` when given.

        Returns:
            The refined sites when no sink is given, otherwise an empty list
        """
        results: List[Site] = []
        with StageTimer(logger, "posterior refinement") as timer:
            for refined in self.iter_sites(sites):
                timer.tick()
                if sink is not None:
                    sink.add(refined)
                else:
                    results.append(refined)
        logger.info(f"Refined {self.n_processed} sites ({self.n_skipped} skipped)")
        return results
